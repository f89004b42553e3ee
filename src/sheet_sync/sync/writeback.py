"""Propagation of local record changes to the backing spreadsheet."""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from sheet_sync.config import Config

from sheet_sync.errors import ConfigError, PersistenceError, RemoteError
from sheet_sync.google import CredentialManager, SheetsClient
from sheet_sync.sync.conflict import ConflictPolicy
from sheet_sync.sync.mapper import (
    RowMapper,
    a1_range,
    extract_spreadsheet_id,
    parse_appended_row_number,
    row_range,
)
from sheet_sync.sync.models import SheetConfiguration, SyncMetadata, utc_now

logger = logging.getLogger(__name__)


class WriteOperation(str, Enum):
    """Kind of local change being written back."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class WriteBackEvent(BaseModel):
    """A local change to one record."""

    operation: WriteOperation
    table: str
    record_id: str
    data: dict[str, Any] = Field(default_factory=dict)


class WriteBackResult:
    """Outcome of handling one write-back event."""

    def __init__(
        self,
        event: WriteBackEvent,
        written: bool = False,
        row_number: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize write-back result.

        Args:
            event: Handled event.
            written: Whether the sheet was changed.
            row_number: Row that was written or removed.
            reason: Why nothing was written, for no-op results.
        """
        self.event = event
        self.written = written
        self.row_number = row_number
        self.reason = reason

    def __str__(self) -> str:
        """String representation of the result."""
        target = f"{self.event.table}/{self.event.record_id}"
        if not self.written:
            return f"{self.event.operation.value} {target}: nothing written ({self.reason})"
        return f"{self.event.operation.value} {target}: row {self.row_number}"


class WriteBackHandler:
    """Writes inserts, updates and deletes of sheet-backed records to the sheet.

    Errors propagate to the caller and nothing is retried. Sync metadata is
    only touched after the sheet accepted the change.
    """

    def __init__(
        self,
        config: "Config",
        credentials: CredentialManager,
        sheets: SheetsClient,
        mapper: RowMapper | None = None,
        policy: ConflictPolicy | None = None,
    ) -> None:
        """Initialize write-back handler.

        Args:
            config: Application configuration.
            credentials: Credential manager for access tokens.
            sheets: Google Sheets API client.
            mapper: Row mapper.
            policy: Conflict policy.
        """
        self.config = config
        self.storage = config.storage
        self.credentials = credentials
        self.sheets = sheets
        self.mapper = mapper or RowMapper()
        self.policy = policy or ConflictPolicy()

    def handle(self, event: WriteBackEvent) -> WriteBackResult:
        """Write one local change to the backing sheet.

        Args:
            event: The local change.

        Returns:
            Result describing what was written.

        Raises:
            ConfigError: If the sheet configuration is missing or incomplete.
            AuthError: If the owner's credential is missing or revoked.
            RemoteError: If the Sheets API call fails.
            PersistenceError: If the record or its metadata cannot be stored.
        """
        record = self._load_record(event)
        metadata = SyncMetadata.from_record(record)
        if metadata is None:
            logger.debug(f"Record {event.record_id} in {event.table} is not sheet-backed")
            return WriteBackResult(event, reason="record is not linked to a sheet")

        sheet_config = self.config.get_sheet_config(metadata.sheet_config_id)
        if sheet_config is None:
            raise ConfigError(f"Sheet configuration {metadata.sheet_config_id} not found")

        spreadsheet_id = extract_spreadsheet_id(sheet_config.sheet_url)
        if spreadsheet_id is None:
            raise ConfigError(f"Invalid sheet URL: {sheet_config.sheet_url}")

        access_token = self.credentials.get_valid_access_token(sheet_config.user_id)

        if event.operation is WriteOperation.DELETE:
            return self._delete(event, sheet_config, spreadsheet_id, metadata, access_token)

        row = self.mapper.to_row({**record, **event.data}, sheet_config.mappings)

        if event.operation is WriteOperation.UPDATE:
            return self._update(event, sheet_config, spreadsheet_id, metadata, row, access_token)
        return self._insert(event, sheet_config, spreadsheet_id, metadata, row, access_token)

    def _load_record(self, event: WriteBackEvent) -> dict[str, Any]:
        record = self.storage.get_record(event.table, event.record_id)
        if record is not None:
            return record
        if event.operation is WriteOperation.DELETE:
            # Already removed locally; the caller passes its last state
            return {"id": event.record_id, **event.data}
        raise PersistenceError(f"Record {event.record_id} not found in {event.table}")

    def _delete(
        self,
        event: WriteBackEvent,
        sheet_config: SheetConfiguration,
        spreadsheet_id: str,
        metadata: SyncMetadata,
        access_token: str,
    ) -> WriteBackResult:
        row_number = metadata.sheet_row_number
        if row_number is None:
            logger.info(f"Record {event.record_id} has no sheet row, nothing to delete")
            return WriteBackResult(event, reason="record has no sheet row")

        tab_id = self._tab_id(sheet_config, spreadsheet_id, access_token)
        self.sheets.delete_row(spreadsheet_id, tab_id, row_number, access_token)

        # Rows below the deleted one moved up in the sheet
        shifted = self.storage.shift_rows_after_delete(event.table, sheet_config.id, row_number)

        logger.info(
            f"Deleted row {row_number} of sheet configuration {sheet_config.id}, "
            f"renumbered {shifted} linked records"
        )
        return WriteBackResult(event, written=True, row_number=row_number)

    def _update(
        self,
        event: WriteBackEvent,
        sheet_config: SheetConfiguration,
        spreadsheet_id: str,
        metadata: SyncMetadata,
        row: list[str],
        access_token: str,
    ) -> WriteBackResult:
        row_number = metadata.sheet_row_number
        if row_number is None:
            raise ConfigError(f"Record {event.record_id} has no sheet row to update")

        settings = self.config.get_settings()
        self.sheets.update_row(
            spreadsheet_id,
            row_range(row_number, settings.values_range, sheet_config.sheet_name),
            row,
            access_token,
        )
        self._mark_synced(event, metadata)

        logger.info(f"Updated row {row_number} of sheet configuration {sheet_config.id}")
        return WriteBackResult(event, written=True, row_number=row_number)

    def _insert(
        self,
        event: WriteBackEvent,
        sheet_config: SheetConfiguration,
        spreadsheet_id: str,
        metadata: SyncMetadata,
        row: list[str],
        access_token: str,
    ) -> WriteBackResult:
        settings = self.config.get_settings()
        response = self.sheets.append_row(
            spreadsheet_id,
            a1_range(settings.values_range, sheet_config.sheet_name),
            row,
            access_token,
        )

        updated_range = response.updates.updated_range
        row_number = parse_appended_row_number(updated_range)
        if row_number is None:
            raise RemoteError(f"Could not read the appended row from range {updated_range!r}")

        with self.storage.lock:
            holder = self.storage.find_record_by_row(event.table, sheet_config.id, row_number)
            if holder is not None and holder.get("id") != event.record_id:
                raise PersistenceError(
                    f"Row {row_number} of sheet configuration {sheet_config.id} "
                    f"is already linked to record {holder.get('id')}"
                )
            self._mark_synced(event, metadata, row_number)

        logger.info(f"Appended record {event.record_id} as row {row_number}")
        return WriteBackResult(event, written=True, row_number=row_number)

    def _mark_synced(
        self,
        event: WriteBackEvent,
        metadata: SyncMetadata,
        row_number: int | None = None,
    ) -> None:
        synced = self.policy.after_write_back(metadata, row_number, utc_now())
        self.storage.update_record(
            event.table,
            event.record_id,
            {"sync_metadata": synced.to_store()},
        )

    def _tab_id(
        self,
        sheet_config: SheetConfiguration,
        spreadsheet_id: str,
        access_token: str,
    ) -> int:
        if sheet_config.sheet_tab_id is not None:
            return sheet_config.sheet_tab_id

        tab_id = resolve_tab_id(self.sheets, spreadsheet_id, sheet_config.sheet_name, access_token)
        if sheet_config.sheet_name:
            self.config.save_sheet_config(sheet_config.model_copy(update={"sheet_tab_id": tab_id}))
            logger.info(f"Stored tab id {tab_id} for sheet configuration {sheet_config.id}")
        return tab_id


def resolve_tab_id(
    sheets: SheetsClient,
    spreadsheet_id: str,
    sheet_name: str | None,
    access_token: str,
) -> int:
    """Find the numeric id of a spreadsheet tab.

    Without a name, the first tab is used, matching what an unqualified
    values range reads.

    Args:
        sheets: Google Sheets API client.
        spreadsheet_id: Spreadsheet id.
        sheet_name: Tab title, if the configuration names one.
        access_token: OAuth access token.

    Returns:
        The tab's ``sheetId``.

    Raises:
        ConfigError: If no tab has the given name.
        RemoteError: If the spreadsheet has no tabs or cannot be read.
    """
    tabs = sheets.list_tabs(spreadsheet_id, access_token)
    if sheet_name:
        for tab in tabs:
            if tab.title == sheet_name:
                return tab.sheet_id
        titles = ", ".join(tab.title for tab in tabs) or "none"
        raise ConfigError(
            f"Tab '{sheet_name}' not found in spreadsheet {spreadsheet_id} (tabs: {titles})"
        )

    if not tabs:
        raise RemoteError(f"Spreadsheet {spreadsheet_id} has no tabs")
    logger.warning(f"No tab name configured, using first tab '{tabs[0].title}'")
    return tabs[0].sheet_id
