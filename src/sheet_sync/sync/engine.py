"""Pull sync job reconciling spreadsheet rows into the record store."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sheet_sync.config import Config

from sheet_sync.errors import ConfigError, PersistenceError, SheetSyncError
from sheet_sync.google import CredentialManager, SheetsClient
from sheet_sync.sync.conflict import ConflictPolicy
from sheet_sync.sync.mapper import RowMapper, a1_range, extract_spreadsheet_id
from sheet_sync.sync.models import (
    OperationStatus,
    SheetConfiguration,
    SyncMetadata,
    SyncOperation,
    SyncStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

# Cap on error messages copied into one audit record
MAX_AUDIT_ERRORS = 50


class ConfigSyncResult:
    """Results from pulling one sheet configuration."""

    def __init__(self, config_id: str, sheet_type: str) -> None:
        """Initialize result for one configuration."""
        self.config_id = config_id
        self.sheet_type = sheet_type
        self.inserted = 0
        self.updated = 0
        self.unchanged = 0
        self.protected = 0
        self.skipped = 0
        self.errors: list[str] = []
        self.fatal_error: str | None = None
        self.skip_reason: str | None = None

    def add_insert(self) -> None:
        """Record a newly created record."""
        self.inserted += 1

    def add_update(self) -> None:
        """Record an overwritten record."""
        self.updated += 1

    def add_unchanged(self) -> None:
        """Record a row already matching its record."""
        self.unchanged += 1

    def add_protected(self) -> None:
        """Record a row whose record holds local edits."""
        self.protected += 1

    def add_skip(self) -> None:
        """Record a row with nothing mapped."""
        self.skipped += 1

    def add_failure(self, error: str) -> None:
        """Record a failed row."""
        self.errors.append(error)

    def fail(self, error: str) -> None:
        """Record a failure that aborted the whole configuration."""
        self.fatal_error = error

    def skip_configuration(self, reason: str) -> None:
        """Record that the configuration had nothing to pull."""
        self.skip_reason = reason

    @property
    def records_affected(self) -> int:
        """Records inserted or updated."""
        return self.inserted + self.updated

    @property
    def error_count(self) -> int:
        """Row failures plus the configuration-level failure, if any."""
        return len(self.errors) + (1 if self.fatal_error else 0)

    @property
    def all_errors(self) -> list[str]:
        """Configuration-level failure followed by row failures."""
        return ([self.fatal_error] if self.fatal_error else []) + self.errors

    def __str__(self) -> str:
        """String representation of results."""
        if self.fatal_error:
            return f"{self.sheet_type} ({self.config_id}): failed: {self.fatal_error}"
        if self.skip_reason:
            return f"{self.sheet_type} ({self.config_id}): skipped: {self.skip_reason}"
        return (
            f"{self.sheet_type} ({self.config_id}): "
            f"Inserted: {self.inserted}, "
            f"Updated: {self.updated}, "
            f"Unchanged: {self.unchanged}, "
            f"Protected: {self.protected}, "
            f"Errors: {len(self.errors)}"
        )


class SyncResult:
    """Results from one pull sync run across all configurations."""

    def __init__(self) -> None:
        """Initialize sync result."""
        self.config_results: list[ConfigSyncResult] = []

    def add(self, config_result: ConfigSyncResult) -> None:
        """Add the result of one configuration."""
        self.config_results.append(config_result)

    @property
    def records_affected(self) -> int:
        """Records inserted or updated across all configurations."""
        return sum(r.records_affected for r in self.config_results)

    @property
    def error_count(self) -> int:
        """Errors across all configurations."""
        return sum(r.error_count for r in self.config_results)

    @property
    def failed_configs(self) -> list[ConfigSyncResult]:
        """Configurations aborted by a configuration-level failure."""
        return [r for r in self.config_results if r.fatal_error]

    def __str__(self) -> str:
        """String representation of results."""
        return (
            f"Configurations: {len(self.config_results)}, "
            f"Records affected: {self.records_affected}, "
            f"Errors: {self.error_count}, "
            f"Failed configurations: {len(self.failed_configs)}"
        )


class PullSyncJob:
    """Batch job pulling every active sheet configuration into the store."""

    def __init__(
        self,
        config: "Config",
        credentials: CredentialManager,
        sheets: SheetsClient,
        max_workers: int | None = None,
        mapper: RowMapper | None = None,
        policy: ConflictPolicy | None = None,
    ) -> None:
        """Initialize pull sync job.

        Args:
            config: Application configuration.
            credentials: Credential manager for access tokens.
            sheets: Google Sheets API client.
            max_workers: Configurations pulled concurrently. Defaults to settings.
            mapper: Row mapper.
            policy: Conflict policy.
        """
        self.config = config
        self.storage = config.storage
        self.credentials = credentials
        self.sheets = sheets
        self.settings = config.get_settings()
        self.max_workers = max_workers or self.settings.max_workers
        self.mapper = mapper or RowMapper()
        self.policy = policy or ConflictPolicy()

    def run(self) -> SyncResult:
        """Pull every active configuration.

        Each configuration runs as an isolated task; a failing configuration
        is reported in the result and never stops the others.

        Returns:
            Sync results, one entry per configuration in saved order.
        """
        result = SyncResult()
        sheet_configs = self.config.get_sheet_configs(active_only=True)

        if not sheet_configs:
            logger.info("No active sheet configurations found")
            return result

        logger.info(f"Pulling {len(sheet_configs)} sheet configuration(s)")

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(sheet_configs)),
            thread_name_prefix="pull-sync",
        ) as pool:
            for config_result in pool.map(self._run_isolated, sheet_configs):
                result.add(config_result)

        logger.info(f"Pull sync complete: {result}")
        return result

    def _run_isolated(self, sheet_config: SheetConfiguration) -> ConfigSyncResult:
        """Pull one configuration, converting any failure into its result."""
        result = ConfigSyncResult(sheet_config.id, sheet_config.sheet_type.value)
        started_at = utc_now()

        try:
            self.sync_configuration(sheet_config, result)
        except SheetSyncError as e:
            logger.error(f"Pull of sheet configuration {sheet_config.id} failed: {e}")
            result.fail(str(e))
        except Exception as e:
            logger.exception(f"Unexpected error pulling sheet configuration {sheet_config.id}")
            result.fail(f"Unexpected error: {e}")

        if result.skip_reason is None:
            self._record_operation(sheet_config, result, started_at)

        logger.info(str(result))
        return result

    def sync_configuration(
        self,
        sheet_config: SheetConfiguration,
        result: ConfigSyncResult,
    ) -> None:
        """Reconcile the rows of one sheet into the store.

        Args:
            sheet_config: Configuration to pull.
            result: Result collecting the per-row outcomes.

        Raises:
            AuthError: If the owner's credential is missing or revoked.
            ConfigError: If the sheet URL is malformed.
            RemoteError: If the sheet cannot be fetched.
            PersistenceError: If the configuration timestamp cannot be saved.
        """
        logger.info(f"Syncing sheet configuration {sheet_config.id} ({sheet_config.sheet_type.value})")

        access_token = self.credentials.get_valid_access_token(sheet_config.user_id)

        spreadsheet_id = extract_spreadsheet_id(sheet_config.sheet_url)
        if spreadsheet_id is None:
            raise ConfigError(f"Invalid sheet URL: {sheet_config.sheet_url}")

        rows = self.sheets.get_values(
            spreadsheet_id,
            a1_range(self.settings.values_range, sheet_config.sheet_name),
            access_token,
        )

        if len(rows) < 2:
            logger.info(f"No data rows in sheet for configuration {sheet_config.id}")
            result.skip_configuration("no data rows")
            return

        now = utc_now()
        table = sheet_config.table_name
        existing_by_row = self.storage.records_by_row(table, sheet_config.id)

        # Row 1 is the header; data row i sits at sheet row i + 2
        for index, row in enumerate(rows[1:]):
            row_number = index + 2
            try:
                self._sync_row(
                    sheet_config=sheet_config,
                    row=row,
                    row_number=row_number,
                    existing=existing_by_row.get(row_number),
                    now=now,
                    result=result,
                )
            except Exception as e:
                logger.error(f"Failed to sync row {row_number} of {sheet_config.id}: {e}")
                result.add_failure(f"Row {row_number}: {e}")

        self.config.set_last_synced_at(sheet_config.id, utc_now())

    def _sync_row(
        self,
        sheet_config: SheetConfiguration,
        row: list[str],
        row_number: int,
        existing: dict[str, Any] | None,
        now: datetime,
        result: ConfigSyncResult,
    ) -> None:
        """Reconcile a single sheet row with its record."""
        fields = self.mapper.to_record(row, sheet_config.mappings)
        if not fields:
            logger.debug(f"Row {row_number} has no mapped values, skipping")
            result.add_skip()
            return

        table = sheet_config.table_name
        metadata = self.policy.synced(sheet_config.id, row_number, now)

        if existing is None:
            self.storage.insert_record(table, {**fields, "sync_metadata": metadata.to_store()})
            result.add_insert()
            return

        current = SyncMetadata.from_record(existing)
        if not self.policy.admits_pull(current):
            logger.info(f"Record {existing['id']} modified locally, skipping update")
            result.add_protected()
            return

        if current.sync_status is SyncStatus.SYNCED and all(
            existing.get(name) == value for name, value in fields.items()
        ):
            result.add_unchanged()
            return

        self.storage.update_record(
            table,
            existing["id"],
            {**fields, "sync_metadata": metadata.to_store()},
        )
        result.add_update()

    def _record_operation(
        self,
        sheet_config: SheetConfiguration,
        result: ConfigSyncResult,
        started_at: datetime,
    ) -> None:
        """Append the audit record for one configuration run."""
        operation = SyncOperation(
            user_id=sheet_config.user_id,
            sheet_config_id=sheet_config.id,
            operation_type="pull",
            records_affected=result.records_affected,
            error_count=result.error_count,
            errors=result.all_errors[:MAX_AUDIT_ERRORS],
            status=OperationStatus.FAILED if result.fatal_error else OperationStatus.COMPLETED,
            started_at=started_at,
            completed_at=utc_now(),
        )
        try:
            self.storage.append_sync_operation(operation.model_dump(mode="json"))
        except PersistenceError as e:
            logger.error(f"Failed to write audit record for {sheet_config.id}: {e}")
