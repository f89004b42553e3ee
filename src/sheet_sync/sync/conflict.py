"""Rules deciding whether a pull may overwrite a synced record."""

from datetime import datetime

from sheet_sync.sync.models import SyncMetadata, SyncStatus, utc_now


class ConflictPolicy:
    """State machine over a record's sync status.

    ``synced`` is assigned by a pull insert or a write-back. The editing
    layer moves a record to ``modified_locally`` when it changes it without
    going through the write-back handler, and only a successful write-back
    moves it back. ``error`` is informational and never blocks a pull.
    """

    @staticmethod
    def admits_pull(metadata: SyncMetadata | None) -> bool:
        """Check whether a pull may overwrite the record."""
        if metadata is None:
            return True
        return metadata.sync_status is not SyncStatus.MODIFIED_LOCALLY

    @staticmethod
    def synced(
        sheet_config_id: str,
        row_number: int,
        now: datetime | None = None,
    ) -> SyncMetadata:
        """Metadata for a record that was just reconciled with its row."""
        return SyncMetadata(
            sheet_config_id=sheet_config_id,
            sheet_row_number=row_number,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=now or utc_now(),
        )

    @staticmethod
    def mark_modified_locally(metadata: SyncMetadata | None) -> SyncMetadata | None:
        """Transition taken by the editing layer on a direct edit.

        Records that are not sheet-backed have nothing to protect and are
        returned unchanged.
        """
        if metadata is None:
            return None
        return metadata.model_copy(update={"sync_status": SyncStatus.MODIFIED_LOCALLY})

    @staticmethod
    def after_write_back(
        metadata: SyncMetadata,
        row_number: int | None = None,
        now: datetime | None = None,
    ) -> SyncMetadata:
        """Transition taken after the record's row was written to the sheet."""
        update = {
            "sync_status": SyncStatus.SYNCED,
            "last_synced_at": now or utc_now(),
        }
        if row_number is not None:
            update["sheet_row_number"] = row_number
        return metadata.model_copy(update=update)
