"""Tests for the conflict policy."""

from datetime import datetime, timezone

from sheet_sync.sync import ConflictPolicy
from sheet_sync.sync.models import SyncMetadata, SyncStatus

NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


class TestConflictPolicy:
    """Test ConflictPolicy transitions."""

    def test_admits_pull(self) -> None:
        """Test that only locally modified records block a pull."""
        metadata = ConflictPolicy.synced("c1", 2, NOW)

        assert ConflictPolicy.admits_pull(None)
        assert ConflictPolicy.admits_pull(metadata)
        assert ConflictPolicy.admits_pull(
            metadata.model_copy(update={"sync_status": SyncStatus.ERROR})
        )
        assert not ConflictPolicy.admits_pull(ConflictPolicy.mark_modified_locally(metadata))

    def test_synced(self) -> None:
        """Test building metadata for a reconciled row."""
        metadata = ConflictPolicy.synced("c1", 7, NOW)

        assert metadata == SyncMetadata(
            sheet_config_id="c1",
            sheet_row_number=7,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=NOW,
        )

    def test_mark_modified_unlinked(self) -> None:
        """Test that unlinked records stay unlinked."""
        assert ConflictPolicy.mark_modified_locally(None) is None

    def test_after_write_back(self) -> None:
        """Test that a write-back clears the local modification."""
        modified = ConflictPolicy.mark_modified_locally(ConflictPolicy.synced("c1", 3, NOW))
        later = datetime(2024, 5, 2, tzinfo=timezone.utc)

        synced = ConflictPolicy.after_write_back(modified, now=later)

        assert synced.sync_status is SyncStatus.SYNCED
        assert synced.sheet_row_number == 3
        assert synced.last_synced_at == later

    def test_after_write_back_sets_row(self) -> None:
        """Test that an insert write-back records the assigned row."""
        metadata = SyncMetadata(sheet_config_id="c1")

        synced = ConflictPolicy.after_write_back(metadata, row_number=9, now=NOW)

        assert synced.sheet_row_number == 9
