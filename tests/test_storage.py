"""Tests for storage manager."""

import json
import stat
from pathlib import Path

import pytest

from sheet_sync.errors import PersistenceError
from sheet_sync.utils import StorageManager


class TestStorageManager:
    """Test StorageManager functionality."""

    def test_init_creates_directory(self, temp_config_dir: Path) -> None:
        """Test that initialization creates the config directory."""
        target = temp_config_dir / "nested"
        storage = StorageManager(target)
        assert target.exists()
        assert storage.config_dir == target

    def test_settings_persistence(self, storage_manager: StorageManager) -> None:
        """Test saving and loading settings."""
        settings = {"google_client_id": "abc", "max_workers": 2}

        storage_manager.save_settings(settings)

        assert storage_manager.load_settings() == settings

    def test_sheet_configs_default_empty(self, storage_manager: StorageManager) -> None:
        """Test that missing sheet configs load as an empty list."""
        assert storage_manager.load_sheet_configs() == []

    def test_credential_round_trip(self, storage_manager: StorageManager) -> None:
        """Test setting, reading and deleting a credential."""
        storage_manager.set_credential("user_1", {"access_token": "a", "refresh_token": "r"})

        assert storage_manager.get_credential("user_1") == {"access_token": "a", "refresh_token": "r"}
        assert storage_manager.get_credential("user_2") is None

        storage_manager.delete_credential("user_1")
        assert storage_manager.get_credential("user_1") is None

    def test_credentials_file_permissions(self, storage_manager: StorageManager) -> None:
        """Test that the credentials file is only readable by its owner."""
        storage_manager.set_credential("user_1", {"access_token": "a"})

        mode = stat.S_IMODE(storage_manager.credentials_file.stat().st_mode)
        assert mode == 0o600

    def test_insert_assigns_id(self, storage_manager: StorageManager) -> None:
        """Test that inserting a record assigns an id."""
        stored = storage_manager.insert_record("leads", {"name": "Alice"})

        assert stored["id"]
        assert storage_manager.get_record("leads", stored["id"]) == stored

    def test_insert_duplicate_id(self, storage_manager: StorageManager) -> None:
        """Test that inserting an existing id fails."""
        storage_manager.insert_record("leads", {"id": "lead_1"})

        with pytest.raises(PersistenceError):
            storage_manager.insert_record("leads", {"id": "lead_1"})

    def test_update_record(self, storage_manager: StorageManager) -> None:
        """Test updating fields of a record."""
        storage_manager.insert_record("leads", {"id": "lead_1", "name": "Alice", "email": "a@x.io"})

        updated = storage_manager.update_record("leads", "lead_1", {"name": "Alicia"})

        assert updated == {"id": "lead_1", "name": "Alicia", "email": "a@x.io"}
        assert storage_manager.get_record("leads", "lead_1")["name"] == "Alicia"

    def test_update_missing_record(self, storage_manager: StorageManager) -> None:
        """Test that updating a missing record fails."""
        with pytest.raises(PersistenceError):
            storage_manager.update_record("leads", "missing", {"name": "x"})

    def test_delete_record(self, storage_manager: StorageManager) -> None:
        """Test deleting a record."""
        storage_manager.insert_record("leads", {"id": "lead_1"})

        storage_manager.delete_record("leads", "lead_1")
        storage_manager.delete_record("leads", "lead_1")

        assert storage_manager.get_record("leads", "lead_1") is None

    def test_records_by_row(self, storage_manager: StorageManager) -> None:
        """Test indexing records of one configuration by row number."""
        storage_manager.insert_record(
            "leads",
            {"id": "a", "sync_metadata": {"sheet_config_id": "c1", "sheet_row_number": 2}},
        )
        storage_manager.insert_record(
            "leads",
            {"id": "b", "sync_metadata": {"sheet_config_id": "c2", "sheet_row_number": 2}},
        )
        storage_manager.insert_record("leads", {"id": "c"})

        index = storage_manager.records_by_row("leads", "c1")

        assert list(index) == [2]
        assert index[2]["id"] == "a"
        assert storage_manager.find_record_by_row("leads", "c2", 2)["id"] == "b"
        assert storage_manager.find_record_by_row("leads", "c2", 3) is None

    def test_shift_rows_after_delete(self, storage_manager: StorageManager) -> None:
        """Test renumbering one configuration's records after a row delete."""
        for record_id, config_id, row_number in [
            ("above", "c1", 2),
            ("deleted", "c1", 3),
            ("below", "c1", 4),
            ("unlinked", "c1", None),
            ("other", "c2", 4),
        ]:
            storage_manager.insert_record(
                "leads",
                {"id": record_id, "sync_metadata": {"sheet_config_id": config_id, "sheet_row_number": row_number}},
            )

        changed = storage_manager.shift_rows_after_delete("leads", "c1", 3)

        rows = {
            record_id: record["sync_metadata"]["sheet_row_number"]
            for record_id, record in storage_manager.load_table("leads").items()
        }
        assert changed == 2
        assert rows == {"above": 2, "deleted": None, "below": 3, "unlinked": None, "other": 4}

    def test_corrupt_table(self, storage_manager: StorageManager) -> None:
        """Test that an unreadable table raises PersistenceError."""
        storage_manager.records_dir.mkdir(parents=True, exist_ok=True)
        (storage_manager.records_dir / "leads.json").write_text("{not json")

        with pytest.raises(PersistenceError):
            storage_manager.load_table("leads")

    def test_write_leaves_no_temp_file(self, storage_manager: StorageManager) -> None:
        """Test that writes replace the table file atomically."""
        storage_manager.insert_record("leads", {"id": "lead_1"})

        files = sorted(p.name for p in storage_manager.records_dir.iterdir())
        assert files == ["leads.json"]
        assert json.loads((storage_manager.records_dir / "leads.json").read_text()) == {
            "lead_1": {"id": "lead_1"}
        }

    def test_sync_operations_append(self, storage_manager: StorageManager) -> None:
        """Test that sync operations are appended in order."""
        storage_manager.append_sync_operation({"id": "op_1"})
        storage_manager.append_sync_operation({"id": "op_2"})

        assert [op["id"] for op in storage_manager.load_sync_operations()] == ["op_1", "op_2"]
        assert len(storage_manager.operations_file.read_text().splitlines()) == 2
