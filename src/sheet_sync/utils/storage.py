"""File-backed storage for settings, credentials, records and the audit log."""

import json
import os
import threading
import uuid
from pathlib import Path
from typing import Any

import yaml

from sheet_sync.errors import PersistenceError


class StorageManager:
    """Manages configuration, credential, record and audit storage.

    Every entity table is a JSON object keyed by record id under
    ``records/<table>.json``. Sync operations are appended one JSON document
    per line to ``sync_operations.jsonl`` and never rewritten.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store data. Defaults to ~/.sheet-sync/
        """
        self.config_dir = config_dir or Path.home() / ".sheet-sync"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.settings_file = self.config_dir / "settings.yaml"
        self.sheet_configs_file = self.config_dir / "sheet_configs.yaml"
        self.credentials_file = self.config_dir / "credentials.json"
        self.operations_file = self.config_dir / "sync_operations.jsonl"
        self.records_dir = self.config_dir / "records"

        # Pull tasks run on a thread pool and share this instance
        self.lock = threading.RLock()

    # -- low level helpers -------------------------------------------------

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {path.name}: {e}") from e

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e

    def _read_yaml(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return yaml.safe_load(f) or default
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to read {path.name}: {e}") from e

    def _write_yaml(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp_path, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e

    # -- settings and sheet configurations ---------------------------------

    def load_settings(self) -> dict[str, Any]:
        """Load application settings.

        Returns:
            Settings dictionary.
        """
        with self.lock:
            return self._read_yaml(self.settings_file, {})

    def save_settings(self, settings: dict[str, Any]) -> None:
        """Save application settings.

        Args:
            settings: Settings dictionary to save.
        """
        with self.lock:
            self._write_yaml(self.settings_file, settings)

    def load_sheet_configs(self) -> list[dict[str, Any]]:
        """Load all saved sheet configurations.

        Returns:
            List of raw sheet configuration dictionaries.
        """
        with self.lock:
            return self._read_yaml(self.sheet_configs_file, [])

    def save_sheet_configs(self, configs: list[dict[str, Any]]) -> None:
        """Replace all saved sheet configurations.

        Args:
            configs: Raw sheet configuration dictionaries.
        """
        with self.lock:
            self._write_yaml(self.sheet_configs_file, configs)

    # -- credentials --------------------------------------------------------

    def load_credentials(self) -> dict[str, dict[str, Any]]:
        """Load all stored credentials keyed by user id."""
        with self.lock:
            return self._read_json(self.credentials_file, {})

    def get_credential(self, user_id: str) -> dict[str, Any] | None:
        """Get the stored credential for a user.

        Args:
            user_id: Owning user id.

        Returns:
            Credential dictionary if available, None otherwise.
        """
        return self.load_credentials().get(user_id)

    def set_credential(self, user_id: str, credential: dict[str, Any]) -> None:
        """Create or replace the credential for a user in one write.

        Args:
            user_id: Owning user id.
            credential: Credential dictionary.
        """
        with self.lock:
            credentials = self.load_credentials()
            credentials[user_id] = credential
            self._write_json(self.credentials_file, credentials)
            # Set restrictive permissions (user read/write only)
            self.credentials_file.chmod(0o600)

    def delete_credential(self, user_id: str) -> None:
        """Remove the credential for a user, if any.

        Args:
            user_id: Owning user id.
        """
        with self.lock:
            credentials = self.load_credentials()
            if credentials.pop(user_id, None) is not None:
                self._write_json(self.credentials_file, credentials)

    # -- entity records -----------------------------------------------------

    def _table_file(self, table: str) -> Path:
        return self.records_dir / f"{table}.json"

    def load_table(self, table: str) -> dict[str, dict[str, Any]]:
        """Load every record of a table keyed by record id.

        Args:
            table: Table name (e.g., "leads").

        Returns:
            Mapping of record id to record.
        """
        with self.lock:
            return self._read_json(self._table_file(table), {})

    def get_record(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Get a single record by id.

        Args:
            table: Table name.
            record_id: Record id.

        Returns:
            Record if it exists, None otherwise.
        """
        return self.load_table(table).get(record_id)

    def find_record_by_row(
        self,
        table: str,
        sheet_config_id: str,
        row_number: int,
    ) -> dict[str, Any] | None:
        """Find the record linked to a given sheet row.

        Args:
            table: Table name.
            sheet_config_id: Sheet configuration id.
            row_number: 1-based sheet row number.

        Returns:
            The linked record, or None.
        """
        for record in self.load_table(table).values():
            metadata = record.get("sync_metadata") or {}
            if (
                metadata.get("sheet_config_id") == sheet_config_id
                and metadata.get("sheet_row_number") == row_number
            ):
                return record
        return None

    def records_by_row(self, table: str, sheet_config_id: str) -> dict[int, dict[str, Any]]:
        """Index the records linked to a sheet configuration by row number.

        Args:
            table: Table name.
            sheet_config_id: Sheet configuration id.

        Returns:
            Mapping of 1-based row number to record.
        """
        index = {}
        for record in self.load_table(table).values():
            metadata = record.get("sync_metadata") or {}
            row_number = metadata.get("sheet_row_number")
            if metadata.get("sheet_config_id") == sheet_config_id and row_number is not None:
                index[row_number] = record
        return index

    def insert_record(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a new record, assigning an id if it has none.

        Args:
            table: Table name.
            record: Record fields.

        Returns:
            The stored record.
        """
        with self.lock:
            records = self.load_table(table)
            stored = dict(record)
            stored.setdefault("id", str(uuid.uuid4()))
            if stored["id"] in records:
                raise PersistenceError(f"Record {stored['id']} already exists in {table}")
            records[stored["id"]] = stored
            self._write_json(self._table_file(table), records)
            return stored

    def update_record(
        self,
        table: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply field changes to an existing record in one write.

        Args:
            table: Table name.
            record_id: Record id.
            changes: Fields to overwrite.

        Returns:
            The updated record.
        """
        with self.lock:
            records = self.load_table(table)
            if record_id not in records:
                raise PersistenceError(f"Record {record_id} not found in {table}")
            records[record_id].update(changes)
            self._write_json(self._table_file(table), records)
            return records[record_id]

    def delete_record(self, table: str, record_id: str) -> None:
        """Delete a record, if present.

        Args:
            table: Table name.
            record_id: Record id.
        """
        with self.lock:
            records = self.load_table(table)
            if records.pop(record_id, None) is not None:
                self._write_json(self._table_file(table), records)

    def shift_rows_after_delete(self, table: str, sheet_config_id: str, row_number: int) -> int:
        """Renumber linked records after a sheet row was deleted.

        A record still linked to the deleted row is unlinked, and every
        record below it moves up one row. All changes land in one write.

        Args:
            table: Table name.
            sheet_config_id: Sheet configuration whose rows moved.
            row_number: 1-based number of the deleted row.

        Returns:
            Number of records changed.
        """
        with self.lock:
            records = self.load_table(table)
            changed = 0
            for record in records.values():
                metadata = record.get("sync_metadata")
                if not metadata or metadata.get("sheet_config_id") != sheet_config_id:
                    continue
                current = metadata.get("sheet_row_number")
                if current is None or current < row_number:
                    continue
                metadata["sheet_row_number"] = None if current == row_number else current - 1
                changed += 1
            if changed:
                self._write_json(self._table_file(table), records)
            return changed

    # -- audit log ----------------------------------------------------------

    def append_sync_operation(self, operation: dict[str, Any]) -> None:
        """Append one sync operation to the audit log.

        Args:
            operation: Serialized sync operation.
        """
        with self.lock:
            try:
                with open(self.operations_file, "a") as f:
                    f.write(json.dumps(operation, default=str) + "\n")
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(f"Failed to append sync operation: {e}") from e

    def load_sync_operations(self) -> list[dict[str, Any]]:
        """Load the audit log in append order."""
        with self.lock:
            if not self.operations_file.exists():
                return []
            try:
                with open(self.operations_file) as f:
                    return [json.loads(line) for line in f if line.strip()]
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(f"Failed to read sync operations: {e}") from e
