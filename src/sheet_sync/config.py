"""Configuration management for sheet-sync."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from sheet_sync.errors import ConfigError
from sheet_sync.sync.mapper import extract_spreadsheet_id
from sheet_sync.sync.models import SheetConfiguration
from sheet_sync.utils.storage import StorageManager

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings.

    Values come from settings.yaml, passed in as keyword arguments, and are
    overridden by environment variables. The OAuth client reads
    ``GOOGLE_SHEETS_CLIENT_ID`` and ``GOOGLE_SHEETS_CLIENT_SECRET``; every
    other field reads ``SHEET_SYNC_<FIELD>``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHEET_SYNC_",
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    google_client_id: str = Field(default="", validation_alias="GOOGLE_SHEETS_CLIENT_ID")
    google_client_secret: str = Field(default="", validation_alias="GOOGLE_SHEETS_CLIENT_SECRET")
    redirect_uri: str = "http://localhost:8000/callback"
    max_workers: int = Field(default=4, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    values_range: str = "A:Z"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment first, then the settings.yaml values given as kwargs
        return env_settings, init_settings

    @property
    def has_oauth_client(self) -> bool:
        """Whether the Google OAuth client is configured."""
        return bool(self.google_client_id and self.google_client_secret)


class Config:
    """Manages application settings and sheet configurations."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            config_dir: Directory for storing configuration.
        """
        self.storage = StorageManager(config_dir)

    def get_settings(self) -> Settings:
        """Load settings, with environment variables taking precedence.

        Returns:
            Application settings.

        Raises:
            ConfigError: If settings.yaml or the environment hold invalid values.
        """
        try:
            return Settings(**self.storage.load_settings())
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e

    def update_settings(self, **changes: Any) -> Settings:
        """Persist changes to settings.yaml.

        Only values stored in the file are written back; environment
        overrides never end up on disk.

        Args:
            **changes: Settings fields to overwrite.

        Returns:
            The effective settings after the change.

        Raises:
            ConfigError: If a field is unknown or a value is invalid.
        """
        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

        data = self.storage.load_settings()
        data.update(changes)
        try:
            settings = Settings(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
        self.storage.save_settings({name: data[name] for name in Settings.model_fields if name in data})
        return settings

    def get_sheet_configs(self, active_only: bool = False) -> list[SheetConfiguration]:
        """Load saved sheet configurations.

        Args:
            active_only: Only return configurations with is_active set.

        Returns:
            Sheet configurations in saved order. Entries that no longer
            parse are logged and left out.
        """
        configs = []
        for raw in self.storage.load_sheet_configs():
            try:
                config = SheetConfiguration.model_validate(raw)
            except ValidationError as e:
                logger.error(f"Ignoring invalid sheet configuration {raw.get('id')}: {e}")
                continue
            if active_only and not config.is_active:
                continue
            configs.append(config)
        return configs

    def get_sheet_config(self, config_id: str) -> SheetConfiguration | None:
        """Get a sheet configuration by id.

        Args:
            config_id: Sheet configuration id.

        Returns:
            The configuration, or None if it does not exist.
        """
        for config in self.get_sheet_configs():
            if config.id == config_id:
                return config
        return None

    def validate_sheet_config(self, config: SheetConfiguration) -> None:
        """Validate a configuration before it is saved.

        Raises:
            ConfigError: If the URL or the mappings are invalid.
        """
        problems = []
        if extract_spreadsheet_id(config.sheet_url) is None:
            problems.append(f"Not a Google Sheets URL: {config.sheet_url}")
        problems.extend(config.mapping_problems())
        if problems:
            raise ConfigError("; ".join(problems))

    def save_sheet_config(self, config: SheetConfiguration) -> SheetConfiguration:
        """Validate and save a sheet configuration, replacing one with the same id.

        Args:
            config: Sheet configuration.

        Returns:
            The saved configuration.

        Raises:
            ConfigError: If the configuration is invalid.
        """
        self.validate_sheet_config(config)

        with self.storage.lock:
            raw_configs = self.storage.load_sheet_configs()
            serialized = config.model_dump(mode="json")
            for idx, raw in enumerate(raw_configs):
                if raw.get("id") == config.id:
                    raw_configs[idx] = serialized
                    break
            else:
                raw_configs.append(serialized)
            self.storage.save_sheet_configs(raw_configs)

        logger.info(f"Saved sheet configuration {config.id} ({config.sheet_type.value})")
        return config

    def set_last_synced_at(self, config_id: str, synced_at: datetime) -> None:
        """Record when a configuration was last pulled.

        Args:
            config_id: Sheet configuration id.
            synced_at: Completion time of the pull.
        """
        with self.storage.lock:
            raw_configs = self.storage.load_sheet_configs()
            for raw in raw_configs:
                if raw.get("id") == config_id:
                    raw["last_synced_at"] = synced_at.isoformat()
                    break
            else:
                raise ConfigError(f"Sheet configuration {config_id} not found")
            self.storage.save_sheet_configs(raw_configs)
