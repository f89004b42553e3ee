"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sheet_sync.config import Config
from sheet_sync.google import (
    AppendValuesResponse,
    CredentialManager,
    GoogleOAuthClient,
    GoogleOAuthConfig,
    SheetsClient,
    TokenResponse,
)
from sheet_sync.sync.models import Mapping, MappingTarget, SheetConfiguration, SheetType
from sheet_sync.utils import StorageManager

SHEET_URL = "https://docs.google.com/spreadsheets/d/sheet_abc123/edit#gid=0"


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def config(temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """Create a config instance with temporary directory."""
    monkeypatch.delenv("GOOGLE_SHEETS_CLIENT_ID", raising=False)
    monkeypatch.delenv("GOOGLE_SHEETS_CLIENT_SECRET", raising=False)
    for name in list(os.environ):
        if name.startswith("SHEET_SYNC_"):
            monkeypatch.delenv(name)
    return Config(temp_config_dir)


@pytest.fixture
def lead_mappings() -> list[Mapping]:
    """Column mappings for a simple leads sheet."""
    return [
        Mapping(column=0, target=MappingTarget.NAME),
        Mapping(column=1, target=MappingTarget.EMAIL),
        Mapping(column=2, target=MappingTarget.SKIP),
        Mapping(column=3, target=MappingTarget.CUSTOM, custom_key="budget"),
    ]


@pytest.fixture
def lead_config(config: Config, lead_mappings: list[Mapping]) -> SheetConfiguration:
    """Create and save a leads sheet configuration."""
    return config.save_sheet_config(
        SheetConfiguration(
            id="config_leads",
            user_id="user_1",
            sheet_url=SHEET_URL,
            sheet_type=SheetType.LEADS,
            mappings=lead_mappings,
        )
    )


@pytest.fixture
def mock_credentials() -> MagicMock:
    """Create a mock CredentialManager handing out a fixed token."""
    credentials = MagicMock(spec=CredentialManager)
    credentials.get_valid_access_token.return_value = "test_access_token"
    return credentials


@pytest.fixture
def mock_sheets() -> MagicMock:
    """Create a mock SheetsClient."""
    sheets = MagicMock(spec=SheetsClient)
    sheets.get_values.return_value = []
    sheets.append_row.return_value = AppendValuesResponse.model_validate(
        {"updates": {"updatedRange": "A5:D5", "updatedRows": 1}}
    )
    return sheets


@pytest.fixture
def oauth_config() -> GoogleOAuthConfig:
    """Create a sample Google OAuth configuration."""
    return GoogleOAuthConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
    )


@pytest.fixture
def token_response() -> TokenResponse:
    """Create a sample token response."""
    return TokenResponse(
        access_token="new_access_token",
        refresh_token="new_refresh_token",
        expires_in=3600,
    )


@pytest.fixture
def mock_oauth_client(oauth_config: GoogleOAuthConfig, token_response: TokenResponse) -> MagicMock:
    """Create a mock GoogleOAuthClient."""
    oauth_client = MagicMock(spec=GoogleOAuthClient)
    oauth_client.config = oauth_config
    oauth_client.refresh_access_token.return_value = token_response
    return oauth_client

