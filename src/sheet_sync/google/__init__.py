"""Google OAuth and Sheets API integration."""

from sheet_sync.google.client import SheetsClient
from sheet_sync.google.models import (
    AppendValuesResponse,
    Credential,
    SheetProperties,
    TokenResponse,
    UpdateValuesResponse,
    ValueRange,
)
from sheet_sync.google.oauth import (
    CredentialManager,
    GoogleOAuthClient,
    GoogleOAuthConfig,
)

__all__ = [
    "SheetsClient",
    "AppendValuesResponse",
    "Credential",
    "SheetProperties",
    "TokenResponse",
    "UpdateValuesResponse",
    "ValueRange",
    "CredentialManager",
    "GoogleOAuthClient",
    "GoogleOAuthConfig",
]
