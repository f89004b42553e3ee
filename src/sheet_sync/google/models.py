"""Pydantic models for Google OAuth and Sheets API responses."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenResponse(BaseModel):
    """Response of the OAuth token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    expires_in: int = 3600
    refresh_token: str | None = None
    scope: str | None = None
    token_type: str = "Bearer"


class ValueRange(BaseModel):
    """Values read from a sheet range."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    range: str | None = None
    major_dimension: str = Field(default="ROWS", alias="majorDimension")
    values: list[list[str]] = Field(default_factory=list)


class UpdateValuesResponse(BaseModel):
    """Summary of a values write."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    spreadsheet_id: str | None = Field(default=None, alias="spreadsheetId")
    updated_range: str | None = Field(default=None, alias="updatedRange")
    updated_rows: int = Field(default=0, alias="updatedRows")
    updated_cells: int = Field(default=0, alias="updatedCells")


class AppendValuesResponse(BaseModel):
    """Response of a values append."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    spreadsheet_id: str | None = Field(default=None, alias="spreadsheetId")
    table_range: str | None = Field(default=None, alias="tableRange")
    updates: UpdateValuesResponse = Field(default_factory=UpdateValuesResponse)


class SheetProperties(BaseModel):
    """Properties of one tab in a spreadsheet."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sheet_id: int = Field(alias="sheetId")
    title: str
    index: int = 0


class Credential(BaseModel):
    """OAuth credential for one user's Google account."""

    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the access token is at or past its expiry."""
        return (now or datetime.now(timezone.utc)) >= self.expires_at
