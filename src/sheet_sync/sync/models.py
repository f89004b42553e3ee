"""Pydantic models for sheet configurations, credentials and sync state."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sheet_sync.errors import PersistenceError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SyncStatus(str, Enum):
    """Per-record sync state."""

    SYNCED = "synced"
    MODIFIED_LOCALLY = "modified_locally"
    ERROR = "error"


class SheetType(str, Enum):
    """Entity table a sheet feeds."""

    LEADS = "leads"
    APPOINTMENTS = "appointments"
    CALLS = "calls"
    DEALS = "deals"
    TEAM = "team"

    @property
    def table_name(self) -> str:
        """Store table backing this sheet type."""
        # Team rows are stored as user profiles
        if self is SheetType.TEAM:
            return "profiles"
        return self.value


class MappingTarget(str, Enum):
    """Field tag a spreadsheet column can be mapped to."""

    # Deal / revenue
    REVENUE_AMOUNT = "revenue_amount"
    CASH_COLLECTED = "cash_collected"
    CASH_AFTER_FEES = "cash_after_fees"
    FEES_AMOUNT = "fees_amount"
    DEAL_STATUS = "deal_status"
    PAYMENT_PLATFORM = "payment_platform"
    CLOSED_AT = "closed_at"
    # Call outcome
    CALL_STATUS = "call_status"
    RECORDING_URL = "recording_url"
    SETTER_NAME = "setter_name"
    CLOSER_NAME = "closer_name"
    POST_SET_FORM_FILLED = "post_set_form_filled"
    CLOSER_FORM_FILLED = "closer_form_filled"
    # Common
    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    NOTES = "notes"
    # Lead
    SOURCE = "source"
    STATUS = "status"
    UTM_SOURCE = "utm_source"
    # Appointment
    SCHEDULED_AT = "scheduled_at"
    BOOKED_AT = "booked_at"
    PIPELINE = "pipeline"
    # Team
    FULL_NAME = "full_name"
    ROLE = "role"
    # Special
    CUSTOM = "custom"
    SKIP = "skip"


_CALL_TYPES = (SheetType.APPOINTMENTS, SheetType.CALLS, SheetType.DEALS)

_TARGET_SHEET_TYPES: dict[MappingTarget, tuple[SheetType, ...]] = {
    MappingTarget.REVENUE_AMOUNT: (SheetType.DEALS,),
    MappingTarget.CASH_COLLECTED: (SheetType.DEALS,),
    MappingTarget.CASH_AFTER_FEES: (SheetType.DEALS,),
    MappingTarget.FEES_AMOUNT: (SheetType.DEALS,),
    MappingTarget.DEAL_STATUS: (SheetType.DEALS,),
    MappingTarget.PAYMENT_PLATFORM: (SheetType.DEALS,),
    MappingTarget.CLOSED_AT: (SheetType.DEALS,),
    MappingTarget.CALL_STATUS: _CALL_TYPES,
    MappingTarget.RECORDING_URL: _CALL_TYPES,
    MappingTarget.SETTER_NAME: _CALL_TYPES,
    MappingTarget.CLOSER_NAME: _CALL_TYPES,
    MappingTarget.POST_SET_FORM_FILLED: _CALL_TYPES,
    MappingTarget.CLOSER_FORM_FILLED: _CALL_TYPES,
    MappingTarget.NAME: (SheetType.LEADS, *_CALL_TYPES),
    MappingTarget.NOTES: (SheetType.LEADS, *_CALL_TYPES),
    MappingTarget.EMAIL: (SheetType.LEADS, SheetType.TEAM, SheetType.DEALS),
    MappingTarget.PHONE: (SheetType.LEADS, SheetType.TEAM),
    MappingTarget.SOURCE: (SheetType.LEADS,),
    MappingTarget.STATUS: (SheetType.LEADS,),
    MappingTarget.UTM_SOURCE: (SheetType.LEADS,),
    MappingTarget.SCHEDULED_AT: (SheetType.APPOINTMENTS,),
    MappingTarget.BOOKED_AT: (SheetType.APPOINTMENTS,),
    MappingTarget.PIPELINE: (SheetType.APPOINTMENTS,),
    MappingTarget.FULL_NAME: (SheetType.TEAM,),
    MappingTarget.ROLE: (SheetType.TEAM,),
    MappingTarget.CUSTOM: tuple(SheetType),
    MappingTarget.SKIP: tuple(SheetType),
}


def allowed_targets(sheet_type: SheetType) -> list[MappingTarget]:
    """List the mapping targets available for a sheet type.

    Args:
        sheet_type: Entity table the sheet feeds.

    Returns:
        Allowed targets in declaration order.
    """
    return [target for target in MappingTarget if sheet_type in _TARGET_SHEET_TYPES[target]]


class Mapping(BaseModel):
    """One column-index-to-field rule."""

    model_config = ConfigDict(frozen=True)

    column: int = Field(ge=0)
    target: MappingTarget
    custom_key: str | None = None

    @property
    def field_name(self) -> str | None:
        """Record field this column reads from and writes to."""
        if self.target is MappingTarget.CUSTOM:
            return self.custom_key or None
        if self.target is MappingTarget.SKIP:
            return None
        return self.target.value


class SheetConfiguration(BaseModel):
    """A saved mapping between one spreadsheet and one entity table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    sheet_url: str
    sheet_type: SheetType
    sheet_name: str | None = None
    sheet_tab_id: int | None = None
    mappings: list[Mapping] = Field(default_factory=list)
    is_active: bool = True
    last_synced_at: datetime | None = None

    @field_validator("mappings", mode="before")
    @classmethod
    def _normalize_legacy_mappings(cls, value: Any) -> Any:
        """Accept the legacy ``{"<column>": {"to_field": ...}}`` form."""
        if not isinstance(value, dict):
            return value

        mappings = []
        for column, rule in sorted(value.items(), key=lambda item: int(item[0])):
            rule = rule or {}
            target = rule.get("to_field") or rule.get("dbField") or MappingTarget.SKIP.value
            mappings.append(
                {
                    "column": int(column),
                    "target": target,
                    "custom_key": rule.get("customFieldKey") or rule.get("custom_key"),
                }
            )
        return mappings

    @field_validator("last_synced_at")
    @classmethod
    def _aware_last_synced(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def table_name(self) -> str:
        """Store table this configuration feeds."""
        return self.sheet_type.table_name

    def mapping_problems(self) -> list[str]:
        """Check the mappings against the rules for this sheet type.

        Returns:
            Human-readable problems; empty when the mappings are valid.
        """
        problems = []
        allowed = set(allowed_targets(self.sheet_type))
        seen_columns: set[int] = set()

        for mapping in self.mappings:
            if mapping.target not in allowed:
                problems.append(
                    f"Column {mapping.column}: '{mapping.target.value}' is not a "
                    f"{self.sheet_type.value} field"
                )
            if mapping.target is MappingTarget.CUSTOM and not mapping.custom_key:
                problems.append(f"Column {mapping.column}: custom mapping needs a key")
            if mapping.target is not MappingTarget.CUSTOM and mapping.custom_key:
                problems.append(
                    f"Column {mapping.column}: custom key set on a non-custom mapping"
                )
            if mapping.target is MappingTarget.SKIP:
                continue
            if mapping.column in seen_columns:
                problems.append(f"Column {mapping.column} is mapped more than once")
            seen_columns.add(mapping.column)

        if not seen_columns:
            problems.append("At least one column must be mapped")
        return problems


class SyncMetadata(BaseModel):
    """Bookkeeping linking a stored record to its spreadsheet row."""

    model_config = ConfigDict(frozen=True)

    sheet_config_id: str
    # Row 1 holds the header
    sheet_row_number: int | None = Field(default=None, ge=2)
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_synced_at: datetime | None = None

    @field_validator("last_synced_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SyncMetadata | None":
        """Read the metadata embedded in a record.

        Returns:
            The metadata, or None if the record is not sheet-backed.

        Raises:
            PersistenceError: If the stored metadata is malformed.
        """
        raw = record.get("sync_metadata") or {}
        if not isinstance(raw, dict):
            raise PersistenceError(f"Record {record.get('id')} has malformed sync metadata")
        if not raw.get("sheet_config_id"):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError(f"Record {record.get('id')} has invalid sync metadata: {e}") from e

    def to_store(self) -> dict[str, Any]:
        """Serialize for embedding in a stored record."""
        return self.model_dump(mode="json")


class OperationStatus(str, Enum):
    """Outcome of a sync operation."""

    COMPLETED = "completed"
    FAILED = "failed"


class SyncOperation(BaseModel):
    """Audit entry for one pull run of one configuration."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    sheet_config_id: str
    operation_type: str = "pull"
    records_affected: int = 0
    error_count: int = 0
    errors: list[str] = Field(default_factory=list)
    status: OperationStatus = OperationStatus.COMPLETED
    started_at: datetime
    completed_at: datetime
