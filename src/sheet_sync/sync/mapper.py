"""Translation between spreadsheet rows and record fields."""

import json
import logging
import re
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from sheet_sync.sync.models import Mapping, MappingTarget

logger = logging.getLogger(__name__)

_SPREADSHEET_ID_PATTERN = re.compile(r"/d/([a-zA-Z0-9-_]+)")
_RANGE_START_ROW_PATTERN = re.compile(r"^(?:.*!)?\$?[A-Za-z]+\$?(\d+)")


def extract_spreadsheet_id(sheet_url: str) -> str | None:
    """Extract the spreadsheet id from a Google Sheets URL.

    Args:
        sheet_url: URL such as https://docs.google.com/spreadsheets/d/<id>/edit

    Returns:
        The spreadsheet id, or None if the URL does not contain one.
    """
    if not sheet_url:
        return None
    match = _SPREADSHEET_ID_PATTERN.search(sheet_url)
    return match.group(1) if match else None


def parse_appended_row_number(updated_range: str | None) -> int | None:
    """Read the first row number from an A1 range returned by an append.

    Args:
        updated_range: Range such as ``Sheet1!A5:C5`` or ``A5:Z5``.

    Returns:
        1-based row number, or None if the range cannot be parsed.
    """
    if not updated_range:
        return None
    match = _RANGE_START_ROW_PATTERN.match(updated_range)
    return int(match.group(1)) if match else None


def quote_sheet_name(sheet_name: str) -> str:
    """Quote a tab title for use in an A1 range."""
    return "'" + sheet_name.replace("'", "''") + "'"


def a1_range(columns: str, sheet_name: str | None = None) -> str:
    """Build an A1 range, prefixed with the tab title when one is set.

    Args:
        columns: Column span such as ``A:Z`` or ``A5:Z5``.
        sheet_name: Optional tab title.

    Returns:
        A1 notation range.
    """
    if sheet_name:
        return f"{quote_sheet_name(sheet_name)}!{columns}"
    return columns


def row_range(row_number: int, columns: str = "A:Z", sheet_name: str | None = None) -> str:
    """Build the A1 range covering a single row, e.g. ``A5:Z5``."""
    first, _, last = columns.partition(":")
    first = first.rstrip("0123456789")
    last = (last or first).rstrip("0123456789")
    return a1_range(f"{first}{row_number}:{last}{row_number}", sheet_name)


def serialize_cell(value: Any) -> str:
    """Convert a record value to raw cell text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class RowMapper:
    """Maps spreadsheet rows to partial records and back."""

    def to_record(self, row: Sequence[Any], mappings: Sequence[Mapping]) -> dict[str, Any]:
        """Map a spreadsheet row to record fields.

        Columns tagged ``skip``, custom columns without a key, and empty
        cells are dropped.

        Args:
            row: Raw cell values; may be shorter than the mapped columns.
            mappings: Column mappings of the sheet configuration.

        Returns:
            Field name to cell value. Empty when nothing was mapped, in
            which case the row must not be persisted.
        """
        record: dict[str, Any] = {}

        for mapping in mappings:
            if mapping.target is MappingTarget.SKIP:
                continue

            field_name = mapping.field_name
            if not field_name:
                logger.debug(f"Custom mapping on column {mapping.column} has no key")
                continue

            value = row[mapping.column] if mapping.column < len(row) else None
            if value is None or value == "":
                continue

            record[field_name] = value

        return record

    def to_row(self, record: dict[str, Any], mappings: Sequence[Mapping]) -> list[str]:
        """Map record fields to a spreadsheet row.

        Args:
            record: Record fields.
            mappings: Column mappings of the sheet configuration.

        Returns:
            Cell values, just wide enough to cover the highest mapped column.
            Unmapped positions and missing values are empty strings.
        """
        mapped = [m for m in mappings if m.field_name is not None]
        if not mapped:
            return []

        row = [""] * (max(m.column for m in mapped) + 1)
        for mapping in mapped:
            row[mapping.column] = serialize_cell(record.get(mapping.field_name))
        return row
