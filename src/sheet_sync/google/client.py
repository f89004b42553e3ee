"""Google Sheets v4 API client."""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from sheet_sync.errors import RemoteError
from sheet_sync.google.models import (
    AppendValuesResponse,
    SheetProperties,
    UpdateValuesResponse,
    ValueRange,
)

logger = logging.getLogger(__name__)


class SheetsClient:
    """Client for the Google Sheets values and batchUpdate endpoints.

    The access token is passed per call because one client instance serves
    every user's sheets.
    """

    BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize Sheets client.

        Args:
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.client = httpx.Client(
            base_url=self.BASE_URL,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            RemoteError: On non-2xx responses, timeouts and transport errors.
        """
        try:
            response = self.client.request(
                method,
                url,
                headers=self._auth_headers(access_token),
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteError(
                f"Sheets API {method} {url} failed ({e.response.status_code}): "
                f"{e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise RemoteError(f"Sheets API {method} {url} timed out") from e
        except httpx.TransportError as e:
            raise RemoteError(f"Sheets API {method} {url} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(f"Sheets API returned invalid JSON: {e}") from e

    def get_values(self, spreadsheet_id: str, range_: str, access_token: str) -> list[list[str]]:
        """Read all values in a range.

        Args:
            spreadsheet_id: Spreadsheet id.
            range_: A1 range, e.g. ``A:Z``.
            access_token: OAuth access token.

        Returns:
            Rows of raw cell strings, in sheet order.

        Raises:
            RemoteError: If the API request fails.
        """
        data = self._request(
            "GET",
            f"/{spreadsheet_id}/values/{quote(range_, safe='')}",
            access_token,
        )
        try:
            return ValueRange.model_validate(data).values
        except ValidationError as e:
            raise RemoteError(f"Unexpected values response: {e}") from e

    def update_row(
        self,
        spreadsheet_id: str,
        range_: str,
        row: list[str],
        access_token: str,
    ) -> UpdateValuesResponse:
        """Overwrite a row with raw (non-formula) values.

        Args:
            spreadsheet_id: Spreadsheet id.
            range_: A1 range of the row, e.g. ``A5:Z5``.
            row: Cell values.
            access_token: OAuth access token.

        Returns:
            Update summary.

        Raises:
            RemoteError: If the API request fails.
        """
        data = self._request(
            "PUT",
            f"/{spreadsheet_id}/values/{quote(range_, safe='')}",
            access_token,
            params={"valueInputOption": "RAW"},
            json={"values": [row]},
        )
        return UpdateValuesResponse.model_validate(data)

    def append_row(
        self,
        spreadsheet_id: str,
        range_: str,
        row: list[str],
        access_token: str,
    ) -> AppendValuesResponse:
        """Append a row after the last row of the table in a range.

        Args:
            spreadsheet_id: Spreadsheet id.
            range_: A1 range of the table, e.g. ``A:Z``.
            row: Cell values.
            access_token: OAuth access token.

        Returns:
            Append response; ``updates.updated_range`` holds the new row.

        Raises:
            RemoteError: If the API request fails.
        """
        data = self._request(
            "POST",
            f"/{spreadsheet_id}/values/{quote(range_, safe='')}:append",
            access_token,
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [row]},
        )
        return AppendValuesResponse.model_validate(data)

    def delete_row(
        self,
        spreadsheet_id: str,
        sheet_tab_id: int,
        row_number: int,
        access_token: str,
    ) -> None:
        """Delete one row from a tab, shifting the rows below it up.

        Args:
            spreadsheet_id: Spreadsheet id.
            sheet_tab_id: Numeric id of the tab.
            row_number: 1-based row number.
            access_token: OAuth access token.

        Raises:
            RemoteError: If the API request fails.
        """
        self._request(
            "POST",
            f"/{spreadsheet_id}:batchUpdate",
            access_token,
            json={
                "requests": [
                    {
                        "deleteDimension": {
                            "range": {
                                "sheetId": sheet_tab_id,
                                "dimension": "ROWS",
                                "startIndex": row_number - 1,
                                "endIndex": row_number,
                            }
                        }
                    }
                ]
            },
        )

    def list_tabs(self, spreadsheet_id: str, access_token: str) -> list[SheetProperties]:
        """List the tabs of a spreadsheet.

        Args:
            spreadsheet_id: Spreadsheet id.
            access_token: OAuth access token.

        Returns:
            Tab properties in sheet order.

        Raises:
            RemoteError: If the API request fails.
        """
        data = self._request(
            "GET",
            f"/{spreadsheet_id}",
            access_token,
            params={"fields": "sheets.properties"},
        )
        try:
            return [
                SheetProperties.model_validate(sheet["properties"])
                for sheet in data.get("sheets", [])
            ]
        except (KeyError, ValidationError) as e:
            raise RemoteError(f"Unexpected spreadsheet metadata: {e}") from e

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> "SheetsClient":
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
