"""Thin Google Sheets v4 REST client.

Only the handful of calls the pipeline needs: read a range, overwrite a
range, append rows and manage tabs. Authentication is a bearer token
provided through configuration; obtaining it is out of scope.

Includes retry logic with exponential backoff for transient API errors.

API reference:
https://developers.google.com/sheets/api/reference/rest
"""

import logging
from decimal import Decimal
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


class SheetsApiError(Exception):
    """Non-retryable error returned by the Sheets API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SheetsTransientError(SheetsApiError):
    """Rate limit, server error or network failure; safe to retry."""


def column_letter(index: int) -> str:
    """1-based column index to A1 letters (1 -> 'A', 24 -> 'X', 27 -> 'AA')."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def _to_wire(cell: Any) -> Any:
    if isinstance(cell, Decimal):
        return format(cell, "f")
    return cell


class SheetsClient:
    """Google Sheets REST client over httpx."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Sheets client.

        Args:
            settings: Application settings with Sheets configuration
            client: Optional preconfigured httpx client (tests)
        """
        self.settings = settings
        self._base_url = settings.sheets_api_base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=30.0)

    def is_available(self) -> bool:
        """Check if an access token is configured."""
        return bool(self.settings.sheets_access_token)

    def _url(self, spreadsheet_id: str, suffix: str = "") -> str:
        return f"{self._base_url}/spreadsheets/{spreadsheet_id}{suffix}"

    @staticmethod
    def _range_path(range_: str) -> str:
        return "/values/" + quote(range_, safe="!:")

    @retry(
        retry=retry_if_exception_type(SheetsTransientError),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request, classifying failures as transient or permanent.

        Raises:
            SheetsTransientError: After all retry attempts are exhausted
            SheetsApiError: On any other error response, request error or unreadable body
        """
        headers = {"Authorization": f"Bearer {self.settings.sheets_access_token}"}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise SheetsTransientError(f"Sheets request failed: {e}") from e
        except httpx.HTTPError as e:
            raise SheetsApiError(f"Sheets request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise SheetsTransientError(
                f"Sheets API {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise SheetsApiError(
                f"Sheets API {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        # Not retried: a 2xx write has already been applied
        try:
            result: dict[str, Any] = response.json()
        except ValueError as e:
            raise SheetsApiError(
                f"Sheets API returned a non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from e
        return result

    def get_values(self, spreadsheet_id: str, range_: str) -> list[list[Any]]:
        """Read a range; missing trailing cells and rows are omitted by the API."""
        data = self._request("GET", self._url(spreadsheet_id, self._range_path(range_)))
        values: list[list[Any]] = data.get("values", [])
        return values

    def update_values(
        self,
        spreadsheet_id: str,
        range_: str,
        values: list[list[Any]],
        value_input_option: str = "RAW",
    ) -> dict[str, Any]:
        """Overwrite a range."""
        return self._request(
            "PUT",
            self._url(spreadsheet_id, self._range_path(range_)),
            params={"valueInputOption": value_input_option},
            json={"values": [[_to_wire(cell) for cell in row] for row in values]},
        )

    def append_values(
        self,
        spreadsheet_id: str,
        range_: str,
        values: list[list[Any]],
        value_input_option: str = "USER_ENTERED",
    ) -> dict[str, Any]:
        """Append rows after the last row of the table found in range."""
        return self._request(
            "POST",
            self._url(spreadsheet_id, self._range_path(range_) + ":append"),
            params={"valueInputOption": value_input_option, "insertDataOption": "INSERT_ROWS"},
            json={"values": [[_to_wire(cell) for cell in row] for row in values]},
        )

    def sheet_titles(self, spreadsheet_id: str) -> list[str]:
        """Titles of all tabs in a spreadsheet."""
        data = self._request(
            "GET", self._url(spreadsheet_id), params={"fields": "sheets.properties.title"}
        )
        return [sheet["properties"]["title"] for sheet in data.get("sheets", [])]

    def add_sheet(self, spreadsheet_id: str, title: str) -> None:
        """Add a tab to a spreadsheet."""
        self._request(
            "POST",
            self._url(spreadsheet_id, ":batchUpdate"),
            json={"requests": [{"addSheet": {"properties": {"title": title}}}]},
        )
        logger.info(f"Created sheet tab '{title}' in {spreadsheet_id}")
