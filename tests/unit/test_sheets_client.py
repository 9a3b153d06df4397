"""Unit tests for the Sheets REST client.

Tests request construction and error classification with a mocked httpx client.
"""

from collections.abc import Generator
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from receiptflow.sheets.client import (
    SheetsApiError,
    SheetsClient,
    SheetsTransientError,
    column_letter,
)
from receiptflow.shared.config import Settings


def make_response(status_code: int = 200, payload: dict[str, Any] | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is None else b"..."
    response.json.return_value = payload or {}
    response.text = "error body"
    return response


@pytest.fixture
def settings() -> Settings:
    return Settings(
        sheets_api_base_url="https://sheets.example/v4",
        sheets_access_token="token-123",
    )


@pytest.fixture
def http() -> MagicMock:
    return MagicMock(spec=httpx.Client)


@pytest.fixture
def client(settings: Settings, http: MagicMock) -> SheetsClient:
    return SheetsClient(settings, client=http)


@pytest.fixture(autouse=True)
def no_backoff() -> Generator[None, None, None]:
    """Skip retry sleeps."""
    with patch.object(SheetsClient._request.retry, "sleep", MagicMock()):
        yield


class TestColumnLetter:
    """Test column_letter."""

    @pytest.mark.parametrize(("index", "letters"), [(1, "A"), (24, "X"), (26, "Z"), (27, "AA")])
    def test_column_letter(self, index: int, letters: str) -> None:
        assert column_letter(index) == letters


class TestRequests:
    """Test request construction."""

    def test_get_values(self, client: SheetsClient, http: MagicMock) -> None:
        """Should GET the quoted range with the bearer token."""
        http.request.return_value = make_response(payload={"values": [["a", "b"]]})

        values = client.get_values("sid", "My Sheet!A1:X1")

        assert values == [["a", "b"]]
        method, url = http.request.call_args.args
        assert method == "GET"
        assert url == "https://sheets.example/v4/spreadsheets/sid/values/My%20Sheet!A1:X1"
        assert http.request.call_args.kwargs["headers"] == {"Authorization": "Bearer token-123"}

    def test_get_values_of_empty_range(self, client: SheetsClient, http: MagicMock) -> None:
        """The API omits 'values' for empty ranges."""
        http.request.return_value = make_response(payload={"range": "Sheet1!A1:X1"})
        assert client.get_values("sid", "Sheet1!A1:X1") == []

    def test_update_values_serializes_decimals(
        self, client: SheetsClient, http: MagicMock
    ) -> None:
        """Decimals should be sent as plain strings."""
        http.request.return_value = make_response()

        client.update_values("sid", "Usage!B2", [[Decimal("1200.50"), 3, "x"]])

        kwargs = http.request.call_args.kwargs
        assert http.request.call_args.args[0] == "PUT"
        assert kwargs["params"] == {"valueInputOption": "RAW"}
        assert kwargs["json"] == {"values": [["1200.50", 3, "x"]]}

    def test_append_values(self, client: SheetsClient, http: MagicMock) -> None:
        """Should POST to :append inserting rows, user-entered by default."""
        http.request.return_value = make_response(payload={"updates": {"updatedRows": 1}})

        result = client.append_values("sid", "Sheet1!A:X", [["a"]])

        method, url = http.request.call_args.args
        assert method == "POST"
        assert url.endswith("/spreadsheets/sid/values/Sheet1!A:X:append")
        assert http.request.call_args.kwargs["params"] == {
            "valueInputOption": "USER_ENTERED",
            "insertDataOption": "INSERT_ROWS",
        }
        assert result == {"updates": {"updatedRows": 1}}

    def test_sheet_titles(self, client: SheetsClient, http: MagicMock) -> None:
        """Should list tab titles."""
        http.request.return_value = make_response(
            payload={
                "sheets": [{"properties": {"title": "Sheet1"}}, {"properties": {"title": "Usage"}}]
            }
        )
        assert client.sheet_titles("sid") == ["Sheet1", "Usage"]

    def test_add_sheet(self, client: SheetsClient, http: MagicMock) -> None:
        """Should send an addSheet batch update."""
        http.request.return_value = make_response()

        client.add_sheet("sid", "Usage")

        assert http.request.call_args.args[1].endswith("/spreadsheets/sid:batchUpdate")
        assert http.request.call_args.kwargs["json"] == {
            "requests": [{"addSheet": {"properties": {"title": "Usage"}}}]
        }


class TestErrors:
    """Test error classification and retries."""

    def test_client_error_is_not_retried(self, client: SheetsClient, http: MagicMock) -> None:
        """4xx responses other than 429 should fail immediately."""
        http.request.return_value = make_response(status_code=403)

        with pytest.raises(SheetsApiError) as exc_info:
            client.get_values("sid", "Sheet1!A1")

        assert not isinstance(exc_info.value, SheetsTransientError)
        assert exc_info.value.status_code == 403
        assert http.request.call_count == 1

    def test_server_error_is_retried(self, client: SheetsClient, http: MagicMock) -> None:
        """5xx responses should be retried up to 3 attempts."""
        http.request.return_value = make_response(status_code=503)

        with pytest.raises(SheetsTransientError):
            client.get_values("sid", "Sheet1!A1")

        assert http.request.call_count == 3

    def test_rate_limit_then_success(self, client: SheetsClient, http: MagicMock) -> None:
        """A 429 followed by success should return the result."""
        http.request.side_effect = [
            make_response(status_code=429),
            make_response(payload={"values": [["1"]]}),
        ]

        assert client.get_values("sid", "Sheet1!A1") == [["1"]]
        assert http.request.call_count == 2

    def test_transport_error_is_transient(self, client: SheetsClient, http: MagicMock) -> None:
        """Network failures should be classified as transient."""
        http.request.side_effect = httpx.ConnectError("refused")

        with pytest.raises(SheetsTransientError):
            client.get_values("sid", "Sheet1!A1")

        assert http.request.call_count == 3

    def test_is_available_requires_token(self, http: MagicMock) -> None:
        """Without an access token the client is not available."""
        assert SheetsClient(Settings(sheets_access_token=""), client=http).is_available() is False

    def test_non_json_body_is_an_api_error(self, client: SheetsClient, http: MagicMock) -> None:
        """An unreadable 2xx body should be classified, not leak a ValueError."""
        response = make_response(payload={"values": []})
        response.json.side_effect = ValueError("Expecting value")
        response.text = "<html>proxy login</html>"
        http.request.return_value = response

        with pytest.raises(SheetsApiError, match="non-JSON body") as exc_info:
            client.get_values("sid", "Sheet1!A1")

        assert not isinstance(exc_info.value, SheetsTransientError)
        assert http.request.call_count == 1

    def test_other_request_errors_are_api_errors(
        self, client: SheetsClient, http: MagicMock
    ) -> None:
        """httpx errors outside the transport family should fail without retries."""
        http.request.side_effect = httpx.TooManyRedirects("redirect loop")

        with pytest.raises(SheetsApiError) as exc_info:
            client.get_values("sid", "Sheet1!A1")

        assert not isinstance(exc_info.value, SheetsTransientError)
        assert http.request.call_count == 1
