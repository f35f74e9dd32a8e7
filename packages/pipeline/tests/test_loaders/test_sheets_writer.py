"""
tests/test_loaders/test_sheets_writer.py — SheetsWriter against a respx-mocked Sheets API.
"""

from __future__ import annotations

import json

import httpx
import pytest

from boxrates_pipeline.errors import AuthError, ErrorKind, TransientError
from boxrates_pipeline.loaders.sheets_writer import SheetsWriter, WriteResult, a1_range
from boxrates_pipeline.utils.credentials import AccessToken, TokenCache

from helpers import SHEETS_BASE, google_error, sheets_titles

DOC = "doc-1"
SECTION = "stocks_coefs"
DOC_URL = f"{SHEETS_BASE}/spreadsheets/{DOC}"
BATCH_URL = f"{DOC_URL}:batchUpdate"
CLEAR = r".*/values/.+:clear$"
OVERWRITE = r".*/values/.+A1$"
APPEND = r".*/values/.+A2:append$"


@pytest.fixture
def writer(sheets_tokens, sleeps) -> SheetsWriter:
    return SheetsWriter(sheets_tokens, base_url=SHEETS_BASE, sleep=sleeps)


@pytest.fixture
def existing_section(mock_http):
    return mock_http.get(DOC_URL).mock(
        return_value=httpx.Response(200, json=sheets_titles("Sheet1", SECTION))
    )


class TestEnsureSection:
    @pytest.mark.asyncio
    async def test_creates_missing_section(self, writer, mock_http):
        mock_http.get(DOC_URL).mock(return_value=httpx.Response(200, json=sheets_titles("Sheet1")))
        add = mock_http.post(BATCH_URL).mock(return_value=httpx.Response(200, json={}))
        mock_http.post(path__regex=CLEAR).mock(return_value=httpx.Response(200, json={}))

        result = await writer.clear(DOC, SECTION)

        assert result.success
        assert add.call_count == 1
        body = json.loads(add.calls[0].request.content)
        assert body == {"requests": [{"addSheet": {"properties": {"title": SECTION}}}]}

    @pytest.mark.asyncio
    async def test_existing_section_not_recreated(self, writer, mock_http, existing_section):
        add = mock_http.post(BATCH_URL).mock(return_value=httpx.Response(200, json={}))
        mock_http.post(path__regex=CLEAR).mock(return_value=httpx.Response(200, json={}))

        result = await writer.clear(DOC, SECTION)

        assert result.success
        assert not add.called

    @pytest.mark.asyncio
    async def test_ensure_remembered_per_section(self, writer, mock_http, existing_section):
        mock_http.post(path__regex=CLEAR).mock(return_value=httpx.Response(200, json={}))

        await writer.clear(DOC, SECTION)
        await writer.clear(DOC, SECTION)

        assert existing_section.call_count == 1

    @pytest.mark.asyncio
    async def test_deleted_section_recreated_on_next_write(self, writer, mock_http):
        lookup = mock_http.get(DOC_URL).mock(
            side_effect=[
                httpx.Response(200, json=sheets_titles("Sheet1", SECTION)),
                httpx.Response(200, json=sheets_titles("Sheet1")),
            ]
        )
        add = mock_http.post(BATCH_URL).mock(return_value=httpx.Response(200, json={}))
        clear = mock_http.post(path__regex=CLEAR).mock(
            side_effect=[
                httpx.Response(200, json={}),
                httpx.Response(400, json=google_error(400, f"Unable to parse range: '{SECTION}'!A:Z")),
                httpx.Response(200, json={}),
            ]
        )

        first = await writer.clear(DOC, SECTION)
        second = await writer.clear(DOC, SECTION)

        assert first.success
        assert second.success
        assert lookup.call_count == 2
        assert add.call_count == 1
        assert clear.call_count == 3

    @pytest.mark.asyncio
    async def test_bad_request_on_fresh_section_not_rechecked(self, writer, mock_http, existing_section):
        mock_http.post(path__regex=CLEAR).mock(
            return_value=httpx.Response(400, json=google_error(400, "Invalid range"))
        )

        result = await writer.clear(DOC, SECTION)

        assert not result.success
        assert result.error_kind is ErrorKind.VALIDATION
        assert existing_section.call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_creation_treated_as_existing(self, writer, mock_http):
        mock_http.get(DOC_URL).mock(return_value=httpx.Response(200, json=sheets_titles()))
        mock_http.post(BATCH_URL).mock(
            return_value=httpx.Response(
                400,
                json=google_error(400, f"Invalid requests[0].addSheet: A sheet with the name \"{SECTION}\" already exists."),
            )
        )

        created = await writer.ensure_section(DOC, SECTION)

        assert created is False

    @pytest.mark.asyncio
    async def test_missing_document_fails_the_write(self, writer, mock_http, sleeps):
        mock_http.get(DOC_URL).mock(
            return_value=httpx.Response(404, json=google_error(404, "Requested entity was not found."))
        )

        result = await writer.clear(DOC, SECTION)

        assert not result.success
        assert result.error_kind is ErrorKind.PERMANENT
        assert sleeps.delays == []


class TestPrimitives:
    @pytest.mark.asyncio
    async def test_overwrite_sends_raw_values(self, writer, mock_http, existing_section):
        route = mock_http.put(path__regex=OVERWRITE).mock(
            return_value=httpx.Response(200, json={"updatedRows": 1})
        )

        result = await writer.overwrite(DOC, SECTION, "A1", [["Склад", "Дата тарифа"]])

        assert result.success
        assert result.rows_affected == 1
        request = route.calls[0].request
        assert request.url.params["valueInputOption"] == "RAW"
        assert request.headers["Authorization"] == "Bearer test-sheets-token"
        body = json.loads(request.content)
        assert body["values"] == [["Склад", "Дата тарифа"]]
        assert body["range"] == "'stocks_coefs'!A1"

    @pytest.mark.asyncio
    async def test_append_reports_updated_rows(self, writer, mock_http, existing_section):
        route = mock_http.post(path__regex=APPEND).mock(
            return_value=httpx.Response(200, json={"updates": {"updatedRows": 2}})
        )

        result = await writer.append(DOC, SECTION, "A2", [["a", 1.0], ["b", 2.0]])

        assert result.success
        assert result.rows_affected == 2
        assert route.calls[0].request.url.params["insertDataOption"] == "INSERT_ROWS"

    @pytest.mark.asyncio
    async def test_append_falls_back_to_row_count(self, writer, mock_http, existing_section):
        mock_http.post(path__regex=APPEND).mock(return_value=httpx.Response(200, json={}))

        result = await writer.append(DOC, SECTION, "A2", [["a"], ["b"], ["c"]])

        assert result.rows_affected == 3

    def test_a1_range_quotes_sheet_name(self):
        assert a1_range("stocks_coefs", "A:Z") == "'stocks_coefs'!A:Z"
        assert a1_range("it's", "A1") == "'it''s'!A1"


class TestRetryAndClassification:
    @pytest.mark.asyncio
    async def test_transient_failure_retried_then_succeeds(
        self, writer, mock_http, existing_section, sleeps
    ):
        route = mock_http.post(path__regex=CLEAR).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json={})]
        )

        result = await writer.clear(DOC, SECTION)

        assert result.success
        assert route.call_count == 2
        assert sleeps.delays == [1.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_failed_result(
        self, writer, mock_http, existing_section, sleeps
    ):
        route = mock_http.post(path__regex=CLEAR).mock(return_value=httpx.Response(500))

        result = await writer.clear(DOC, SECTION)

        assert not result.success
        assert result.error_kind is ErrorKind.TRANSIENT
        assert route.call_count == 3
        assert sleeps.delays == [1.0, 2.0]
        with pytest.raises(TransientError):
            result.raise_for_error()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body",
        [
            (403, google_error(403, "Quota exceeded for quota metric", reason="rateLimitExceeded")),
            (429, google_error(429, "Resource has been exhausted", status="RESOURCE_EXHAUSTED")),
        ],
    )
    async def test_quota_errors_are_transient(
        self, writer, mock_http, existing_section, status, body
    ):
        route = mock_http.post(path__regex=CLEAR).mock(return_value=httpx.Response(status, json=body))

        result = await writer.clear(DOC, SECTION)

        assert result.error_kind is ErrorKind.TRANSIENT
        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_permission_denied_is_auth_and_not_retried(
        self, writer, mock_http, existing_section, sleeps
    ):
        route = mock_http.post(path__regex=CLEAR).mock(
            return_value=httpx.Response(
                403,
                json=google_error(403, "The caller does not have permission", status="PERMISSION_DENIED"),
            )
        )

        result = await writer.clear(DOC, SECTION)

        assert result.error_kind is ErrorKind.AUTH
        assert route.call_count == 1
        assert sleeps.delays == []
        with pytest.raises(AuthError):
            result.raise_for_error()

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self, mock_http, sleeps, existing_section):
        issued: list[str] = []

        async def fetch() -> AccessToken:
            issued.append(f"t{len(issued)}")
            return AccessToken(value=issued[-1], expires_at=float("inf"))

        tokens = TokenCache(fetch)
        writer = SheetsWriter(tokens, base_url=SHEETS_BASE, sleep=sleeps)
        mock_http.post(path__regex=CLEAR).mock(
            return_value=httpx.Response(401, json=google_error(401, "Invalid Credentials"))
        )

        result = await writer.clear(DOC, SECTION)

        assert result.error_kind is ErrorKind.AUTH
        assert not tokens.is_valid()

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, writer, mock_http, existing_section):
        mock_http.post(path__regex=CLEAR).mock(side_effect=httpx.ConnectError("refused"))

        result = await writer.clear(DOC, SECTION)

        assert result.error_kind is ErrorKind.TRANSIENT

    def test_successful_result_raise_for_error_returns_self(self):
        result = WriteResult(success=True, rows_affected=2)
        assert result.raise_for_error() is result
