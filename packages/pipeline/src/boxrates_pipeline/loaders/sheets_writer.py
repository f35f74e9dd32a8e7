"""
loaders/sheets_writer.py — Google Sheets v4 writer for publish targets.

Three primitives, each scoped to one section (sheet tab) of one document:
  clear(document, section, range)           POST values/{range}:clear
  overwrite(document, section, range, rows) PUT  values/{range}?valueInputOption=RAW
  append(document, section, range, rows)    POST values/{range}:append

Before any primitive the section is ensured to exist (GET the document's
sheet titles, addSheet via batchUpdate when missing). A successful ensure
is remembered per writer, so later calls for the same section skip it;
a remembered section that answers 400 is checked again once.

Every primitive retries transient failures and returns a WriteResult
instead of raising; callers that want an exception use raise_for_error().

Status mapping:
  401            → AuthError (cached token invalidated)
  403 / 429 with a quota or rate-limit reason, RESOURCE_EXHAUSTED → TransientError
  403 otherwise  → AuthError (document not shared with the account)
  429, 5xx, timeout, network → TransientError
  other 4xx      → PermanentError
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from boxrates_pipeline.errors import (
    AuthError,
    ErrorKind,
    PipelineError,
    TransientError,
    ValidationError,
    classify,
    error_for_status,
)
from boxrates_pipeline.utils.credentials import TokenCache
from boxrates_pipeline.utils.retry import DEFAULT_POLICY, RetryPolicy, Sleep, retry_call

log = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://sheets.googleapis.com/v4"

QUOTA_REASONS = frozenset(
    {
        "ratelimitexceeded",
        "userratelimitexceeded",
        "quotaexceeded",
        "rate_limit_exceeded",
        "resource_exhausted",
    }
)


@dataclass
class WriteResult:
    """Outcome of one writer primitive."""

    success: bool
    rows_affected: int | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    def raise_for_error(self) -> "WriteResult":
        if self.success:
            return self
        if self.exception is not None:
            raise self.exception
        raise PipelineError(self.error or "Sheets write failed")


def a1_range(section: str, cell_range: str) -> str:
    """
    Qualify a cell range with its sheet name in A1 notation.

    >>> a1_range("stocks_coefs", "A:Z")
    "'stocks_coefs'!A:Z"
    """
    escaped = section.replace("'", "''")
    return f"'{escaped}'!{cell_range}"


def _google_error(response: httpx.Response) -> tuple[str, set[str], str | None]:
    """Message, lower-cased reasons and status string from a Google error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text[:500] or response.reason_phrase, set(), None)
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return (str(error or response.reason_phrase), set(), None)

    reasons: set[str] = set()
    for item in error.get("errors") or []:
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(str(item["reason"]).lower())
    for item in error.get("details") or []:
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(str(item["reason"]).lower())
    return (str(error.get("message") or response.reason_phrase), reasons, error.get("status"))


def classify_response(response: httpx.Response) -> PipelineError:
    message, reasons, status = _google_error(response)
    quota = bool(reasons & QUOTA_REASONS) or status == "RESOURCE_EXHAUSTED"
    details: dict[str, Any] = {}
    if reasons:
        details["reasons"] = sorted(reasons)
    if status:
        details["status"] = status
    return error_for_status(
        response.status_code,
        message,
        details=details,
        transient_reasons=quota and response.status_code in (403, 429),
    )


class SheetsWriter:
    """Writes value matrices into named sections of Google Sheets documents."""

    def __init__(
        self,
        tokens: TokenCache,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 30.0,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Sleep | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._transport = transport
        self._ensured: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def clear(self, document_id: str, section: str, cell_range: str = "A:Z") -> WriteResult:
        range_ = a1_range(section, cell_range)

        async def _clear() -> int:
            await self._request("POST", self._values_url(document_id, range_, ":clear"), json={})
            return 0

        return await self._perform("clear", document_id, section, _clear)

    async def overwrite(
        self,
        document_id: str,
        section: str,
        cell_range: str,
        rows: list[list[Any]],
    ) -> WriteResult:
        range_ = a1_range(section, cell_range)

        async def _overwrite() -> int:
            body = await self._request(
                "PUT",
                self._values_url(document_id, range_),
                params={"valueInputOption": "RAW"},
                json={"range": range_, "majorDimension": "ROWS", "values": rows},
            )
            return int(body.get("updatedRows", len(rows)))

        return await self._perform("overwrite", document_id, section, _overwrite)

    async def append(
        self,
        document_id: str,
        section: str,
        cell_range: str,
        rows: list[list[Any]],
    ) -> WriteResult:
        range_ = a1_range(section, cell_range)

        async def _append() -> int:
            body = await self._request(
                "POST",
                self._values_url(document_id, range_, ":append"),
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                json={"range": range_, "majorDimension": "ROWS", "values": rows},
            )
            updates = body.get("updates") or {}
            return int(updates.get("updatedRows", len(rows)))

        return await self._perform("append", document_id, section, _append)

    # ------------------------------------------------------------------
    # Section management
    # ------------------------------------------------------------------

    async def ensure_section(self, document_id: str, section: str) -> bool:
        """
        Make sure the sheet tab exists, creating it when absent.

        Returns:
            True when the tab was created by this call.

        Raises:
            Classified PipelineError once retries are exhausted.
        """
        key = (document_id, section)
        if key in self._ensured:
            return False

        created = await retry_call(
            self._ensure_once,
            document_id,
            section,
            policy=self._retry_policy,
            sleep=self._sleep,
            operation="sheets_ensure_section",
            log_context={"spreadsheet_id": document_id, "sheet_name": section},
        )
        self._ensured.add(key)
        return created

    async def _ensure_once(self, document_id: str, section: str) -> bool:
        body = await self._request(
            "GET",
            f"{self._base_url}/spreadsheets/{document_id}",
            params={"fields": "sheets.properties.title"},
        )
        titles = {
            sheet.get("properties", {}).get("title") for sheet in body.get("sheets") or []
        }
        if section in titles:
            return False

        try:
            await self._request(
                "POST",
                f"{self._base_url}/spreadsheets/{document_id}:batchUpdate",
                json={"requests": [{"addSheet": {"properties": {"title": section}}}]},
            )
        except ValidationError as exc:
            # Created concurrently between the read and the addSheet
            if "already exists" in exc.message.lower():
                return False
            raise
        log.info("sheet_section_created", spreadsheet_id=document_id, sheet_name=section)
        return True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _values_url(self, document_id: str, range_: str, suffix: str = "") -> str:
        return f"{self._base_url}/spreadsheets/{document_id}/values/{quote(range_, safe='')}{suffix}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        token = await self._tokens.get()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException as exc:
            raise TransientError(f"Sheets API timed out after {self._timeout}s") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Sheets API unreachable: {exc}") from exc

        if response.status_code >= 400:
            err = classify_response(response)
            if isinstance(err, AuthError) and response.status_code == 401:
                self._tokens.invalidate()
            raise err

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def _perform(self, op: str, document_id: str, section: str, fn: Any) -> WriteResult:
        op_log = log.bind(operation=op, spreadsheet_id=document_id, sheet_name=section)
        t0 = time.monotonic()
        key = (document_id, section)
        try:
            was_cached = key in self._ensured
            await self.ensure_section(document_id, section)
            try:
                rows = await self._retry_primitive(op, document_id, section, fn)
            except ValidationError:
                # A remembered section may have been deleted since; check it again once
                if not was_cached:
                    raise
                self._ensured.discard(key)
                op_log.warning("sheet_section_recheck")
                await self.ensure_section(document_id, section)
                rows = await self._retry_primitive(op, document_id, section, fn)
        except Exception as exc:
            duration_ms = int((time.monotonic() - t0) * 1000)
            kind = classify(exc)
            op_log.error("sheets_write_failed", error=str(exc), error_kind=kind.value)
            return WriteResult(
                success=False,
                error=str(exc),
                error_kind=kind,
                duration_ms=duration_ms,
                exception=exc,
            )

        duration_ms = int((time.monotonic() - t0) * 1000)
        op_log.debug("sheets_write_complete", rows_affected=rows, duration_ms=duration_ms)
        return WriteResult(success=True, rows_affected=rows, duration_ms=duration_ms)

    async def _retry_primitive(self, op: str, document_id: str, section: str, fn: Any) -> int:
        return await retry_call(
            fn,
            policy=self._retry_policy,
            sleep=self._sleep,
            operation=f"sheets_{op}",
            log_context={"spreadsheet_id": document_id, "sheet_name": section},
        )
