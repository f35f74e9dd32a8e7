"""
sources/tariffs_api.py — Rate-limited, retrying client for the box tariff API.

Endpoint:
  GET {base_url}/api/v1/tariffs/box?date=YYYY-MM-DD   (Authorization: Bearer <token>)

Success envelope:
  { "response": { "data": { "warehouseList": [...], "dtNextBox": ..., "dtTillMax": ... } } }
Error envelope:
  { "error": true, "errorText": "...", "additionalErrors": [...], "statusCode": 400 }

Status mapping (classified where observed):
  400 → ValidationError     401/403 → AuthError (token cache invalidated)
  429, 5xx, timeout, network → TransientError (retried)
  other 4xx → PermanentError

Usage:
    client = TariffApiClient(base_url, TokenCache(StaticTokenSource(key).fetch))
    batch = await client.fetch_tariffs("2025-11-12")
    for entry in batch.entries:
        print(entry.warehouse_name, entry.box_delivery_base)
"""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from boxrates_shared.models.tariffs import ApiErrorEnvelope, TariffBatch, TariffEnvelope
from boxrates_shared.time_utils import parse_iso_date

from boxrates_pipeline.errors import (
    AuthError,
    PermanentError,
    TransientError,
    ValidationError,
    error_for_status,
)
from boxrates_pipeline.sources.base import BaseSource
from boxrates_pipeline.utils.credentials import TokenCache
from boxrates_pipeline.utils.rate_limit import RateLimiter
from boxrates_pipeline.utils.retry import DEFAULT_POLICY, RetryPolicy, Sleep, retry_call

DEFAULT_PATH = "/api/v1/tariffs/box"


def _error_text(response: httpx.Response) -> tuple[str, dict[str, Any]]:
    """Best-effort extraction of errorText/additionalErrors from an error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text[:500] or response.reason_phrase, {})
    try:
        envelope = ApiErrorEnvelope.model_validate(body)
    except PydanticValidationError:
        message = body.get("message") if isinstance(body, dict) else None
        return (str(message or response.reason_phrase), {})
    details: dict[str, Any] = {}
    if envelope.additional_errors:
        details["additional_errors"] = envelope.additional_errors
    return (envelope.error_text or response.reason_phrase, details)


class TariffApiClient(BaseSource):
    """Pulls one calendar day of box tariffs, within a shared request budget."""

    name = "TariffAPI"

    def __init__(
        self,
        base_url: str,
        tokens: TokenCache,
        *,
        path: str = DEFAULT_PATH,
        timeout_s: float = 30.0,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Sleep | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self._url = base_url.rstrip("/") + "/" + path.lstrip("/")
        self._tokens = tokens
        self._timeout = timeout_s
        self._limiter = limiter or RateLimiter()
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._transport = transport

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def fetch_tariffs(self, tariff_date: str) -> TariffBatch:
        """
        Fetch and normalize the tariffs quoted for one calendar day.

        Args:
            tariff_date: "YYYY-MM-DD"; must name a real calendar date.

        Raises:
            ValidationError: bad date (before any request) or bad payload shape.
            AuthError:       credential rejected.
            TransientError:  retries exhausted on timeout/429/5xx.
            PermanentError:  any other HTTP failure.
        """
        parsed = parse_iso_date(tariff_date)
        if parsed is None:
            raise ValidationError(
                f"Invalid date {tariff_date!r}: expected a real calendar date as YYYY-MM-DD"
            )
        return await self.run(tariff_date=parsed)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get_once(self, tariff_date: date) -> Any:
        token = await self._tokens.get()
        params = {"date": tariff_date.isoformat()}

        async with self._limiter:
            self._log.debug("tariffs_request", url=self._url, params=params)
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.get(
                        self._url,
                        params=params,
                        headers={
                            "Authorization": f"Bearer {token}",
                            "Accept": "application/json",
                        },
                    )
            except httpx.TimeoutException as exc:
                raise TransientError(f"Tariff API timed out after {self._timeout}s") from exc
            except httpx.TransportError as exc:
                raise TransientError(f"Tariff API unreachable: {exc}") from exc

        if response.status_code >= 400:
            message, details = _error_text(response)
            err = error_for_status(response.status_code, message, details=details)
            if isinstance(err, AuthError):
                self._tokens.invalidate()
            raise err

        try:
            payload = response.json()
        except ValueError as exc:
            raise ValidationError("Tariff API returned a non-JSON body") from exc

        # Some failures come back as 200 with the error envelope
        if isinstance(payload, dict) and payload.get("error") is True:
            envelope = ApiErrorEnvelope.model_validate(payload)
            if envelope.status_code:
                err = error_for_status(envelope.status_code, envelope.error_text)
                if isinstance(err, AuthError):
                    self._tokens.invalidate()
                raise err
            raise PermanentError(envelope.error_text or "Tariff API reported an error")

        return payload

    # ------------------------------------------------------------------
    # BaseSource interface
    # ------------------------------------------------------------------

    async def extract(self, *, tariff_date: date, **kwargs: Any) -> Any:
        return await retry_call(
            self._get_once,
            tariff_date,
            policy=self._retry_policy,
            sleep=self._sleep,
            operation="tariffs_fetch",
            log_context={"tariff_date": tariff_date.isoformat()},
        )

    def transform(self, raw: Any, *, tariff_date: date, **kwargs: Any) -> TariffBatch:
        try:
            envelope = TariffEnvelope.model_validate(raw)
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()[:5]
            )
            raise ValidationError(f"Unexpected tariff response shape: {problems}") from exc
        batch = TariffBatch.from_envelope(tariff_date, envelope)
        self._log.info(
            "tariffs_fetched",
            tariff_date=tariff_date.isoformat(),
            entries=len(batch),
            dt_till_max=str(batch.dt_till_max) if batch.dt_till_max else None,
        )
        return batch

    def get_metadata(self) -> dict[str, Any]:
        snapshot = self._limiter.snapshot()
        return {
            "source_name": self.name,
            "url": self._url,
            "description": "Marketplace box tariffs per warehouse and date",
            "rate_limit": {
                "in_flight": snapshot.in_flight,
                "calls_in_window": snapshot.calls_in_window,
                "max_concurrent": snapshot.max_concurrent,
                "max_calls": snapshot.max_calls,
                "window_s": snapshot.window_s,
            },
        }


__all__ = ["TariffApiClient"]
