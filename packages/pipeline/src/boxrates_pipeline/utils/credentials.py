"""
utils/credentials.py — Bearer credential sources and the shared token cache.

The token cache is the one piece of state shared across pipeline cycles:
it returns the cached token until it is within refresh_threshold_s of
expiry, refreshes lazily under a lock, and forgets the token whenever a
refresh fails or a caller reports it rejected (invalidate()).

Usage:
    source = ServiceAccountTokenSource(info, scopes=[...], token_uri=...)
    cache = TokenCache(source.fetch, refresh_threshold_s=300)
    token = await cache.get()           # str, refreshed on demand

    upstream = TokenCache(StaticTokenSource(api_key).fetch)
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import structlog
from jose import jwt
from jose.exceptions import JOSEError

from boxrates_pipeline.errors import AuthError, TransientError, error_for_status

log = structlog.get_logger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_S = 3600
NEVER = float("inf")


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float  # clock() seconds; inf for non-expiring tokens


TokenFetcher = Callable[[], Awaitable[AccessToken]]


class TokenCache:
    """Caches one AccessToken and refreshes it shortly before expiry."""

    def __init__(
        self,
        fetch: TokenFetcher,
        *,
        refresh_threshold_s: float = 300.0,
        clock: Callable[[], float] = time.time,
        name: str = "token",
    ) -> None:
        self._fetch = fetch
        self._threshold = refresh_threshold_s
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: AccessToken | None = None
        self._log = log.bind(credential=name)

    def is_valid(self) -> bool:
        token = self._token
        return bool(token and token.value and token.expires_at - self._threshold > self._clock())

    @property
    def expires_at(self) -> float | None:
        return self._token.expires_at if self._token else None

    async def get(self) -> str:
        if self.is_valid():
            return self._token.value  # type: ignore[union-attr]

        async with self._lock:
            if self.is_valid():
                return self._token.value  # type: ignore[union-attr]
            self._log.info("token_refresh_start")
            try:
                token = await self._fetch()
            except Exception as exc:
                self._token = None
                self._log.error("token_refresh_failed", error=str(exc))
                if isinstance(exc, (AuthError, TransientError)):
                    raise
                raise AuthError(f"Could not obtain access token: {exc}") from exc
            if not token.value:
                self._token = None
                raise AuthError("Token endpoint returned an empty access token")
            self._token = token
            expires_in = None if math.isinf(token.expires_at) else round(token.expires_at - self._clock())
            self._log.info("token_refreshed", expires_in_s=expires_in)
            return token.value

    def invalidate(self) -> None:
        if self._token is not None:
            self._log.warning("token_invalidated")
        self._token = None


class StaticTokenSource:
    """A pre-issued API key that never expires."""

    def __init__(self, token: str) -> None:
        if not token:
            raise AuthError(
                "Tariff API token is not configured",
                hint="Set TARIFFS_API_TOKEN in the environment or .env file.",
            )
        self._token = token

    async def fetch(self) -> AccessToken:
        return AccessToken(value=self._token, expires_at=NEVER)


def load_service_account_info(raw: str) -> dict[str, Any]:
    """
    Parse service-account credentials given inline as JSON or as a file path.

    Raises:
        AuthError: if the value is empty, unreadable or missing required keys.
    """
    if not raw or not raw.strip():
        raise AuthError(
            "Google service-account credentials are not configured",
            hint="Set GOOGLE_CREDENTIALS_JSON to the key JSON or a path to it.",
        )
    text = raw.strip()
    if not text.startswith("{"):
        path = Path(text).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise AuthError(f"Cannot read credentials file {path}: {exc}") from exc
    try:
        info = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AuthError(f"Credentials are not valid JSON: {exc}") from exc

    missing = [k for k in ("client_email", "private_key") if not info.get(k)]
    if missing:
        raise AuthError(f"Credentials JSON is missing {', '.join(missing)}")
    return info


class ServiceAccountTokenSource:
    """
    OAuth2 JWT-bearer exchange for a Google service account.

    Signs an RS256 assertion with the account's private key and trades it
    at the token endpoint for a short-lived access token.
    """

    def __init__(
        self,
        info: dict[str, Any],
        *,
        scopes: list[str],
        token_uri: str | None = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._email = info["client_email"]
        self._private_key = info["private_key"]
        self._key_id = info.get("private_key_id")
        self._token_uri = token_uri or info.get("token_uri") or "https://oauth2.googleapis.com/token"
        self._scopes = scopes
        self._timeout_s = timeout_s
        self._transport = transport
        self._clock = clock

    def _assertion(self) -> str:
        now = int(self._clock())
        claims = {
            "iss": self._email,
            "scope": " ".join(self._scopes),
            "aud": self._token_uri,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_S,
        }
        headers = {"kid": self._key_id} if self._key_id else None
        try:
            return jwt.encode(claims, self._private_key, algorithm="RS256", headers=headers)
        except JOSEError as exc:
            raise AuthError(f"Cannot sign service-account assertion: {exc}") from exc

    async def fetch(self) -> AccessToken:
        form = {"grant_type": JWT_BEARER_GRANT, "assertion": self._assertion()}
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._token_uri, data=form)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != 200:
            err = error_for_status(response.status_code, response.text[:500])
            # The token endpoint answers 400 invalid_grant for bad keys
            if response.status_code in (400, 401, 403):
                raise AuthError(str(err), status_code=response.status_code)
            raise err

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise AuthError("Token response has no access_token")
        expires_in = float(payload.get("expires_in", 3600))
        log.info("service_account_token_issued", account=self._email, expires_in_s=expires_in)
        return AccessToken(value=token, expires_at=self._clock() + expires_in)


__all__ = [
    "AccessToken",
    "ServiceAccountTokenSource",
    "StaticTokenSource",
    "TokenCache",
    "load_service_account_info",
]
