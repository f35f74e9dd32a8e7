"""
errors.py — Classified error types for the tariff sync pipeline.

Every failure that crosses a component boundary carries an ErrorKind fixed
at the point it was first observed (HTTP status, exception type), so retry
decisions and scheduler escalation never parse free-text messages.

    VALIDATION  malformed date or response shape; never retried
    AUTH        credential rejected; never retried, escalated with a hint
    TRANSIENT   timeout / network / 429 / 5xx / quota; retried up to the cap
    PERMANENT   anything else; never retried
"""

from __future__ import annotations

import enum
from typing import Any

import httpx


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"
    AUTH = "auth"
    VALIDATION = "validation"
    PERMANENT = "permanent"


class PipelineError(Exception):
    """Base class for all classified pipeline errors."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


class ValidationError(PipelineError):
    kind = ErrorKind.VALIDATION


class AuthError(PipelineError):
    kind = ErrorKind.AUTH

    def __init__(
        self,
        message: str,
        *,
        hint: str = "Check the configured API token / service-account credentials.",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.hint = hint


class TransientError(PipelineError):
    kind = ErrorKind.TRANSIENT


class PermanentError(PipelineError):
    kind = ErrorKind.PERMANENT


def classify(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind for any exception."""
    if isinstance(exc, PipelineError):
        return exc.kind
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def is_retryable(exc: BaseException) -> bool:
    return classify(exc) is ErrorKind.TRANSIENT


def error_for_status(
    status_code: int,
    message: str,
    *,
    details: dict[str, Any] | None = None,
    transient_reasons: bool = False,
) -> PipelineError:
    """
    Map an HTTP status code to a classified error.

    Args:
        status_code:       HTTP status of the failed response.
        message:           Human-readable error text from the body.
        details:           Extra context kept on the error.
        transient_reasons: The body reported a quota / rate-limit reason,
                           which makes an otherwise permanent 403 transient.
    """
    if status_code == 400:
        return ValidationError(message, status_code=status_code, details=details)
    if status_code == 401:
        return AuthError(message, status_code=status_code, details=details)
    if status_code == 429 or status_code >= 500 or transient_reasons:
        return TransientError(message, status_code=status_code, details=details)
    if status_code == 403:
        return AuthError(
            message,
            status_code=status_code,
            details=details,
            hint="The credential lacks access to this resource; check sharing and scopes.",
        )
    return PermanentError(message, status_code=status_code, details=details)
