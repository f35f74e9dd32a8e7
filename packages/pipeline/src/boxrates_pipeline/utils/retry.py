"""
utils/retry.py — Exponential-backoff retry for classified async calls.

Uses tenacity under the hood. Only errors classified TRANSIENT (see
errors.is_retryable) are retried; validation, auth and permanent errors
surface on the first attempt. Each retry and the final exhaustion are
logged with structlog.

Usage:
    from boxrates_pipeline.utils.retry import RetryPolicy, retry_call, with_retry

    policy = RetryPolicy(max_attempts=3, base_delay=1.0)
    data = await retry_call(fetch_page, url, policy=policy)

    # Default decorator (3 attempts, 1/2/4 s delays, transient errors only)
    @with_retry()
    async def call_api() -> dict: ...
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from boxrates_pipeline.errors import classify, is_retryable

log = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts and backoff for one retried operation.

    Delays: base_delay * 2^(attempt-1), capped at max_delay.
    Default: 1 s, 2 s (, 4 s with more attempts).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


DEFAULT_POLICY = RetryPolicy()


async def retry_call(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Sleep | None = None,
    operation: str | None = None,
    log_context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> T:
    """
    Await fn(*args, **kwargs), retrying transient failures per policy.

    Args:
        fn:          Coroutine function to call.
        policy:      Attempt count and backoff shape.
        sleep:       Replacement for asyncio.sleep (tests record delays).
        operation:   Name used in log events (default: fn.__qualname__).
        log_context: Extra key/values bound to every log event.

    Returns:
        fn's result.

    Raises:
        The last exception once attempts are exhausted, or the first
        non-retryable exception immediately.
    """
    attempt_log = log.bind(
        operation=operation or getattr(fn, "__qualname__", repr(fn)),
        **(log_context or {}),
    )

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        attempt_log.warning(
            "retry_attempt",
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_s=state.next_action.sleep if state.next_action else None,
            error=str(exc) if exc else None,
            error_kind=classify(exc).value if exc else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay, min=0, max=policy.max_delay, exp_base=2
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=_before_sleep,
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )

    try:
        return await retrying(fn, *args, **kwargs)
    except Exception as exc:
        attempt_number = retrying.statistics.get("attempt_number", 1)
        if is_retryable(exc):
            attempt_log.error(
                "retry_exhausted",
                attempts=attempt_number,
                max_attempts=policy.max_attempts,
                error=str(exc),
            )
        else:
            attempt_log.error(
                "call_failed",
                attempts=attempt_number,
                error=str(exc),
                error_kind=classify(exc).value,
            )
        raise


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Sleep | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of retry_call for functions with a fixed policy.
    """
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_call(fn, *args, policy=policy, sleep=sleep, **kwargs)

        return wrapper

    return decorator
