"""
utils/rate_limit.py — Client-side request budget for the tariff API.

Two ceilings apply at once:
  - in-flight: at most max_concurrent requests outstanding (burst)
  - sustained: at most max_calls request starts in any rolling window_s

Usage:
    limiter = RateLimiter(max_concurrent=5, max_calls=60, window_s=60.0)

    async with limiter:
        response = await client.get(url)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LimiterSnapshot:
    in_flight: int
    calls_in_window: int
    max_concurrent: int
    max_calls: int
    window_s: float


class RateLimiter:
    """
    Rolling-window + concurrency limiter shared by every call site of one client.

    One unit of the window budget is consumed per acquire(); the concurrency
    slot is held until release().
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        max_calls: int = 60,
        window_s: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1 or max_calls < 1 or window_s <= 0:
            raise ValueError("rate limiter ceilings must be positive")
        self._max_concurrent = max_concurrent
        self._max_calls = max_calls
        self._window_s = window_s
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._window_lock = asyncio.Lock()
        self._starts: deque[float] = deque()
        self._in_flight = 0

    def _prune(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self._window_s:
            self._starts.popleft()

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        try:
            # Serialize window bookkeeping so waiters claim slots in order
            async with self._window_lock:
                while True:
                    now = self._clock()
                    self._prune(now)
                    if len(self._starts) < self._max_calls:
                        self._starts.append(now)
                        break
                    wait_s = self._window_s - (now - self._starts[0])
                    log.info(
                        "rate_limit_wait",
                        wait_s=round(wait_s, 3),
                        calls_in_window=len(self._starts),
                        max_calls=self._max_calls,
                    )
                    await self._sleep(max(wait_s, 0.0))
        except BaseException:
            self._semaphore.release()
            raise
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def snapshot(self) -> LimiterSnapshot:
        self._prune(self._clock())
        return LimiterSnapshot(
            in_flight=self._in_flight,
            calls_in_window=len(self._starts),
            max_concurrent=self._max_concurrent,
            max_calls=self._max_calls,
            window_s=self._window_s,
        )
