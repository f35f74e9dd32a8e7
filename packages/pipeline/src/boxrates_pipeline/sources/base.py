"""
sources/base.py — Abstract base class for upstream data source adapters.

Each concrete source must implement:
  extract()      — fetch the raw payload (HTTP, file, ...)
  transform()    — validate/normalize the raw payload into a typed result
  get_metadata() — return dict with source info for status reporting

The run() method orchestrates extract → transform and handles
timing/logging automatically. Callers use run() (or a source-specific
wrapper around it) rather than the individual methods.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

import structlog

from boxrates_pipeline.errors import classify

log = structlog.get_logger(__name__)


class BaseSource(ABC):
    """Abstract base for boxrates upstream source adapters."""

    # Override in subclass; used for logging
    name: str = "unknown"

    def __init__(self) -> None:
        self._log = log.bind(source_name=self.name)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def extract(self, **kwargs: Any) -> Any:
        """
        Fetch the raw payload from the external source.

        Implementations should classify every failure (errors.PipelineError
        subclasses) at the point it is observed.
        """
        ...

    @abstractmethod
    def transform(self, raw: Any, **kwargs: Any) -> Any:
        """
        Validate and normalize the raw payload.

        Implementations raise errors.ValidationError when the payload's
        overall shape is wrong.
        """
        ...

    @abstractmethod
    def get_metadata(self) -> dict[str, Any]:
        ...

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def run(self, **kwargs: Any) -> Any:
        """
        Extract + transform in sequence with timing and structured logging.

        Raises:
            Any exception from extract() or transform() after logging it.
        """
        run_log = self._log.bind(**{k: str(v) for k, v in kwargs.items()})
        run_log.info("source_run_start")

        t0 = time.monotonic()
        try:
            raw = await self.extract(**kwargs)
            extract_ms = int((time.monotonic() - t0) * 1000)
            run_log.info("extract_complete", duration_ms=extract_ms)

            t1 = time.monotonic()
            result = self.transform(raw, **kwargs)
            run_log.info(
                "source_run_complete",
                transform_ms=int((time.monotonic() - t1) * 1000),
                total_duration_ms=int((time.monotonic() - t0) * 1000),
                output_size=len(result) if hasattr(result, "__len__") else None,
            )
            return result

        except Exception as exc:
            run_log.error(
                "source_run_failed",
                error=str(exc),
                error_kind=classify(exc).value,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            raise
