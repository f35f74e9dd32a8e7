"""
boxrates_shared.models — Pydantic models for API payloads and table rows.

These models are used by:
- sources: validate and normalize the tariff API response
- loaders / pipelines: pass publish targets around without ORM handles
"""

from boxrates_shared.models.targets import PublishTarget
from boxrates_shared.models.tariffs import (
    ApiErrorEnvelope,
    TariffBatch,
    TariffData,
    TariffEntry,
    TariffEnvelope,
)

__all__ = [
    "ApiErrorEnvelope",
    "PublishTarget",
    "TariffBatch",
    "TariffData",
    "TariffEntry",
    "TariffEnvelope",
]
