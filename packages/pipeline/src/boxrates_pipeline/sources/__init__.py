"""
boxrates_pipeline.sources — upstream data source adapters.

  TariffApiClient — marketplace box tariff API (rate-limited, retrying)
"""

from boxrates_pipeline.sources.tariffs_api import TariffApiClient

__all__ = ["TariffApiClient"]
