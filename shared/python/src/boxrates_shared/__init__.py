"""
boxrates_shared — shared configuration, schema, models and helpers for the
boxrates tariff sync workers.

Usage:
    from boxrates_shared.config import settings
    from boxrates_shared.db import create_engine, create_sessionmaker
    from boxrates_shared.schema import Warehouse, BoxTariff, Spreadsheet
    from boxrates_shared.models import TariffBatch, PublishTarget
    from boxrates_shared.numbers import parse_decimal
    from boxrates_shared.time_utils import business_today
"""

__version__ = "0.1.0"
