"""
schema.py — SQLAlchemy table definitions for the boxrates store.

Tables:
  1. warehouses    - Fulfillment locations, natural key warehouse_name
  2. box_tariffs   - Per-location, per-date box tariff quotes
  3. spreadsheets  - Publish targets (document id + sheet name)

Schema evolution lives in external migrations; Base.metadata.create_all is
used only for development databases and the test suite.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

RATE = Numeric(10, 2)


class Base(DeclarativeBase):
    """Declarative base for all boxrates tables."""
    pass


class Warehouse(Base):
    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    warehouse_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    geo_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    tariffs: Mapped[list["BoxTariff"]] = relationship(
        back_populates="warehouse", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("idx_warehouses_geo_name", "geo_name"),)


class BoxTariff(Base):
    __tablename__ = "box_tariffs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False
    )
    tariff_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Delivery to warehouse (FBO)
    box_delivery_base: Mapped[Decimal | None] = mapped_column(RATE)
    box_delivery_liter: Mapped[Decimal | None] = mapped_column(RATE)
    box_delivery_coef_expr: Mapped[Decimal | None] = mapped_column(RATE)

    # Delivery via marketplace (FBS)
    box_delivery_marketplace_base: Mapped[Decimal | None] = mapped_column(RATE)
    box_delivery_marketplace_liter: Mapped[Decimal | None] = mapped_column(RATE)
    box_delivery_marketplace_coef_expr: Mapped[Decimal | None] = mapped_column(RATE)

    # Storage
    box_storage_base: Mapped[Decimal | None] = mapped_column(RATE)
    box_storage_liter: Mapped[Decimal | None] = mapped_column(RATE)
    box_storage_coef_expr: Mapped[Decimal | None] = mapped_column(RATE)

    dt_next_box: Mapped[str | None] = mapped_column(Text)
    dt_till_max: Mapped[date | None] = mapped_column(Date)
    sorting_coefficient: Mapped[Decimal | None] = mapped_column(RATE)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    warehouse: Mapped[Warehouse] = relationship(back_populates="tariffs")

    __table_args__ = (
        UniqueConstraint("warehouse_id", "tariff_date", name="uq_warehouse_date"),
        Index("idx_box_tariffs_date", "tariff_date"),
        Index("idx_box_tariffs_warehouse", "warehouse_id"),
    )


class Spreadsheet(Base):
    __tablename__ = "spreadsheets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    spreadsheet_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sheet_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    credentials_ref: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("spreadsheet_id", "sheet_name", name="uq_spreadsheets_id_sheet_name"),
        Index("idx_spreadsheets_is_active", "is_active"),
        Index("idx_spreadsheets_last_synced_at", "last_synced_at"),
    )
