"""
loaders/store.py — Idempotent upsert store for locations, tariffs and publish targets.

The reconciler writes through a TariffWriteScope: one database transaction
that exposes only the two upserts it needs, plus entry(), a SAVEPOINT so a
failing entry rolls back alone while the rest of the cycle stays in the
outer transaction. Whether the transaction commits is the caller's
decision (scope.commit() / scope.rollback()); leaving the block without a
decision rolls back.

Upserts are INSERT … ON CONFLICT DO UPDATE on the natural keys:
  warehouses   (warehouse_name)
  box_tariffs  (warehouse_id, tariff_date)
created_at is written only on insert; updated_at on every write.

Usage:
    store = ReconciliationStore(create_sessionmaker(engine))

    async with store.transaction() as scope:
        async with scope.entry():
            location_id = await scope.upsert_location("Коледино", "Центральный")
            await scope.upsert_tariff(location_id, date(2025, 11, 12), fields)
        await scope.commit()

    rows = await store.tariffs_for_date(date(2025, 11, 12))
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy import func, inspect, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxrates_shared.constants import RATE_FIELDS
from boxrates_shared.models.targets import PublishTarget
from boxrates_shared.schema import BoxTariff, Spreadsheet, Warehouse
from boxrates_shared.time_utils import utcnow

log = structlog.get_logger(__name__)

TARIFF_VALUE_COLUMNS: tuple[str, ...] = RATE_FIELDS + (
    "dt_next_box",
    "dt_till_max",
    "sorting_coefficient",
)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _row_dict(obj: Any) -> dict[str, Any]:
    """ORM instance → plain dict of its column attributes."""
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


class TariffWriteScope:
    """
    Transactional scope handed to the reconciler.

    Exposes only the write operations of one reconciliation cycle; the
    session itself stays private.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        dialect: str,
        clock: Callable[[], datetime],
    ) -> None:
        self._session = session
        self._insert = _INSERTS[dialect]
        self._clock = clock
        self.decided: str | None = None

    @asynccontextmanager
    async def entry(self) -> AsyncIterator[None]:
        """SAVEPOINT around one entry; an exception rolls back only this entry."""
        async with self._session.begin_nested():
            yield

    async def upsert_location(self, name: str, geo_name: str | None) -> int:
        """
        Insert or update a warehouse by name and return its id.

        A missing geo_name on a later sighting keeps the stored label.
        """
        now = self._clock()
        stmt = self._insert(Warehouse).values(
            warehouse_name=name,
            geo_name=geo_name,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Warehouse.warehouse_name],
            set_={
                "geo_name": func.coalesce(stmt.excluded.geo_name, Warehouse.geo_name),
                "updated_at": now,
            },
        ).returning(Warehouse.id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def upsert_tariff(
        self,
        location_id: int,
        tariff_date: date,
        fields: dict[str, Any],
    ) -> int:
        """Insert or overwrite the (location, date) tariff row and return its id."""
        unknown = set(fields) - set(TARIFF_VALUE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown tariff columns: {sorted(unknown)}")

        now = self._clock()
        values = {column: fields.get(column) for column in TARIFF_VALUE_COLUMNS}
        stmt = self._insert(BoxTariff).values(
            warehouse_id=location_id,
            tariff_date=tariff_date,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[BoxTariff.warehouse_id, BoxTariff.tariff_date],
            set_={
                **{column: stmt.excluded[column] for column in TARIFF_VALUE_COLUMNS},
                "updated_at": now,
            },
        ).returning(BoxTariff.id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def commit(self) -> None:
        await self._session.commit()
        self.decided = "commit"

    async def rollback(self) -> None:
        await self._session.rollback()
        self.decided = "rollback"


class ReconciliationStore:
    """
    Relational persistence for the pipeline.

    Owns no connection state between calls: every method opens its own
    session from the sessionmaker.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        *,
        dialect: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._clock = clock
        if dialect is None:
            bind = sessions.kw.get("bind")
            dialect = bind.dialect.name if bind is not None else "postgresql"
        if dialect not in _INSERTS:
            raise ValueError(f"Unsupported database dialect for upserts: {dialect}")
        self._dialect = dialect

    # ------------------------------------------------------------------
    # Reconciliation writes
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TariffWriteScope]:
        async with self._sessions() as session:
            scope = TariffWriteScope(session, dialect=self._dialect, clock=self._clock)
            try:
                yield scope
            except BaseException:
                await session.rollback()
                raise
            if scope.decided is None:
                log.warning("transaction_undecided_rollback")
                await session.rollback()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def tariffs_for_date(self, tariff_date: date) -> list[dict[str, Any]]:
        async with self._sessions() as session:
            result = await session.execute(
                select(BoxTariff)
                .where(BoxTariff.tariff_date == tariff_date)
                .order_by(BoxTariff.warehouse_id)
            )
            return [_row_dict(row) for row in result.scalars()]

    async def all_locations(self) -> list[dict[str, Any]]:
        async with self._sessions() as session:
            result = await session.execute(select(Warehouse).order_by(Warehouse.warehouse_name))
            return [_row_dict(row) for row in result.scalars()]

    async def get_location(self, name: str) -> dict[str, Any] | None:
        async with self._sessions() as session:
            row = await session.scalar(select(Warehouse).where(Warehouse.warehouse_name == name))
            return _row_dict(row) if row is not None else None

    async def get_tariff(self, location_name: str, tariff_date: date) -> dict[str, Any] | None:
        async with self._sessions() as session:
            row = await session.scalar(
                select(BoxTariff)
                .join(Warehouse, Warehouse.id == BoxTariff.warehouse_id)
                .where(
                    Warehouse.warehouse_name == location_name,
                    BoxTariff.tariff_date == tariff_date,
                )
            )
            return _row_dict(row) if row is not None else None

    async def latest_tariff_date(self) -> date | None:
        async with self._sessions() as session:
            return await session.scalar(select(func.max(BoxTariff.tariff_date)))

    async def location_count(self) -> int:
        async with self._sessions() as session:
            return int(await session.scalar(select(func.count()).select_from(Warehouse)) or 0)

    async def tariff_count(self, tariff_date: date | None = None) -> int:
        stmt = select(func.count()).select_from(BoxTariff)
        if tariff_date is not None:
            stmt = stmt.where(BoxTariff.tariff_date == tariff_date)
        async with self._sessions() as session:
            return int(await session.scalar(stmt) or 0)

    # ------------------------------------------------------------------
    # Publish targets
    # ------------------------------------------------------------------

    async def ensure_targets(
        self,
        spreadsheet_ids: Iterable[str],
        sheet_name: str,
        *,
        description: str | None = None,
    ) -> int:
        """
        Create an active target for each configured document id that has none
        for this sheet. Existing rows (active or not) are left untouched.

        Returns:
            Number of targets created.
        """
        wanted = list(dict.fromkeys(s.strip() for s in spreadsheet_ids if s and s.strip()))
        if not wanted:
            return 0

        async with self._sessions() as session:
            existing = set(
                (
                    await session.scalars(
                        select(Spreadsheet.spreadsheet_id).where(
                            Spreadsheet.sheet_name == sheet_name,
                            Spreadsheet.spreadsheet_id.in_(wanted),
                        )
                    )
                ).all()
            )
            now = self._clock()
            created = 0
            for spreadsheet_id in wanted:
                if spreadsheet_id in existing:
                    continue
                session.add(
                    Spreadsheet(
                        spreadsheet_id=spreadsheet_id,
                        sheet_name=sheet_name,
                        description=description,
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                )
                created += 1
            await session.commit()

        log.info("publish_targets_ensured", configured=len(wanted), created=created)
        return created

    async def add_target(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        *,
        description: str | None = None,
        credentials_ref: str | None = None,
        active: bool = True,
    ) -> PublishTarget:
        now = self._clock()
        async with self._sessions() as session:
            row = Spreadsheet(
                spreadsheet_id=spreadsheet_id,
                sheet_name=sheet_name,
                description=description,
                credentials_ref=credentials_ref,
                is_active=active,
                last_synced_at=None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.commit()
            return PublishTarget.from_db_row(row)

    async def active_targets(self) -> list[PublishTarget]:
        async with self._sessions() as session:
            result = await session.scalars(
                select(Spreadsheet)
                .where(Spreadsheet.is_active.is_(True))
                .order_by(Spreadsheet.id)
            )
            return [PublishTarget.from_db_row(row) for row in result]

    async def all_targets(self) -> list[PublishTarget]:
        async with self._sessions() as session:
            result = await session.scalars(select(Spreadsheet).order_by(Spreadsheet.id))
            return [PublishTarget.from_db_row(row) for row in result]

    async def set_target_active(self, spreadsheet_id: str, sheet_name: str, active: bool) -> bool:
        """Toggle a target; returns False when no such target exists."""
        async with self._sessions() as session:
            result = await session.execute(
                update(Spreadsheet)
                .where(
                    Spreadsheet.spreadsheet_id == spreadsheet_id,
                    Spreadsheet.sheet_name == sheet_name,
                )
                .values(is_active=active, updated_at=self._clock())
            )
            await session.commit()
        found = bool(result.rowcount)
        log.info(
            "publish_target_toggled",
            spreadsheet_id=spreadsheet_id,
            sheet_name=sheet_name,
            active=active,
            found=found,
        )
        return found

    async def mark_target_synced(self, target_id: int, synced_at: datetime) -> None:
        async with self._sessions() as session:
            await session.execute(
                update(Spreadsheet)
                .where(Spreadsheet.id == target_id)
                .values(last_synced_at=synced_at, updated_at=self._clock())
            )
            await session.commit()
