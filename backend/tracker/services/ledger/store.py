# backend/tracker/services/ledger/store.py
"""
Ledger store: the typed queries the engine runs against the database.

Every query is scoped to the owning user. Methods return detached
dataclasses (LedgerEvent, SnapshotState) so engine code never touches lazy
ORM attributes. Writes are flushed, never committed: the caller owns the
transaction.

Database errors (SQLAlchemyError) propagate; the validator and the
recalculation engine turn them into failed results with the driver's code
preserved (see store_error_code).
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PortfolioRecord, Position, PositionSnapshot, RecordType
from tracker.services.constants import CODE_STORE_ERROR
from tracker.services.ledger.ordering import sort_timeline, timeline_sort_key
from tracker.services.ledger.types import LedgerEvent, SnapshotState

logger = logging.getLogger(__name__)


def store_error_code(error: SQLAlchemyError) -> str:
    """
    Extract the driver's error code from a SQLAlchemy exception.

    asyncpg exposes `sqlstate`, psycopg exposes `pgcode`; otherwise the
    driver exception class name (e.g. "IntegrityError") is used.
    """
    orig = getattr(error, "orig", None)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    if orig is not None:
        return type(orig).__name__
    return type(error).__name__ or CODE_STORE_ERROR


def _snapshot_order(descending: bool = True):
    columns = (PositionSnapshot.date, PositionSnapshot.created_at, PositionSnapshot.id)
    return [c.desc() for c in columns] if descending else [c.asc() for c in columns]


def _record_order():
    return [PortfolioRecord.date.asc(), PortfolioRecord.created_at.asc(), PortfolioRecord.id.asc()]


class LedgerStore:
    """
    User-scoped data access for ledger events and snapshots.

    Usage:
        store = LedgerStore(db, user_id)
        position = await store.get_position(position_id)
        events = await store.get_records(position_id, start=date(2024, 1, 1))
    """

    def __init__(self, db: AsyncSession, user_id: int) -> None:
        self.db = db
        self.user_id = user_id

    # =========================================================================
    # POSITIONS
    # =========================================================================

    async def get_position(self, position_id: int) -> Position | None:
        result = await self.db.execute(
            select(Position).where(
                Position.id == position_id,
                Position.user_id == self.user_id,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def get_records(
            self,
            position_id: int,
            start: date | None = None,
            end: date | None = None,
            exclude_record_id: int | None = None,
            include_end: bool = False,
    ) -> list[LedgerEvent]:
        """
        Records of one position in timeline order.

        Args:
            start: Inclusive lower date bound (None = from the beginning)
            end: Upper date bound (None = open ended)
            exclude_record_id: Record to leave out
            include_end: Treat end as inclusive
        """
        query = select(PortfolioRecord).where(
            PortfolioRecord.position_id == position_id,
            PortfolioRecord.user_id == self.user_id,
        )
        if start is not None:
            query = query.where(PortfolioRecord.date >= start)
        if end is not None:
            query = query.where(PortfolioRecord.date <= end if include_end else PortfolioRecord.date < end)
        if exclude_record_id is not None:
            query = query.where(PortfolioRecord.id != exclude_record_id)

        result = await self.db.execute(query.order_by(*_record_order()))
        # Re-sort in Python: timestamps from different drivers compare reliably only once normalized
        return sort_timeline(LedgerEvent.from_record(r) for r in result.scalars().all())

    async def get_record(self, record_id: int) -> PortfolioRecord | None:
        result = await self.db.execute(
            select(PortfolioRecord).where(
                PortfolioRecord.id == record_id,
                PortfolioRecord.user_id == self.user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_boundary_record(
            self,
            position_id: int,
            after: date,
            excluded_record_ids: Iterable[int] = (),
    ) -> LedgerEvent | None:
        """First update record dated strictly after `after`."""
        query = select(PortfolioRecord).where(
            PortfolioRecord.position_id == position_id,
            PortfolioRecord.user_id == self.user_id,
            PortfolioRecord.type == RecordType.UPDATE,
            PortfolioRecord.date > after,
        )
        excluded = [i for i in excluded_record_ids if i is not None]
        if excluded:
            query = query.where(PortfolioRecord.id.not_in(excluded))

        result = await self.db.execute(query.order_by(*_record_order()).limit(1))
        record = result.scalar_one_or_none()
        return LedgerEvent.from_record(record) if record else None

    async def get_update_dates(self, position_id: int) -> list[date]:
        """Distinct dates carrying an update record, ascending."""
        result = await self.db.execute(
            select(PortfolioRecord.date)
            .where(
                PortfolioRecord.position_id == position_id,
                PortfolioRecord.user_id == self.user_id,
                PortfolioRecord.type == RecordType.UPDATE,
            )
            .distinct()
            .order_by(PortfolioRecord.date.asc())
        )
        return list(result.scalars().all())

    async def insert_records(self, events: Sequence[LedgerEvent]) -> list[PortfolioRecord]:
        """
        Insert proposed events and flush to assign ids.

        created_at is spaced by one microsecond per row so a batch keeps its
        submitted order on the timeline.
        """
        base = datetime.now(timezone.utc)
        records = []
        for offset, event in enumerate(events):
            record = PortfolioRecord(
                user_id=self.user_id,
                position_id=event.position_id,
                type=RecordType(event.type),
                date=event.date,
                quantity=event.quantity,
                unit_value=event.unit_value,
                description=event.description,
                created_at=base + timedelta(microseconds=offset),
                updated_at=base,
            )
            self.db.add(record)
            records.append(record)
        await self.db.flush()
        return records

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def _snapshot_query(self, position_id: int):
        return select(PositionSnapshot).where(
            PositionSnapshot.position_id == position_id,
            PositionSnapshot.user_id == self.user_id,
        )

    @staticmethod
    def _not_linked_to(record_ids: Iterable[int]):
        ids = [i for i in record_ids if i is not None]
        if not ids:
            return None
        return or_(
            PositionSnapshot.portfolio_record_id.is_(None),
            PositionSnapshot.portfolio_record_id.not_in(ids),
        )

    async def get_seed_snapshot(
            self,
            position_id: int,
            as_of: date,
            excluded_record_ids: Iterable[int] = (),
            strictly_before: bool = False,
    ) -> SnapshotState | None:
        """
        Latest snapshot at (or strictly before) a date whose record link is
        not among excluded_record_ids.
        """
        query = self._snapshot_query(position_id).where(
            PositionSnapshot.date < as_of if strictly_before else PositionSnapshot.date <= as_of
        )
        link_filter = self._not_linked_to(excluded_record_ids)
        if link_filter is not None:
            query = query.where(link_filter)

        result = await self.db.execute(query.order_by(*_snapshot_order()).limit(1))
        snapshot = result.scalar_one_or_none()
        return SnapshotState.from_model(snapshot) if snapshot else None

    async def get_snapshots_on(
            self,
            position_id: int,
            on: date,
            excluded_record_ids: Iterable[int] = (),
    ) -> list[SnapshotState]:
        """Snapshots dated exactly `on`, latest first."""
        query = self._snapshot_query(position_id).where(PositionSnapshot.date == on)
        link_filter = self._not_linked_to(excluded_record_ids)
        if link_filter is not None:
            query = query.where(link_filter)

        result = await self.db.execute(query.order_by(*_snapshot_order()))
        return sort_timeline((SnapshotState.from_model(s) for s in result.scalars().all()), reverse=True)

    async def get_inherited_cost_basis(self, position_id: int, before: SnapshotState) -> Decimal | None:
        """
        Most recent explicit cost basis on a snapshot earlier than `before`.

        Implements the carry-forward rule for snapshots whose cost basis is NULL.
        """
        result = await self.db.execute(
            self._snapshot_query(position_id)
            .where(
                PositionSnapshot.cost_basis_per_unit.is_not(None),
                PositionSnapshot.date <= before.date,
                PositionSnapshot.id != before.id,
            )
            .order_by(*_snapshot_order())
        )
        before_key = timeline_sort_key(before)
        for snapshot in result.scalars():
            if timeline_sort_key(snapshot) < before_key:
                return snapshot.cost_basis_per_unit
        return None

    async def get_snapshots_by_record(
            self,
            position_id: int,
            record_ids: Iterable[int],
    ) -> dict[int, SnapshotState]:
        """Existing snapshots keyed by their record id (one query)."""
        ids = sorted({i for i in record_ids if i is not None})
        if not ids:
            return {}
        result = await self.db.execute(
            self._snapshot_query(position_id).where(PositionSnapshot.portfolio_record_id.in_(ids))
        )
        return {
            s.portfolio_record_id: SnapshotState.from_model(s)
            for s in result.scalars().all()
        }

    async def get_price_only_snapshots(
            self,
            position_id: int,
            start: date,
            end: date | None = None,
    ) -> list[SnapshotState]:
        """Unlinked snapshots dated in [start, end] (end None = open), in timeline order."""
        query = self._snapshot_query(position_id).where(
            PositionSnapshot.portfolio_record_id.is_(None),
            PositionSnapshot.date >= start,
        )
        if end is not None:
            query = query.where(PositionSnapshot.date <= end)

        result = await self.db.execute(query.order_by(*_snapshot_order(descending=False)))
        return sort_timeline(SnapshotState.from_model(s) for s in result.scalars().all())

    async def set_snapshot_quantity(self, snapshot_id: int, quantity: Decimal) -> None:
        snapshot = await self.db.get(PositionSnapshot, snapshot_id)
        if snapshot is not None:
            snapshot.quantity = quantity

    async def get_latest_snapshot(self, position_id: int, as_of: date | None = None) -> SnapshotState | None:
        query = self._snapshot_query(position_id)
        if as_of is not None:
            query = query.where(PositionSnapshot.date <= as_of)
        result = await self.db.execute(query.order_by(*_snapshot_order()).limit(1))
        snapshot = result.scalar_one_or_none()
        return SnapshotState.from_model(snapshot) if snapshot else None

    async def get_latest_snapshot_quantity(self, position_id: int, as_of: date | None = None) -> Decimal | None:
        snapshot = await self.get_latest_snapshot(position_id, as_of)
        return snapshot.quantity if snapshot else None

    async def upsert_snapshot(
            self,
            position_id: int,
            record_id: int | None,
            on: date,
            quantity: Decimal,
            unit_value: Decimal,
            cost_basis_per_unit: Decimal | None,
            existing: SnapshotState | None = None,
    ) -> PositionSnapshot:
        """
        Update the snapshot linked to record_id in place, or insert it.

        `existing` short-circuits the lookup when the caller already fetched
        the snapshot in bulk.
        """
        snapshot: PositionSnapshot | None = None
        if existing is not None:
            snapshot = await self.db.get(PositionSnapshot, existing.id)
        elif record_id is not None:
            result = await self.db.execute(
                self._snapshot_query(position_id).where(PositionSnapshot.portfolio_record_id == record_id)
            )
            snapshot = result.scalar_one_or_none()

        if snapshot is None:
            snapshot = PositionSnapshot(
                user_id=self.user_id,
                position_id=position_id,
                portfolio_record_id=record_id,
            )
            self.db.add(snapshot)

        snapshot.date = on
        snapshot.quantity = quantity
        snapshot.unit_value = unit_value
        snapshot.cost_basis_per_unit = cost_basis_per_unit
        return snapshot

    async def delete_record_snapshot(self, position_id: int, record_id: int) -> int:
        """Delete the snapshot linked to one record. Returns rows deleted."""
        result = await self.db.execute(
            delete(PositionSnapshot).where(
                PositionSnapshot.position_id == position_id,
                PositionSnapshot.user_id == self.user_id,
                PositionSnapshot.portfolio_record_id == record_id,
            )
        )
        return result.rowcount or 0

    # =========================================================================
    # BOUNDARIES
    # =========================================================================

    async def get_first_timeline_date(self, position_id: int) -> date | None:
        """
        Earliest of the first update record and the first snapshot.

        Records dated before this are outside the tracked history of the
        position (nothing anchors their quantity).
        """
        first_update = await self.db.execute(
            select(PortfolioRecord.date)
            .where(
                PortfolioRecord.position_id == position_id,
                PortfolioRecord.user_id == self.user_id,
                PortfolioRecord.type == RecordType.UPDATE,
            )
            .order_by(PortfolioRecord.date.asc())
            .limit(1)
        )
        first_snapshot = await self.db.execute(
            select(PositionSnapshot.date)
            .where(
                PositionSnapshot.position_id == position_id,
                PositionSnapshot.user_id == self.user_id,
            )
            .order_by(PositionSnapshot.date.asc())
            .limit(1)
        )
        candidates = [d for d in (first_update.scalar_one_or_none(), first_snapshot.scalar_one_or_none()) if d]
        return min(candidates) if candidates else None

    async def get_window_records(
            self,
            position_id: int,
            start: date,
            after_last: date,
            excluded_record_ids: Iterable[int] = (),
    ) -> list[LedgerEvent]:
        """
        Persisted records from `start` up to (excluding) the first update
        dated strictly after `after_last`.
        """
        excluded = {i for i in excluded_record_ids if i is not None}
        boundary = await self.get_boundary_record(position_id, after_last, excluded)

        end = boundary.date if boundary else None
        records = await self.get_records(position_id, start=start, end=end, include_end=True)
        window = []
        for record in records:
            if record.id in excluded:
                continue
            if boundary is not None and timeline_sort_key(record) >= timeline_sort_key(boundary):
                continue
            window.append(record)
        return window


__all__ = ["LedgerStore", "store_error_code"]
