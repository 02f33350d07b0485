# backend/tracker/services/records_service.py
"""
Portfolio Record Service for ledger mutations.

This service handles:
- Creating, editing and deleting buy/sell/update records
- Bulk deletion with per-record error collection
- Batch import of already-parsed rows
- Previewing the snapshots a proposed record would produce

Every mutation follows the same three steps inside the caller's
transaction:

    1. Validate the affected window (the validator replays the proposed
       timeline and rejects oversells and invalid quantities)
    2. Write the record change
    3. Recalculate the snapshots of every affected segment

A failed validation raises LedgerValidationError before anything is
written. A failed recalculation raises RecalculationError; the request
transaction is rolled back, so the record change is not persisted either.

Validation window:
    candidates + persisted records from the first affected date up to
    (excluding) the first persisted update strictly after the last
    affected date, minus records being edited or deleted.

Design Principles:
- No HTTP Knowledge: Raises domain exceptions, not HTTPException
- One mutation per request: mutations of one position are serialized by
  the caller; the engine takes no locks
- Decimal for all quantities and prices

Usage:
    from tracker.services.records_service import RecordService, RecordInput

    service = RecordService(recalculator)
    record = await service.create_record(db, user_id, RecordInput(
        position_id=1, type=RecordType.BUY, date=date(2024, 3, 1),
        quantity=Decimal("10"), unit_value=Decimal("101.5"),
    ))
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PortfolioRecord, Position, PositionType, RecordType
from tracker.services.constants import MAX_BATCH_SIZE, MAX_IMPORT_ROWS
from tracker.services.exceptions import (
    LedgerValidationError,
    NotFoundError,
    PositionNotFoundError,
    RecalculationError,
    RecordNotFoundError,
    ValidationError,
)
from tracker.services.ledger.ordering import sort_timeline
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.segments import recalculate_segments
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import (
    ComputedSnapshot,
    LedgerEvent,
    RecalculationOptions,
    ValidationResult,
)
from tracker.services.ledger.validation import validate_timeline_window

logger = logging.getLogger(__name__)


# =============================================================================
# INPUT / RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class RecordInput:
    """
    A proposed record.

    cost_basis_override only applies to update records: an explicit cost
    basis per unit that wins over unit_value.
    """
    position_id: int
    type: RecordType
    date: date
    quantity: Decimal
    unit_value: Decimal
    description: str | None = None
    cost_basis_override: Decimal | None = None

    def to_event(self, source_label: str | None = None) -> LedgerEvent:
        return LedgerEvent(
            position_id=self.position_id,
            type=RecordType(self.type),
            date=self.date,
            quantity=self.quantity,
            unit_value=self.unit_value,
            description=self.description,
            cost_basis_override=self.cost_basis_override if RecordType(self.type) == RecordType.UPDATE else None,
            source_label=source_label,
        )


@dataclass(frozen=True)
class RecordChanges:
    """
    Edits to an existing record. None means "keep", except for
    cost_basis_override, which is always taken as given for update records
    (None resets the basis to the unit value).
    """
    type: RecordType | None = None
    date: date | None = None
    quantity: Decimal | None = None
    unit_value: Decimal | None = None
    description: str | None = None
    cost_basis_override: Decimal | None = None
    position_id: int | None = None


@dataclass(frozen=True)
class ImportRow:
    """
    One already-parsed import row. Identifies its position by id or by name.

    Names are matched against active asset positions, ignoring case and
    repeated whitespace.
    """
    type: RecordType
    date: date
    quantity: Decimal
    unit_value: Decimal
    position_id: int | None = None
    position_name: str | None = None
    description: str | None = None
    cost_basis_override: Decimal | None = None
    source_label: str | None = None


@dataclass(frozen=True)
class ImportResult:
    imported_count: int
    position_ids: tuple[int, ...] = ()
    snapshots_written: int = 0


@dataclass
class BulkDeleteResult:
    deleted_count: int = 0
    errors: list[str] = field(default_factory=list)


def normalize_position_name(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip()).lower()


# =============================================================================
# SERVICE
# =============================================================================

class RecordService:
    """
    Ledger mutations with validation and snapshot recalculation.

    Example:
        service = RecordService(recalculator)
        result = await service.bulk_delete(db, user_id, [4, 5, 6])
        if result.errors:
            ...
    """

    def __init__(self, recalculator: SnapshotRecalculator) -> None:
        self._recalculator = recalculator

    # =========================================================================
    # READ
    # =========================================================================

    async def get_record(self, db: AsyncSession, user_id: int, record_id: int) -> PortfolioRecord:
        """
        Raises:
            RecordNotFoundError: Missing or owned by another user
        """
        record = await LedgerStore(db, user_id).get_record(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def list_records(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int | None = None,
            start: date | None = None,
            end: date | None = None,
    ) -> list[PortfolioRecord]:
        """Records in timeline order, optionally for one position and a date range (inclusive)."""
        query = select(PortfolioRecord).where(PortfolioRecord.user_id == user_id)
        if position_id is not None:
            await self._get_position(LedgerStore(db, user_id), position_id)
            query = query.where(PortfolioRecord.position_id == position_id)
        if start is not None:
            query = query.where(PortfolioRecord.date >= start)
        if end is not None:
            query = query.where(PortfolioRecord.date <= end)

        result = await db.execute(query)
        return sort_timeline(result.scalars().all())

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_record(self, db: AsyncSession, user_id: int, data: RecordInput) -> PortfolioRecord:
        """
        Validate, insert and recalculate.

        Raises:
            PositionNotFoundError: Position missing or not owned
            LedgerValidationError: Invalid quantity or oversell
            RecalculationError: Snapshot recalculation failed
        """
        store = LedgerStore(db, user_id)
        await self._get_position(store, data.position_id)

        event = data.to_event()
        window = await store.get_window_records(data.position_id, event.date, event.date)
        self._raise_if_invalid(await validate_timeline_window(store, data.position_id, window + [event]))

        record = (await store.insert_records([event]))[0]
        await recalculate_segments(
            self._recalculator, db, user_id, data.position_id, [event.date],
            RecalculationOptions(cost_basis_overrides=self._overrides([(record.id, event)])),
        )
        logger.info(f"Created {event.type.value} record {record.id} for position {data.position_id}")
        return record

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_record(
            self,
            db: AsyncSession,
            user_id: int,
            record_id: int,
            changes: RecordChanges,
    ) -> PortfolioRecord:
        """
        Edit a record in place.

        Validated as "old version removed, edited version inserted"; the
        edited record keeps its created_at, so it keeps its place among
        same-day records. Snapshots are recalculated from the earlier of
        the old and new dates.

        Raises:
            RecordNotFoundError: Record missing or not owned
            ValidationError: Attempt to move the record to another position
            LedgerValidationError: The edited timeline is invalid
            RecalculationError: Snapshot recalculation failed
        """
        store = LedgerStore(db, user_id)
        record = await self.get_record(db, user_id, record_id)
        if changes.position_id is not None and changes.position_id != record.position_id:
            raise ValidationError("Records cannot be moved to another position", field="position_id")

        old_date = record.date
        edited = replace(
            LedgerEvent.from_record(record),
            type=RecordType(changes.type) if changes.type is not None else RecordType(record.type),
            date=changes.date or record.date,
            quantity=changes.quantity if changes.quantity is not None else record.quantity,
            unit_value=changes.unit_value if changes.unit_value is not None else record.unit_value,
            description=changes.description if changes.description is not None else record.description,
        )
        if edited.type == RecordType.UPDATE:
            edited = replace(edited, cost_basis_override=changes.cost_basis_override)

        first, last = min(old_date, edited.date), max(old_date, edited.date)
        window = await store.get_window_records(record.position_id, first, last, excluded_record_ids=[record.id])
        self._raise_if_invalid(
            await validate_timeline_window(store, record.position_id, window + [edited], replaced_record_ids=[record.id])
        )

        await store.delete_record_snapshot(record.position_id, record.id)
        record.type = edited.type
        record.date = edited.date
        record.quantity = edited.quantity
        record.unit_value = edited.unit_value
        record.description = edited.description
        await db.flush()

        overrides = {record.id: edited.cost_basis_override} if edited.type == RecordType.UPDATE else {}
        await recalculate_segments(
            self._recalculator, db, user_id, record.position_id, [old_date, edited.date],
            RecalculationOptions(cost_basis_overrides=overrides),
        )
        logger.info(f"Updated record {record.id} of position {record.position_id}")
        return record

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_record(self, db: AsyncSession, user_id: int, record_id: int) -> None:
        """
        Delete one record.

        Removing a buy or an update may leave a later sell without enough
        units, so the remaining window is validated first.

        Raises:
            RecordNotFoundError: Record missing or not owned
            LedgerValidationError: Remaining timeline would be invalid
            RecalculationError: Snapshot recalculation failed
        """
        store = LedgerStore(db, user_id)
        record = await self.get_record(db, user_id, record_id)

        remaining = await store.get_window_records(
            record.position_id, record.date, record.date, excluded_record_ids=[record.id]
        )
        if remaining:
            self._raise_if_invalid(
                await validate_timeline_window(store, record.position_id, remaining, replaced_record_ids=[record.id])
            )

        await recalculate_segments(
            self._recalculator, db, user_id, record.position_id, [record.date],
            RecalculationOptions(exclude_record_id=record.id),
        )
        await db.delete(record)
        await db.flush()
        logger.info(f"Deleted record {record_id} of position {record.position_id}")

    async def bulk_delete(self, db: AsyncSession, user_id: int, record_ids: Sequence[int]) -> BulkDeleteResult:
        """
        Delete several records one by one.

        Records that are missing or whose removal fails validation are
        reported in errors and left in place; the others are deleted.
        """
        ids = list(dict.fromkeys(record_ids))
        if len(ids) > MAX_BATCH_SIZE:
            raise ValidationError(f"Cannot delete more than {MAX_BATCH_SIZE} records at once", field="record_ids")

        result = BulkDeleteResult()
        for record_id in ids:
            try:
                await self.delete_record(db, user_id, record_id)
            except (NotFoundError, LedgerValidationError) as e:
                result.errors.append(f"Record {record_id}: {e.message}")
                continue
            result.deleted_count += 1
        return result

    # =========================================================================
    # IMPORT
    # =========================================================================

    async def import_records(self, db: AsyncSession, user_id: int, rows: Sequence[ImportRow]) -> ImportResult:
        """
        Import a batch of parsed rows, all or nothing.

        Each position's rows are validated as one window together with the
        persisted records they affect. Any failure rejects the whole batch
        before a single row is written.

        Raises:
            ValidationError: Empty batch, too many rows, or unknown position names
            PositionNotFoundError: A position id is missing or not owned
            LedgerValidationError: A row fails validation (message prefixed with its label)
            RecalculationError: Snapshot recalculation failed
        """
        if not rows:
            raise ValidationError("Nothing to import", field="rows")
        if len(rows) > MAX_IMPORT_ROWS:
            raise ValidationError(f"Cannot import more than {MAX_IMPORT_ROWS} rows at once", field="rows")

        store = LedgerStore(db, user_id)
        position_ids = await self._resolve_positions(db, store, rows)

        events_by_position: dict[int, list[LedgerEvent]] = defaultdict(list)
        for index, (row, position_id) in enumerate(zip(rows, position_ids)):
            event = RecordInput(
                position_id=position_id,
                type=row.type,
                date=row.date,
                quantity=row.quantity,
                unit_value=row.unit_value,
                description=row.description,
                cost_basis_override=row.cost_basis_override,
            ).to_event(source_label=row.source_label or f"Row {index + 1}")
            events_by_position[position_id].append(event)

        for position_id, events in events_by_position.items():
            dates = [e.date for e in events]
            window = await store.get_window_records(position_id, min(dates), max(dates))
            self._raise_if_invalid(await validate_timeline_window(store, position_id, window + events))

        snapshots_written = 0
        for position_id, events in events_by_position.items():
            records = await store.insert_records(events)
            results = await recalculate_segments(
                self._recalculator, db, user_id, position_id, [e.date for e in events],
                RecalculationOptions(cost_basis_overrides=self._overrides(
                    (record.id, event) for record, event in zip(records, events)
                )),
            )
            snapshots_written += sum(r.snapshots_written for r in results)

        logger.info(f"Imported {len(rows)} records across {len(events_by_position)} positions for user {user_id}")
        return ImportResult(
            imported_count=len(rows),
            position_ids=tuple(sorted(events_by_position)),
            snapshots_written=snapshots_written,
        )

    async def _resolve_positions(
            self,
            db: AsyncSession,
            store: LedgerStore,
            rows: Sequence[ImportRow],
    ) -> list[int]:
        names_needed = any(row.position_id is None for row in rows)
        by_name: dict[str, int] = {}
        if names_needed:
            result = await db.execute(
                select(Position.id, Position.name)
                .where(
                    Position.user_id == store.user_id,
                    Position.type == PositionType.ASSET,
                    Position.archived_at.is_(None),
                )
                .order_by(Position.id.asc())
            )
            for position_id, name in result.all():
                by_name.setdefault(normalize_position_name(name), position_id)

        resolved: list[int | None] = []
        missing: list[str] = []
        for row in rows:
            if row.position_id is not None:
                resolved.append(row.position_id)
                continue
            name = row.position_name or ""
            position_id = by_name.get(normalize_position_name(name))
            if position_id is None and name not in missing:
                missing.append(name)
            resolved.append(position_id)

        if missing:
            listed = ", ".join(f'"{name}"' for name in missing)
            raise ValidationError(f"Unknown positions: {listed}", field="position_name")

        for position_id in sorted(set(resolved)):
            await self._get_position(store, position_id)
        return resolved

    # =========================================================================
    # PREVIEW
    # =========================================================================

    async def preview_record(
            self,
            db: AsyncSession,
            user_id: int,
            data: RecordInput,
            replaces_record_id: int | None = None,
    ) -> list[ComputedSnapshot]:
        """
        Snapshots the window would have with the proposed record, without writing.

        Args:
            replaces_record_id: Record the proposal would replace (edit preview)

        Raises:
            PositionNotFoundError, RecordNotFoundError, LedgerValidationError,
            RecalculationError
        """
        store = LedgerStore(db, user_id)
        await self._get_position(store, data.position_id)

        first = data.date
        if replaces_record_id is not None:
            replaced = await self.get_record(db, user_id, replaces_record_id)
            first = min(first, replaced.date)

        event = data.to_event()
        window = await store.get_window_records(
            data.position_id, first, max(first, data.date),
            excluded_record_ids=[replaces_record_id] if replaces_record_id else (),
        )
        self._raise_if_invalid(
            await validate_timeline_window(
                store, data.position_id, window + [event],
                replaced_record_ids=[replaces_record_id] if replaces_record_id else (),
            )
        )

        result = await self._recalculator.recalculate(
            db, user_id, data.position_id, first,
            RecalculationOptions(exclude_record_id=replaces_record_id, include_record=event, dry_run=True),
        )
        if not result.success:
            raise RecalculationError(result.code, result.message, position_id=data.position_id)
        return list(result.snapshots)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    async def _get_position(store: LedgerStore, position_id: int) -> Position:
        position = await store.get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    @staticmethod
    def _raise_if_invalid(result: ValidationResult) -> None:
        if not result.valid:
            raise LedgerValidationError(result.code, result.message)

    @staticmethod
    def _overrides(pairs) -> dict[int, Decimal | None]:
        """Cost basis overrides for the update records among (record id, event) pairs."""
        return {
            record_id: event.cost_basis_override
            for record_id, event in pairs
            if event.type == RecordType.UPDATE and event.cost_basis_override is not None
        }
