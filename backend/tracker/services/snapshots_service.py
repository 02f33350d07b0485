# backend/tracker/services/snapshots_service.py
"""
Snapshot Service - reading snapshots and refreshing market prices.

A price refresh writes price-only snapshots: one unlinked snapshot per
(position, date) carrying the current quantity, the market unit value and
a NULL cost basis (inherited from the snapshot before it). Running the
refresh twice on the same date updates the snapshot in place.

Usage:
    from tracker.services.snapshots_service import SnapshotService

    service = SnapshotService(recalculator, price_service)
    result = await service.refresh_prices(db, user_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PositionType
from tracker.services.constants import ZERO
from tracker.services.exceptions import PositionNotFoundError, ProviderUnavailableError, ValidationError
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.segments import recalculate_segments
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import RecalculationResult, SnapshotState
from tracker.services.protocols import PositionPriceServiceProtocol
from tracker.services.valuation import is_market_linked, load_snapshots, load_user_positions
from tracker.utils.date_utils import utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceRefreshResult:
    """Outcome of one price refresh."""
    date: date
    created: int = 0
    updated: int = 0
    missing_prices: tuple[int, ...] = field(default_factory=tuple)  # position ids without a price


class SnapshotService:
    def __init__(
            self,
            recalculator: SnapshotRecalculator,
            price_service: PositionPriceServiceProtocol | None,
    ) -> None:
        self._recalculator = recalculator
        self._price_service = price_service

    async def list_snapshots(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int,
            start: date | None = None,
            end: date | None = None,
    ) -> list[SnapshotState]:
        """Snapshots of one position in timeline order."""
        if start is not None and end is not None and start > end:
            raise ValidationError("start must be on or before end", field="start")
        if await LedgerStore(db, user_id).get_position(position_id) is None:
            raise PositionNotFoundError(position_id)
        snapshots = await load_snapshots(db, user_id, [position_id], end=end, start=start)
        return snapshots.get(position_id, [])

    async def refresh_prices(self, db: AsyncSession, user_id: int, on: date | None = None) -> PriceRefreshResult:
        """
        Write price-only snapshots for every active market-linked position.

        Positions without snapshot history or holding nothing on the date
        are skipped. A missing market price skips the position and is
        reported in the result.
        """
        if self._price_service is None:
            raise ProviderUnavailableError("market data", "market data is disabled")
        on = on or utc_today()
        positions = [
            p for p in await load_user_positions(db, user_id, include_archived=False)
            if is_market_linked(p)
        ]
        if not positions:
            return PriceRefreshResult(date=on)

        store = LedgerStore(db, user_id)
        holdings: dict[int, SnapshotState] = {}
        for position in positions:
            latest = await store.get_latest_snapshot(position.id, on)
            if latest is not None and latest.quantity > ZERO:
                holdings[position.id] = latest

        held = [p for p in positions if p.id in holdings]
        prices = await self._price_service.get_position_prices(db, held, [on]) if held else {}

        created = updated = 0
        missing = []
        for position in held:
            price = prices.get((position.id, on))
            if price is None:
                missing.append(position.id)
                continue

            existing = next(
                (s for s in await store.get_snapshots_on(position.id, on) if not s.is_linked),
                None,
            )
            await store.upsert_snapshot(
                position.id,
                None,
                on,
                quantity=holdings[position.id].quantity,
                unit_value=price,
                cost_basis_per_unit=None,
                existing=existing,
            )
            if existing is None:
                created += 1
            else:
                updated += 1

        await db.flush()
        if missing:
            logger.warning(f"Price refresh for user {user_id} on {on}: no price for positions {missing}")
        logger.info(f"Price refresh for user {user_id} on {on}: {created} created, {updated} updated")
        return PriceRefreshResult(date=on, created=created, updated=updated, missing_prices=tuple(missing))

    async def recalculate(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int,
            from_date: date | None = None,
    ) -> list[RecalculationResult]:
        """
        Recalculate a position's snapshots.

        With from_date, the segments from that date on; without it, the
        whole timeline.

        Raises:
            PositionNotFoundError: Missing or owned by another user
            RecalculationError: A segment failed
        """
        store = LedgerStore(db, user_id)
        position = await store.get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)

        first = await store.get_first_timeline_date(position_id)
        if first is None:
            return []
        start = max(from_date, first) if from_date is not None else first
        affected = [start, *(d for d in await store.get_update_dates(position_id) if d > start)]
        results = await recalculate_segments(self._recalculator, db, user_id, position_id, affected)
        logger.info(
            f"Recalculated position {position_id} ({PositionType(position.type).value}) from {start}: "
            f"{sum(r.snapshots_written for r in results)} snapshots written"
        )
        return results
