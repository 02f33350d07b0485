# backend/tracker/services/valuation/service.py
"""
Position valuation as of a date.

Every read-side consumer (position listing, net worth, allocation,
performance, projected income) values positions the same way:

    1. Latest snapshot on or before the date, in timeline order
    2. Market price on the date for market-linked positions that hold
       something; otherwise the snapshot's unit value
    3. value = quantity * unit value (position currency)
    4. Unrealized P/L from the snapshot history (see profit_loss.py)

Snapshots are loaded in one query for all positions, and market prices in
one batched call, so valuing N positions costs two round trips plus the
price cache.

Usage:
    from tracker.services.valuation import PositionValuationService

    service = PositionValuationService(market_price_service)
    valued = await service.value_positions(db, user_id, positions, as_of=today)
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import Position, PositionSnapshot, PositionType, PriceSourceType
from tracker.services.constants import ZERO
from tracker.services.exceptions import MarketDataError
from tracker.services.ledger.ordering import sort_timeline
from tracker.services.ledger.types import SnapshotState
from tracker.services.profit_loss import calculate_position_pl
from tracker.services.protocols import PositionPriceServiceProtocol
from tracker.services.valuation.types import ValuedPosition

logger = logging.getLogger(__name__)


async def load_snapshots(
        db: AsyncSession,
        user_id: int,
        position_ids: Iterable[int],
        end: date | None = None,
        start: date | None = None,
) -> dict[int, list[SnapshotState]]:
    """
    Snapshots per position in timeline order, optionally bounded by date.

    Returns:
        {position_id: [SnapshotState, ...]}; positions without snapshots
        are absent.
    """
    ids = sorted(set(position_ids))
    if not ids:
        return {}

    query = select(PositionSnapshot).where(
        PositionSnapshot.user_id == user_id,
        PositionSnapshot.position_id.in_(ids),
    )
    if end is not None:
        query = query.where(PositionSnapshot.date <= end)
    if start is not None:
        query = query.where(PositionSnapshot.date >= start)

    result = await db.execute(query)
    grouped: dict[int, list[SnapshotState]] = defaultdict(list)
    for snapshot in result.scalars().all():
        grouped[snapshot.position_id].append(SnapshotState.from_model(snapshot))
    return {position_id: sort_timeline(snaps) for position_id, snaps in grouped.items()}


async def load_user_positions(
        db: AsyncSession,
        user_id: int,
        include_archived: bool = True,
        position_type: PositionType | None = None,
) -> list[Position]:
    """Positions of one user ordered by id, optionally active only or of one type."""
    query = select(Position).where(Position.user_id == user_id)
    if not include_archived:
        query = query.where(Position.archived_at.is_(None))
    if position_type is not None:
        query = query.where(Position.type == position_type)
    result = await db.execute(query.order_by(Position.id.asc()))
    return list(result.scalars().all())


def is_market_linked(position: Position) -> bool:
    return position.price_source != PriceSourceType.MANUAL


class PositionValuationService:
    """
    Values positions as of a date.

    The price service is optional: without one every position is valued at
    its snapshot unit value.
    """

    def __init__(self, price_service: PositionPriceServiceProtocol | None = None) -> None:
        self._price_service = price_service

    async def value_positions(
            self,
            db: AsyncSession,
            user_id: int,
            positions: Sequence[Position],
            as_of: date,
            use_market_prices: bool = True,
    ) -> list[ValuedPosition]:
        """
        Value each position as of a date, in input order.

        Args:
            db: Database session
            user_id: Owner (snapshots are filtered on it)
            positions: Positions to value
            as_of: Valuation date
            use_market_prices: False to value at snapshot unit values only
        """
        if not positions:
            return []

        snapshots = await load_snapshots(db, user_id, (p.id for p in positions), end=as_of)

        priced_candidates = [
            p for p in positions
            if is_market_linked(p)
            and snapshots.get(p.id)
            and snapshots[p.id][-1].quantity > ZERO
        ]
        prices = {}
        if use_market_prices and priced_candidates and self._price_service is not None:
            try:
                prices = await self._price_service.get_position_prices(db, priced_candidates, [as_of])
            except MarketDataError as e:
                logger.warning(f"Market prices unavailable for {as_of}: {e}")

        valued = []
        for position in positions:
            history = snapshots.get(position.id, [])
            if not history:
                valued.append(ValuedPosition(position=position, as_of=as_of, snapshot=None))
                continue

            latest = history[-1]
            market_price = prices.get((position.id, as_of))
            unit_value = market_price if market_price is not None else latest.unit_value
            current_value = latest.quantity * unit_value

            valued.append(ValuedPosition(
                position=position,
                as_of=as_of,
                snapshot=latest,
                current_quantity=latest.quantity,
                current_unit_value=unit_value,
                current_value=current_value,
                market_priced=market_price is not None,
                profit_loss=calculate_position_pl(latest.quantity, current_value, history, position.id),
            ))
        return valued
