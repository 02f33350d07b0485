# backend/tracker/services/analytics/net_worth.py
"""
Net worth: point value, daily history and change over a period.

Net worth counts every position the user owns, archived ones included
(their history still belongs to the past), valued as of the date and
converted to the report currency. Liabilities subtract.

History algorithm (one pass per day, no per-day queries):
    1. Load every snapshot up to the last day once.
    2. Days before the first snapshot are padded with zeros.
    3. A pre-pass walks a cursor per position to find the (position, day)
       pairs that hold a quantity > 0 of a market-linked position; only
       those are priced.
    4. FX rates for every currency and day are fetched in one batch.
    5. The main pass walks the cursors again, valuing each position at the
       latest snapshot on or before the day. The cursor picks the cost
       basis the same way P/L does (linked explicit basis first), so
       price-only snapshots with a NULL basis never zero out the capital
       gains computation.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import Position, PositionType
from tracker.services.analytics.capital_gains import calculate_capital_gains_tax
from tracker.services.analytics.types import NetWorthChange, NetWorthMode, NetWorthPoint
from tracker.services.constants import HUNDRED, NET_WORTH_CHANGE_DAYS, NET_WORTH_HISTORY_DAYS, ZERO
from tracker.services.currency import build_rate_requests, convert_currency
from tracker.services.exceptions import MarketDataError
from tracker.services.ledger.types import SnapshotState
from tracker.services.profit_loss import basis_per_unit, select_basis_snapshot
from tracker.services.protocols import FXRateServiceProtocol, PositionPriceServiceProtocol
from tracker.services.valuation import (
    PositionValuationService,
    is_market_linked,
    load_snapshots,
    load_user_positions,
)
from tracker.utils.date_utils import date_range, utc_today

logger = logging.getLogger(__name__)


@dataclass
class _SnapshotCursor:
    """Two-pointer walk over one position's snapshots, ascending by day."""
    snapshots: list[SnapshotState]
    index: int = -1
    basis_index: int = -1
    basis: Decimal = ZERO

    def advance(self, on: date) -> SnapshotState | None:
        while self.index + 1 < len(self.snapshots) and self.snapshots[self.index + 1].date <= on:
            self.index += 1
        return self.snapshots[self.index] if self.index >= 0 else None

    def cost_basis(self) -> Decimal:
        """Basis per unit over the snapshots walked so far, picked the way P/L picks it."""
        if self.basis_index != self.index:
            self.basis = basis_per_unit(select_basis_snapshot(self.snapshots[:self.index + 1]))
            self.basis_index = self.index
        return self.basis


class NetWorthService:
    """
    Net worth reports in a target currency.

    Example:
        service = NetWorthService(valuation, fx_service, price_service)
        total = await service.calculate_net_worth(db, user_id, "EUR")
        series = await service.net_worth_history(db, user_id, "EUR", days_back=90)
    """

    def __init__(
            self,
            valuation: PositionValuationService,
            fx_service: FXRateServiceProtocol,
            price_service: PositionPriceServiceProtocol | None = None,
    ) -> None:
        self._valuation = valuation
        self._fx = fx_service
        self._price_service = price_service

    # =========================================================================
    # POINT VALUE
    # =========================================================================

    async def calculate_net_worth(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            on: date | None = None,
    ) -> Decimal:
        """Net worth on a date (default today) in the target currency."""
        on = on or utc_today()
        positions = await load_user_positions(db, user_id, include_archived=True)
        if not positions:
            return ZERO

        valued = [v for v in await self._valuation.value_positions(db, user_id, positions, on) if v.snapshot]
        if not valued:
            return ZERO

        rates = await self._fx.get_rates(
            db, build_rate_requests({v.currency for v in valued} | {currency}, [on])
        )
        return sum(
            (convert_currency(v.signed_value, v.currency, currency, rates, on) for v in valued),
            ZERO,
        )

    async def net_worth_change(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            days_back: int = NET_WORTH_CHANGE_DAYS,
            today: date | None = None,
    ) -> NetWorthChange:
        """Net worth today versus days_back days ago."""
        current_date = today or utc_today()
        previous_date = current_date - timedelta(days=max(1, int(days_back)))

        # Same session: the two valuations run one after the other
        current = await self.calculate_net_worth(db, user_id, currency, current_date)
        previous = await self.calculate_net_worth(db, user_id, currency, previous_date)

        change = current - previous
        percentage = change / previous * HUNDRED if previous != ZERO else ZERO
        return NetWorthChange(
            currency=currency,
            current_date=current_date,
            previous_date=previous_date,
            current_value=current,
            previous_value=previous,
            absolute_change=change,
            percentage_change=percentage,
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def net_worth_history(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            days_back: int = NET_WORTH_HISTORY_DAYS,
            mode: NetWorthMode = NetWorthMode.GROSS,
            today: date | None = None,
    ) -> list[NetWorthPoint]:
        """
        Daily net worth for the last days_back days, ending today.

        Args:
            days_back: Number of points (at least 1)
            mode: GROSS or AFTER_CAPITAL_GAINS
            today: Last day of the series (default: current UTC day)
        """
        mode = NetWorthMode(mode)
        end = today or utc_today()
        total_days = max(1, int(days_back))
        dates = date_range(end - timedelta(days=total_days - 1), end)

        positions = await load_user_positions(db, user_id, include_archived=True)
        snapshots = await load_snapshots(db, user_id, (p.id for p in positions), end=end)
        active = [p for p in positions if snapshots.get(p.id)]
        if not active:
            return [NetWorthPoint(d, ZERO) for d in dates]

        earliest = min(snapshots[p.id][0].date for p in active)
        padding = [d for d in dates if d < earliest]
        processing = dates[len(padding):]
        if not processing:
            return [NetWorthPoint(d, ZERO) for d in dates]

        prices = await self._fetch_history_prices(db, active, snapshots, processing)
        rates = await self._fx.get_rates(
            db, build_rate_requests({p.currency for p in active} | {currency}, processing)
        )

        cursors = {p.id: _SnapshotCursor(snapshots[p.id]) for p in active}
        history = [NetWorthPoint(d, ZERO) for d in padding]

        for on in processing:
            total = ZERO
            tax_total = ZERO
            for position in active:
                cursor = cursors[position.id]
                snapshot = cursor.advance(on)
                if snapshot is None:
                    continue

                market = prices.get((position.id, on))
                unit_value = market if market is not None else snapshot.unit_value
                local_value = snapshot.quantity * unit_value
                signed = -local_value if position.type == PositionType.LIABILITY else local_value
                total += convert_currency(signed, position.currency, currency, rates, on)

                if mode == NetWorthMode.AFTER_CAPITAL_GAINS:
                    basis = cursor.cost_basis()
                    tax = calculate_capital_gains_tax(
                        position.type,
                        position.capital_gains_tax_rate,
                        local_value - basis * snapshot.quantity,
                    )
                    if tax > ZERO:
                        tax_total += convert_currency(tax, position.currency, currency, rates, on)

            history.append(NetWorthPoint(on, total - tax_total))

        logger.debug(
            f"Net worth history for user {user_id}: {len(history)} points, "
            f"{len(padding)} padded, mode={mode.value}"
        )
        return history

    async def _fetch_history_prices(
            self,
            db: AsyncSession,
            positions: list[Position],
            snapshots: dict[int, list[SnapshotState]],
            dates: list[date],
    ) -> dict[tuple[int, date], Decimal]:
        """Market prices only for days a market-linked position holds something."""
        if self._price_service is None:
            return {}

        eligible: set[tuple[int, date]] = set()
        for position in positions:
            if not is_market_linked(position):
                continue
            cursor = _SnapshotCursor(snapshots[position.id])
            for on in dates:
                snapshot = cursor.advance(on)
                if snapshot is not None and snapshot.quantity > ZERO:
                    eligible.add((position.id, on))

        if not eligible:
            return {}

        priced_ids = {position_id for position_id, _ in eligible}
        priced_dates = sorted({on for _, on in eligible})
        try:
            prices = await self._price_service.get_position_prices(
                db, [p for p in positions if p.id in priced_ids], priced_dates
            )
        except MarketDataError as e:
            logger.warning(f"Market prices unavailable for net worth history: {e}")
            return {}
        return {key: price for key, price in prices.items() if key in eligible}
