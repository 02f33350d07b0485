# backend/tracker/services/analytics/performance.py
"""
Per-position performance: current value against cost basis.

Uses the unrealized P/L of each active asset position (see
tracker.services.profit_loss) and converts the amounts to the report
currency for the totals.
"""

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PositionType
from tracker.services.analytics.types import PerformanceReport, PositionPerformance
from tracker.services.constants import ZERO
from tracker.services.currency import build_rate_requests, convert_currency
from tracker.services.protocols import FXRateServiceProtocol
from tracker.services.valuation import PositionValuationService, load_user_positions
from tracker.utils.date_utils import utc_today


class PerformanceService:
    def __init__(self, valuation: PositionValuationService, fx_service: FXRateServiceProtocol) -> None:
        self._valuation = valuation
        self._fx = fx_service

    async def get_performance(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            on: date | None = None,
    ) -> PerformanceReport:
        """
        Performance of every active asset position holding a quantity.

        Positions are ordered by converted profit/loss, best first.
        """
        on = on or utc_today()
        positions = await load_user_positions(
            db, user_id, include_archived=False, position_type=PositionType.ASSET
        )
        valued = [
            v for v in await self._valuation.value_positions(db, user_id, positions, on)
            if v.current_quantity > ZERO
        ]
        if not valued:
            return PerformanceReport(currency=currency, as_of=on)

        rates = await self._fx.get_rates(
            db, build_rate_requests({v.currency for v in valued} | {currency}, [on])
        )

        rows = []
        for v in valued:
            pl = v.profit_loss
            rows.append(PositionPerformance(
                position_id=v.position_id,
                name=v.position.name,
                currency=v.currency,
                quantity=v.current_quantity,
                current_value=v.current_value,
                total_cost_basis=pl.total_cost_basis,
                profit_loss=pl.profit_loss,
                profit_loss_percentage=pl.profit_loss_percentage,
                converted_value=convert_currency(v.current_value, v.currency, currency, rates, on),
                converted_cost_basis=convert_currency(pl.total_cost_basis, v.currency, currency, rates, on),
                converted_profit_loss=convert_currency(pl.profit_loss, v.currency, currency, rates, on),
            ))
        rows.sort(key=lambda r: (-r.converted_profit_loss, r.position_id))

        total_value = sum((r.converted_value for r in rows), ZERO)
        total_cost = sum((r.converted_cost_basis for r in rows), ZERO)
        total_pl = total_value - total_cost
        return PerformanceReport(
            currency=currency,
            as_of=on,
            positions=tuple(rows),
            total_value=total_value,
            total_cost_basis=total_cost,
            total_profit_loss=total_pl,
            total_profit_loss_percentage=total_pl / total_cost if total_cost > ZERO else ZERO,
        )
