# backend/tracker/services/analytics/projected_income.py
"""
Projected dividend income.

For every active asset position with a symbol, an annual dividend per unit
is resolved from the provider figures and the observed payouts, then
spread over the coming months according to the payment frequency.

Annual amount per unit, first rule that gives a positive number:
    1. Provider trailing (TTM) amount, when there are no payouts in the
       last year or it is within +/-10% of their sum
    2. Sum of the payouts in the last year
    3. Provider forward amount
    4. Provider TTM amount (even when off from the payouts)
    5. dividend yield * current unit value

Monthly distribution (month m, last payment month L):
    monthly     annual / 12 every month
    quarterly   annual / 4 when (m - L) mod 3 == 0
    semiannual  annual / 2 when (m - L) mod 6 == 0
    annual      annual in month L only
    irregular   annual / 12 every month (also when L is unknown)

Payouts are in the currency of the latest dividend event (else the
position's) and converted with today's rates. A payout whose rate is
missing is left out and the result carries a message saying so.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PositionType
from tracker.services.analytics.types import MonthlyIncome, ProjectedIncome
from tracker.services.constants import DIVIDEND_TTM_TOLERANCE, ONE, PROJECTED_INCOME_MONTHS, ZERO
from tracker.services.currency import build_rate_requests, try_convert_currency
from tracker.services.market_data.base import DividendSummary
from tracker.services.market_data.dividends import DividendFrequency, detect_frequency
from tracker.services.protocols import DividendServiceProtocol, FXRateServiceProtocol
from tracker.services.valuation import PositionValuationService, load_user_positions
from tracker.utils.date_utils import add_months, month_start, utc_today

logger = logging.getLogger(__name__)

MESSAGE_NO_MARKET_POSITIONS = "No positions with market data found"
MESSAGE_NO_DIVIDEND_PAYERS = "No dividend-paying positions found in your portfolio"
MESSAGE_MISSING_FX = "Some payouts were omitted due to missing FX rates."


@dataclass(frozen=True)
class DividendProjectionBasis:
    """Annual dividend per unit and how it is paid out over the year."""
    annual_amount: Decimal
    frequency: DividendFrequency
    last_payment_month: int | None  # 1-12
    currency: str


def resolve_annual_dividend(
        summary: DividendSummary,
        today: date,
        current_unit_value: Decimal | None = None,
) -> Decimal:
    """Annual dividend per unit (0 when nothing usable is known)."""
    one_year_ago = add_months(today, -12)
    event_sum = sum((e.amount for e in summary.events if e.date >= one_year_ago), ZERO)
    has_events = event_sum > ZERO

    ttm = summary.trailing_annual_dividend or ZERO
    forward = summary.forward_annual_dividend or ZERO

    if ttm > ZERO and has_events:
        ttm_within_tolerance = (
            event_sum * (ONE - DIVIDEND_TTM_TOLERANCE) <= ttm <= event_sum * (ONE + DIVIDEND_TTM_TOLERANCE)
        )
    else:
        ttm_within_tolerance = True

    if ttm > ZERO and ttm_within_tolerance:
        annual = ttm
    elif has_events:
        annual = event_sum
    elif forward > ZERO:
        annual = forward
    else:
        annual = ttm

    if annual <= ZERO:
        dividend_yield = summary.dividend_yield or ZERO
        if dividend_yield > ZERO and current_unit_value and current_unit_value > ZERO:
            annual = dividend_yield * current_unit_value

    return annual if annual > ZERO else ZERO


def build_projection_basis(
        summary: DividendSummary,
        today: date,
        fallback_currency: str,
        current_unit_value: Decimal | None = None,
) -> DividendProjectionBasis | None:
    annual = resolve_annual_dividend(summary, today, current_unit_value)
    if annual <= ZERO:
        return None

    latest = max(summary.events, key=lambda e: e.date) if summary.events else None
    return DividendProjectionBasis(
        annual_amount=annual,
        frequency=detect_frequency(summary.events),
        last_payment_month=latest.date.month if latest else None,
        currency=(latest.currency if latest and latest.currency else fallback_currency).upper(),
    )


def monthly_dividend(month: date, basis: DividendProjectionBasis) -> Decimal:
    """Dividend per unit expected in the month containing `month`."""
    annual = basis.annual_amount
    if annual <= ZERO:
        return ZERO

    last = basis.last_payment_month
    if last is None or basis.frequency in (DividendFrequency.MONTHLY, DividendFrequency.IRREGULAR):
        return annual / 12

    months_since_last = (month.month - last) % 12
    if basis.frequency == DividendFrequency.QUARTERLY:
        return annual / 4 if months_since_last % 3 == 0 else ZERO
    if basis.frequency == DividendFrequency.SEMIANNUAL:
        return annual / 2 if months_since_last % 6 == 0 else ZERO
    # ANNUAL
    return annual if month.month == last else ZERO


class ProjectedIncomeService:
    """
    Monthly projected dividend income in a target currency.

    Example:
        service = ProjectedIncomeService(valuation, dividend_service, fx_service)
        projection = await service.project(db, user_id, "EUR", months_ahead=12)
    """

    def __init__(
            self,
            valuation: PositionValuationService,
            dividends: DividendServiceProtocol,
            fx_service: FXRateServiceProtocol,
    ) -> None:
        self._valuation = valuation
        self._dividends = dividends
        self._fx = fx_service

    async def project(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            months_ahead: int = PROJECTED_INCOME_MONTHS,
            today: date | None = None,
    ) -> ProjectedIncome:
        today = today or utc_today()
        positions = [
            p for p in await load_user_positions(
                db, user_id, include_archived=False, position_type=PositionType.ASSET
            )
            if p.symbol
        ]
        if not positions:
            return ProjectedIncome(currency=currency, message=MESSAGE_NO_MARKET_POSITIONS)

        valued = await self._valuation.value_positions(db, user_id, positions, today)
        summaries = await self._dividends.get_dividend_summaries({p.symbol for p in positions}, today=today)

        bases: dict[int, DividendProjectionBasis] = {}
        quantities: dict[int, Decimal] = {}
        for v in valued:
            summary = summaries.get(v.position.symbol.strip().upper())
            if summary is None or not summary.has_dividend_data:
                continue
            basis = build_projection_basis(summary, today, v.currency, v.current_unit_value)
            if basis is not None:
                bases[v.position_id] = basis
                quantities[v.position_id] = v.current_quantity

        if not bases:
            return ProjectedIncome(currency=currency, message=MESSAGE_NO_DIVIDEND_PAYERS)

        rates = await self._fx.get_rates(
            db, build_rate_requests({b.currency for b in bases.values()} | {currency}, [today])
        )

        months = self._months(today, months_ahead)
        by_position: dict[int, list[Decimal]] = {position_id: [] for position_id in bases}
        missing_fx: set[tuple[int, str]] = set()
        totals = []
        for month in months:
            month_total = ZERO
            for position_id, basis in bases.items():
                income = monthly_dividend(month, basis) * quantities[position_id]
                converted = try_convert_currency(income, basis.currency, currency, rates, today)
                if converted is None:
                    missing_fx.add((position_id, basis.currency))
                    converted = ZERO
                by_position[position_id].append(converted)
                month_total += converted
            totals.append(MonthlyIncome(month=month, income=month_total))

        message = None
        if missing_fx:
            logger.warning(
                f"Projected income for user {user_id}: missing FX rates to {currency} on {today} "
                f"for {sorted(missing_fx)}"
            )
            message = MESSAGE_MISSING_FX

        return ProjectedIncome(
            currency=currency,
            months=tuple(totals),
            message=message,
            by_position={position_id: tuple(values) for position_id, values in by_position.items()},
        )

    @staticmethod
    def _months(today: date, months_ahead: int) -> Sequence[date]:
        first = month_start(today)
        return [add_months(first, i) for i in range(max(0, int(months_ahead)))]
