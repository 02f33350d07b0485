# backend/tracker/services/analytics/allocation.py
"""
Asset allocation breakdowns.

Active asset positions only (liabilities and archived positions are not
part of an allocation), valued as of a date and converted to the report
currency. Slices are sorted by value, largest first; shares are fractions
of the breakdown total.
"""

from collections import defaultdict
from collections.abc import Callable
from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import PositionCategory, PositionType
from tracker.services.analytics.types import AllocationBreakdown, AllocationSlice
from tracker.services.constants import ZERO
from tracker.services.currency import build_rate_requests, convert_currency
from tracker.services.protocols import FXRateServiceProtocol
from tracker.services.valuation import PositionValuationService, ValuedPosition, load_user_positions
from tracker.utils.date_utils import utc_today

UNCATEGORIZED_KEY = "uncategorized"
UNCATEGORIZED_LABEL = "Uncategorized"


class AllocationService:
    """
    Allocation by category and by currency.

    Example:
        service = AllocationService(valuation, fx_service)
        breakdown = await service.by_category(db, user_id, "USD")
        for s in breakdown.slices:
            print(s.label, s.share)
    """

    def __init__(self, valuation: PositionValuationService, fx_service: FXRateServiceProtocol) -> None:
        self._valuation = valuation
        self._fx = fx_service

    async def by_category(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            on: date | None = None,
    ) -> AllocationBreakdown:
        on = on or utc_today()
        result = await db.execute(
            select(PositionCategory.id, PositionCategory.name).where(
                or_(PositionCategory.user_id.is_(None), PositionCategory.user_id == user_id)
            )
        )
        names = {category_id: name for category_id, name in result.all()}

        def group(v: ValuedPosition) -> tuple[str, str]:
            category_id = v.position.category_id
            if category_id is None or category_id not in names:
                return UNCATEGORIZED_KEY, UNCATEGORIZED_LABEL
            return str(category_id), names[category_id]

        return await self._breakdown(db, user_id, currency, on, group)

    async def by_currency(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            on: date | None = None,
    ) -> AllocationBreakdown:
        on = on or utc_today()
        return await self._breakdown(db, user_id, currency, on, lambda v: (v.currency, v.currency))

    async def _breakdown(
            self,
            db: AsyncSession,
            user_id: int,
            currency: str,
            on: date,
            group: Callable[[ValuedPosition], tuple[str, str]],
    ) -> AllocationBreakdown:
        positions = await load_user_positions(
            db, user_id, include_archived=False, position_type=PositionType.ASSET
        )
        valued = [
            v for v in await self._valuation.value_positions(db, user_id, positions, on)
            if v.current_value > ZERO
        ]
        if not valued:
            return AllocationBreakdown(currency=currency, as_of=on, total=ZERO)

        rates = await self._fx.get_rates(
            db, build_rate_requests({v.currency for v in valued} | {currency}, [on])
        )

        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[str, int] = defaultdict(int)
        labels: dict[str, str] = {}
        for v in valued:
            key, label = group(v)
            totals[key] += convert_currency(v.current_value, v.currency, currency, rates, on)
            counts[key] += 1
            labels[key] = label

        total = sum(totals.values(), ZERO)
        slices = sorted(
            (
                AllocationSlice(
                    key=key,
                    label=labels[key],
                    value=value,
                    share=value / total if total > ZERO else ZERO,
                    position_count=counts[key],
                )
                for key, value in totals.items()
            ),
            key=lambda s: (-s.value, s.label),
        )
        return AllocationBreakdown(currency=currency, as_of=on, total=total, slices=tuple(slices))
