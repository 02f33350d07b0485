# backend/tracker/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- Existing classes satisfy protocols without modification
- Test fakes work without explicit inheritance
- Clear documentation of required interfaces
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from tracker.models import Position
    from tracker.services.market_data.base import DividendSummary


class PositionPriceServiceProtocol(Protocol):
    """Interface required by SnapshotRecalculator and the valuation aggregators."""

    async def get_position_prices(
        self,
        db: AsyncSession,
        positions: Sequence[Position],
        dates: Iterable[date],
    ) -> dict[tuple[int, date], Decimal]:
        ...


class FXRateServiceProtocol(Protocol):
    """Interface required by the analytics services."""

    async def get_rates(
        self,
        db: AsyncSession,
        requests: Iterable[tuple[str, date]],
    ) -> dict[str, Decimal]:
        ...


class DividendServiceProtocol(Protocol):
    """Interface required by ProjectedIncomeService."""

    async def get_dividend_summaries(
        self,
        symbols: Iterable[str],
        today: date | None = None,
    ) -> dict[str, DividendSummary]:
        ...
