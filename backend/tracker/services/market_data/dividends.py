# backend/tracker/services/market_data/dividends.py
"""
Dividend data for projected income.

Fetches the last DIVIDEND_HISTORY_YEARS of dividend events plus the
provider's summary figures per symbol, concurrently, and classifies the
payment frequency from the gaps between events.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import date
from enum import Enum

from tracker.services.exceptions import MarketDataError
from tracker.services.market_data.base import DividendEvent, DividendSummary, MarketDataProvider
from tracker.utils.date_utils import add_months, months_between, utc_today

logger = logging.getLogger(__name__)

DIVIDEND_HISTORY_YEARS = 3


class DividendFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
    IRREGULAR = "irregular"


def detect_frequency(events: Sequence[DividendEvent]) -> DividendFrequency:
    """
    Classify the payment schedule from the average gap between events.

    Gaps are counted in calendar months. Fewer than two events is irregular.
    """
    if len(events) < 2:
        return DividendFrequency.IRREGULAR

    ordered = sorted(events, key=lambda e: e.date)
    gaps = [months_between(prev.date, curr.date) for prev, curr in zip(ordered, ordered[1:])]
    average = sum(gaps) / len(gaps)

    if average <= 1.5:
        return DividendFrequency.MONTHLY
    if average <= 4:
        return DividendFrequency.QUARTERLY
    if average <= 7:
        return DividendFrequency.SEMIANNUAL
    if average <= 13:
        return DividendFrequency.ANNUAL
    return DividendFrequency.IRREGULAR


class DividendService:
    """Concurrent dividend summaries from a MarketDataProvider (None: market data disabled)."""

    def __init__(self, provider: MarketDataProvider | None) -> None:
        self._provider = provider

    async def get_dividend_summaries(
            self,
            symbols: Iterable[str],
            today: date | None = None,
    ) -> dict[str, DividendSummary]:
        """
        Dividend summary per symbol (upper-cased keys).

        Symbols the provider fails on are logged and left out.
        """
        if self._provider is None:
            return {}
        unique = sorted({s.strip().upper() for s in symbols if s and s.strip()})
        if not unique:
            return {}

        today = today or utc_today()
        start = add_months(today, -12 * DIVIDEND_HISTORY_YEARS)

        summaries = await asyncio.gather(*(self._fetch(symbol, start) for symbol in unique))
        return {symbol: summary for symbol, summary in zip(unique, summaries) if summary is not None}

    async def _fetch(self, symbol: str, start: date) -> DividendSummary | None:
        try:
            return await asyncio.to_thread(self._provider.get_dividend_summary, symbol, start)
        except MarketDataError as e:
            logger.warning(f"Dividend data unavailable for {symbol}: {e}")
            return None
