# backend/tracker/services/market_data/price_service.py
"""
Cached as-of price lookups for market-linked positions.

Three layers:

    QuoteService            symbol prices, cached in `quotes`
    DomainValuationService  domain valuations, cached in `domain_valuations`
    MarketPriceService      routes each position to its source and answers
                            {(position_id, date): price}

Keys returned by the first two follow the "ID|YYYY-MM-DD" convention used
for FX rates as well (see tracker.services.currency.rate_key).

Quote cache policy:
    1. Exact (symbol, date) rows from the cache.
    2. Misses are grouped per symbol and fetched once over
       [earliest - PRICE_LOOKBACK_DAYS, latest]; each requested date takes
       the latest close on or before it (weekends and holidays resolve to
       the previous trading day).
    3. Symbols are fetched concurrently (yfinance runs in worker threads),
       then every resolved (symbol, date) is written back to the cache.

A symbol the provider cannot serve is logged and left out of the result;
callers treat a missing key as "price unavailable".

Usage:
    quotes = QuoteService(YahooFinanceProvider())
    prices = await quotes.get_prices(db, [("AAPL", date(2024, 3, 1))])
    prices["AAPL|2024-03-01"]
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import DomainValuation, Position, PriceSourceType, Quote
from tracker.services.exceptions import MarketDataError
from tracker.services.market_data.base import MarketDataProvider, OHLCVData
from tracker.services.market_data.domains import DomainValuationProvider
from tracker.utils.date_utils import utc_today
from tracker.utils.sql import upsert_rows

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7


def price_key(identifier: str, on: date) -> str:
    """Cache key "ID|YYYY-MM-DD"."""
    return f"{identifier}|{on.isoformat()}"


def walk_forward(closes: Sequence[OHLCVData], dates: Sequence[date]) -> dict[date, Decimal]:
    """
    Resolve each date to the latest close on or before it.

    Both inputs must be ascending. Dates before the first close get nothing.
    """
    resolved: dict[date, Decimal] = {}
    pointer = 0
    last_price: Decimal | None = None
    for target in dates:
        while pointer < len(closes) and closes[pointer].date <= target:
            last_price = closes[pointer].valuation_price
            pointer += 1
        if last_price is not None:
            resolved[target] = last_price
    return resolved


# =============================================================================
# SYMBOL QUOTES
# =============================================================================

class QuoteService:
    """Daily symbol prices backed by the `quotes` cache table."""

    def __init__(self, provider: MarketDataProvider, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> None:
        self._provider = provider
        self._lookback_days = lookback_days

    async def get_prices(
            self,
            db: AsyncSession,
            requests: Iterable[tuple[str, date]],
    ) -> dict[str, Decimal]:
        """
        Prices for (symbol, date) pairs.

        Returns:
            {"SYMBOL|YYYY-MM-DD": price} for every pair that resolved
        """
        wanted: dict[str, set[date]] = defaultdict(set)
        for symbol, on in requests:
            if symbol:
                wanted[symbol.strip().upper()].add(on)
        if not wanted:
            return {}

        results = await self._read_cache(db, wanted)

        missing: dict[str, list[date]] = {}
        for symbol, dates in wanted.items():
            todo = sorted(d for d in dates if price_key(symbol, d) not in results)
            if todo:
                missing[symbol] = todo
        if not missing:
            return results

        logger.debug(f"Quote cache miss for {len(missing)} symbols")
        fetched = await asyncio.gather(
            *(self._fetch_symbol(symbol, dates) for symbol, dates in missing.items())
        )

        rows = []
        today = utc_today()
        for symbol, prices in zip(missing, fetched):
            for on, price in prices.items():
                results[price_key(symbol, on)] = price
                if on <= today:
                    rows.append({"symbol": symbol, "date": on, "price": price, "provider": self._provider.name})

        await upsert_rows(db, Quote, rows, ["symbol", "date"], ["price", "provider"])
        return results

    async def _read_cache(self, db: AsyncSession, wanted: dict[str, set[date]]) -> dict[str, Decimal]:
        all_dates = set().union(*wanted.values())
        result = await db.execute(
            select(Quote.symbol, Quote.date, Quote.price).where(
                Quote.symbol.in_(list(wanted)),
                Quote.date.in_(sorted(all_dates)),
            )
        )
        return {
            price_key(symbol, on): price
            for symbol, on, price in result.all()
            if on in wanted[symbol]
        }

    async def _fetch_symbol(self, symbol: str, dates: list[date]) -> dict[date, Decimal]:
        start = dates[0] - timedelta(days=self._lookback_days)
        try:
            history = await asyncio.to_thread(self._provider.get_historical_prices, symbol, start, dates[-1])
        except MarketDataError as e:
            logger.warning(f"Failed to fetch prices for {symbol}: {e}")
            return {}
        return walk_forward(history.prices, dates)


# =============================================================================
# DOMAIN VALUATIONS
# =============================================================================

class DomainValuationService:
    """
    Domain valuations backed by the `domain_valuations` cache table.

    Cache policy:
        1. Exact (domain, date) rows.
        2. Missing requests for today are valued by the provider and cached.
        3. Anything else takes the cached valuation closest in time
           (before or after the requested date).
    """

    def __init__(self, provider: DomainValuationProvider) -> None:
        self._provider = provider

    async def get_prices(
            self,
            db: AsyncSession,
            requests: Iterable[tuple[str, date]],
            today: date | None = None,
    ) -> dict[str, Decimal]:
        today = today or utc_today()
        wanted: dict[str, set[date]] = defaultdict(set)
        for domain, on in requests:
            if domain:
                wanted[domain.strip().lower()].add(on)
        if not wanted:
            return {}

        all_dates = set().union(*wanted.values())
        cached = await db.execute(
            select(DomainValuation.domain, DomainValuation.date, DomainValuation.price).where(
                DomainValuation.domain.in_(list(wanted)),
                DomainValuation.date.in_(sorted(all_dates)),
            )
        )
        results = {price_key(domain, on): price for domain, on, price in cached.all()}

        missing = [
            (domain, on)
            for domain, dates in wanted.items()
            for on in sorted(dates)
            if price_key(domain, on) not in results
        ]
        if not missing:
            return results

        missing_today = sorted({domain for domain, on in missing if on == today})
        if missing_today:
            try:
                fetched = await self._provider.get_valuations(missing_today)
            except MarketDataError as e:
                logger.warning(f"Domain valuation failed for {len(missing_today)} domains: {e}")
                fetched = {}
            for domain, price in fetched.items():
                results[price_key(domain, today)] = price
            await upsert_rows(
                db,
                DomainValuation,
                [{"domain": domain, "date": today, "price": price} for domain, price in fetched.items()],
                ["domain", "date"],
                ["price"],
            )

        past = [(domain, on) for domain, on in missing if price_key(domain, on) not in results]
        if not past:
            return results

        history = await self._load_history(db, {domain for domain, _ in past})
        for domain, on in past:
            closest = self._closest(history.get(domain, []), on)
            if closest is not None:
                results[price_key(domain, on)] = closest
        return results

    @staticmethod
    async def _load_history(db: AsyncSession, domains: set[str]) -> dict[str, list[tuple[date, Decimal]]]:
        result = await db.execute(
            select(DomainValuation.domain, DomainValuation.date, DomainValuation.price)
            .where(DomainValuation.domain.in_(sorted(domains)))
            .order_by(DomainValuation.date.asc())
        )
        history: dict[str, list[tuple[date, Decimal]]] = defaultdict(list)
        for domain, on, price in result.all():
            history[domain].append((on, price))
        return history

    @staticmethod
    def _closest(entries: list[tuple[date, Decimal]], target: date) -> Decimal | None:
        # Earliest entry wins ties (entries are ascending)
        best: tuple[date, Decimal] | None = None
        for entry in entries:
            if best is None or abs((entry[0] - target).days) < abs((best[0] - target).days):
                best = entry
        return best[1] if best else None


# =============================================================================
# POSITION ROUTING
# =============================================================================

class MarketPriceService:
    """
    As-of market prices per position.

    Symbol positions read QuoteService, domain positions read
    DomainValuationService, manual positions never have a market price.
    Both sources are queried one after the other: they share the caller's
    AsyncSession, which does not allow concurrent use.
    """

    def __init__(
            self,
            quotes: QuoteService,
            domains: DomainValuationService | None = None,
    ) -> None:
        self._quotes = quotes
        self._domains = domains

    async def get_position_prices(
            self,
            db: AsyncSession,
            positions: Sequence[Position],
            dates: Iterable[date],
    ) -> dict[tuple[int, date], Decimal]:
        """Prices for every (position, date) pair; missing pairs are left out."""
        dates = sorted(set(dates))
        if not dates:
            return {}

        symbol_positions = [p for p in positions if p.price_source == PriceSourceType.SYMBOL]
        domain_positions = [p for p in positions if p.price_source == PriceSourceType.DOMAIN]

        results: dict[tuple[int, date], Decimal] = {}

        if symbol_positions:
            quotes = await self._quotes.get_prices(
                db, [(p.symbol, on) for p in symbol_positions for on in dates]
            )
            for position in symbol_positions:
                symbol = position.symbol.strip().upper()
                for on in dates:
                    price = quotes.get(price_key(symbol, on))
                    if price is not None:
                        results[(position.id, on)] = price

        if domain_positions and self._domains is not None:
            valuations = await self._domains.get_prices(
                db, [(p.domain, on) for p in domain_positions for on in dates]
            )
            for position in domain_positions:
                domain = position.domain.strip().lower()
                for on in dates:
                    price = valuations.get(price_key(domain, on))
                    if price is not None:
                        results[(position.id, on)] = price

        return results

    async def get_prices_by_position(
            self,
            db: AsyncSession,
            requests: Iterable[tuple[Position, date]],
    ) -> dict[tuple[int, date], Decimal]:
        """Like get_position_prices, but for an explicit list of (position, date) pairs."""
        by_date: dict[date, list[Position]] = defaultdict(list)
        for position, on in requests:
            by_date[on].append(position)
        positions = {p.id: p for group in by_date.values() for p in group}
        if not positions:
            return {}
        prices = await self.get_position_prices(db, list(positions.values()), by_date.keys())
        wanted = {(p.id, on) for on, group in by_date.items() for p in group}
        return {key: price for key, price in prices.items() if key in wanted}
