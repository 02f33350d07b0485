# backend/tracker/services/fx_rate_service.py
"""
FX Rate Service for fetching and caching USD-based exchange rates.

This service handles:
- Batched rate lookups keyed "CUR|YYYY-MM-DD" for the currency converter
- Caching rates in the exchange_rates table
- Reusing the latest cached rate within a stale guard window
- Fetching missing rates from the market data provider, one call per currency

=============================================================================
FX RATE CONVENTION (IMPORTANT!)
=============================================================================

Every stored rate is quoted against USD:

    rate = "1 USD = X target_currency"

Example:
    target_currency = "EUR"
    rate = 0.92

    Meaning: 1 USD = 0.92 EUR

USD itself is always 1. Converting between two non-USD currencies goes
through USD (see tracker.services.currency.convert_currency):

    amount_in_target = amount / rate[source] * rate[target]

=============================================================================
EFFECTIVE DATE
=============================================================================

Today's close is only expected after the daily cutoff hour (22:00 UTC by
default). A request for today made before the cutoff is served with the
previous day's rate. Results are still keyed by the requested date.

Rates fetched from the provider are stored under the date of the close they
come from, never under the requested date, so a weekend request does not
create a synthetic weekend row.

=============================================================================

Design Principles:
- Single Responsibility: Only handles FX rate lookup and caching
- No HTTP Knowledge: Logs and degrades, never raises HTTPException
- Financial Precision: Uses Decimal for all rates

Usage:
    from tracker.services.fx_rate_service import FXRateService

    service = FXRateService(YahooFinanceProvider())
    rates = await service.get_rates(db, [("EUR", date(2024, 3, 1))])
    rates["EUR|2024-03-01"]  # Decimal("0.92...")
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import ExchangeRate
from tracker.services.constants import ONE
from tracker.services.currency import rate_key
from tracker.services.exceptions import FXProviderError, MarketDataError
from tracker.services.market_data.base import MarketDataProvider
from tracker.utils.sql import upsert_rows

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"


def clamp_stale_guard_days(value: float) -> int:
    """Whole, non-negative number of days."""
    return max(0, int(value))


def clamp_cutoff_hour(value: int) -> int:
    return min(23, max(0, int(value)))


def resolve_effective_date(requested: date, cutoff_hour_utc: int, now: datetime | None = None) -> date:
    """
    Date whose rate answers a request for `requested`.

    Only a request for the current UTC day made before the cutoff hour is
    shifted, to the previous day.

    Example:
        >>> resolve_effective_date(date(2026, 2, 17), 22, datetime(2026, 2, 17, 21, 59, tzinfo=timezone.utc))
        date(2026, 2, 16)
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    if requested == now.date() and now.hour < clamp_cutoff_hour(cutoff_hour_utc):
        return requested - timedelta(days=1)
    return requested


# =============================================================================
# FX RATE SERVICE
# =============================================================================

class FXRateService:
    """
    USD-based exchange rates with a database cache.

    Lookup order for each (currency, date) request:
        1. Cached row for the effective date
        2. Latest cached row within stale_guard_days before it
        3. Provider closes, fetched once per currency over all misses

    Missing rates are left out of the result; the converter logs them and
    leaves amounts unconverted.

    Example:
        service = FXRateService(provider, stale_guard_days=7, cutoff_hour_utc=22)
        rates = await service.get_rates(db, [("EUR", d1), ("GBP", d1)])
    """

    # Days before the earliest miss requested from the provider
    FETCH_LOOKBACK_DAYS: int = 7

    def __init__(
            self,
            provider: MarketDataProvider | None,
            stale_guard_days: int = 7,
            cutoff_hour_utc: int = 22,
            clock=None,
    ) -> None:
        """
        Args:
            provider: Market data provider for live rates (None = cache only)
            stale_guard_days: Days a cached rate may stand in for a missing date
            cutoff_hour_utc: Hour (UTC) after which today's close is expected
            clock: Callable returning the current aware datetime (tests)
        """
        self._provider = provider
        self._stale_guard_days = clamp_stale_guard_days(stale_guard_days)
        self._cutoff_hour_utc = clamp_cutoff_hour(cutoff_hour_utc)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info(
            f"FXRateService initialized (provider={provider.name if provider else None}, "
            f"stale_guard_days={self._stale_guard_days}, cutoff_hour_utc={self._cutoff_hour_utc})"
        )

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    async def get_rates(
            self,
            db: AsyncSession,
            requests: Iterable[tuple[str, date]],
    ) -> dict[str, Decimal]:
        """
        Rates for (currency, date) pairs.

        Returns:
            {"CUR|YYYY-MM-DD": rate} keyed by the requested date. USD is
            always present with rate 1 when requested.
        """
        now = self._clock()
        results: dict[str, Decimal] = {}
        # requested key -> (currency, effective date)
        pending: dict[str, tuple[str, date]] = {}

        for currency, requested in requests:
            currency = (currency or "").strip().upper()
            if not currency:
                continue
            key = rate_key(currency, requested)
            if currency == BASE_CURRENCY:
                results[key] = ONE
                continue
            pending[key] = (currency, resolve_effective_date(requested, self._cutoff_hour_utc, now))

        if not pending:
            return results

        cached = await self._load_cached(db, pending.values())
        misses: dict[str, tuple[str, date]] = {}
        for key, (currency, effective) in pending.items():
            rate = self._latest_within_guard(cached.get(currency, {}), effective)
            if rate is not None:
                results[key] = rate
            else:
                misses[key] = (currency, effective)

        if not misses or self._provider is None:
            if misses:
                logger.warning(f"No FX rates for {len(misses)} requests (provider disabled)")
            return results

        fetched = await self._fetch_missing(misses.values())
        await self._store_rates(db, fetched)

        for key, (currency, effective) in misses.items():
            rate = self._latest_on_or_before(fetched.get(currency, {}), effective)
            if rate is not None:
                results[key] = rate
            else:
                logger.warning(f"FX rate unavailable for {currency} on {effective}")

        return results

    # =========================================================================
    # PRIVATE METHODS - Database
    # =========================================================================

    async def _load_cached(
            self,
            db: AsyncSession,
            requests: Iterable[tuple[str, date]],
    ) -> dict[str, dict[date, Decimal]]:
        """Cached rows covering every request plus its stale guard window."""
        by_currency: dict[str, list[date]] = defaultdict(list)
        for currency, effective in requests:
            by_currency[currency].append(effective)

        earliest = min(min(dates) for dates in by_currency.values()) - timedelta(days=self._stale_guard_days)
        latest = max(max(dates) for dates in by_currency.values())

        result = await db.execute(
            select(ExchangeRate.target_currency, ExchangeRate.date, ExchangeRate.rate).where(
                ExchangeRate.base_currency == BASE_CURRENCY,
                ExchangeRate.target_currency.in_(sorted(by_currency)),
                ExchangeRate.date >= earliest,
                ExchangeRate.date <= latest,
            )
        )
        cached: dict[str, dict[date, Decimal]] = defaultdict(dict)
        for currency, rate_date, rate in result.all():
            cached[currency][rate_date] = rate
        return cached

    def _latest_within_guard(self, rates: dict[date, Decimal], effective: date) -> Decimal | None:
        if effective in rates:
            return rates[effective]
        for days_back in range(1, self._stale_guard_days + 1):
            candidate = effective - timedelta(days=days_back)
            if candidate in rates:
                return rates[candidate]
        return None

    @staticmethod
    def _latest_on_or_before(rates: dict[date, Decimal], effective: date) -> Decimal | None:
        eligible = [d for d in rates if d <= effective]
        return rates[max(eligible)] if eligible else None

    async def _store_rates(self, db: AsyncSession, fetched: dict[str, dict[date, Decimal]]) -> None:
        rows = [
            {
                "base_currency": BASE_CURRENCY,
                "target_currency": currency,
                "date": rate_date,
                "rate": rate,
                "provider": self._provider.name,
            }
            for currency, rates in fetched.items()
            for rate_date, rate in rates.items()
        ]
        written = await upsert_rows(
            db,
            ExchangeRate,
            rows,
            ["base_currency", "target_currency", "date"],
            ["rate", "provider"],
        )
        if written:
            logger.debug(f"Cached {written} FX rates")

    # =========================================================================
    # PRIVATE METHODS - Market Data Provider
    # =========================================================================

    async def _fetch_missing(self, misses: Iterable[tuple[str, date]]) -> dict[str, dict[date, Decimal]]:
        by_currency: dict[str, list[date]] = defaultdict(list)
        for currency, effective in misses:
            by_currency[currency].append(effective)

        currencies = sorted(by_currency)
        fetched = await asyncio.gather(
            *(self._fetch_currency(c, min(by_currency[c]), max(by_currency[c])) for c in currencies),
            return_exceptions=True,
        )

        rates: dict[str, dict[date, Decimal]] = {}
        for currency, outcome in zip(currencies, fetched):
            if isinstance(outcome, FXProviderError):
                logger.warning(str(outcome))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            rates[currency] = outcome
        return rates

    async def _fetch_currency(self, currency: str, start: date, end: date) -> dict[date, Decimal]:
        """
        Daily USD -> currency closes between start - FETCH_LOOKBACK_DAYS and end.

        Raises:
            FXProviderError: If the provider fails
        """
        fetch_start = start - timedelta(days=max(self.FETCH_LOOKBACK_DAYS, self._stale_guard_days))
        logger.debug(f"Fetching {currency} rates from {self._provider.name}: {fetch_start} to {end}")
        try:
            result = await asyncio.to_thread(self._provider.get_fx_history, currency, fetch_start, end)
        except MarketDataError as e:
            raise FXProviderError(provider=self._provider.name, reason=f"Failed to fetch {currency}: {e}")

        return {ohlcv.date: ohlcv.close for ohlcv in result.prices if ohlcv.close > 0}
