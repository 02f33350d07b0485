# backend/tracker/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that all market data providers must follow.
Using an abstract base class allows for:
- Easy addition of new providers
- Mock implementations for testing
- Consistent retry behavior across all providers

Providers are synchronous (yfinance is); async services call them through
asyncio.to_thread and fan the calls out with asyncio.gather.

Design Principles:
- Interface Segregation: Only essential methods in the base class
- Dependency Inversion: Services depend on abstractions, not concrete implementations
- DRY: Common retry logic implemented once in base class
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TypeVar, Callable, Any

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from tracker.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# Type variable for generic return type in retry method
T = TypeVar('T')


# =============================================================================
# DATA CLASSES - PRICE DATA (OHLCV)
# =============================================================================

@dataclass(frozen=True)
class OHLCVData:
    """
    Single day's OHLCV (Open, High, Low, Close, Volume) price data.

    Attributes:
        date: Trading date (no time component)
        open: Opening price
        high: Highest price during the day
        low: Lowest price during the day
        close: Closing price (primary valuation price)
        volume: Trading volume
        adjusted_close: Close adjusted for splits/dividends (optional)
    """

    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int | None = None
    adjusted_close: Decimal | None = None

    def __post_init__(self) -> None:
        """Validate price data."""
        if self.close <= 0:
            raise ValueError(f"close price must be positive, got {self.close}")
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) cannot be less than low ({self.low})")

    @property
    def valuation_price(self) -> Decimal:
        """Adjusted close when the provider has one, otherwise close."""
        if self.adjusted_close is not None and self.adjusted_close > 0:
            return self.adjusted_close
        return self.close


@dataclass
class HistoricalPricesResult:
    """
    Result of fetching historical prices for one symbol.

    Attributes:
        symbol: The provider symbol requested (e.g. "AAPL", "USDEUR=X")
        prices: OHLCV data points in ascending date order (empty if failed)
        success: Whether the fetch was successful
        error: Error message if fetch failed
        from_date: Requested start date
        to_date: Requested end date
    """

    symbol: str
    prices: list[OHLCVData] = field(default_factory=list)
    success: bool = True
    error: str | None = None
    from_date: date | None = None
    to_date: date | None = None

    @property
    def days_fetched(self) -> int:
        return len(self.prices)


# =============================================================================
# DATA CLASSES - DIVIDENDS
# =============================================================================

@dataclass(frozen=True)
class DividendEvent:
    """One paid dividend (gross amount per unit)."""

    date: date
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class DividendSummary:
    """
    Provider dividend figures for one symbol.

    Attributes:
        symbol: Provider symbol
        currency: Currency the symbol trades/pays in
        events: Dividend history, ascending by date
        trailing_annual_dividend: Provider TTM amount per unit
        forward_annual_dividend: Provider forward (indicated) amount per unit
        dividend_yield: Annual yield as a decimal (0.04 = 4%)
    """

    symbol: str
    currency: str
    events: tuple[DividendEvent, ...] = ()
    trailing_annual_dividend: Decimal | None = None
    forward_annual_dividend: Decimal | None = None
    dividend_yield: Decimal | None = None

    @property
    def has_dividend_data(self) -> bool:
        return bool(
            self.events
            or self.trailing_annual_dividend
            or self.forward_annual_dividend
            or self.dividend_yield
        )


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        `_execute_with_retry` implements exponential backoff. Subclasses can
        override the configuration with class attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Retryable Exceptions:
        - ProviderUnavailableError: Network issues, timeouts, server errors
        - RateLimitError: API rate limit exceeded

    Non-Retryable Exceptions:
        - TickerNotFoundError: Permanent failure (symbol doesn't exist)
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    # FX quotes are "1 USD = X CUR" pairs, e.g. USDEUR=X
    FX_BASE_CURRENCY: str = "USD"

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g. "yahoo")."""
        pass

    @abstractmethod
    def get_historical_prices(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """
        Fetch daily OHLCV data for one symbol.

        Args:
            symbol: Provider symbol (e.g. "AAPL", "VWCE.DE")
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Raises:
            TickerNotFoundError: Symbol unknown to the provider
            ProviderUnavailableError: Network or API error (retryable)
            RateLimitError: Rate limit exceeded (retryable)
        """
        pass

    @abstractmethod
    def get_dividend_summary(self, symbol: str, start_date: date) -> DividendSummary:
        """
        Fetch dividend history since start_date and the provider's summary figures.

        Raises:
            TickerNotFoundError: Symbol unknown to the provider
            ProviderUnavailableError: Network or API error (retryable)
        """
        pass

    def fx_symbol(self, currency: str) -> str:
        """Provider symbol quoting 1 USD in `currency`."""
        return f"{self.FX_BASE_CURRENCY}{currency.upper()}=X"

    def get_fx_history(self, currency: str, start_date: date, end_date: date) -> HistoricalPricesResult:
        """
        Fetch daily USD -> currency closes.

        Default implementation reads the FX pair as a regular symbol.
        """
        return self.get_historical_prices(self.fx_symbol(currency), start_date, end_date)

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function with retry logic for transient failures.

        Uses exponential backoff for ProviderUnavailableError and
        RateLimitError. Everything else (TickerNotFoundError included)
        propagates immediately.

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
