# backend/tracker/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance library.
Yahoo Finance is a free data source suitable for personal use.

Key features:
- Daily closes for any Yahoo symbol ("AAPL", "VWCE.DE", "BTC-USD")
- FX closes through currency pair symbols ("USDEUR=X" = EUR per 1 USD)
- Dividend history and summary figures for projected income
- Retry mechanism inherited from base class

Limitations:
- Rate limits (not officially documented, but exist)
- Data may be delayed (15-20 minutes for some markets)
"""

import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import pandas as pd
import yfinance as yf

from tracker.services.exceptions import (
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
)
from tracker.services.market_data.base import (
    DividendEvent,
    DividendSummary,
    MarketDataProvider,
    OHLCVData,
    HistoricalPricesResult,
)

logger = logging.getLogger(__name__)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Retry Behavior (inherited from MarketDataProvider):
        - Retries on ProviderUnavailableError and RateLimitError
        - Does NOT retry on TickerNotFoundError (permanent failure)
        - Uses exponential backoff: 1s → 2s → 4s

    Example:
        provider = YahooFinanceProvider()

        prices = provider.get_historical_prices("AAPL", date(2024, 1, 1), date(2024, 12, 31))
        print(f"Fetched {prices.days_fetched} days of data")

        eur = provider.get_fx_history("EUR", date(2024, 1, 1), date(2024, 1, 31))
    """

    def __init__(self, timeout: int = 10) -> None:
        """
        Initialize the Yahoo Finance provider.

        Args:
            timeout: Request timeout in seconds
        """
        self._timeout = timeout
        logger.info(f"YahooFinanceProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # HISTORICAL PRICE METHODS
    # =========================================================================

    def get_historical_prices(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """
        Fetch daily OHLCV price data from Yahoo Finance.

        Raises:
            TickerNotFoundError: If symbol not found
            ProviderUnavailableError: If Yahoo Finance unavailable
        """
        return self._execute_with_retry(
            self._fetch_historical_prices,
            symbol,
            start_date,
            end_date,
        )

    def _fetch_historical_prices(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> HistoricalPricesResult:
        """Internal method to fetch historical prices (called by retry wrapper)."""
        symbol = symbol.strip().upper()

        logger.debug(f"Fetching historical prices for {symbol}: {start_date} to {end_date}")

        result = HistoricalPricesResult(
            symbol=symbol,
            from_date=start_date,
            to_date=end_date,
        )

        try:
            yf_ticker = yf.Ticker(symbol)

            # Yahoo Finance end date is exclusive, so add 1 day
            yahoo_end = end_date + timedelta(days=1)

            df = yf_ticker.history(
                start=start_date.isoformat(),
                end=yahoo_end.isoformat(),
                interval="1d",
                auto_adjust=False,
                timeout=self._timeout,
            )

            if df.empty:
                # Markets closed for the whole range is not an error
                logger.warning(f"No price data for {symbol} between {start_date} and {end_date}")
                return result

            result.prices = self._dataframe_to_ohlcv(df)
            logger.debug(f"Fetched {len(result.prices)} days for {symbol}")
            return result

        except TickerNotFoundError:
            raise
        except Exception as e:
            raise self._map_error(symbol, e)

    # =========================================================================
    # DIVIDEND METHODS
    # =========================================================================

    def get_dividend_summary(self, symbol: str, start_date: date) -> DividendSummary:
        """
        Fetch dividend history and summary figures from Yahoo Finance.

        Raises:
            TickerNotFoundError: If symbol not found
            ProviderUnavailableError: If Yahoo Finance unavailable
        """
        return self._execute_with_retry(self._fetch_dividend_summary, symbol, start_date)

    def _fetch_dividend_summary(self, symbol: str, start_date: date) -> DividendSummary:
        symbol = symbol.strip().upper()
        logger.debug(f"Fetching dividends for {symbol} since {start_date}")

        try:
            yf_ticker = yf.Ticker(symbol)
            info = yf_ticker.info or {}
            dividends = yf_ticker.dividends
        except Exception as e:
            raise self._map_error(symbol, e)

        currency = (info.get("currency") or "USD").upper()
        events = []
        if dividends is not None and not dividends.empty:
            for idx, amount in dividends.items():
                event_date = pd.Timestamp(idx).date()
                value = self._to_decimal(amount)
                if event_date < start_date or value is None or value <= 0:
                    continue
                events.append(DividendEvent(date=event_date, amount=value, currency=currency))

        return DividendSummary(
            symbol=symbol,
            currency=currency,
            events=tuple(sorted(events, key=lambda e: e.date)),
            trailing_annual_dividend=self._to_decimal(info.get("trailingAnnualDividendRate")),
            forward_annual_dividend=self._to_decimal(info.get("dividendRate")),
            dividend_yield=self._resolve_yield(info),
        )

    def _resolve_yield(self, info: dict) -> Decimal | None:
        """Annual yield as a decimal; Yahoo reports dividendYield in percent."""
        trailing = self._to_decimal(info.get("trailingAnnualDividendYield"))
        if trailing is not None and trailing > 0:
            return trailing
        reported = self._to_decimal(info.get("dividendYield"))
        if reported is None or reported <= 0:
            return None
        return reported / Decimal("100") if reported > 1 else reported

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _map_error(self, symbol: str, error: Exception) -> Exception:
        error_str = str(error).lower()
        if "not found" in error_str or "no data" in error_str or "delisted" in error_str:
            return TickerNotFoundError(ticker=symbol, provider=self.name)
        if "rate limit" in error_str or "too many requests" in error_str:
            return RateLimitError(provider=self.name)
        logger.error(f"Yahoo Finance error for {symbol}: {error}")
        return ProviderUnavailableError(provider=self.name, reason=str(error))

    def _dataframe_to_ohlcv(self, df) -> list[OHLCVData]:
        """
        Convert a pandas DataFrame from yfinance to a list of OHLCVData.

        Args:
            df: DataFrame with columns: Open, High, Low, Close, Volume, Adj Close
        """
        prices = []

        for idx, row in df.iterrows():
            try:
                price_date = idx.date() if hasattr(idx, 'date') else idx

                close_price = self._to_decimal(row.get('Close'))
                if close_price is None or close_price <= 0:
                    logger.warning(f"Skipping {price_date}: missing close price")
                    continue

                open_price = self._to_decimal(row.get('Open')) or close_price
                high_price = self._to_decimal(row.get('High')) or close_price
                low_price = self._to_decimal(row.get('Low')) or close_price

                prices.append(OHLCVData(
                    date=price_date,
                    open=open_price,
                    high=max(high_price, low_price),
                    low=min(high_price, low_price),
                    close=close_price,
                    volume=self._to_int(row.get('Volume')),
                    adjusted_close=self._to_decimal(row.get('Adj Close')),
                ))

            except (TypeError, ValueError) as e:
                logger.warning(f"Error parsing row {idx}: {e}")
                continue

        prices.sort(key=lambda p: p.date)
        return prices

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(Decimal("0.00000001"))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _to_int(value: Any) -> int | None:
        """Convert a value to int, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return int(value)
        except (TypeError, ValueError):
            return None
