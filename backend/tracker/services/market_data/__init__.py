# backend/tracker/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers (base.py)
- Yahoo Finance implementation (yahoo.py)
- Replicate domain valuation provider (domains.py)
- Cached as-of price lookups per position (price_service.py)
- Dividend summaries and frequency detection (dividends.py)

Usage:
    from tracker.services.market_data import (
        YahooFinanceProvider,
        QuoteService,
        MarketPriceService,
    )

Architecture:
    MarketDataProvider (ABC)
    └── YahooFinanceProvider (concrete)

    MarketPriceService
    ├── QuoteService            (quotes cache + MarketDataProvider)
    └── DomainValuationService  (domain_valuations cache + DomainValuationProvider)
"""

# Base provider interface and data classes
from tracker.services.market_data.base import (
    DividendEvent,
    DividendSummary,
    HistoricalPricesResult,
    MarketDataProvider,
    OHLCVData,
)
from tracker.services.market_data.dividends import (
    DividendFrequency,
    DividendService,
    detect_frequency,
)
from tracker.services.market_data.domains import DomainValuationProvider
from tracker.services.market_data.price_service import (
    DomainValuationService,
    MarketPriceService,
    QuoteService,
    price_key,
    walk_forward,
)
# Concrete implementations
from tracker.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    # Data classes
    "OHLCVData",
    "HistoricalPricesResult",
    "DividendEvent",
    "DividendSummary",
    # Concrete implementations
    "YahooFinanceProvider",
    "DomainValuationProvider",
    # Services
    "QuoteService",
    "DomainValuationService",
    "MarketPriceService",
    "DividendService",
    "DividendFrequency",
    "detect_frequency",
    "price_key",
    "walk_forward",
]
