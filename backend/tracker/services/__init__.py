# backend/tracker/services/__init__.py
"""
Service layer for business logic.

This package contains the service layer which encapsulates business logic
separate from the API (router) layer. Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions
- Receive database sessions as parameters (not via Depends)
- Are easily testable via dependency injection

Usage:
    from tracker.services import PositionService, RecordService
    from tracker.services import LedgerValidationError, PositionNotFoundError

Architecture:
    services/
    ├── __init__.py              # This file - main exports
    ├── exceptions.py            # Domain exceptions
    ├── constants.py             # Business constants and limits
    ├── protocols.py             # Service interfaces (Protocol classes)
    ├── currency.py              # Rate lookups and conversion
    ├── profit_loss.py           # Cost basis and P/L per position
    ├── fx_rate_service.py       # FX rates (cache + provider)
    ├── positions_service.py     # Position lifecycle
    ├── records_service.py       # Ledger record mutations and import
    ├── snapshots_service.py     # Snapshot reads, price refresh, recalculation
    ├── ledger/                  # Timeline ordering, validation, recalculation
    ├── market_data/             # Price, dividend and domain valuation sources
    ├── valuation/               # Position values as of a date
    └── analytics/               # Net worth, allocation, performance, income
"""

from tracker.services.exceptions import (
    AuthenticationError,
    DuplicatePositionError,
    FXProviderError,
    FXRateError,
    LedgerValidationError,
    MarketDataError,
    NotFoundError,
    PositionNotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    RecalculationError,
    RecordNotFoundError,
    ServiceError,
    TickerNotFoundError,
    ValidationError,
)
from tracker.services.fx_rate_service import FXRateService
from tracker.services.positions_service import PositionInput, PositionService
from tracker.services.records_service import ImportRow, RecordChanges, RecordInput, RecordService
from tracker.services.snapshots_service import PriceRefreshResult, SnapshotService

__all__ = [
    # Services
    "PositionService",
    "RecordService",
    "SnapshotService",
    "FXRateService",
    # Inputs / results
    "PositionInput",
    "RecordInput",
    "RecordChanges",
    "ImportRow",
    "PriceRefreshResult",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PositionNotFoundError",
    "RecordNotFoundError",
    "DuplicatePositionError",
    "LedgerValidationError",
    "RecalculationError",
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    "FXRateError",
    "FXProviderError",
    "AuthenticationError",
]
