# backend/tracker/services/constants.py
"""
Centralized constants for the position ledger services.

This module provides a single source of truth for business constants
used across the application. Values that operators tune per deployment
(lookback windows, FX cutoff) live in config.Settings instead.

Usage:
    from tracker.services.constants import (
        SELL_EPSILON,
        PRICE_FLOOR,
        RATE_LIMIT_WRITE,
    )
"""

from decimal import Decimal


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

# Type-safe zero for Decimal comparisons
ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")
HUNDRED: Decimal = Decimal("100")


# =============================================================================
# LEDGER CONSTANTS
# =============================================================================

# Tolerance when comparing a sell against the running quantity
# Absorbs rounding noise from Numeric(18, 8) round trips
SELL_EPSILON: Decimal = Decimal("1e-9")

# Last-resort unit value for a snapshot when no market price, record
# price or running cost basis is positive. Never zero, so downstream
# percentage math never divides by zero.
PRICE_FLOOR: Decimal = Decimal("1")

# Engine result codes
CODE_INVALID_QUANTITY: str = "INVALID_QUANTITY"
CODE_INSUFFICIENT_QUANTITY: str = "INSUFFICIENT_QUANTITY"
CODE_POSITION_NOT_FOUND: str = "POSITION_NOT_FOUND"
CODE_PRICE_UNAVAILABLE: str = "PRICE_UNAVAILABLE"
CODE_STORE_ERROR: str = "STORE_ERROR"


# =============================================================================
# ANALYTICS DEFAULTS
# =============================================================================

# Lookback for the net worth change card (about six months)
NET_WORTH_CHANGE_DAYS: int = 180

# Default length of the net worth history series
NET_WORTH_HISTORY_DAYS: int = 365

# Default projection horizon for dividend income
PROJECTED_INCOME_MONTHS: int = 12

# TTM dividend is trusted when within this fraction of the last year's
# observed dividend events
DIVIDEND_TTM_TOLERANCE: Decimal = Decimal("0.10")


# =============================================================================
# EXTERNAL API TIMEOUT SETTINGS
# =============================================================================

# Timeout for domain valuation HTTP calls (model predictions can be slow)
DOMAIN_VALUATION_TIMEOUT_SECONDS: float = 60.0


# =============================================================================
# RATE LIMITING CONSTANTS
# =============================================================================
# Format follows slowapi/limits syntax: "100/minute", "10/hour", etc.

# Default rate limit for read endpoints (GET requests)
RATE_LIMIT_DEFAULT: str = "100/minute"

# Rate limit for ledger writes (each one triggers a recalculation)
RATE_LIMIT_WRITE: str = "30/minute"

# Rate limit for endpoints that call external price providers
RATE_LIMIT_SYNC: str = "10/minute"

# Rate limit for batch import endpoints
RATE_LIMIT_IMPORT: str = "5/minute"

# Rate limit for health check endpoints
RATE_LIMIT_HEALTH: str = "300/minute"

# Rate limit for analytics endpoints
RATE_LIMIT_ANALYTICS: str = "30/minute"


# =============================================================================
# RESOURCE LIMIT CONSTANTS
# =============================================================================

# Maximum number of ids in a single bulk request (archive, delete)
MAX_BATCH_SIZE: int = 500

# Maximum number of rows in a single import
MAX_IMPORT_ROWS: int = 10000

# Maximum date range for history endpoints (days)
MAX_HISTORY_DAYS: int = 365 * 20 + 5  # 20 years with leap year buffer
