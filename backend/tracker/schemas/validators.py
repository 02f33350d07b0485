# backend/tracker/schemas/validators.py
"""
Reusable validation functions for Pydantic schemas.

This module provides:
- Market symbol validation and normalization
- Domain name validation and normalization
- Currency code validation
- Date range validation

Validators raise ValueError; Pydantic turns that into a 422 response.
"""

import re
from datetime import date

# =============================================================================
# CONSTANTS
# =============================================================================

# Symbol: Yahoo-style tickers (AAPL, BRK-B, VWCE.DE, ^GSPC, EURUSD=X)
SYMBOL_PATTERN = re.compile(r"^\^?[A-Z0-9][A-Z0-9.\-=]{0,31}$")
SYMBOL_MAX_LENGTH = 32

# Domain: one or more labels followed by a TLD
DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

# Currency: ISO 4217 format (3 uppercase letters)
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

MIN_VALID_DATE = date(1900, 1, 1)


# =============================================================================
# PRICE SOURCES
# =============================================================================

def validate_symbol(value: str | None) -> str | None:
    """
    Validate and normalize a market symbol.

    Empty input means "no symbol" and returns None.

    Raises:
        ValueError: If the symbol format is invalid
    """
    if value is None:
        return None
    normalized = value.strip().upper()
    if not normalized:
        return None
    if len(normalized) > SYMBOL_MAX_LENGTH:
        raise ValueError(f"Symbol cannot exceed {SYMBOL_MAX_LENGTH} characters")
    if not SYMBOL_PATTERN.match(normalized):
        raise ValueError(
            f"Invalid symbol format: '{normalized}'. "
            "Symbols are alphanumeric and may include '.', '-', '=' or start with '^'"
        )
    return normalized


def validate_domain(value: str | None) -> str | None:
    """
    Validate and normalize a domain name (lowercase, no scheme, no path).

    Raises:
        ValueError: If the domain format is invalid
    """
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    for prefix in ("https://", "http://"):
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
    normalized = normalized.rstrip("/")
    if normalized.startswith("www."):
        normalized = normalized[4:]
    if not DOMAIN_PATTERN.match(normalized):
        raise ValueError(f"Invalid domain: '{value.strip()}'")
    return normalized


# =============================================================================
# CURRENCY
# =============================================================================

def validate_currency(value: str) -> str:
    """
    Validate and normalize a currency code ("usd" -> "USD").

    Raises:
        ValueError: If currency format is invalid
    """
    if not value:
        raise ValueError("Currency cannot be empty")

    normalized = value.strip().upper()
    if not CURRENCY_PATTERN.match(normalized):
        raise ValueError(
            f"Invalid currency format: '{normalized}'. "
            "Currency must be a 3-letter ISO code (e.g., USD, EUR)"
        )
    return normalized


# =============================================================================
# DATES
# =============================================================================

def validate_date_range(start: date | None, end: date | None) -> tuple[date | None, date | None]:
    """
    Validate an optional [start, end] range.

    Raises:
        ValueError: Dates before MIN_VALID_DATE or start after end
    """
    for value in (start, end):
        if value is not None and value < MIN_VALID_DATE:
            raise ValueError(f"Dates cannot be before {MIN_VALID_DATE}")
    if start is not None and end is not None and start > end:
        raise ValueError("start must be before or equal to end")
    return start, end
