# backend/tracker/services/analytics/capital_gains.py
"""
Capital gains tax on unrealized gains.

Rates are stored as decimals (0.26 for 26%). User input may be either
form: values above 1 are read as percentages.
"""

from decimal import Decimal, InvalidOperation

from tracker.models import PositionType
from tracker.services.constants import HUNDRED, ONE, ZERO
from tracker.services.exceptions import InvalidTaxRateError


def normalize_tax_rate(value) -> Decimal | None:
    """
    Normalize a tax rate given as a percentage (26) or a decimal (0.26).

    Returns:
        Decimal in [0, 1], or None when value is None

    Raises:
        InvalidTaxRateError: Not a number, negative, or above 100
    """
    if value is None:
        return None
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidTaxRateError(value)

    if not rate.is_finite() or rate < ZERO or rate > HUNDRED:
        raise InvalidTaxRateError(value)
    if rate > ONE:
        rate = rate / HUNDRED
    return rate


def calculate_capital_gains_tax(
        position_type: PositionType | str,
        rate: Decimal | None,
        unrealized_gain: Decimal,
) -> Decimal:
    """
    Tax owed on an unrealized gain.

    Zero for liabilities, a missing or non-positive rate, and gains <= 0.

    Example:
        >>> calculate_capital_gains_tax(PositionType.ASSET, Decimal("0.2"), Decimal("500"))
        Decimal('100.0')
    """
    if PositionType(position_type) == PositionType.LIABILITY:
        return ZERO
    if rate is None or rate <= ZERO:
        return ZERO
    if unrealized_gain <= ZERO:
        return ZERO
    return unrealized_gain * rate
