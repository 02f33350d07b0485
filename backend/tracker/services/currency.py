# backend/tracker/services/currency.py
"""
Currency conversion over a pre-fetched USD rate map.

Rates come from FXRateService.get_rates as {"CUR|YYYY-MM-DD": rate}, where
rate means "1 USD = rate CUR". Conversion goes through USD:

    converted = amount / rate[source] * rate[target]

Conversion never raises. A missing or non-positive rate is logged and the
amount is returned unconverted, so one missing rate degrades a report
instead of failing it.

Usage:
    rates = await fx.get_rates(db, build_rate_requests({"EUR", "GBP"}, [today]))
    eur_value = convert_currency(Decimal("100"), "GBP", "EUR", rates, today)
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

logger = logging.getLogger(__name__)

USD = "USD"


def rate_key(currency: str, on: date) -> str:
    """Rate map key "CUR|YYYY-MM-DD"."""
    return f"{currency.upper()}|{on.isoformat()}"


def build_rate_requests(currencies: Iterable[str], dates: Iterable[date]) -> list[tuple[str, date]]:
    """Deduplicated (currency, date) requests; USD is never requested."""
    dates = sorted(set(dates))
    requests = []
    for currency in sorted({c.upper() for c in currencies if c}):
        if currency == USD:
            continue
        requests.extend((currency, on) for on in dates)
    return requests


def _lookup(currency: str, on: date, rates: Mapping[str, Decimal]) -> Decimal | None:
    if currency == USD:
        return Decimal("1")
    rate = rates.get(rate_key(currency, on))
    if rate is None or rate <= 0:
        return None
    return rate


def try_convert_currency(
        amount: Decimal,
        source: str,
        target: str,
        rates: Mapping[str, Decimal],
        on: date,
) -> Decimal | None:
    """
    Convert an amount between currencies on a date, or None when a rate is missing.

    Identity for the same currency, zero and non-finite amounts.
    """
    source = (source or USD).upper()
    target = (target or USD).upper()
    if source == target or not amount.is_finite() or amount == 0:
        return amount

    source_rate = _lookup(source, on, rates)
    target_rate = _lookup(target, on, rates)
    if source_rate is None or target_rate is None:
        return None
    return amount / source_rate * target_rate


def convert_currency(
        amount: Decimal,
        source: str,
        target: str,
        rates: Mapping[str, Decimal],
        on: date,
) -> Decimal:
    """Convert an amount between currencies; a missing rate leaves it unconverted."""
    converted = try_convert_currency(amount, source, target, rates, on)
    if converted is None:
        logger.warning(
            f"Missing FX rate for {source}->{target} on {on.isoformat()}; amount left unconverted"
        )
        return amount
    return converted
