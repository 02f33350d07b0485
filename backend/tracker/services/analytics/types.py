# backend/tracker/services/analytics/types.py
"""
Data types for the analytics services.

All amounts are Decimal in the report currency unless noted.

Architecture:
    - NetWorthMode: gross or after capital gains tax
    - NetWorthPoint / NetWorthChange: net worth series and change card
    - AllocationSlice / AllocationBreakdown: share of total per group
    - PositionPerformance / PerformanceReport: value vs cost basis
    - MonthlyIncome / ProjectedIncome: dividend projection
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from tracker.services.constants import ZERO


class NetWorthMode(str, Enum):
    """
    How net worth is reported.

    Attributes:
        GROSS: Market value of assets minus liabilities
        AFTER_CAPITAL_GAINS: Gross minus the tax owed if every asset with an
            unrealized gain were sold
    """
    GROSS = "gross"
    AFTER_CAPITAL_GAINS = "after_capital_gains"


# =============================================================================
# NET WORTH
# =============================================================================

@dataclass(frozen=True)
class NetWorthPoint:
    date: date
    value: Decimal


@dataclass(frozen=True)
class NetWorthChange:
    """
    Net worth now versus days_back ago.

    percentage_change is in percent (12.5 means +12.5%), 0 when the
    previous value is 0.
    """
    currency: str
    current_date: date
    previous_date: date
    current_value: Decimal
    previous_value: Decimal
    absolute_change: Decimal
    percentage_change: Decimal


# =============================================================================
# ALLOCATION
# =============================================================================

@dataclass(frozen=True)
class AllocationSlice:
    """
    One group of an allocation breakdown.

    Attributes:
        key: Group identifier (category id as string, or currency code)
        label: Display label
        value: Total value in the report currency
        share: Fraction of the breakdown total (0.25 = 25%)
        position_count: Positions in the group
    """
    key: str
    label: str
    value: Decimal
    share: Decimal
    position_count: int


@dataclass(frozen=True)
class AllocationBreakdown:
    currency: str
    as_of: date
    total: Decimal
    slices: tuple[AllocationSlice, ...] = ()


# =============================================================================
# PERFORMANCE
# =============================================================================

@dataclass(frozen=True)
class PositionPerformance:
    """
    Value against cost basis for one position.

    Native amounts are in the position currency; converted amounts in the
    report currency. profit_loss_percentage is a ratio (0.5 = +50%).
    """
    position_id: int
    name: str
    currency: str
    quantity: Decimal
    current_value: Decimal
    total_cost_basis: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal
    converted_value: Decimal
    converted_cost_basis: Decimal
    converted_profit_loss: Decimal


@dataclass(frozen=True)
class PerformanceReport:
    currency: str
    as_of: date
    positions: tuple[PositionPerformance, ...] = ()
    total_value: Decimal = ZERO
    total_cost_basis: Decimal = ZERO
    total_profit_loss: Decimal = ZERO
    total_profit_loss_percentage: Decimal = ZERO


# =============================================================================
# PROJECTED INCOME
# =============================================================================

@dataclass(frozen=True)
class MonthlyIncome:
    month: date  # First day of the month
    income: Decimal


@dataclass(frozen=True)
class ProjectedIncome:
    """
    Projected dividend income per month.

    message explains an empty or partial projection (no dividend payers,
    payouts omitted for missing FX rates).
    """
    currency: str
    months: tuple[MonthlyIncome, ...] = ()
    message: str | None = None
    by_position: dict[int, tuple[Decimal, ...]] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return sum((m.income for m in self.months), ZERO)
