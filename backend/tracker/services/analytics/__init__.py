# backend/tracker/services/analytics/__init__.py
"""
Analytics Service Package.

Read-side reports over valued positions, all in a target currency:
- Net worth (point value, daily history, change over a period)
- Allocation by category and by currency
- Performance (value against cost basis)
- Projected dividend income

Architecture:
    analytics/
    ├── __init__.py          # This file - package exports
    ├── types.py             # Result dataclasses
    ├── capital_gains.py     # Tax on unrealized gains, rate normalization
    ├── net_worth.py         # NetWorthService
    ├── allocation.py        # AllocationService
    ├── performance.py       # PerformanceService
    └── projected_income.py  # ProjectedIncomeService

Data Flow:
    PositionValuationService.value_positions()
        ↓
    ValuedPosition (quantity, unit value, P/L in position currency)
        ↓
    FXRateService.get_rates() + convert_currency()
        ↓
    Report in the target currency

Usage:
    from tracker.services.analytics import NetWorthService, NetWorthMode

    service = NetWorthService(valuation, fx_service, price_service)
    history = await service.net_worth_history(
        db, user_id, "EUR", days_back=180, mode=NetWorthMode.AFTER_CAPITAL_GAINS
    )
"""

from tracker.services.analytics.allocation import AllocationService
from tracker.services.analytics.capital_gains import calculate_capital_gains_tax, normalize_tax_rate
from tracker.services.analytics.net_worth import NetWorthService
from tracker.services.analytics.performance import PerformanceService
from tracker.services.analytics.projected_income import (
    DividendProjectionBasis,
    ProjectedIncomeService,
    build_projection_basis,
    monthly_dividend,
    resolve_annual_dividend,
)
from tracker.services.analytics.types import (
    AllocationBreakdown,
    AllocationSlice,
    MonthlyIncome,
    NetWorthChange,
    NetWorthMode,
    NetWorthPoint,
    PerformanceReport,
    PositionPerformance,
    ProjectedIncome,
)

__all__ = [
    # Services
    "NetWorthService",
    "AllocationService",
    "PerformanceService",
    "ProjectedIncomeService",
    # Capital gains
    "calculate_capital_gains_tax",
    "normalize_tax_rate",
    # Projected income helpers
    "DividendProjectionBasis",
    "build_projection_basis",
    "monthly_dividend",
    "resolve_annual_dividend",
    # Types
    "NetWorthMode",
    "NetWorthPoint",
    "NetWorthChange",
    "AllocationSlice",
    "AllocationBreakdown",
    "PositionPerformance",
    "PerformanceReport",
    "MonthlyIncome",
    "ProjectedIncome",
]
