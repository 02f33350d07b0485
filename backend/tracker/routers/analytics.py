# backend/tracker/routers/analytics.py
"""
Analytics endpoints.

- GET /analytics/net-worth          - Net worth on a date
- GET /analytics/net-worth/history  - Daily net worth series (gross or after capital gains tax)
- GET /analytics/net-worth/change   - Net worth now vs. N days ago
- GET /analytics/allocation         - Allocation by category or currency
- GET /analytics/performance        - Value vs. cost basis per position
- GET /analytics/projected-income   - Monthly projected dividend income

Every report is in `currency` (default: the user's display currency).
Liabilities reduce net worth; allocation and performance cover active
asset positions only.
"""

import datetime as dt
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AfterValidator

from tracker.dependencies import (
    CurrentUser,
    DbSession,
    get_allocation_service,
    get_net_worth_service,
    get_performance_service,
    get_projected_income_service,
)
from tracker.middleware.rate_limit import limiter
from tracker.models import User
from tracker.schemas.analytics import (
    AllocationResponse,
    NetWorthChangeResponse,
    NetWorthHistoryResponse,
    NetWorthPointResponse,
    NetWorthResponse,
    PerformanceResponse,
    ProjectedIncomeResponse,
)
from tracker.schemas.validators import validate_currency
from tracker.services.analytics import (
    AllocationService,
    NetWorthMode,
    NetWorthService,
    PerformanceService,
    ProjectedIncomeService,
)
from tracker.services.constants import (
    MAX_HISTORY_DAYS,
    NET_WORTH_CHANGE_DAYS,
    NET_WORTH_HISTORY_DAYS,
    PROJECTED_INCOME_MONTHS,
    RATE_LIMIT_ANALYTICS,
)
from tracker.utils.date_utils import utc_today


def _optional_currency(value: str | None) -> str | None:
    return validate_currency(value) if value else None


# Query() must sit inside Annotated, or FastAPI drops the validator
CurrencyQuery = Annotated[
    str | None,
    Query(description="Report currency (ISO 4217)"),
    AfterValidator(_optional_currency),
]

router = APIRouter(
    prefix="/analytics",
    tags=["Analytics"],
)


def _report_currency(currency: str | None, user: User) -> str:
    return currency or (user.display_currency or "USD").upper()


# =============================================================================
# NET WORTH
# =============================================================================

@router.get(
    "/net-worth",
    response_model=NetWorthResponse,
    summary="Net worth on a date",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_net_worth(
        request: Request,  # Required for rate limiting
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        date: dt.date | None = Query(default=None, description="Valuation date (default: today)"),
        service: NetWorthService = Depends(get_net_worth_service),
) -> NetWorthResponse:
    currency = _report_currency(currency, current_user)
    on = date or utc_today()
    value = await service.calculate_net_worth(db, current_user.id, currency, on=on)
    return NetWorthResponse(currency=currency, date=on, net_worth=value)


@router.get(
    "/net-worth/history",
    response_model=NetWorthHistoryResponse,
    summary="Daily net worth series",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_net_worth_history(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        days_back: int = Query(default=NET_WORTH_HISTORY_DAYS, ge=1, le=MAX_HISTORY_DAYS),
        mode: NetWorthMode = Query(
            default=NetWorthMode.GROSS,
            description="'gross' or 'after_capital_gains' (unrealized gains net of each position's tax rate)",
        ),
        service: NetWorthService = Depends(get_net_worth_service),
) -> NetWorthHistoryResponse:
    """
    One point per day from today - days_back to today. Days before the
    first snapshot are reported as 0.
    """
    currency = _report_currency(currency, current_user)
    points = await service.net_worth_history(db, current_user.id, currency, days_back=days_back, mode=mode)
    return NetWorthHistoryResponse(
        currency=currency,
        mode=mode,
        points=[NetWorthPointResponse(date=p.date, value=p.value) for p in points],
    )


@router.get(
    "/net-worth/change",
    response_model=NetWorthChangeResponse,
    summary="Net worth change over a period",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_net_worth_change(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        days_back: int = Query(default=NET_WORTH_CHANGE_DAYS, ge=1, le=MAX_HISTORY_DAYS),
        service: NetWorthService = Depends(get_net_worth_service),
) -> NetWorthChangeResponse:
    currency = _report_currency(currency, current_user)
    change = await service.net_worth_change(db, current_user.id, currency, days_back=days_back)
    return NetWorthChangeResponse.from_change(change)


# =============================================================================
# ALLOCATION / PERFORMANCE
# =============================================================================

@router.get(
    "/allocation",
    response_model=AllocationResponse,
    summary="Asset allocation",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_allocation(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        group_by: Literal["category", "currency"] = Query(default="category"),
        date: dt.date | None = Query(default=None),
        service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    currency = _report_currency(currency, current_user)
    if group_by == "currency":
        breakdown = await service.by_currency(db, current_user.id, currency, on=date)
    else:
        breakdown = await service.by_category(db, current_user.id, currency, on=date)
    return AllocationResponse.from_breakdown(breakdown, group_by)


@router.get(
    "/performance",
    response_model=PerformanceResponse,
    summary="Position performance",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_performance(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        date: dt.date | None = Query(default=None),
        service: PerformanceService = Depends(get_performance_service),
) -> PerformanceResponse:
    """Positions sorted by profit/loss in the report currency, best first."""
    currency = _report_currency(currency, current_user)
    report = await service.get_performance(db, current_user.id, currency, on=date)
    return PerformanceResponse.from_report(report)


# =============================================================================
# PROJECTED INCOME
# =============================================================================

@router.get(
    "/projected-income",
    response_model=ProjectedIncomeResponse,
    summary="Projected dividend income",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
async def get_projected_income(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        currency: CurrencyQuery = None,
        months_ahead: int = Query(default=PROJECTED_INCOME_MONTHS, ge=1, le=60),
        service: ProjectedIncomeService = Depends(get_projected_income_service),
) -> ProjectedIncomeResponse:
    """
    Monthly dividend income for the coming months, starting with the
    current month. `message` explains an empty or partial projection.
    """
    currency = _report_currency(currency, current_user)
    projection = await service.project(db, current_user.id, currency, months_ahead=months_ahead)
    return ProjectedIncomeResponse.from_projection(projection)
