# backend/tracker/schemas/analytics.py
"""
Pydantic schemas for analytics responses.

All amounts are in the report currency requested by the client (default:
the user's display currency). Percentages are ratios (0.05 = 5%) except
NetWorthChangeResponse.percentage_change, which is in percent.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field

from tracker.services.analytics import (
    AllocationBreakdown,
    NetWorthChange,
    NetWorthMode,
    PerformanceReport,
    ProjectedIncome,
)


# =============================================================================
# NET WORTH
# =============================================================================

class NetWorthResponse(BaseModel):
    currency: str
    date: dt.date
    net_worth: Decimal


class NetWorthPointResponse(BaseModel):
    date: dt.date
    value: Decimal


class NetWorthHistoryResponse(BaseModel):
    currency: str
    mode: NetWorthMode
    points: list[NetWorthPointResponse]


class NetWorthChangeResponse(BaseModel):
    currency: str
    current_date: dt.date
    previous_date: dt.date
    current_value: Decimal
    previous_value: Decimal
    absolute_change: Decimal
    percentage_change: Decimal = Field(..., description="Change in percent of the previous value")

    @classmethod
    def from_change(cls, change: NetWorthChange) -> "NetWorthChangeResponse":
        return cls(
            currency=change.currency,
            current_date=change.current_date,
            previous_date=change.previous_date,
            current_value=change.current_value,
            previous_value=change.previous_value,
            absolute_change=change.absolute_change,
            percentage_change=change.percentage_change,
        )


# =============================================================================
# ALLOCATION
# =============================================================================

class AllocationSliceResponse(BaseModel):
    key: str
    label: str
    value: Decimal
    share: Decimal = Field(..., description="Fraction of the total (0.25 = 25%)")
    position_count: int


class AllocationResponse(BaseModel):
    currency: str
    as_of: dt.date
    group_by: str
    total: Decimal
    slices: list[AllocationSliceResponse]

    @classmethod
    def from_breakdown(cls, breakdown: AllocationBreakdown, group_by: str) -> "AllocationResponse":
        return cls(
            currency=breakdown.currency,
            as_of=breakdown.as_of,
            group_by=group_by,
            total=breakdown.total,
            slices=[
                AllocationSliceResponse(
                    key=s.key,
                    label=s.label,
                    value=s.value,
                    share=s.share,
                    position_count=s.position_count,
                )
                for s in breakdown.slices
            ],
        )


# =============================================================================
# PERFORMANCE
# =============================================================================

class PositionPerformanceResponse(BaseModel):
    position_id: int
    name: str
    currency: str = Field(..., description="Position currency")
    quantity: Decimal
    current_value: Decimal = Field(..., description="In the position currency")
    total_cost_basis: Decimal = Field(..., description="In the position currency")
    profit_loss: Decimal = Field(..., description="In the position currency")
    profit_loss_percentage: Decimal
    converted_value: Decimal = Field(..., description="In the report currency")
    converted_cost_basis: Decimal
    converted_profit_loss: Decimal


class PerformanceResponse(BaseModel):
    currency: str
    as_of: dt.date
    total_value: Decimal
    total_cost_basis: Decimal
    total_profit_loss: Decimal
    total_profit_loss_percentage: Decimal
    positions: list[PositionPerformanceResponse]

    @classmethod
    def from_report(cls, report: PerformanceReport) -> "PerformanceResponse":
        return cls(
            currency=report.currency,
            as_of=report.as_of,
            total_value=report.total_value,
            total_cost_basis=report.total_cost_basis,
            total_profit_loss=report.total_profit_loss,
            total_profit_loss_percentage=report.total_profit_loss_percentage,
            positions=[
                PositionPerformanceResponse(
                    position_id=p.position_id,
                    name=p.name,
                    currency=p.currency,
                    quantity=p.quantity,
                    current_value=p.current_value,
                    total_cost_basis=p.total_cost_basis,
                    profit_loss=p.profit_loss,
                    profit_loss_percentage=p.profit_loss_percentage,
                    converted_value=p.converted_value,
                    converted_cost_basis=p.converted_cost_basis,
                    converted_profit_loss=p.converted_profit_loss,
                )
                for p in report.positions
            ],
        )


# =============================================================================
# PROJECTED INCOME
# =============================================================================

class MonthlyIncomeResponse(BaseModel):
    month: dt.date = Field(..., description="First day of the month")
    income: Decimal


class ProjectedIncomeResponse(BaseModel):
    currency: str
    total: Decimal
    message: str | None = None
    months: list[MonthlyIncomeResponse]
    by_position: dict[int, list[Decimal]] = Field(
        default_factory=dict,
        description="Monthly income per position, aligned with months",
    )

    @classmethod
    def from_projection(cls, projection: ProjectedIncome) -> "ProjectedIncomeResponse":
        return cls(
            currency=projection.currency,
            total=projection.total,
            message=projection.message,
            months=[MonthlyIncomeResponse(month=m.month, income=m.income) for m in projection.months],
            by_position={pid: list(values) for pid, values in projection.by_position.items()},
        )
