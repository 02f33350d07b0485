# backend/tracker/schemas/snapshots.py
"""
Pydantic schemas for position snapshots.

A snapshot is the derived state of a position at one point of its
timeline: quantity, unit value and cost basis per unit. Snapshots linked
to a record are written by recalculation; unlinked ones by a price
refresh. A null cost basis is inherited from the snapshot before it.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from tracker.models import RecordType
from tracker.services.ledger.types import PriceSource


class SnapshotResponse(BaseModel):
    id: int
    position_id: int
    portfolio_record_id: int | None = Field(
        default=None,
        description="Record this snapshot belongs to (null for price-only snapshots)"
    )
    date: dt.date
    quantity: Decimal
    unit_value: Decimal
    cost_basis_per_unit: Decimal | None = Field(
        default=None,
        description="Explicit cost basis; null means inherited from the previous snapshot"
    )

    model_config = ConfigDict(from_attributes=True)


class ComputedSnapshotResponse(BaseModel):
    """A snapshot as a recalculation computed it (possibly not persisted)."""

    record_id: int | None
    position_id: int
    date: dt.date
    record_type: RecordType
    quantity: Decimal
    unit_value: Decimal
    cost_basis_per_unit: Decimal
    price_source: PriceSource
    persisted: bool

    model_config = ConfigDict(from_attributes=True)


class PriceRefreshRequest(BaseModel):
    date: dt.date | None = Field(
        default=None,
        description="Date to refresh (default: today, UTC)"
    )


class PriceRefreshResponse(BaseModel):
    date: dt.date
    created: int
    updated: int
    missing_prices: list[int] = Field(
        default_factory=list,
        description="Positions skipped because no market price was available"
    )


class RecalculateRequest(BaseModel):
    position_id: int = Field(..., gt=0)
    from_date: dt.date | None = Field(
        default=None,
        description="Recalculate from this date on (default: the whole timeline)"
    )


class RecalculateResponse(BaseModel):
    position_id: int
    segments: int = Field(..., description="Segments recalculated")
    snapshots_written: int
    price_unavailable: int = Field(..., description="Snapshots valued without a market price")
    snapshots: list[ComputedSnapshotResponse] = Field(default_factory=list)
