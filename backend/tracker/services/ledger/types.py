# backend/tracker/services/ledger/types.py
"""
Internal data types for the ledger engine.

These dataclasses are the currency of the validator and the recalculation
engine. They are NOT Pydantic schemas - those are defined in
tracker/schemas/ for API serialization.

Design Principles:
- Immutable value objects (frozen=True); replay threads new values through
- Decimal for ALL quantities and prices (never float)
- date (not datetime) for effective dates; created_at only breaks ties
- Nullable cost basis means "inherit", never zero
- Failures are results with a code, not exceptions

Type Hierarchy:
    LedgerEvent           - One buy/sell/update, persisted or proposed
    SnapshotState         - A stored snapshot row, detached from the session
    RunningState          - (quantity, cost basis) threaded through replay
    ValidationResult      - Outcome of a timeline validation
    ComputedSnapshot      - One snapshot produced by a replay
    RecalculationOptions  - Knobs for one recalculation call
    RecalculationResult   - Outcome of one recalculation call
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from tracker.models import RecordType
from tracker.services.constants import ZERO

if TYPE_CHECKING:
    from tracker.models import PortfolioRecord, PositionSnapshot


# =============================================================================
# LEDGER INPUTS
# =============================================================================

@dataclass(frozen=True)
class LedgerEvent:
    """
    One ledger event, either persisted (id and created_at set) or proposed.

    Proposed events have id=None and created_at=None; timeline ordering
    treats a missing created_at as "latest possible", so a new entry sorts
    after every persisted event on the same day.

    Attributes:
        cost_basis_override: For update events only, an explicit cost basis
            per unit that wins over the event's unit value.
        source_label: Human-readable origin ("Row 4", "Import line 12")
            used as a prefix in validation messages.
    """

    position_id: int
    type: RecordType
    date: date
    quantity: Decimal
    unit_value: Decimal
    id: int | None = None
    created_at: datetime | None = None
    description: str | None = None
    cost_basis_override: Decimal | None = None
    source_label: str | None = None

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @classmethod
    def from_record(cls, record: PortfolioRecord) -> LedgerEvent:
        return cls(
            id=record.id,
            position_id=record.position_id,
            type=RecordType(record.type),
            date=record.date,
            quantity=record.quantity,
            unit_value=record.unit_value,
            created_at=record.created_at,
            description=record.description,
        )


@dataclass(frozen=True)
class SnapshotState:
    """A persisted snapshot copied out of the ORM row."""

    id: int
    position_id: int
    portfolio_record_id: int | None
    date: date
    quantity: Decimal
    unit_value: Decimal
    cost_basis_per_unit: Decimal | None
    created_at: datetime | None = None

    @property
    def is_linked(self) -> bool:
        return self.portfolio_record_id is not None

    @classmethod
    def from_model(cls, snapshot: PositionSnapshot) -> SnapshotState:
        return cls(
            id=snapshot.id,
            position_id=snapshot.position_id,
            portfolio_record_id=snapshot.portfolio_record_id,
            date=snapshot.date,
            quantity=snapshot.quantity,
            unit_value=snapshot.unit_value,
            cost_basis_per_unit=snapshot.cost_basis_per_unit,
            created_at=snapshot.created_at,
        )


@dataclass(frozen=True)
class RunningState:
    """
    Running (quantity, cost basis per unit) during a ledger replay.

    Never mutated: apply_transition returns a new instance.
    """

    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO

    @classmethod
    def initial(cls) -> RunningState:
        return cls(ZERO, ZERO)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating a proposed ledger window.

    code is None when valid; otherwise INVALID_QUANTITY,
    INSUFFICIENT_QUANTITY or a store error code.
    """

    valid: bool
    code: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def failure(cls, code: str, message: str) -> ValidationResult:
        return cls(valid=False, code=code, message=message)


class PriceSource(str, enum.Enum):
    """Tier of the pricing fallback chain that produced a snapshot's unit value."""
    MARKET = "market"
    RECORD = "record"
    COST_BASIS = "cost_basis"
    FLOOR = "floor"


@dataclass(frozen=True)
class ComputedSnapshot:
    """
    One snapshot produced by a replay.

    record_id is None for an injected (not yet persisted) event; such
    snapshots are returned to the caller but never written.
    """

    record_id: int | None
    position_id: int
    date: date
    record_type: RecordType
    quantity: Decimal
    unit_value: Decimal
    cost_basis_per_unit: Decimal
    price_source: PriceSource
    persisted: bool = True


@dataclass(frozen=True)
class RecalculationOptions:
    """
    Options for one recalculation call.

    Attributes:
        exclude_record_id: Record to leave out of the replay (its snapshot is
            deleted), used while an edit or delete is in flight.
        include_record: Proposed event to inject into the replay; its snapshot
            is returned, never written.
        cost_basis_overrides: Explicit cost basis for update records keyed by
            record id. A key mapped to None resets to the record's unit value.
        dry_run: Compute without writing anything.
    """

    exclude_record_id: int | None = None
    include_record: LedgerEvent | None = None
    cost_basis_overrides: Mapping[int, Decimal | None] = field(default_factory=dict)
    dry_run: bool = False


@dataclass(frozen=True)
class RecalculationResult:
    """
    Outcome of one recalculation call.

    Attributes:
        success: False on POSITION_NOT_FOUND or a store failure
        code: Failure code (None on success)
        message: Failure message, store messages preserved verbatim
        snapshots: Snapshots computed for the window, in timeline order
        boundary_date: Date of the update event that ended the window
        snapshots_written: Rows inserted or updated
        price_unavailable: Window dates with no market price (soft failure)
        price_only_resynced: Price-only snapshots whose quantity was reset
    """

    success: bool
    code: str | None = None
    message: str | None = None
    snapshots: tuple[ComputedSnapshot, ...] = ()
    boundary_date: date | None = None
    snapshots_written: int = 0
    price_unavailable: int = 0
    price_only_resynced: int = 0

    @classmethod
    def failure(cls, code: str, message: str) -> RecalculationResult:
        return cls(success=False, code=code, message=message)
