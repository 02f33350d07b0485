# backend/tracker/services/profit_loss.py
"""
Unrealized profit/loss per position.

Pure functions, no I/O. The cost basis per unit comes from one snapshot,
picked latest first in timeline order:

    1. linked to a ledger record and carrying an explicit cost basis
    2. carrying an explicit cost basis (price-only snapshots included)
    3. any snapshot, its unit value standing in for the basis

A NULL cost basis is skipped, never read as zero.

    total_cost_basis       = basis * current quantity
    profit_loss            = current value - total_cost_basis
    profit_loss_percentage = profit_loss / total_cost_basis  (0 when cost <= 0)

The percentage is a ratio: 0.5 means +50%.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from tracker.services.constants import ZERO
from tracker.services.ledger.ordering import sort_timeline


@dataclass(frozen=True)
class PositionValuation:
    """Current quantity and total value of one position (position currency)."""
    position_id: int
    current_quantity: Decimal
    current_value: Decimal


@dataclass(frozen=True)
class ProfitLoss:
    position_id: int | None
    cost_basis_per_unit: Decimal
    total_cost_basis: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal

    @classmethod
    def zero(cls, position_id: int | None = None) -> "ProfitLoss":
        return cls(position_id, ZERO, ZERO, ZERO, ZERO)


def select_basis_snapshot(snapshots: Sequence[Any]) -> Any | None:
    """
    Snapshot whose cost basis applies to the current holding.

    Accepts anything with date, created_at, id, portfolio_record_id,
    cost_basis_per_unit and unit_value.
    """
    if not snapshots:
        return None
    latest_first = sort_timeline(snapshots, reverse=True)

    for snapshot in latest_first:
        if snapshot.portfolio_record_id is not None and snapshot.cost_basis_per_unit is not None:
            return snapshot
    for snapshot in latest_first:
        if snapshot.cost_basis_per_unit is not None:
            return snapshot
    return latest_first[0]


def basis_per_unit(snapshot: Any | None) -> Decimal:
    if snapshot is None:
        return ZERO
    if snapshot.cost_basis_per_unit is not None:
        return snapshot.cost_basis_per_unit
    return snapshot.unit_value or ZERO


def calculate_position_pl(
        current_quantity: Decimal,
        current_value: Decimal,
        snapshots: Sequence[Any],
        position_id: int | None = None,
) -> ProfitLoss:
    """P/L of one position from its snapshot history."""
    if not snapshots:
        return ProfitLoss.zero(position_id)

    basis = basis_per_unit(select_basis_snapshot(snapshots))
    total_cost = basis * current_quantity
    profit_loss = current_value - total_cost
    percentage = profit_loss / total_cost if total_cost > ZERO else ZERO

    return ProfitLoss(
        position_id=position_id,
        cost_basis_per_unit=basis,
        total_cost_basis=total_cost,
        profit_loss=profit_loss,
        profit_loss_percentage=percentage,
    )


def project_profit_loss(
        valuations: Sequence[PositionValuation],
        snapshots_by_position: Mapping[int, Sequence[Any]],
) -> list[ProfitLoss]:
    """P/L for each valuation, in input order."""
    return [
        calculate_position_pl(
            v.current_quantity,
            v.current_value,
            snapshots_by_position.get(v.position_id, ()),
            position_id=v.position_id,
        )
        for v in valuations
    ]
