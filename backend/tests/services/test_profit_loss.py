# tests/services/test_profit_loss.py
"""
Tests for unrealized profit/loss projection.
"""

from datetime import date, datetime
from decimal import Decimal

from tracker.services.ledger.types import SnapshotState
from tracker.services.profit_loss import (
    PositionValuation,
    ProfitLoss,
    basis_per_unit,
    calculate_position_pl,
    project_profit_loss,
    select_basis_snapshot,
)


def snap(
        snapshot_id: int,
        on: date,
        basis: str | None,
        unit_value: str = "10",
        record_id: int | None = 1,
        quantity: str = "1",
) -> SnapshotState:
    return SnapshotState(
        id=snapshot_id,
        position_id=1,
        portfolio_record_id=record_id,
        date=on,
        quantity=Decimal(quantity),
        unit_value=Decimal(unit_value),
        cost_basis_per_unit=Decimal(basis) if basis is not None else None,
        created_at=datetime(2024, 1, 1, 12, 0),
    )


class TestBasisSelection:
    """Tests for the cost basis fallback chain."""

    def test_null_basis_is_skipped_not_zero(self):
        """Should inherit the last explicit basis past a NULL one."""
        snapshots = [snap(1, date(2023, 6, 1), "50"), snap(2, date(2024, 6, 1), None)]

        pl = calculate_position_pl(Decimal("2"), Decimal("160"), snapshots)

        assert pl.cost_basis_per_unit == Decimal("50")
        assert pl.total_cost_basis == Decimal("100")
        assert pl.profit_loss == Decimal("60")

    def test_linked_snapshot_preferred_over_price_only(self):
        """Should prefer a record-linked basis over a later unlinked one."""
        snapshots = [
            snap(1, date(2024, 1, 1), "40"),
            snap(2, date(2024, 2, 1), "45", record_id=None),
        ]

        assert select_basis_snapshot(snapshots).id == 1

    def test_unlinked_basis_when_no_linked_one(self):
        snapshots = [
            snap(1, date(2024, 1, 1), None),
            snap(2, date(2024, 2, 1), "45", record_id=None),
        ]

        assert select_basis_snapshot(snapshots).id == 2

    def test_unit_value_stands_in_without_any_basis(self):
        """Should fall back to the latest snapshot's unit value."""
        snapshots = [snap(1, date(2024, 1, 1), None, "7"), snap(2, date(2024, 2, 1), None, "9")]

        chosen = select_basis_snapshot(snapshots)

        assert chosen.id == 2
        assert basis_per_unit(chosen) == Decimal("9")

    def test_timeline_order_not_input_order(self):
        snapshots = [snap(2, date(2024, 5, 1), "30"), snap(1, date(2024, 1, 1), "20")]

        assert select_basis_snapshot(snapshots).id == 2

    def test_empty_history(self):
        assert select_basis_snapshot([]) is None
        assert basis_per_unit(None) == Decimal("0")


class TestProfitLoss:
    def test_zero_cost_basis_gives_zero_percentage(self):
        """Should return 0, never a division error, when the total cost is 0."""
        pl = calculate_position_pl(Decimal("5"), Decimal("50"), [snap(1, date(2024, 1, 1), "0")])

        assert pl.total_cost_basis == Decimal("0")
        assert pl.profit_loss == Decimal("50")
        assert pl.profit_loss_percentage == Decimal("0")

    def test_percentage_is_a_ratio(self):
        pl = calculate_position_pl(Decimal("4"), Decimal("600"), [snap(1, date(2024, 1, 1), "100")])

        assert pl.profit_loss == Decimal("200")
        assert pl.profit_loss_percentage == Decimal("0.5")

    def test_no_history_is_zero(self):
        assert calculate_position_pl(Decimal("1"), Decimal("1"), [], position_id=9) == ProfitLoss.zero(9)

    def test_project_keeps_input_order(self):
        """Should return one result per valuation, missing histories as zero."""
        valuations = [
            PositionValuation(position_id=2, current_quantity=Decimal("1"), current_value=Decimal("10")),
            PositionValuation(position_id=1, current_quantity=Decimal("2"), current_value=Decimal("30")),
        ]

        results = project_profit_loss(valuations, {1: [snap(1, date(2024, 1, 1), "10")]})

        assert [r.position_id for r in results] == [2, 1]
        assert results[0] == ProfitLoss.zero(2)
        assert results[1].profit_loss == Decimal("10")
