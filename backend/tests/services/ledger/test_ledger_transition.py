# tests/services/ledger/test_ledger_transition.py
"""
Tests for the pure cost-basis transition function.
"""

from datetime import date
from decimal import Decimal

import pytest

from tracker.models import RecordType
from tracker.services.ledger.transition import apply_transition
from tracker.services.ledger.types import LedgerEvent, RunningState


def ev(kind: RecordType, quantity: str, unit_value: str = "0") -> LedgerEvent:
    return LedgerEvent(
        position_id=1, type=kind, date=date(2024, 1, 1),
        quantity=Decimal(quantity), unit_value=Decimal(unit_value),
    )


class TestBuy:
    def test_weighted_average_cost_basis(self):
        """Should average the held units and the bought ones."""
        state = apply_transition(ev(RecordType.BUY, "5", "200"), RunningState(Decimal("10"), Decimal("100")))

        assert state.quantity == Decimal("15")
        assert state.cost_basis == pytest.approx(Decimal("133.3333333"), abs=Decimal("1e-6"))

    def test_first_buy_takes_event_price(self):
        """Should use the event price when nothing is held."""
        state = apply_transition(ev(RecordType.BUY, "3", "42.5"), RunningState())

        assert state == RunningState(Decimal("3"), Decimal("42.5"))

    def test_buy_after_full_sell_resets_basis(self):
        """Should not average against a stale basis of a zero holding."""
        state = apply_transition(ev(RecordType.BUY, "2", "10"), RunningState(Decimal("0"), Decimal("500")))

        assert state.cost_basis == Decimal("10")


class TestSell:
    def test_sell_keeps_cost_basis(self):
        state = apply_transition(ev(RecordType.SELL, "4"), RunningState(Decimal("10"), Decimal("100")))

        assert state == RunningState(Decimal("6"), Decimal("100"))

    def test_oversell_is_clamped_at_zero(self):
        """Should floor the quantity at zero and keep the basis."""
        state = apply_transition(ev(RecordType.SELL, "12"), RunningState(Decimal("5"), Decimal("100")))

        assert state.quantity == Decimal("0")
        assert state.cost_basis == Decimal("100")


class TestUpdate:
    def test_update_with_override(self):
        """Should take the override as the new basis."""
        state = apply_transition(
            ev(RecordType.UPDATE, "8", "90"),
            RunningState(Decimal("13"), Decimal("120")),
            override_cost_basis=Decimal("75"),
        )

        assert state == RunningState(Decimal("8"), Decimal("75"))

    def test_update_without_override_uses_unit_value(self):
        state = apply_transition(ev(RecordType.UPDATE, "8", "90"), RunningState(Decimal("13"), Decimal("120")))

        assert state == RunningState(Decimal("8"), Decimal("90"))

    def test_override_ignored_for_buys(self):
        state = apply_transition(ev(RecordType.BUY, "1", "10"), RunningState(), override_cost_basis=Decimal("1"))

        assert state.cost_basis == Decimal("10")

    def test_input_state_is_not_modified(self):
        before = RunningState(Decimal("10"), Decimal("100"))
        apply_transition(ev(RecordType.UPDATE, "0", "1"), before)

        assert before == RunningState(Decimal("10"), Decimal("100"))


class TestScenarioReplay:
    def test_buy_buy_sell_update(self):
        """Should end at the update's quantity and basis regardless of prior history."""
        events = [
            ev(RecordType.BUY, "10", "100"),
            ev(RecordType.BUY, "5", "200"),
            ev(RecordType.SELL, "12"),
            ev(RecordType.UPDATE, "8", "90"),
        ]
        states = []
        state = RunningState()
        for e in events:
            state = apply_transition(e, state)
            states.append(state)

        assert [s.quantity for s in states[:3]] == [Decimal("10"), Decimal("15"), Decimal("3")]
        assert states[-1] == RunningState(Decimal("8"), Decimal("90"))
