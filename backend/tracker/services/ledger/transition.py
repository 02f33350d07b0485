# backend/tracker/services/ledger/transition.py
"""
Cost-basis transition function.

One ledger event moves the running state forward:

    buy     quantity += q
            basis = weighted average of the held units and the new ones,
                    or the event price when nothing was held
    sell    quantity = max(0, quantity - q), basis unchanged
    update  quantity = q, basis = override if given else the event price

Sells are clamped at zero as a last-resort floor. Oversells are rejected
upstream by the timeline validator; the transition itself never raises.
"""

from decimal import Decimal
from typing import Protocol

from tracker.models import RecordType
from tracker.services.constants import ZERO
from tracker.services.ledger.types import RunningState


class TransitionEvent(Protocol):
    type: RecordType
    quantity: Decimal
    unit_value: Decimal


def apply_transition(
        event: TransitionEvent,
        state: RunningState,
        override_cost_basis: Decimal | None = None,
) -> RunningState:
    """
    Return the running state after applying one event.

    Args:
        event: Anything with type, quantity and unit_value
        state: Running state before the event
        override_cost_basis: Explicit cost basis for an update event;
            ignored for buys and sells

    Returns:
        New RunningState (the input is never modified)
    """
    record_type = RecordType(event.type)

    if record_type == RecordType.BUY:
        new_quantity = state.quantity + event.quantity
        if state.quantity > ZERO and new_quantity > ZERO:
            held_cost = state.quantity * state.cost_basis
            added_cost = event.quantity * event.unit_value
            new_basis = (held_cost + added_cost) / new_quantity
        else:
            new_basis = event.unit_value
        return RunningState(quantity=new_quantity, cost_basis=new_basis)

    if record_type == RecordType.SELL:
        new_quantity = max(ZERO, state.quantity - event.quantity)
        return RunningState(quantity=new_quantity, cost_basis=state.cost_basis)

    # UPDATE: absolute reset
    basis = override_cost_basis if override_cost_basis is not None else event.unit_value
    return RunningState(quantity=event.quantity, cost_basis=basis)
