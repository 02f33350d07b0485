# backend/tracker/services/ledger/validation.py
"""
Timeline validator.

Gates every ledger mutation (create, edit, delete, import) before anything
is persisted. The candidate window is replayed in timeline order from the
running quantity at its start; the whole batch is rejected when:

    INVALID_QUANTITY       a quantity is not a finite number, a buy/sell is
                           not > 0, or an update is negative
    INSUFFICIENT_QUANTITY  a sell exceeds the running quantity by more
                           than SELL_EPSILON

Validation never raises: failures come back as ValidationResult so callers
can show the message to the user as is.

Usage:
    result = validate_window(Decimal("21"), candidates)
    if not result.valid:
        raise LedgerValidationError(result.code, result.message)
"""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError

from tracker.models import RecordType
from tracker.services.constants import (
    CODE_INSUFFICIENT_QUANTITY,
    CODE_INVALID_QUANTITY,
    SELL_EPSILON,
    ZERO,
)
from tracker.services.ledger.ordering import sort_timeline
from tracker.services.ledger.seeding import resolve_seed
from tracker.services.ledger.store import LedgerStore, store_error_code
from tracker.services.ledger.transition import apply_transition
from tracker.services.ledger.types import LedgerEvent, RunningState, ValidationResult

logger = logging.getLogger(__name__)


def format_quantity(value: Decimal) -> str:
    """Render a quantity without trailing zeros or exponent ("21", "0.5")."""
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return f"{normalized.quantize(Decimal(1)):f}"
    return f"{normalized:f}"


def _prefix(source_label: str | None) -> str:
    return f"{source_label}: " if source_label else ""


def _as_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return number if number.is_finite() else None


def validate_record_quantity(
        record_type: RecordType | str,
        quantity,
        source_label: str | None = None,
) -> ValidationResult:
    """Structural quantity check for one event type."""
    prefix = _prefix(source_label)
    number = _as_decimal(quantity)

    if number is None:
        return ValidationResult.failure(CODE_INVALID_QUANTITY, f"{prefix}Quantity must be a valid number.")

    record_type = RecordType(record_type)
    if record_type == RecordType.BUY and number <= ZERO:
        return ValidationResult.failure(CODE_INVALID_QUANTITY, f"{prefix}Buy quantity must be greater than 0.")
    if record_type == RecordType.SELL and number <= ZERO:
        return ValidationResult.failure(CODE_INVALID_QUANTITY, f"{prefix}Sell quantity must be greater than 0.")
    if record_type == RecordType.UPDATE and number < ZERO:
        return ValidationResult.failure(CODE_INVALID_QUANTITY, f"{prefix}Update quantity must be 0 or greater.")

    return ValidationResult.ok()


def validate_window(base_quantity: Decimal, candidates: Sequence[LedgerEvent]) -> ValidationResult:
    """
    Replay a candidate window from base_quantity and report the first violation.

    Candidates may be given in any order; they are sorted with the timeline
    order first. Structural checks run on every candidate before any replay.
    """
    ordered = sort_timeline(candidates)

    for candidate in ordered:
        check = validate_record_quantity(candidate.type, candidate.quantity, candidate.source_label)
        if not check.valid:
            return check

    state = RunningState(quantity=base_quantity, cost_basis=ZERO)
    for candidate in ordered:
        if RecordType(candidate.type) == RecordType.SELL:
            if candidate.quantity - state.quantity > SELL_EPSILON:
                return ValidationResult.failure(
                    CODE_INSUFFICIENT_QUANTITY,
                    f"{_prefix(candidate.source_label)}Cannot sell more than "
                    f"{format_quantity(state.quantity)} units on {candidate.date.isoformat()}.",
                )
        state = apply_transition(candidate, state, candidate.cost_basis_override)

    return ValidationResult.ok()


async def validate_timeline_window(
        store: LedgerStore,
        position_id: int,
        candidates: Sequence[LedgerEvent],
        replaced_record_ids: Iterable[int] = (),
) -> ValidationResult:
    """
    Validate a candidate window against the persisted history of a position.

    The base quantity is the running quantity just before the first
    candidate date, ignoring snapshots of the candidates themselves and of
    replaced_record_ids (records being edited or deleted).

    Args:
        store: User-scoped ledger store
        position_id: Position the window belongs to
        candidates: Proposed events plus the persisted events they affect
        replaced_record_ids: Records whose old versions must not count
    """
    if not candidates:
        return ValidationResult.ok()

    for candidate in candidates:
        check = validate_record_quantity(candidate.type, candidate.quantity, candidate.source_label)
        if not check.valid:
            return check

    ordered = sort_timeline(candidates)
    first_date = ordered[0].date

    try:
        seed = await resolve_seed(store, position_id, first_date, ordered, replaced_record_ids)
    except SQLAlchemyError as e:
        code = store_error_code(e)
        logger.error(f"Base snapshot lookup failed for position {position_id}: [{code}] {e}")
        return ValidationResult.failure(code, str(e))

    result = validate_window(seed.state.quantity, ordered)
    if not result.valid:
        logger.info(f"Rejected ledger window for position {position_id}: {result.code}")
    return result
