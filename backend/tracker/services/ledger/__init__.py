# backend/tracker/services/ledger/__init__.py
"""
Ledger engine: ordering, cost-basis transition, validation, recalculation.

Modules:
- ordering.py: The one (date, created_at, id) timeline order
- transition.py: Pure cost-basis transition function
- validation.py: Gate for every ledger mutation
- recalculation.py: Snapshot recalculation engine
- seeding.py: Running state at the start of a window
- store.py: User-scoped typed queries
- types.py: Engine dataclasses

Usage:
    from tracker.services.ledger import (
        SnapshotRecalculator,
        RecalculationOptions,
        validate_timeline_window,
    )
"""

from tracker.services.ledger.ordering import sort_timeline, timeline_sort_key
from tracker.services.ledger.recalculation import DEFAULT_PRICE_FALLBACK, SnapshotRecalculator
from tracker.services.ledger.store import LedgerStore, store_error_code
from tracker.services.ledger.transition import apply_transition
from tracker.services.ledger.types import (
    ComputedSnapshot,
    LedgerEvent,
    PriceSource,
    RecalculationOptions,
    RecalculationResult,
    RunningState,
    SnapshotState,
    ValidationResult,
)
from tracker.services.ledger.validation import (
    validate_record_quantity,
    validate_timeline_window,
    validate_window,
)

__all__ = [
    # Ordering
    "timeline_sort_key",
    "sort_timeline",
    # Transition
    "apply_transition",
    # Validation
    "validate_record_quantity",
    "validate_window",
    "validate_timeline_window",
    # Recalculation
    "SnapshotRecalculator",
    "DEFAULT_PRICE_FALLBACK",
    # Store
    "LedgerStore",
    "store_error_code",
    # Types
    "LedgerEvent",
    "SnapshotState",
    "RunningState",
    "ValidationResult",
    "PriceSource",
    "ComputedSnapshot",
    "RecalculationOptions",
    "RecalculationResult",
]
