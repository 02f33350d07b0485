# backend/tracker/services/ledger/seeding.py
"""
Running state at the start of a replay window.

Both the validator and the recalculation engine start from the same seed:

    1. The latest snapshot at or before the window start that is not linked
       to a record inside the window (or to a record being replaced).
    2. Price-only snapshots dated on the window start never seed: their
       quantity may already include a record of that day.
    3. A NULL cost basis on the seed inherits the latest explicit basis
       before it.
    4. Records between the seed and the window start are replayed (not
       rewritten), so a missing snapshot never loses history.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from tracker.models import RecordType
from tracker.services.constants import ZERO
from tracker.services.ledger.ordering import created_no_later_than, timeline_sort_key
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.transition import apply_transition
from tracker.services.ledger.types import LedgerEvent, RunningState, SnapshotState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Seed:
    """Seed snapshot (if any), the state at the window start, and the records replayed to reach it."""
    snapshot: SnapshotState | None
    state: RunningState
    replayed: tuple[LedgerEvent, ...] = ()


async def _pick_seed_snapshot(
        store: LedgerStore,
        position_id: int,
        as_of: date,
        excluded: set[int],
) -> SnapshotState | None:
    for snapshot in await store.get_snapshots_on(position_id, as_of, excluded):
        if snapshot.is_linked:
            return snapshot

    return await store.get_seed_snapshot(position_id, as_of, excluded, strictly_before=True)


def _events_after_seed(events: Sequence[LedgerEvent], seed: SnapshotState | None) -> list[LedgerEvent]:
    if seed is None:
        return list(events)

    if seed.is_linked:
        for index, event in enumerate(events):
            if event.id == seed.portfolio_record_id:
                return list(events[index + 1:])

    # Unlinked seed (or its record is gone): keep what was created after it
    return [
        event for event in events
        if event.date > seed.date
        or (event.date == seed.date and not created_no_later_than(event, seed))
    ]


async def resolve_seed(
        store: LedgerStore,
        position_id: int,
        as_of: date,
        window: Sequence[LedgerEvent],
        excluded_record_ids: Iterable[int] = (),
) -> Seed:
    """
    Compute the running state just before the first event dated `as_of`.

    Args:
        store: User-scoped ledger store
        position_id: Position being replayed
        as_of: Window start date
        window: Events in the window (persisted ones are excluded as seeds)
        excluded_record_ids: Extra records whose snapshots must not seed
            (records being edited or deleted)

    Raises:
        SQLAlchemyError: Store failures propagate to the caller
    """
    excluded = {e.id for e in window if e.id is not None}
    excluded.update(i for i in excluded_record_ids if i is not None)

    snapshot = await _pick_seed_snapshot(store, position_id, as_of, excluded)

    if snapshot is None:
        state = RunningState.initial()
    else:
        basis = snapshot.cost_basis_per_unit
        if basis is None:
            basis = await store.get_inherited_cost_basis(position_id, snapshot)
        state = RunningState(quantity=snapshot.quantity, cost_basis=basis if basis is not None else ZERO)

    pre_window = await store.get_records(
        position_id,
        start=snapshot.date if snapshot else None,
        end=as_of,
    )
    pre_window = [e for e in pre_window if e.id not in excluded]
    to_replay = _events_after_seed(pre_window, snapshot)

    if to_replay:
        logger.debug(
            f"Replaying {len(to_replay)} records before {as_of} for position {position_id}"
        )
        update_ids = [e.id for e in to_replay if e.type == RecordType.UPDATE]
        existing = await store.get_snapshots_by_record(position_id, update_ids)
        for event in sorted(to_replay, key=timeline_sort_key):
            override = existing[event.id].cost_basis_per_unit if event.id in existing else None
            state = apply_transition(event, state, override)

    return Seed(snapshot=snapshot, state=state, replayed=tuple(to_replay))
