# backend/tracker/services/ledger/recalculation.py
"""
Snapshot recalculation engine.

Re-derives the snapshots of one position from a start date up to the next
update record (the boundary), after a ledger mutation.

Algorithm:
    1. Load the position (owner-scoped); fail with POSITION_NOT_FOUND.
    2. Drop the snapshot of the excluded record, if any.
    3. Boundary = first update strictly after from_date. An injected update
       before that boundary ends the persisted part of the window instead.
    4. Window = records in [from_date, boundary) minus the excluded record,
       plus the injected event. Empty window is a successful no-op.
    5. Seed the running state (see seeding.py).
    6. Fetch existing snapshots and market prices for the window up front.
    7. Replay in timeline order; resolve each snapshot's unit value through
       the pricing fallback chain.
    8. Upsert one snapshot per persisted record. Injected events are only
       returned. dry_run writes nothing.
    9. Reset the quantity of price-only snapshots in the window to the
       running quantity at their timeline position (empty windows too).

Store failures come back as a failed result carrying the driver's error
code. Missing market prices are soft failures (PRICE_UNAVAILABLE): they are
logged, counted, and priced by the next tier of the chain.

Usage:
    recalculator = SnapshotRecalculator(price_service)
    result = await recalculator.recalculate(db, user_id, position_id, date(2024, 3, 1))
"""

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import Position, RecordType
from tracker.services.constants import (
    CODE_POSITION_NOT_FOUND,
    CODE_PRICE_UNAVAILABLE,
    PRICE_FLOOR,
    ZERO,
)
from tracker.services.exceptions import MarketDataError
from tracker.services.ledger.ordering import created_no_later_than, sort_timeline, timeline_sort_key
from tracker.services.ledger.seeding import resolve_seed
from tracker.services.ledger.store import LedgerStore, store_error_code
from tracker.services.ledger.transition import apply_transition
from tracker.services.ledger.types import (
    ComputedSnapshot,
    LedgerEvent,
    PriceSource,
    RecalculationOptions,
    RecalculationResult,
    RunningState,
)
from tracker.services.protocols import PositionPriceServiceProtocol

logger = logging.getLogger(__name__)

# Tiers tried in order for a snapshot's unit value. FLOOR always applies last.
DEFAULT_PRICE_FALLBACK: tuple[PriceSource, ...] = (
    PriceSource.MARKET,
    PriceSource.RECORD,
    PriceSource.COST_BASIS,
    PriceSource.FLOOR,
)


def _precedes(item, other) -> bool:
    """True if item sits before other on the timeline (same day: created no later)."""
    return item.date < other.date or (item.date == other.date and created_no_later_than(item, other))


class SnapshotRecalculator:
    """
    Recomputes position snapshots after ledger mutations.

    Holds no per-call state, so one instance is shared across requests
    (see dependencies.get_recalculator). It takes no locks: callers
    serialize mutations of the same position.
    """

    def __init__(
            self,
            price_service: PositionPriceServiceProtocol | None = None,
            price_fallback: Sequence[PriceSource] = DEFAULT_PRICE_FALLBACK,
            price_floor: Decimal = PRICE_FLOOR,
    ) -> None:
        self._price_service = price_service
        self._price_fallback = tuple(price_fallback)
        if PriceSource.FLOOR not in self._price_fallback:
            self._price_fallback += (PriceSource.FLOOR,)
        self._price_floor = price_floor

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def recalculate(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int,
            from_date: date,
            options: RecalculationOptions | None = None,
    ) -> RecalculationResult:
        """
        Recalculate the snapshots of one position from from_date.

        Never raises for store failures; see RecalculationResult.
        """
        options = options or RecalculationOptions()
        store = LedgerStore(db, user_id)

        try:
            return await self._recalculate(db, store, position_id, from_date, options)
        except SQLAlchemyError as e:
            code = store_error_code(e)
            logger.error(
                f"Recalculation failed for position {position_id} from {from_date}: [{code}] {e}"
            )
            return RecalculationResult.failure(code, str(e))

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _recalculate(
            self,
            db: AsyncSession,
            store: LedgerStore,
            position_id: int,
            from_date: date,
            options: RecalculationOptions,
    ) -> RecalculationResult:
        position = await store.get_position(position_id)
        if position is None:
            return RecalculationResult.failure(
                CODE_POSITION_NOT_FOUND, f"Position {position_id} not found"
            )

        excluded = {options.exclude_record_id} if options.exclude_record_id is not None else set()
        if options.exclude_record_id is not None and not options.dry_run:
            await store.delete_record_snapshot(position_id, options.exclude_record_id)

        # Step 3: boundary
        boundary = await store.get_boundary_record(position_id, from_date, excluded)
        injected = options.include_record
        cutoff = boundary
        if (
                injected is not None
                and RecordType(injected.type) == RecordType.UPDATE
                and injected.date > from_date
                and (boundary is None or timeline_sort_key(injected) < timeline_sort_key(boundary))
        ):
            cutoff = injected
        boundary_date = cutoff.date if cutoff else None

        # Step 4: window
        persisted = await store.get_records(
            position_id,
            start=from_date,
            end=boundary_date,
            exclude_record_id=options.exclude_record_id,
            include_end=True,
        )
        if cutoff is not None:
            cutoff_key = timeline_sort_key(cutoff)
            persisted = [e for e in persisted if timeline_sort_key(e) < cutoff_key]

        window = list(persisted)
        if injected is not None and injected.date >= from_date:
            window.append(injected)
        window = sort_timeline(window)

        # Step 5: seed
        if not window:
            logger.debug(f"Nothing to recalculate for position {position_id} from {from_date}")
            if options.dry_run:
                return RecalculationResult(success=True, boundary_date=boundary_date)
            seed = await resolve_seed(store, position_id, from_date, window, excluded)
            resynced = await self._resync_price_only(store, position_id, from_date, cutoff, seed.state, [])
            await db.flush()
            return RecalculationResult(success=True, boundary_date=boundary_date, price_only_resynced=resynced)

        seed = await resolve_seed(store, position_id, from_date, window, excluded)

        # Step 6: bulk reads
        existing = await store.get_snapshots_by_record(position_id, [e.id for e in persisted])
        prices = await self._fetch_prices(db, position, sorted({e.date for e in window}))

        # Step 7: replay
        state = seed.state
        computed: list[ComputedSnapshot] = []
        states: list[tuple[LedgerEvent, RunningState]] = []
        price_unavailable = 0
        for event in window:
            override = self._override_for(event, options, existing)
            state = apply_transition(event, state, override)
            states.append((event, state))

            market_price = prices.get((position.id, event.date)) if self._is_market_linked(position) else None
            if self._is_market_linked(position) and market_price is None:
                price_unavailable += 1
                logger.warning(
                    f"{CODE_PRICE_UNAVAILABLE}: no market price for position {position.id} "
                    f"({position.symbol or position.domain}) on {event.date}"
                )

            unit_value, source = self._resolve_unit_value(market_price, event, state)
            computed.append(ComputedSnapshot(
                record_id=event.id,
                position_id=position.id,
                date=event.date,
                record_type=RecordType(event.type),
                quantity=state.quantity,
                unit_value=unit_value,
                cost_basis_per_unit=state.cost_basis,
                price_source=source,
                persisted=event.is_persisted,
            ))

        # Step 8: write
        written = resynced = 0
        if not options.dry_run:
            for snapshot in computed:
                if not snapshot.persisted or snapshot.date < from_date:
                    continue
                await store.upsert_snapshot(
                    position_id,
                    snapshot.record_id,
                    snapshot.date,
                    snapshot.quantity,
                    snapshot.unit_value,
                    snapshot.cost_basis_per_unit,
                    existing=existing.get(snapshot.record_id),
                )
                written += 1
            resynced = await self._resync_price_only(store, position_id, from_date, cutoff, seed.state, states)
            await db.flush()

        logger.info(
            f"Recalculated position {position_id} from {from_date}: "
            f"{len(computed)} events, {written} snapshots written, "
            f"{resynced} price-only resynced, boundary={boundary_date}, "
            f"price_unavailable={price_unavailable}"
        )

        return RecalculationResult(
            success=True,
            snapshots=tuple(computed),
            boundary_date=boundary_date,
            snapshots_written=written,
            price_unavailable=price_unavailable,
            price_only_resynced=resynced,
        )

    @staticmethod
    async def _resync_price_only(
            store: LedgerStore,
            position_id: int,
            from_date: date,
            cutoff: LedgerEvent | None,
            seed_state: RunningState,
            states: Sequence[tuple[LedgerEvent, RunningState]],
    ) -> int:
        """
        Give each price-only snapshot in the window the running quantity at
        its place in the timeline. Unit value and the NULL basis are kept.

        Returns the number of snapshots changed.
        """
        snapshots = await store.get_price_only_snapshots(
            position_id, from_date, cutoff.date if cutoff else None
        )
        changed = 0
        for snapshot in snapshots:
            if cutoff is not None and not _precedes(snapshot, cutoff):
                continue
            quantity = seed_state.quantity
            for event, state in states:
                if not _precedes(event, snapshot):
                    break
                quantity = state.quantity
            if snapshot.quantity != quantity:
                await store.set_snapshot_quantity(snapshot.id, quantity)
                changed += 1
        return changed

    @staticmethod
    def _is_market_linked(position: Position) -> bool:
        return bool(position.symbol or position.domain)

    @staticmethod
    def _override_for(event: LedgerEvent, options: RecalculationOptions, existing) -> Decimal | None:
        """Cost basis override for an update: explicit option, then event, then stored snapshot."""
        if RecordType(event.type) != RecordType.UPDATE:
            return None
        if event.id is not None and event.id in options.cost_basis_overrides:
            return options.cost_basis_overrides[event.id]
        if event.cost_basis_override is not None:
            return event.cost_basis_override
        snapshot = existing.get(event.id) if event.id is not None else None
        return snapshot.cost_basis_per_unit if snapshot else None

    async def _fetch_prices(
            self,
            db: AsyncSession,
            position: Position,
            dates: list[date],
    ) -> dict[tuple[int, date], Decimal]:
        if self._price_service is None or not self._is_market_linked(position) or not dates:
            return {}
        try:
            return await self._price_service.get_position_prices(db, [position], dates)
        except MarketDataError as e:
            logger.warning(f"Market prices unavailable for position {position.id}: {e}")
            return {}

    def _resolve_unit_value(
            self,
            market_price: Decimal | None,
            event: LedgerEvent,
            state: RunningState,
    ) -> tuple[Decimal, PriceSource]:
        for source in self._price_fallback:
            if source == PriceSource.MARKET and market_price is not None and market_price > ZERO:
                return market_price, source
            if source == PriceSource.RECORD and event.unit_value is not None and event.unit_value > ZERO:
                return event.unit_value, source
            if source == PriceSource.COST_BASIS and state.cost_basis > ZERO:
                return state.cost_basis, source
            if source == PriceSource.FLOOR:
                return self._price_floor, source
        return self._price_floor, PriceSource.FLOOR
