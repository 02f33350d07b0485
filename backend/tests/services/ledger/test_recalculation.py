# tests/services/ledger/test_recalculation.py
"""
Integration tests for the snapshot recalculation engine.

These tests run the engine against the in-memory database through the
record service (which validates, inserts and then recalculates) and
directly, to cover:
- Snapshot values along a buy / buy / sell / update timeline
- Idempotence and update boundaries
- The pricing fallback chain and PRICE_UNAVAILABLE counting
- Injected and excluded records, dry runs
- Price-only snapshots kept in step with the replayed quantity
- Owner scoping and store failures
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tracker.models import PositionSnapshot, RecordType
from tracker.services.constants import CODE_POSITION_NOT_FOUND
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import LedgerEvent, PriceSource, RecalculationOptions
from tracker.services.records_service import RecordChanges, RecordService
from tracker.services.valuation import load_snapshots
from tests.conftest import FakePriceService, add_record, create_position, create_user

JAN, FEB, MAR, APR, MAY = (date(2024, m, 1) for m in range(1, 6))


async def snapshots_of(db, position) -> list:
    return (await load_snapshots(db, position.user_id, [position.id])).get(position.id, [])


async def build_scenario(db, service: RecordService, position):
    """buy 10@100, buy 5@200, sell 12, update 8@90."""
    records = [
        await add_record(service, db, position, RecordType.BUY, JAN, "10", "100"),
        await add_record(service, db, position, RecordType.BUY, FEB, "5", "200"),
        await add_record(service, db, position, RecordType.SELL, MAR, "12"),
        await add_record(service, db, position, RecordType.UPDATE, APR, "8", "90"),
    ]
    return records


class TestScenario:
    """The reference buy / buy / sell / update timeline."""

    async def test_snapshots_along_the_timeline(self, db, record_service):
        """Should write one snapshot per record and end at the update's state."""
        user = await create_user(db)
        position = await create_position(db, user)
        records = await build_scenario(db, record_service, position)

        snapshots = await snapshots_of(db, position)

        assert [s.portfolio_record_id for s in snapshots] == [r.id for r in records]
        assert [s.quantity for s in snapshots] == [Decimal("10"), Decimal("15"), Decimal("3"), Decimal("8")]
        assert snapshots[0].cost_basis_per_unit == Decimal("100")
        assert abs(snapshots[1].cost_basis_per_unit - Decimal("133.33333333")) < Decimal("1e-6")
        assert snapshots[2].cost_basis_per_unit == snapshots[1].cost_basis_per_unit
        assert snapshots[3].cost_basis_per_unit == Decimal("90")

    async def test_sell_without_price_is_valued_at_cost_basis(self, db, record_service):
        """Should fall back from the record price to the running cost basis."""
        user = await create_user(db)
        position = await create_position(db, user)
        await build_scenario(db, record_service, position)

        sell_snapshot = (await snapshots_of(db, position))[2]

        assert sell_snapshot.unit_value == sell_snapshot.cost_basis_per_unit

    async def test_recalculation_is_idempotent(self, db, record_service, recalculator):
        """Should produce the same rows when run twice."""
        user = await create_user(db)
        position = await create_position(db, user)
        await build_scenario(db, record_service, position)
        before = await snapshots_of(db, position)

        await recalculator.recalculate(db, user.id, position.id, JAN)
        await recalculator.recalculate(db, user.id, position.id, JAN)
        after = await snapshots_of(db, position)

        assert len(after) == len(before) == 4
        assert [(s.id, s.quantity, s.unit_value, s.cost_basis_per_unit) for s in after] == [
            (s.id, s.quantity, s.unit_value, s.cost_basis_per_unit) for s in before
        ]


class TestBoundaries:
    """Recalculation windows end before the next update."""

    async def test_window_stops_at_next_update(self, db, record_service, recalculator):
        """Should leave snapshots at and after the boundary update untouched."""
        user = await create_user(db)
        position = await create_position(db, user)
        await build_scenario(db, record_service, position)
        await add_record(record_service, db, position, RecordType.BUY, MAY, "2", "95")
        update_snapshot_before = (await snapshots_of(db, position))[3]

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.success is True
        assert result.boundary_date == APR
        assert [s.date for s in result.snapshots] == [JAN, FEB, MAR]
        assert result.snapshots_written == 3
        update_snapshot_after = (await snapshots_of(db, position))[3]
        assert update_snapshot_after == update_snapshot_before

    async def test_earlier_edit_does_not_reach_past_update(self, db, record_service):
        """Should keep post-update snapshots when a pre-update buy changes."""
        user = await create_user(db)
        position = await create_position(db, user)
        first_buy, *_ = await build_scenario(db, record_service, position)
        await add_record(record_service, db, position, RecordType.BUY, MAY, "2", "95")

        await record_service.update_record(db, user.id, first_buy.id, RecordChanges(quantity=Decimal("20")))

        snapshots = await snapshots_of(db, position)
        assert [s.quantity for s in snapshots] == [
            Decimal("20"), Decimal("25"), Decimal("13"), Decimal("8"), Decimal("10"),
        ]
        assert snapshots[4].cost_basis_per_unit == (Decimal("8") * 90 + Decimal("2") * 95) / Decimal("10")


class TestPricingFallback:
    """Unit values resolved through market, record, cost basis, floor."""

    async def test_market_price_wins_for_linked_positions(self, db):
        prices = FakePriceService()
        prices.set_price("VWCE.DE", JAN, "105")
        service = RecordService(SnapshotRecalculator(price_service=prices))
        user = await create_user(db)
        position = await create_position(db, user, symbol="VWCE.DE")

        await add_record(service, db, position, RecordType.BUY, JAN, "10", "100")

        snapshot = (await snapshots_of(db, position))[0]
        assert snapshot.unit_value == Decimal("105")
        assert snapshot.cost_basis_per_unit == Decimal("100")

    async def test_missing_market_price_counts_as_unavailable(self, db, record_service):
        """Should count the miss and price from the record instead."""
        recalculator = SnapshotRecalculator(price_service=FakePriceService())
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL")
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.price_unavailable == 1
        assert result.snapshots[0].unit_value == Decimal("100")
        assert result.snapshots[0].price_source == PriceSource.RECORD

    async def test_manual_positions_never_count_unavailable(self, db, record_service):
        recalculator = SnapshotRecalculator(price_service=FakePriceService())
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "1", "100")

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.price_unavailable == 0

    async def test_floor_when_nothing_is_priced(self, db, record_service, recalculator):
        """Should value a zero-priced zero-basis holding at the floor."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.UPDATE, JAN, "0", "0")

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.snapshots[0].unit_value == Decimal("1")
        assert result.snapshots[0].price_source == PriceSource.FLOOR

    async def test_configurable_chain_always_ends_at_floor(self, db, record_service):
        """Should skip tiers left out of the chain and append the floor."""
        recalculator = SnapshotRecalculator(price_fallback=(PriceSource.COST_BASIS,), price_floor=Decimal("0.01"))
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.UPDATE, JAN, "5", "40", cost_basis_override="30")

        result = await recalculator.recalculate(db, user.id, position.id, JAN, RecalculationOptions(dry_run=True))

        assert result.snapshots[0].unit_value == Decimal("30")
        assert result.snapshots[0].price_source == PriceSource.COST_BASIS


class TestOptions:
    """Injected, excluded and dry-run recalculations."""

    async def test_injected_event_is_returned_not_written(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        proposed = LedgerEvent(position.id, RecordType.SELL, FEB, Decimal("4"), Decimal("120"))

        result = await recalculator.recalculate(
            db, user.id, position.id, JAN, RecalculationOptions(include_record=proposed, dry_run=True)
        )

        assert [s.quantity for s in result.snapshots] == [Decimal("10"), Decimal("6")]
        assert result.snapshots[-1].record_id is None
        assert result.snapshots[-1].persisted is False
        assert result.snapshots_written == 0
        assert len(await snapshots_of(db, position)) == 1

    async def test_injected_update_ends_window(self, db, record_service, recalculator):
        """Should stop the persisted window at an injected update."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await add_record(record_service, db, position, RecordType.BUY, MAR, "1", "100")
        proposed = LedgerEvent(position.id, RecordType.UPDATE, FEB, Decimal("3"), Decimal("50"))

        result = await recalculator.recalculate(
            db, user.id, position.id, JAN, RecalculationOptions(include_record=proposed, dry_run=True)
        )

        assert result.boundary_date == FEB
        assert [s.date for s in result.snapshots] == [JAN, FEB]

    async def test_excluded_record_snapshot_is_removed(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        first = await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        second = await add_record(record_service, db, position, RecordType.BUY, FEB, "10", "200")

        result = await recalculator.recalculate(
            db, user.id, position.id, JAN, RecalculationOptions(exclude_record_id=second.id)
        )

        assert [s.record_id for s in result.snapshots] == [first.id]
        assert [s.portfolio_record_id for s in await snapshots_of(db, position)] == [first.id]

    async def test_cost_basis_override_option(self, db, record_service, recalculator):
        """Should apply an explicit override to an update record."""
        user = await create_user(db)
        position = await create_position(db, user)
        update = await add_record(record_service, db, position, RecordType.UPDATE, JAN, "4", "50")

        result = await recalculator.recalculate(
            db, user.id, position.id, JAN,
            RecalculationOptions(cost_basis_overrides={update.id: Decimal("42")}),
        )

        assert result.snapshots[0].cost_basis_per_unit == Decimal("42")

    async def test_stored_override_survives_recalculation(self, db, record_service, recalculator):
        """Should keep an update's overridden basis when a later record triggers a replay."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.UPDATE, JAN, "4", "50", cost_basis_override="42")
        await add_record(record_service, db, position, RecordType.BUY, FEB, "4", "42")

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.snapshots[0].cost_basis_per_unit == Decimal("42")
        assert result.snapshots[1].cost_basis_per_unit == Decimal("42")

    async def test_empty_window_is_a_noop(self, db, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.success is True
        assert result.snapshots == ()


class TestPriceOnlySnapshots:
    """Unlinked snapshots inside the window follow the replayed quantity."""

    @staticmethod
    async def add_price_only(db, position, on, quantity):
        await LedgerStore(db, position.user_id).upsert_snapshot(
            position.id, None, on, Decimal(quantity), Decimal("120"), None
        )
        await db.flush()

    @staticmethod
    async def price_only(db, position):
        return [(s.date, s.quantity) for s in await snapshots_of(db, position) if s.portfolio_record_id is None]

    async def test_resynced_up_to_the_boundary(self, db, record_service, recalculator):
        """Should fix snapshots before the next update and leave later ones alone."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await add_record(record_service, db, position, RecordType.BUY, MAR, "5", "100")
        await add_record(record_service, db, position, RecordType.UPDATE, APR, "3", "90")
        await self.add_price_only(db, position, FEB, "99")
        await self.add_price_only(db, position, MAY, "99")

        result = await recalculator.recalculate(db, user.id, position.id, JAN)

        assert result.price_only_resynced == 1
        assert await self.price_only(db, position) == [(FEB, Decimal("10")), (MAY, Decimal("99"))]
        unlinked = [s for s in await snapshots_of(db, position) if s.portfolio_record_id is None]
        assert all(s.cost_basis_per_unit is None for s in unlinked)

    async def test_dry_run_leaves_them(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await self.add_price_only(db, position, FEB, "99")

        result = await recalculator.recalculate(db, user.id, position.id, JAN, RecalculationOptions(dry_run=True))

        assert result.price_only_resynced == 0
        assert await self.price_only(db, position) == [(FEB, Decimal("99"))]

    async def test_empty_window_still_resyncs(self, db, record_service, recalculator):
        """Should fix snapshots after from_date even when no record is replayed."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await self.add_price_only(db, position, MAR, "99")

        result = await recalculator.recalculate(db, user.id, position.id, FEB)

        assert result.snapshots == ()
        assert result.price_only_resynced == 1
        assert await self.price_only(db, position) == [(MAR, Decimal("10"))]

    async def test_same_day_record_created_later(self, db, record_service):
        """Should keep the quantity held before a same-day record entered after the refresh."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await self.add_price_only(db, position, FEB, "10")

        await add_record(record_service, db, position, RecordType.BUY, FEB, "5", "100")

        assert await self.price_only(db, position) == [(FEB, Decimal("10"))]
        assert (await snapshots_of(db, position))[-1].quantity == Decimal("15")


class TestFailures:
    async def test_other_users_position_is_not_found(self, db, record_service, recalculator):
        """Should fail fast with POSITION_NOT_FOUND for a position the caller does not own."""
        owner = await create_user(db, email="owner@example.com")
        intruder = await create_user(db, email="intruder@example.com")
        position = await create_position(db, owner)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "1", "1")

        result = await recalculator.recalculate(db, intruder.id, position.id, JAN)

        assert result.success is False
        assert result.code == CODE_POSITION_NOT_FOUND

    async def test_store_error_becomes_failed_result(self, db, recalculator, monkeypatch):
        """Should report the driver error class as the code instead of raising."""
        user = await create_user(db)

        async def broken(self, position_id):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(LedgerStore, "get_position", broken)
        result = await recalculator.recalculate(db, user.id, 1, JAN)

        assert result.success is False
        assert result.code == "Exception"
        assert "database is locked" in result.message

    async def test_snapshot_rows_unique_per_record(self, db, record_service):
        """Should never write two snapshots for one record."""
        user = await create_user(db)
        position = await create_position(db, user)
        record = await add_record(record_service, db, position, RecordType.BUY, JAN, "1", "1")
        await record_service.update_record(db, user.id, record.id, RecordChanges(unit_value=Decimal("2")))

        count = await db.scalar(
            select(func.count()).select_from(PositionSnapshot).where(PositionSnapshot.portfolio_record_id == record.id)
        )
        assert count == 1
