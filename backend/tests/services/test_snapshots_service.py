# tests/services/test_snapshots_service.py
"""
Tests for SnapshotService: listing, price refresh and manual recalculation.
"""

from datetime import date
from decimal import Decimal

import pytest

from tracker.models import RecordType
from tracker.services.exceptions import (
    LedgerValidationError,
    PositionNotFoundError,
    ProviderUnavailableError,
    ValidationError,
)
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import LedgerEvent
from tracker.services.ledger.validation import validate_timeline_window
from tracker.services.snapshots_service import SnapshotService
from tracker.services.valuation import PositionValuationService, load_snapshots
from tests.conftest import add_record, create_position, create_user

JAN, FEB, MAR, APR = date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)


class TestListSnapshots:
    async def test_lists_in_timeline_order_within_range(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        for on in (JAN, FEB, MAR):
            await add_record(record_service, db, position, RecordType.BUY, on, "1", "10")
        service = SnapshotService(recalculator, None)

        snapshots = await service.list_snapshots(db, user.id, position.id, start=FEB, end=MAR)

        assert [s.date for s in snapshots] == [FEB, MAR]
        assert [s.quantity for s in snapshots] == [Decimal("2"), Decimal("3")]

    async def test_rejects_inverted_range(self, db, recalculator):
        with pytest.raises(ValidationError):
            await SnapshotService(recalculator, None).list_snapshots(db, 1, 1, start=MAR, end=JAN)

    async def test_other_users_position(self, db, recalculator):
        owner = await create_user(db, email="owner@example.com")
        other = await create_user(db, email="other@example.com")
        position = await create_position(db, owner)

        with pytest.raises(PositionNotFoundError):
            await SnapshotService(recalculator, None).list_snapshots(db, other.id, position.id)


class TestRefreshPrices:
    async def test_disabled_market_data(self, db, recalculator):
        with pytest.raises(ProviderUnavailableError):
            await SnapshotService(recalculator, None).refresh_prices(db, 1)

    async def test_writes_then_updates_price_only_snapshot(self, db, record_service, recalculator, price_service):
        """Should create one unlinked snapshot with a NULL basis, then update it in place."""
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL")
        await add_record(record_service, db, position, RecordType.BUY, JAN, "3", "150")
        price_service.set_price("AAPL", MAR, "170")
        service = SnapshotService(recalculator, price_service)

        first = await service.refresh_prices(db, user.id, MAR)
        price_service.set_price("AAPL", MAR, "175")
        second = await service.refresh_prices(db, user.id, MAR)

        assert (first.created, first.updated) == (1, 0)
        assert (second.created, second.updated) == (0, 1)
        snapshots = (await load_snapshots(db, user.id, [position.id]))[position.id]
        refreshed = snapshots[-1]
        assert len(snapshots) == 2
        assert refreshed.portfolio_record_id is None
        assert refreshed.cost_basis_per_unit is None
        assert (refreshed.quantity, refreshed.unit_value) == (Decimal("3"), Decimal("175"))

    async def test_skips_manual_empty_and_unpriced_positions(self, db, record_service, recalculator, price_service):
        user = await create_user(db)
        manual = await create_position(db, user, name="House")
        empty = await create_position(db, user, name="Sold", symbol="MSFT")
        unpriced = await create_position(db, user, name="Delisted", symbol="GONE")
        await add_record(record_service, db, manual, RecordType.BUY, JAN, "1", "100")
        await add_record(record_service, db, empty, RecordType.BUY, JAN, "1", "100")
        await add_record(record_service, db, empty, RecordType.SELL, FEB, "1", "120")
        await add_record(record_service, db, unpriced, RecordType.BUY, JAN, "1", "5")
        price_service.set_price("MSFT", MAR, "400")

        result = await SnapshotService(recalculator, price_service).refresh_prices(db, user.id, MAR)

        assert (result.created, result.updated) == (0, 0)
        assert result.missing_prices == (unpriced.id,)


class TestPriceOnlySnapshotsAfterBackdatedRecords:
    """A record dated before a price refresh keeps the refreshed snapshot in step with the ledger."""

    @pytest.fixture
    async def refreshed(self, db, record_service, recalculator, price_service):
        """10 units bought in January, prices refreshed in March."""
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL")
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        price_service.set_price("AAPL", MAR, "130")
        await SnapshotService(recalculator, price_service).refresh_prices(db, user.id, MAR)
        return user, position

    @staticmethod
    async def price_only(db, position):
        snapshots = (await load_snapshots(db, position.user_id, [position.id]))[position.id]
        return [s for s in snapshots if s.portfolio_record_id is None]

    @staticmethod
    async def valued_on(db, position, price_service, on):
        valued, = await PositionValuationService(price_service).value_positions(db, position.user_id, [position], on)
        return valued

    @staticmethod
    async def base_quantity_check(db, position, quantity):
        sell = LedgerEvent(position.id, RecordType.SELL, APR, Decimal(quantity), Decimal("130"))
        return await validate_timeline_window(LedgerStore(db, position.user_id), position.id, [sell])

    async def test_backdated_buy(self, db, record_service, price_service, refreshed):
        """Should add the earlier buy to the refreshed quantity."""
        user, position = refreshed

        await add_record(record_service, db, position, RecordType.BUY, FEB, "5", "110")

        snapshot, = await self.price_only(db, position)
        assert snapshot.quantity == Decimal("15")
        assert snapshot.cost_basis_per_unit is None
        assert snapshot.unit_value == Decimal("130")
        valued = await self.valued_on(db, position, price_service, MAR)
        assert valued.current_quantity == Decimal("15")
        assert valued.current_value == Decimal("1950")
        assert (await self.base_quantity_check(db, position, "15")).valid is True
        await add_record(record_service, db, position, RecordType.SELL, APR, "12", "130")

    async def test_backdated_sell(self, db, record_service, price_service, refreshed):
        """Should lower the refreshed quantity, so a later oversell is caught."""
        user, position = refreshed

        await add_record(record_service, db, position, RecordType.SELL, FEB, "4", "120")

        snapshot, = await self.price_only(db, position)
        assert snapshot.quantity == Decimal("6")
        assert (await self.valued_on(db, position, price_service, MAR)).current_quantity == Decimal("6")
        assert (await self.base_quantity_check(db, position, "7")).valid is False
        with pytest.raises(LedgerValidationError, match="Cannot sell more than 6 units"):
            await add_record(record_service, db, position, RecordType.SELL, APR, "7", "130")

    async def test_backdated_update(self, db, record_service, price_service, refreshed):
        """Should reset the refreshed quantity and keep its NULL basis inheriting the update's."""
        user, position = refreshed

        await add_record(record_service, db, position, RecordType.UPDATE, FEB, "3", "50")

        snapshot, = await self.price_only(db, position)
        assert snapshot.quantity == Decimal("3")
        assert snapshot.cost_basis_per_unit is None
        valued = await self.valued_on(db, position, price_service, MAR)
        assert valued.current_quantity == Decimal("3")
        assert valued.profit_loss.profit_loss == Decimal("240")
        assert (await self.base_quantity_check(db, position, "3.5")).valid is False

    async def test_deleted_backdated_record(self, db, record_service, price_service, refreshed):
        """Should take a deleted record back out of the refreshed quantity."""
        user, position = refreshed
        buy = await add_record(record_service, db, position, RecordType.BUY, FEB, "5", "110")

        await record_service.delete_record(db, user.id, buy.id)

        snapshot, = await self.price_only(db, position)
        assert snapshot.quantity == Decimal("10")
        assert (await self.valued_on(db, position, price_service, MAR)).current_quantity == Decimal("10")

    async def test_refresh_after_backdated_buy_agrees(self, db, record_service, recalculator, price_service, refreshed):
        """Should leave a second refresh with nothing to correct."""
        user, position = refreshed
        await add_record(record_service, db, position, RecordType.BUY, FEB, "5", "110")

        result = await SnapshotService(recalculator, price_service).refresh_prices(db, user.id, MAR)

        assert (result.created, result.updated) == (0, 1)
        snapshot, = await self.price_only(db, position)
        assert snapshot.quantity == Decimal("15")


class TestRecalculate:
    async def test_whole_timeline(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "2", "10")
        await add_record(record_service, db, position, RecordType.UPDATE, FEB, "5", "12")
        await add_record(record_service, db, position, RecordType.BUY, MAR, "1", "18")

        results = await SnapshotService(recalculator, None).recalculate(db, user.id, position.id)

        assert len(results) == 2
        assert sum(r.snapshots_written for r in results) == 3
        assert results[-1].snapshots[-1].cost_basis_per_unit == Decimal("13")

    async def test_from_date_skips_earlier_segments(self, db, record_service, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "2", "10")
        await add_record(record_service, db, position, RecordType.UPDATE, FEB, "5", "12")

        results = await SnapshotService(recalculator, None).recalculate(db, user.id, position.id, FEB)

        assert [[s.date for s in r.snapshots] for r in results] == [[FEB]]

    async def test_position_without_history(self, db, recalculator):
        user = await create_user(db)
        position = await create_position(db, user)

        assert await SnapshotService(recalculator, None).recalculate(db, user.id, position.id) == []

    async def test_unknown_position(self, db, recalculator):
        with pytest.raises(PositionNotFoundError):
            await SnapshotService(recalculator, None).recalculate(db, 1, 999)
