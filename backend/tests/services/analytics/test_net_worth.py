# tests/services/analytics/test_net_worth.py
"""
Tests for NetWorthService.

Tests cover:
- Point value with liabilities, archived positions and FX conversion
- Change over a period
- Daily history: padding, market prices, after capital gains mode
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from tracker.models import PositionSnapshot, PositionType, RecordType
from tracker.services.analytics.net_worth import NetWorthService
from tracker.services.analytics.types import NetWorthMode
from tracker.services.snapshots_service import SnapshotService
from tracker.services.valuation import PositionValuationService
from tests.conftest import add_record, create_position, create_user

TODAY = date(2024, 3, 10)


@pytest.fixture
def net_worth_service(price_service, fx_service) -> NetWorthService:
    return NetWorthService(PositionValuationService(price_service), fx_service, price_service)


async def build_portfolio(db, record_service):
    """USD 200 asset, EUR 90 asset (100 USD), USD 50 liability."""
    user = await create_user(db)
    stocks = await create_position(db, user, name="Stocks")
    savings = await create_position(db, user, name="Savings", currency="EUR")
    loan = await create_position(db, user, name="Loan", position_type=PositionType.LIABILITY)
    await add_record(record_service, db, stocks, RecordType.BUY, date(2024, 3, 5), "2", "100")
    await add_record(record_service, db, savings, RecordType.UPDATE, date(2024, 3, 5), "90", "1")
    await add_record(record_service, db, loan, RecordType.UPDATE, date(2024, 3, 6), "50", "1")
    return user, stocks, savings, loan


class TestCalculateNetWorth:
    async def test_assets_minus_liabilities_in_usd(self, db, record_service, net_worth_service):
        user, *_ = await build_portfolio(db, record_service)

        assert await net_worth_service.calculate_net_worth(db, user.id, "USD", TODAY) == Decimal("250")

    async def test_target_currency(self, db, record_service, net_worth_service):
        user, *_ = await build_portfolio(db, record_service)

        assert await net_worth_service.calculate_net_worth(db, user.id, "EUR", TODAY) == Decimal("225")

    async def test_archived_positions_count(self, db, record_service, net_worth_service):
        user, stocks, *_ = await build_portfolio(db, record_service)
        stocks.archived_at = datetime(2024, 3, 8, tzinfo=timezone.utc)
        await db.flush()

        assert await net_worth_service.calculate_net_worth(db, user.id, "USD", TODAY) == Decimal("250")

    async def test_missing_rate_leaves_amount_unconverted(self, db, record_service, net_worth_service):
        user = await create_user(db)
        position = await create_position(db, user, currency="CHF")
        await add_record(record_service, db, position, RecordType.UPDATE, date(2024, 3, 5), "10", "1")

        assert await net_worth_service.calculate_net_worth(db, user.id, "USD", TODAY) == Decimal("10")

    async def test_before_any_history(self, db, record_service, net_worth_service):
        user, *_ = await build_portfolio(db, record_service)

        assert await net_worth_service.calculate_net_worth(db, user.id, "USD", date(2024, 1, 1)) == Decimal("0")

    async def test_market_price_on_the_date(self, db, record_service, net_worth_service, price_service):
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL")
        await add_record(record_service, db, position, RecordType.BUY, date(2024, 3, 5), "2", "100")
        price_service.set_price("AAPL", date(2024, 3, 8), "150")

        assert await net_worth_service.calculate_net_worth(db, user.id, "USD", TODAY) == Decimal("300")


class TestNetWorthChange:
    async def test_change_in_percent(self, db, record_service, net_worth_service):
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.UPDATE, date(2024, 3, 1), "100", "1")
        await add_record(record_service, db, position, RecordType.BUY, date(2024, 3, 9), "25", "1")

        change = await net_worth_service.net_worth_change(db, user.id, "USD", days_back=5, today=TODAY)

        assert change.previous_date == date(2024, 3, 5)
        assert (change.previous_value, change.current_value) == (Decimal("100"), Decimal("125"))
        assert change.absolute_change == Decimal("25")
        assert change.percentage_change == Decimal("25")

    async def test_zero_previous_value(self, db, record_service, net_worth_service):
        user, *_ = await build_portfolio(db, record_service)

        change = await net_worth_service.net_worth_change(db, user.id, "USD", days_back=30, today=TODAY)

        assert change.previous_value == Decimal("0")
        assert change.percentage_change == Decimal("0")


class TestNetWorthHistory:
    async def test_days_before_first_snapshot_are_zero(self, db, record_service, net_worth_service):
        user, *_ = await build_portfolio(db, record_service)

        points = await net_worth_service.net_worth_history(db, user.id, "USD", days_back=7, today=TODAY)

        assert [p.date for p in points] == [date(2024, 3, d) for d in range(4, 11)]
        assert [p.value for p in points] == [
            Decimal("0"), Decimal("300"), Decimal("250"), Decimal("250"),
            Decimal("250"), Decimal("250"), Decimal("250"),
        ]

    async def test_no_positions(self, db, net_worth_service):
        user = await create_user(db)

        points = await net_worth_service.net_worth_history(db, user.id, "USD", days_back=3, today=TODAY)

        assert [p.value for p in points] == [Decimal("0")] * 3

    async def test_after_capital_gains_uses_carried_basis(
            self, db, record_service, recalculator, net_worth_service, price_service,
    ):
        """Should tax the gain over the last explicit basis, past NULL-basis price snapshots."""
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL", capital_gains_tax_rate=Decimal("0.25"))
        await add_record(record_service, db, position, RecordType.BUY, date(2024, 3, 5), "2", "100")
        price_service.set_price("AAPL", date(2024, 3, 8), "150")
        await SnapshotService(recalculator, price_service).refresh_prices(db, user.id, date(2024, 3, 9))

        gross = await net_worth_service.net_worth_history(db, user.id, "USD", days_back=4, today=TODAY)
        net = await net_worth_service.net_worth_history(
            db, user.id, "USD", days_back=4, mode=NetWorthMode.AFTER_CAPITAL_GAINS, today=TODAY,
        )

        assert [p.value for p in gross] == [Decimal("200"), Decimal("300"), Decimal("300"), Decimal("300")]
        assert [p.value for p in net] == [Decimal("200"), Decimal("275"), Decimal("275"), Decimal("275")]

    async def test_after_capital_gains_picks_the_profit_loss_basis(self, db, record_service, net_worth_service):
        """Should tax against the record-linked basis, like P/L, not a later unlinked one."""
        user = await create_user(db)
        position = await create_position(db, user, capital_gains_tax_rate=Decimal("0.25"))
        await add_record(record_service, db, position, RecordType.BUY, date(2024, 3, 5), "2", "100")
        db.add(PositionSnapshot(
            user_id=user.id,
            position_id=position.id,
            date=date(2024, 3, 8),
            quantity=Decimal("2"),
            unit_value=Decimal("150"),
            cost_basis_per_unit=Decimal("120"),
        ))
        await db.flush()

        net = await net_worth_service.net_worth_history(
            db, user.id, "USD", days_back=1, mode=NetWorthMode.AFTER_CAPITAL_GAINS, today=TODAY,
        )
        valued, = await PositionValuationService().value_positions(db, user.id, [position], TODAY)

        assert valued.profit_loss.cost_basis_per_unit == Decimal("100")
        assert [p.value for p in net] == [Decimal("275")]

    async def test_losses_and_liabilities_are_not_taxed(self, db, record_service, net_worth_service, price_service):
        user = await create_user(db)
        position = await create_position(db, user, symbol="AAPL", capital_gains_tax_rate=Decimal("0.25"))
        loan = await create_position(db, user, name="Loan", position_type=PositionType.LIABILITY,
                                     capital_gains_tax_rate=Decimal("0.25"))
        await add_record(record_service, db, position, RecordType.BUY, date(2024, 3, 5), "2", "100")
        await add_record(record_service, db, loan, RecordType.UPDATE, date(2024, 3, 5), "10", "1")
        price_service.set_price("AAPL", date(2024, 3, 5), "80")

        net = await net_worth_service.net_worth_history(
            db, user.id, "USD", days_back=1, mode=NetWorthMode.AFTER_CAPITAL_GAINS, today=TODAY,
        )

        assert [p.value for p in net] == [Decimal("150")]
