# tests/services/ledger/test_ledger_validation.py
"""
Tests for the timeline validator: structural quantity checks and the
oversell replay.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tracker.models import RecordType
from tracker.services.constants import CODE_INSUFFICIENT_QUANTITY, CODE_INVALID_QUANTITY
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import LedgerEvent
from tracker.services.ledger.validation import (
    format_quantity,
    validate_record_quantity,
    validate_timeline_window,
    validate_window,
)
from tests.conftest import add_record, create_position, create_user

T0 = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)


def candidate(kind: RecordType, on: date, quantity: str, created_at=None, id=None, label=None) -> LedgerEvent:
    return LedgerEvent(
        position_id=1, type=kind, date=on, quantity=Decimal(quantity), unit_value=Decimal("10"),
        id=id, created_at=created_at, source_label=label,
    )


class TestValidateRecordQuantity:
    """Tests for structural quantity checks."""

    @pytest.mark.parametrize("kind,quantity,message", [
        (RecordType.BUY, "0", "Buy quantity must be greater than 0."),
        (RecordType.SELL, "-1", "Sell quantity must be greater than 0."),
        (RecordType.UPDATE, "-0.5", "Update quantity must be 0 or greater."),
    ])
    def test_rejects_out_of_range(self, kind, quantity, message):
        result = validate_record_quantity(kind, Decimal(quantity))

        assert result.valid is False
        assert result.code == CODE_INVALID_QUANTITY
        assert result.message == message

    @pytest.mark.parametrize("value", [None, "abc", Decimal("NaN"), float("inf"), True])
    def test_rejects_non_numbers(self, value):
        result = validate_record_quantity(RecordType.BUY, value)

        assert result.code == CODE_INVALID_QUANTITY
        assert result.message == "Quantity must be a valid number."

    def test_update_to_zero_is_allowed(self):
        assert validate_record_quantity(RecordType.UPDATE, Decimal("0")).valid is True

    def test_source_label_prefixes_message(self):
        result = validate_record_quantity("buy", Decimal("0"), source_label="Row 4")

        assert result.message == "Row 4: Buy quantity must be greater than 0."


class TestValidateWindow:
    """Tests for the oversell replay."""

    def test_rejects_oversell_with_available_quantity_and_date(self):
        """Should name the units held and the sell date."""
        result = validate_window(Decimal("21"), [candidate(RecordType.SELL, date(2026, 1, 15), "22")])

        assert result.valid is False
        assert result.code == CODE_INSUFFICIENT_QUANTITY
        assert "21" in result.message
        assert "2026-01-15" in result.message

    def test_same_day_order_follows_creation_time(self):
        """Should evaluate an earlier-created sell before a later-created buy."""
        sell = candidate(RecordType.SELL, date(2026, 1, 15), "5", created_at=T0)
        buy = candidate(RecordType.BUY, date(2026, 1, 15), "10", created_at=T0 + timedelta(minutes=1))

        result = validate_window(Decimal("0"), [buy, sell])

        assert result.code == CODE_INSUFFICIENT_QUANTITY

    def test_buy_before_sell_is_accepted(self):
        buy = candidate(RecordType.BUY, date(2026, 1, 15), "10", created_at=T0)
        sell = candidate(RecordType.SELL, date(2026, 1, 15), "5", created_at=T0 + timedelta(minutes=1))

        assert validate_window(Decimal("0"), [sell, buy]).valid is True

    def test_sell_within_epsilon_is_accepted(self):
        """Should tolerate rounding noise below SELL_EPSILON."""
        result = validate_window(Decimal("3"), [candidate(RecordType.SELL, date(2026, 1, 1), "3.0000000001")])

        assert result.valid is True

    def test_update_resets_available_quantity(self):
        """Should allow selling what an update set, whatever was held before."""
        update = candidate(RecordType.UPDATE, date(2026, 1, 1), "50", created_at=T0)
        sell = candidate(RecordType.SELL, date(2026, 1, 2), "40", created_at=T0)

        assert validate_window(Decimal("0"), [update, sell]).valid is True

    def test_structural_error_wins_over_oversell(self):
        """Should report the invalid row even when an earlier sell oversells."""
        oversell = candidate(RecordType.SELL, date(2026, 1, 1), "100")
        invalid = candidate(RecordType.BUY, date(2026, 2, 1), "0", label="Row 2")

        result = validate_window(Decimal("0"), [oversell, invalid])

        assert result.code == CODE_INVALID_QUANTITY
        assert result.message.startswith("Row 2: ")

    def test_oversell_message_carries_label(self):
        result = validate_window(
            Decimal("1.5"), [candidate(RecordType.SELL, date(2026, 3, 1), "2", label="Row 7")]
        )

        assert result.message == "Row 7: Cannot sell more than 1.5 units on 2026-03-01."


class TestFormatQuantity:
    def test_drops_trailing_zeros(self):
        assert format_quantity(Decimal("21.00000000")) == "21"
        assert format_quantity(Decimal("0.50")) == "0.5"
        assert format_quantity(Decimal("1E+2")) == "100"


class TestValidateTimelineWindow:
    """Tests for validation against persisted history."""

    async def test_base_quantity_comes_from_history(self, db, record_service):
        """Should seed the replay with the quantity held before the window."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, date(2026, 1, 1), "21", "10")

        store = LedgerStore(db, user.id)
        oversell = LedgerEvent(position.id, RecordType.SELL, date(2026, 1, 15), Decimal("22"), Decimal("0"))
        ok = LedgerEvent(position.id, RecordType.SELL, date(2026, 1, 15), Decimal("21"), Decimal("0"))

        rejected = await validate_timeline_window(store, position.id, [oversell])
        accepted = await validate_timeline_window(store, position.id, [ok])

        assert rejected.code == CODE_INSUFFICIENT_QUANTITY
        assert "21" in rejected.message
        assert accepted.valid is True

    async def test_replaced_record_does_not_count(self, db, record_service):
        """Should ignore the old version of a record being edited."""
        user = await create_user(db)
        position = await create_position(db, user)
        buy = await add_record(record_service, db, position, RecordType.BUY, date(2026, 1, 1), "10", "10")
        await add_record(record_service, db, position, RecordType.SELL, date(2026, 1, 10), "8")

        store = LedgerStore(db, user.id)
        shrunk_buy = LedgerEvent(
            position.id, RecordType.BUY, date(2026, 1, 1), Decimal("5"), Decimal("10"),
            id=buy.id, created_at=buy.created_at,
        )
        window = [shrunk_buy] + await store.get_window_records(
            position.id, date(2026, 1, 1), date(2026, 1, 1), {buy.id}
        )

        result = await validate_timeline_window(store, position.id, window, replaced_record_ids=[buy.id])

        assert result.code == CODE_INSUFFICIENT_QUANTITY

    async def test_empty_window_is_valid(self, db):
        user = await create_user(db)
        store = LedgerStore(db, user.id)

        assert (await validate_timeline_window(store, 1, [])).valid is True
