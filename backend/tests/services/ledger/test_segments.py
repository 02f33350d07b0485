# tests/services/ledger/test_segments.py
"""
Tests for segmented recalculation across update records.
"""

from datetime import date
from decimal import Decimal

import pytest

from tracker.models import RecordType
from tracker.services.exceptions import RecalculationError
from tracker.services.ledger.segments import recalculate_segments, segment_start_dates
from tracker.services.ledger.types import RecalculationResult
from tests.conftest import add_record, create_position, create_user

JAN, FEB, MAR, APR = (date(2024, m, 1) for m in range(1, 5))


class TestSegmentStartDates:
    def test_one_start_per_touched_segment(self):
        """Should start each touched segment at its earliest affected date."""
        starts = segment_start_dates([MAR], [date(2024, 1, 5), FEB, date(2024, 4, 2), MAR])

        assert starts == [date(2024, 1, 5), MAR]

    def test_without_updates_everything_is_one_segment(self):
        assert segment_start_dates([], [MAR, JAN]) == [JAN]

    def test_no_affected_dates(self):
        assert segment_start_dates([JAN], []) == []

    def test_duplicate_update_dates(self):
        """Should treat several updates on one day as one boundary."""
        assert segment_start_dates([FEB, FEB], [FEB, MAR]) == [FEB]


class TestRecalculateSegments:
    async def test_recalculates_every_touched_segment(self, db, record_service, recalculator):
        """Should run one recalculation per segment, in ascending order."""
        user = await create_user(db)
        position = await create_position(db, user)
        await add_record(record_service, db, position, RecordType.BUY, JAN, "10", "100")
        await add_record(record_service, db, position, RecordType.UPDATE, FEB, "4", "50")
        await add_record(record_service, db, position, RecordType.BUY, MAR, "1", "60")

        results = await recalculate_segments(recalculator, db, user.id, position.id, [JAN, MAR])

        assert [r.boundary_date for r in results] == [FEB, None]
        assert [[s.date for s in r.snapshots] for r in results] == [[JAN], [MAR]]
        assert results[1].snapshots[-1].quantity == Decimal("5")

    async def test_empty_affected_dates(self, db, recalculator):
        assert await recalculate_segments(recalculator, db, 1, 1, []) == []

    async def test_failure_raises(self, db, recalculator, monkeypatch):
        """Should raise RecalculationError carrying the failed result's code."""
        user = await create_user(db)
        position = await create_position(db, user)

        async def failing(*args, **kwargs):
            return RecalculationResult.failure("40001", "could not serialize access")

        monkeypatch.setattr(recalculator, "recalculate", failing)

        with pytest.raises(RecalculationError) as exc_info:
            await recalculate_segments(recalculator, db, user.id, position.id, [JAN])

        assert exc_info.value.code == "40001"
        assert "could not serialize access" in exc_info.value.message
