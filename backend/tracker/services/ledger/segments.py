# backend/tracker/services/ledger/segments.py
"""
Segmented recalculation.

A position's timeline is split into segments by its update records: a
segment starts at an update (or at the beginning of history) and ends
before the next update. One recalculation per affected segment, started
at the earliest affected date inside it, covers every snapshot a mutation
can change. Segments are processed in ascending order.
"""

import bisect
import logging
from collections.abc import Iterable
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.services.exceptions import RecalculationError
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import RecalculationOptions, RecalculationResult

logger = logging.getLogger(__name__)


def segment_start_dates(update_dates: Iterable[date], affected_dates: Iterable[date]) -> list[date]:
    """
    Earliest affected date of every segment touched, ascending.

    Example:
        >>> segment_start_dates([date(2024, 3, 1)], [date(2024, 1, 5), date(2024, 2, 1), date(2024, 4, 2)])
        [date(2024, 1, 5), date(2024, 4, 2)]
    """
    boundaries = sorted(set(update_dates))
    starts: dict[date | None, date] = {}
    for affected in sorted(set(affected_dates)):
        index = bisect.bisect_right(boundaries, affected)
        segment = boundaries[index - 1] if index else None
        starts.setdefault(segment, affected)
    return sorted(starts.values())


async def recalculate_segments(
        recalculator: SnapshotRecalculator,
        db: AsyncSession,
        user_id: int,
        position_id: int,
        affected_dates: Iterable[date],
        options: RecalculationOptions | None = None,
) -> list[RecalculationResult]:
    """
    Recalculate every segment containing one of affected_dates.

    Raises:
        RecalculationError: First failed segment (the caller rolls back)
    """
    affected_dates = list(affected_dates)
    if not affected_dates:
        return []

    store = LedgerStore(db, user_id)
    update_dates = await store.get_update_dates(position_id)
    results = []
    for start in segment_start_dates(update_dates, affected_dates):
        result = await recalculator.recalculate(db, user_id, position_id, start, options)
        if not result.success:
            logger.error(
                f"Segment recalculation failed for position {position_id} from {start}: "
                f"[{result.code}] {result.message}"
            )
            raise RecalculationError(result.code, result.message, position_id=position_id)
        results.append(result)
    return results
