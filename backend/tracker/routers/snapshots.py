# backend/tracker/routers/snapshots.py
"""
Snapshot endpoints.

- GET  /snapshots              - Snapshots of one position (date range)
- POST /snapshots/refresh      - Write price-only snapshots for today (or a date)
- POST /snapshots/recalculate  - Recalculate a position's snapshots
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query, Request

from tracker.dependencies import CurrentUser, DbSession, get_snapshot_service
from tracker.middleware.rate_limit import limiter
from tracker.schemas.snapshots import (
    ComputedSnapshotResponse,
    PriceRefreshRequest,
    PriceRefreshResponse,
    RecalculateRequest,
    RecalculateResponse,
    SnapshotResponse,
)
from tracker.services.constants import RATE_LIMIT_DEFAULT, RATE_LIMIT_SYNC, RATE_LIMIT_WRITE
from tracker.services.snapshots_service import SnapshotService

router = APIRouter(
    prefix="/snapshots",
    tags=["Snapshots"],
)


@router.get(
    "",
    response_model=list[SnapshotResponse],
    summary="List a position's snapshots",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_snapshots(
        request: Request,  # Required for rate limiting
        current_user: CurrentUser,
        db: DbSession,
        position_id: int = Query(..., gt=0),
        start: dt.date | None = Query(default=None),
        end: dt.date | None = Query(default=None),
        service: SnapshotService = Depends(get_snapshot_service),
) -> list[SnapshotResponse]:
    snapshots = await service.list_snapshots(db, current_user.id, position_id, start=start, end=end)
    return [SnapshotResponse.model_validate(s) for s in snapshots]


@router.post(
    "/refresh",
    response_model=PriceRefreshResponse,
    summary="Refresh market prices",
)
@limiter.limit(RATE_LIMIT_SYNC)
async def refresh_prices(
        request: Request,
        current_user: CurrentUser,
        db: DbSession,
        payload: PriceRefreshRequest | None = None,
        service: SnapshotService = Depends(get_snapshot_service),
) -> PriceRefreshResponse:
    """
    Write one price-only snapshot per active market-linked position that
    holds units on the date. Repeating the refresh updates them in place.
    """
    result = await service.refresh_prices(db, current_user.id, on=payload.date if payload else None)
    return PriceRefreshResponse(
        date=result.date,
        created=result.created,
        updated=result.updated,
        missing_prices=list(result.missing_prices),
    )


@router.post(
    "/recalculate",
    response_model=RecalculateResponse,
    summary="Recalculate a position's snapshots",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def recalculate(
        request: Request,
        payload: RecalculateRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: SnapshotService = Depends(get_snapshot_service),
) -> RecalculateResponse:
    """Replays the ledger segment by segment; without from_date the whole timeline."""
    results = await service.recalculate(db, current_user.id, payload.position_id, payload.from_date)
    return RecalculateResponse(
        position_id=payload.position_id,
        segments=len(results),
        snapshots_written=sum(r.snapshots_written for r in results),
        price_unavailable=sum(r.price_unavailable for r in results),
        snapshots=[ComputedSnapshotResponse.model_validate(s) for r in results for s in r.snapshots],
    )
