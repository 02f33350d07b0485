# backend/tracker/routers/positions.py
"""
Position management endpoints.

- GET    /positions                     - Valued positions as of a date
- POST   /positions                     - Create (optionally with an initial holding)
- POST   /positions/archive             - Archive several positions
- POST   /positions/restore             - Restore several positions
- GET    /positions/{id}                - One valued position with its snapshots
- PATCH  /positions/{id}                - Update details or relink market data
- DELETE /positions/{id}                - Hard delete with records and snapshots
- POST   /positions/{id}/archive        - Archive one position
- POST   /positions/{id}/restore        - Restore one position
- GET    /positions/{id}/boundary-date  - Earliest date records can be entered for

All endpoints only see the authenticated user's positions; another user's
position id answers 404.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query, Request, Response, status

from tracker.dependencies import CurrentUser, DbSession, get_position_service, get_snapshot_service
from tracker.middleware.rate_limit import limiter
from tracker.models import PositionType
from tracker.schemas.positions import (
    BoundaryDateResponse,
    BulkPositionResponse,
    PositionCreate,
    PositionDetailResponse,
    PositionIdsRequest,
    PositionListResponse,
    PositionResponse,
    PositionUpdate,
)
from tracker.schemas.snapshots import SnapshotResponse
from tracker.services.constants import RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE
from tracker.services.positions_service import PositionInput, PositionService
from tracker.services.snapshots_service import SnapshotService
from tracker.utils.date_utils import utc_today

router = APIRouter(
    prefix="/positions",
    tags=["Positions"],
)


# =============================================================================
# COLLECTION
# =============================================================================

@router.get(
    "",
    response_model=PositionListResponse,
    summary="List positions",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_positions(
        request: Request,  # Required for rate limiting
        current_user: CurrentUser,
        db: DbSession,
        as_of: dt.date | None = Query(default=None, description="Valuation date (default: today)"),
        type: PositionType | None = Query(default=None, description="Only assets or only liabilities"),
        include_archived: bool = Query(default=False),
        only_archived: bool = Query(default=False),
        search: str | None = Query(default=None, max_length=100, description="Search in position name"),
        service: PositionService = Depends(get_position_service),
) -> PositionListResponse:
    """
    Positions valued as of a date: latest snapshot on or before the date,
    market price for market-linked positions, and unrealized P/L.
    """
    as_of = as_of or utc_today()
    valued = await service.list_positions(
        db,
        current_user.id,
        as_of=as_of,
        position_type=type,
        include_archived=include_archived,
        only_archived=only_archived,
        search=search,
    )
    return PositionListResponse(as_of=as_of, items=[PositionResponse.from_valued(v) for v in valued])


@router.post(
    "",
    response_model=PositionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a position",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def create_position(
        request: Request,
        payload: PositionCreate,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> PositionResponse:
    """
    Create a position.

    - **symbol** or **domain** links the position to market data (not both)
    - **quantity** (with **unit_value**, **cost_basis_override**, **date**)
      records an initial holding as an update record
    """
    position = await service.create_position(
        db,
        current_user.id,
        PositionInput(
            name=payload.name,
            currency=payload.currency,
            type=payload.type,
            description=payload.description,
            category_id=payload.category_id,
            symbol=payload.symbol,
            domain=payload.domain,
            capital_gains_tax_rate=payload.capital_gains_tax_rate,
            quantity=payload.quantity,
            unit_value=payload.unit_value,
            cost_basis_override=payload.cost_basis_override,
            holding_date=payload.date,
        ),
    )
    valued = await service.get_valued_position(db, current_user.id, position.id)
    return PositionResponse.from_valued(valued)


@router.post(
    "/archive",
    response_model=BulkPositionResponse,
    summary="Archive several positions",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def archive_positions(
        request: Request,
        payload: PositionIdsRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> BulkPositionResponse:
    archived = await service.archive_positions(db, current_user.id, payload.position_ids)
    return BulkPositionResponse(affected=archived)


@router.post(
    "/restore",
    response_model=BulkPositionResponse,
    summary="Restore several archived positions",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def restore_positions(
        request: Request,
        payload: PositionIdsRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> BulkPositionResponse:
    restored = await service.restore_positions(db, current_user.id, payload.position_ids)
    return BulkPositionResponse(affected=restored)


# =============================================================================
# SINGLE POSITION
# =============================================================================

@router.get(
    "/{position_id}",
    response_model=PositionDetailResponse,
    summary="Get a position with its snapshots",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_position(
        request: Request,
        position_id: int,
        current_user: CurrentUser,
        db: DbSession,
        as_of: dt.date | None = Query(default=None, description="Valuation date (default: today)"),
        service: PositionService = Depends(get_position_service),
        snapshots: SnapshotService = Depends(get_snapshot_service),
) -> PositionDetailResponse:
    as_of = as_of or utc_today()
    valued = await service.get_valued_position(db, current_user.id, position_id, as_of)
    history = await snapshots.list_snapshots(db, current_user.id, position_id, end=as_of)
    return PositionDetailResponse(
        **PositionResponse.from_valued(valued).model_dump(),
        snapshots=[SnapshotResponse.model_validate(s) for s in history],
    )


@router.patch(
    "/{position_id}",
    response_model=PositionResponse,
    summary="Update a position",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def update_position(
        request: Request,
        position_id: int,
        payload: PositionUpdate,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> PositionResponse:
    """
    Update the fields present in the body. Changing **symbol** or
    **domain** revalues every snapshot of the position.
    """
    await service.update_position(db, current_user.id, position_id, payload.model_dump(exclude_unset=True))
    valued = await service.get_valued_position(db, current_user.id, position_id)
    return PositionResponse.from_valued(valued)


@router.delete(
    "/{position_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a position",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def delete_position(
        request: Request,
        position_id: int,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> Response:
    """Permanently delete a position, its records and its snapshots."""
    await service.delete_position(db, current_user.id, position_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{position_id}/archive",
    response_model=PositionResponse,
    summary="Archive a position",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def archive_position(
        request: Request,
        position_id: int,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> PositionResponse:
    await service.archive_positions(db, current_user.id, [position_id])
    valued = await service.get_valued_position(db, current_user.id, position_id)
    return PositionResponse.from_valued(valued)


@router.post(
    "/{position_id}/restore",
    response_model=PositionResponse,
    summary="Restore an archived position",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def restore_position(
        request: Request,
        position_id: int,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> PositionResponse:
    await service.restore_positions(db, current_user.id, [position_id])
    valued = await service.get_valued_position(db, current_user.id, position_id)
    return PositionResponse.from_valued(valued)


@router.get(
    "/{position_id}/boundary-date",
    response_model=BoundaryDateResponse,
    summary="Earliest date records can be entered for",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_boundary_date(
        request: Request,
        position_id: int,
        current_user: CurrentUser,
        db: DbSession,
        service: PositionService = Depends(get_position_service),
) -> BoundaryDateResponse:
    boundary = await service.get_record_boundary_date(db, current_user.id, position_id)
    return BoundaryDateResponse(position_id=position_id, boundary_date=boundary)
