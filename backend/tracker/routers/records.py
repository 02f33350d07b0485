# backend/tracker/routers/records.py
"""
Ledger record endpoints.

- GET    /records              - List records (position, date range)
- POST   /records              - Create a buy, sell or update
- POST   /records/preview      - Snapshots a proposed record would produce
- POST   /records/import       - Import parsed rows, all or nothing
- POST   /records/bulk-delete  - Delete several records, reporting failures
- PATCH  /records/{id}         - Edit a record
- DELETE /records/{id}         - Delete a record

Every mutation is validated against the position's timeline first (an
invalid one answers 400 with the ledger error code, e.g.
INSUFFICIENT_QUANTITY) and then recalculates the affected snapshots in
the same transaction.
"""

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from tracker.dependencies import CurrentUser, DbSession, get_record_service
from tracker.middleware.rate_limit import limiter
from tracker.schemas.records import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    ImportRequest,
    ImportResponse,
    RecordCreate,
    RecordListResponse,
    RecordPreviewRequest,
    RecordPreviewResponse,
    RecordResponse,
    RecordUpdate,
)
from tracker.schemas.snapshots import ComputedSnapshotResponse
from tracker.schemas.validators import validate_date_range
from tracker.services.constants import RATE_LIMIT_DEFAULT, RATE_LIMIT_IMPORT, RATE_LIMIT_WRITE
from tracker.services.records_service import ImportRow, RecordChanges, RecordInput, RecordService

router = APIRouter(
    prefix="/records",
    tags=["Records"],
)


def _record_input(payload: RecordCreate) -> RecordInput:
    return RecordInput(
        position_id=payload.position_id,
        type=payload.type,
        date=payload.date,
        quantity=payload.quantity,
        unit_value=payload.unit_value,
        description=payload.description,
        cost_basis_override=payload.cost_basis_override,
    )


# =============================================================================
# READ
# =============================================================================

@router.get(
    "",
    response_model=RecordListResponse,
    summary="List records",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_records(
        request: Request,  # Required for rate limiting
        current_user: CurrentUser,
        db: DbSession,
        position_id: int | None = Query(default=None, gt=0),
        start: dt.date | None = Query(default=None, description="Inclusive start date"),
        end: dt.date | None = Query(default=None, description="Inclusive end date"),
        service: RecordService = Depends(get_record_service),
) -> RecordListResponse:
    """Records in timeline order (date, then entry order)."""
    try:
        validate_date_range(start, end)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    records = await service.list_records(db, current_user.id, position_id=position_id, start=start, end=end)
    return RecordListResponse(items=[RecordResponse.model_validate(r) for r in records])


# =============================================================================
# CREATE / PREVIEW / IMPORT
# =============================================================================

@router.post(
    "",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a record",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def create_record(
        request: Request,
        payload: RecordCreate,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> RecordResponse:
    """
    Record a buy, a sell or an update (absolute quantity).

    - **buy** / **sell**: quantity > 0; a sell cannot exceed the units held
    - **update**: quantity >= 0; resets quantity and cost basis
      (**cost_basis_override** wins over **unit_value** as the new basis)
    """
    record = await service.create_record(db, current_user.id, _record_input(payload))
    return RecordResponse.model_validate(record)


@router.post(
    "/preview",
    response_model=RecordPreviewResponse,
    summary="Preview the snapshots of a proposed record",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def preview_record(
        request: Request,
        payload: RecordPreviewRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> RecordPreviewResponse:
    """Nothing is written; the proposed record appears with record_id null."""
    snapshots = await service.preview_record(
        db, current_user.id, _record_input(payload), replaces_record_id=payload.replaces_record_id
    )
    return RecordPreviewResponse(snapshots=[ComputedSnapshotResponse.model_validate(s) for s in snapshots])


@router.post(
    "/import",
    response_model=ImportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import parsed records",
)
@limiter.limit(RATE_LIMIT_IMPORT)
async def import_records(
        request: Request,
        payload: ImportRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> ImportResponse:
    """
    Import rows that reference positions by id or by name.

    Names match active asset positions, ignoring case and extra spaces.
    If any row is invalid nothing is imported.
    """
    rows = [
        ImportRow(
            type=row.type,
            date=row.date,
            quantity=row.quantity,
            unit_value=row.unit_value,
            position_id=row.position_id,
            position_name=row.position_name,
            description=row.description,
            cost_basis_override=row.cost_basis_override,
            source_label=row.source_label,
        )
        for row in payload.rows
    ]
    result = await service.import_records(db, current_user.id, rows)
    return ImportResponse(
        imported_count=result.imported_count,
        position_ids=list(result.position_ids),
        snapshots_written=result.snapshots_written,
    )


@router.post(
    "/bulk-delete",
    response_model=BulkDeleteResponse,
    summary="Delete several records",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def bulk_delete_records(
        request: Request,
        payload: BulkDeleteRequest,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> BulkDeleteResponse:
    """Records that cannot be deleted are reported in errors; the rest are deleted."""
    result = await service.bulk_delete(db, current_user.id, payload.record_ids)
    return BulkDeleteResponse(deleted_count=result.deleted_count, errors=result.errors)


# =============================================================================
# EDIT / DELETE
# =============================================================================

@router.patch(
    "/{record_id}",
    response_model=RecordResponse,
    summary="Edit a record",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def update_record(
        request: Request,
        record_id: int,
        payload: RecordUpdate,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> RecordResponse:
    record = await service.update_record(
        db,
        current_user.id,
        record_id,
        RecordChanges(
            type=payload.type,
            date=payload.date,
            quantity=payload.quantity,
            unit_value=payload.unit_value,
            description=payload.description,
            cost_basis_override=payload.cost_basis_override,
            position_id=payload.position_id,
        ),
    )
    return RecordResponse.model_validate(record)


@router.delete(
    "/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a record",
)
@limiter.limit(RATE_LIMIT_WRITE)
async def delete_record(
        request: Request,
        record_id: int,
        current_user: CurrentUser,
        db: DbSession,
        service: RecordService = Depends(get_record_service),
) -> Response:
    await service.delete_record(db, current_user.id, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
