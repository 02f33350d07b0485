# backend/tracker/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.

Organized by domain:
- analytics: Net worth, allocation, performance, projected income
- errors: Error response formats
- positions: Position CRUD and valued listings
- records: Ledger record CRUD, preview, import, bulk delete
- snapshots: Snapshot listings, price refresh, recalculation
- validators: Reusable validation functions (symbol, domain, currency, dates)

Usage:
    from tracker.schemas import PositionCreate, PositionResponse
    from tracker.schemas import RecordCreate, ImportRequest
"""

from tracker.schemas.analytics import (
    AllocationResponse,
    AllocationSliceResponse,
    MonthlyIncomeResponse,
    NetWorthChangeResponse,
    NetWorthHistoryResponse,
    NetWorthPointResponse,
    NetWorthResponse,
    PerformanceResponse,
    PositionPerformanceResponse,
    ProjectedIncomeResponse,
)
from tracker.schemas.errors import ErrorDetail, ValidationErrorDetail
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
from tracker.schemas.records import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    ImportRequest,
    ImportResponse,
    ImportRowRequest,
    RecordCreate,
    RecordListResponse,
    RecordPreviewRequest,
    RecordPreviewResponse,
    RecordResponse,
    RecordUpdate,
)
from tracker.schemas.snapshots import (
    ComputedSnapshotResponse,
    PriceRefreshRequest,
    PriceRefreshResponse,
    RecalculateRequest,
    RecalculateResponse,
    SnapshotResponse,
)

__all__ = [
    # Errors
    "ErrorDetail",
    "ValidationErrorDetail",
    # Positions
    "PositionCreate",
    "PositionUpdate",
    "PositionIdsRequest",
    "PositionResponse",
    "PositionDetailResponse",
    "PositionListResponse",
    "BulkPositionResponse",
    "BoundaryDateResponse",
    # Records
    "RecordCreate",
    "RecordUpdate",
    "RecordPreviewRequest",
    "RecordResponse",
    "RecordListResponse",
    "RecordPreviewResponse",
    "ImportRowRequest",
    "ImportRequest",
    "ImportResponse",
    "BulkDeleteRequest",
    "BulkDeleteResponse",
    # Snapshots
    "SnapshotResponse",
    "ComputedSnapshotResponse",
    "PriceRefreshRequest",
    "PriceRefreshResponse",
    "RecalculateRequest",
    "RecalculateResponse",
    # Analytics
    "NetWorthResponse",
    "NetWorthPointResponse",
    "NetWorthHistoryResponse",
    "NetWorthChangeResponse",
    "AllocationSliceResponse",
    "AllocationResponse",
    "PositionPerformanceResponse",
    "PerformanceResponse",
    "MonthlyIncomeResponse",
    "ProjectedIncomeResponse",
]
