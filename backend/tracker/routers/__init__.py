# backend/tracker/routers/__init__.py
"""
API routers, one per domain:
- positions: Position lifecycle and valued listings
- records: Ledger records (create, edit, delete, preview, import)
- snapshots: Snapshot listings, price refresh, manual recalculation
- analytics: Net worth, allocation, performance, projected income
"""

from tracker.routers.analytics import router as analytics_router
from tracker.routers.positions import router as positions_router
from tracker.routers.records import router as records_router
from tracker.routers.snapshots import router as snapshots_router

__all__ = [
    "positions_router",
    "records_router",
    "snapshots_router",
    "analytics_router",
]
