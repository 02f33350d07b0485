# backend/tracker/services/valuation/__init__.py
"""
Valuation Service Package.

Values positions as of a date from their snapshots and market prices.

Usage:
    from tracker.services.valuation import PositionValuationService

    service = PositionValuationService(price_service)
    valued = await service.value_positions(db, user_id, positions, as_of)

Architecture:
    valuation/
    ├── __init__.py   # This file - package exports
    ├── types.py      # ValuedPosition
    └── service.py    # PositionValuationService, snapshot and position loaders
"""

from tracker.services.valuation.service import (
    PositionValuationService,
    is_market_linked,
    load_snapshots,
    load_user_positions,
)
from tracker.services.valuation.types import ValuedPosition

__all__ = [
    "PositionValuationService",
    "ValuedPosition",
    "is_market_linked",
    "load_snapshots",
    "load_user_positions",
]
