# backend/tracker/services/valuation/types.py
"""
Internal data types for position valuation.

These are NOT Pydantic schemas; the routers convert them in
tracker/schemas/. All amounts are Decimal in the position's own currency
unless a field says otherwise.

Type Hierarchy:
    ValuedPosition  - One position valued as of a date, with P/L
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from tracker.models import Position, PositionType
from tracker.services.constants import ZERO
from tracker.services.ledger.types import SnapshotState
from tracker.services.profit_loss import ProfitLoss


@dataclass(frozen=True)
class ValuedPosition:
    """
    One position valued as of a date.

    Attributes:
        position: The ORM row (loaded by the caller's session)
        as_of: Valuation date
        snapshot: Latest snapshot on or before as_of (None = no history yet)
        current_quantity: Quantity from that snapshot
        current_unit_value: Market price on as_of when available, else the
            snapshot's unit value
        current_value: current_quantity * current_unit_value
        market_priced: True when current_unit_value came from market data
        profit_loss: Unrealized P/L against the snapshot cost basis
    """

    position: Position
    as_of: date
    snapshot: SnapshotState | None
    current_quantity: Decimal = ZERO
    current_unit_value: Decimal = ZERO
    current_value: Decimal = ZERO
    market_priced: bool = False
    profit_loss: ProfitLoss = field(default_factory=ProfitLoss.zero)

    @property
    def position_id(self) -> int:
        return self.position.id

    @property
    def currency(self) -> str:
        return self.position.currency

    @property
    def is_liability(self) -> bool:
        return self.position.type == PositionType.LIABILITY

    @property
    def signed_value(self) -> Decimal:
        """Value as it counts towards net worth (liabilities negative)."""
        return -self.current_value if self.is_liability else self.current_value
