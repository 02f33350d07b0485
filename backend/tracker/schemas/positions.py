# backend/tracker/schemas/positions.py
"""
Pydantic schemas for Position validation.

These schemas define:
- What data clients must send (Create)
- What data clients can update (Update)
- What data the API returns (Response)

Validation layers:
- Field constraints: type, length, numeric limits
- Field validators: normalization (uppercase currency and symbol, trim)
- Service: uniqueness, category ownership, tax rate normalization

IMPORTANT: All financial values use Decimal for precision.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tracker.models import PositionType, PriceSourceType
from tracker.schemas.snapshots import SnapshotResponse
from tracker.schemas.validators import validate_currency, validate_domain, validate_symbol
from tracker.services.constants import MAX_BATCH_SIZE
from tracker.services.valuation import ValuedPosition


# =============================================================================
# CREATE / UPDATE
# =============================================================================

class PositionCreate(BaseModel):
    """
    Schema for creating a position.

    quantity starts an initial holding dated `date` (default today). For
    market-linked positions unit_value may be left out; the market price
    on that date is used.
    """

    name: str = Field(..., min_length=1, max_length=200, examples=["Vanguard FTSE All-World"])
    currency: str = Field(..., min_length=3, max_length=3, examples=["EUR", "USD"])
    type: PositionType = Field(default=PositionType.ASSET)
    description: str | None = Field(default=None, max_length=2000)
    category_id: int | None = Field(default=None, gt=0)
    symbol: str | None = Field(default=None, examples=["VWCE.DE", "AAPL"])
    domain: str | None = Field(default=None, examples=["example.com"])
    capital_gains_tax_rate: Decimal | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Percent (26) or fraction (0.26); stored as a fraction",
    )

    quantity: Decimal | None = Field(
        default=None,
        ge=0,
        max_digits=18,
        decimal_places=8,
        description="Initial holding (optional)",
    )
    unit_value: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=8)
    cost_basis_override: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=8)
    date: dt.date | None = Field(default=None, description="Date of the initial holding")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("currency")
    @classmethod
    def validate_and_normalize_currency(cls, v: str) -> str:
        return validate_currency(v)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str | None) -> str | None:
        return validate_symbol(v)

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str | None) -> str | None:
        return validate_domain(v)

    @model_validator(mode="after")
    def check_price_source(self) -> "PositionCreate":
        if self.symbol and self.domain:
            raise ValueError("A position is priced by a symbol or a domain, not both")
        return self


class PositionUpdate(BaseModel):
    """
    Schema for updating a position.

    Only fields present in the request body are changed; sending null for
    symbol or domain unlinks market data.
    """

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    category_id: int | None = Field(default=None, gt=0)
    capital_gains_tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    symbol: str | None = None
    domain: str | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else None

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str | None) -> str | None:
        return validate_symbol(v)

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str | None) -> str | None:
        return validate_domain(v)


class PositionIdsRequest(BaseModel):
    position_ids: list[int] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


# =============================================================================
# RESPONSES
# =============================================================================

class PositionResponse(BaseModel):
    """A position valued as of a date, in its own currency."""

    id: int
    name: str
    description: str | None
    currency: str
    type: PositionType
    category_id: int | None
    symbol: str | None
    domain: str | None
    price_source: PriceSourceType
    capital_gains_tax_rate: Decimal | None
    is_archived: bool
    archived_at: dt.datetime | None
    created_at: dt.datetime
    updated_at: dt.datetime

    as_of: dt.date
    quantity: Decimal
    unit_value: Decimal
    current_value: Decimal
    market_priced: bool = Field(..., description="unit_value comes from market data")
    cost_basis_per_unit: Decimal
    total_cost_basis: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_valued(cls, valued: ValuedPosition) -> "PositionResponse":
        position = valued.position
        pl = valued.profit_loss
        return cls(
            id=position.id,
            name=position.name,
            description=position.description,
            currency=position.currency,
            type=position.type,
            category_id=position.category_id,
            symbol=position.symbol,
            domain=position.domain,
            price_source=position.price_source,
            capital_gains_tax_rate=position.capital_gains_tax_rate,
            is_archived=position.is_archived,
            archived_at=position.archived_at,
            created_at=position.created_at,
            updated_at=position.updated_at,
            as_of=valued.as_of,
            quantity=valued.current_quantity,
            unit_value=valued.current_unit_value,
            current_value=valued.current_value,
            market_priced=valued.market_priced,
            cost_basis_per_unit=pl.cost_basis_per_unit,
            total_cost_basis=pl.total_cost_basis,
            profit_loss=pl.profit_loss,
            profit_loss_percentage=pl.profit_loss_percentage,
        )


class PositionDetailResponse(PositionResponse):
    snapshots: list[SnapshotResponse] = Field(default_factory=list)


class PositionListResponse(BaseModel):
    as_of: dt.date
    items: list[PositionResponse]


class BulkPositionResponse(BaseModel):
    affected: int = Field(..., description="Positions whose state changed")


class BoundaryDateResponse(BaseModel):
    position_id: int
    boundary_date: dt.date | None = Field(
        ...,
        description="Earliest date records can be entered for (null: no history yet)"
    )
