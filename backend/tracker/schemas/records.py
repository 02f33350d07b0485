# backend/tracker/schemas/records.py
"""
Pydantic schemas for portfolio records (ledger events).

A record is a buy, a sell or an update (absolute quantity reset) of one
position on one date. Quantity rules per type are enforced by the ledger
validator, not here, so that every entry point (single create, edit,
import) reports them the same way.

IMPORTANT: All financial values use Decimal for precision.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tracker.models import RecordType
from tracker.schemas.snapshots import ComputedSnapshotResponse
from tracker.services.constants import MAX_BATCH_SIZE, MAX_IMPORT_ROWS


def _strip(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


# =============================================================================
# CREATE / UPDATE
# =============================================================================

class RecordCreate(BaseModel):
    position_id: int = Field(..., gt=0)
    type: RecordType
    date: dt.date
    quantity: Decimal = Field(..., max_digits=18, decimal_places=8, examples=["10", "0.5"])
    unit_value: Decimal = Field(
        ...,
        ge=0,
        max_digits=18,
        decimal_places=8,
        description="Price per unit in the position currency",
    )
    description: str | None = Field(default=None, max_length=2000)
    cost_basis_override: Decimal | None = Field(
        default=None,
        ge=0,
        max_digits=18,
        decimal_places=8,
        description="Update records only: cost basis per unit to use instead of unit_value",
    )

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return _strip(v)


class RecordPreviewRequest(RecordCreate):
    replaces_record_id: int | None = Field(
        default=None,
        gt=0,
        description="Preview an edit of this record instead of a new one",
    )


class RecordUpdate(BaseModel):
    """
    Schema for editing a record.

    Fields left out keep their value. For update records,
    cost_basis_override is taken as sent: leaving it out (or null) resets
    the cost basis to the unit value.
    """

    type: RecordType | None = None
    date: dt.date | None = None
    quantity: Decimal | None = Field(default=None, max_digits=18, decimal_places=8)
    unit_value: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=8)
    description: str | None = Field(default=None, max_length=2000)
    cost_basis_override: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=8)
    position_id: int | None = Field(default=None, gt=0)

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return _strip(v)


class BulkDeleteRequest(BaseModel):
    record_ids: list[int] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


# =============================================================================
# IMPORT
# =============================================================================

class ImportRowRequest(BaseModel):
    """One parsed row; identifies its position by id or by name."""

    position_id: int | None = Field(default=None, gt=0)
    position_name: str | None = Field(default=None, max_length=200)
    type: RecordType
    date: dt.date
    quantity: Decimal = Field(..., max_digits=18, decimal_places=8)
    unit_value: Decimal = Field(..., ge=0, max_digits=18, decimal_places=8)
    description: str | None = Field(default=None, max_length=2000)
    cost_basis_override: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=8)
    source_label: str | None = Field(
        default=None,
        max_length=100,
        description="Prefix for validation messages (e.g., 'Row 4')",
    )

    @field_validator("position_name", "description", "source_label")
    @classmethod
    def normalize_text(cls, v: str | None) -> str | None:
        return _strip(v)

    @model_validator(mode="after")
    def check_position_reference(self) -> "ImportRowRequest":
        if self.position_id is None and self.position_name is None:
            raise ValueError("Either position_id or position_name is required")
        return self


class ImportRequest(BaseModel):
    rows: list[ImportRowRequest] = Field(..., min_length=1, max_length=MAX_IMPORT_ROWS)


# =============================================================================
# RESPONSES
# =============================================================================

class RecordResponse(BaseModel):
    id: int
    position_id: int
    type: RecordType
    date: dt.date
    quantity: Decimal
    unit_value: Decimal
    description: str | None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class RecordListResponse(BaseModel):
    items: list[RecordResponse]


class RecordPreviewResponse(BaseModel):
    snapshots: list[ComputedSnapshotResponse]


class ImportResponse(BaseModel):
    imported_count: int
    position_ids: list[int]
    snapshots_written: int


class BulkDeleteResponse(BaseModel):
    deleted_count: int
    errors: list[str] = Field(default_factory=list)
