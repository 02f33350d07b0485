# backend/tracker/schemas/errors.py
"""
Pydantic schemas for error responses.

Every error the API returns has this shape; the exception handlers in
main.py and the rate limit handler build it.
"""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error response."""

    error: str = Field(
        ...,
        description="Error type (e.g., 'PositionNotFoundError', 'INSUFFICIENT_QUANTITY')"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    details: dict | None = Field(
        default=None,
        description="Additional error context (optional)"
    )


class ValidationErrorDetail(BaseModel):
    """Request validation failures (422)."""

    error: str = Field(default="ValidationError")
    message: str = Field(default="Request validation failed")
    details: list[dict] = Field(
        ...,
        description="One entry per invalid field"
    )
