# backend/tracker/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Registers global exception handlers
- Registers all routers
- Defines global endpoints (health checks)
"""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from tracker.config import settings
from tracker.database import check_database_health
from tracker.middleware import (
    CorrelationIdMiddleware,
    SlowAPIMiddleware,
    limiter,
    rate_limit_exceeded_handler,
)
from tracker.routers import (
    analytics_router,
    positions_router,
    records_router,
    snapshots_router,
)
from tracker.schemas.errors import ErrorDetail, ValidationErrorDetail
from tracker.services.constants import RATE_LIMIT_HEALTH
from tracker.services.exceptions import (
    AuthenticationError,
    DuplicatePositionError,
    FXRateError,
    LedgerValidationError,
    MarketDataError,
    NotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    RecalculationError,
    ServiceError,
    TickerNotFoundError,
    ValidationError,
)
from tracker.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Personal finance position ledger and valuation API",
    version="0.1.0",
)


# =============================================================================
# MIDDLEWARE (order matters: last added = first executed)
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# slowapi reads the limiter from app state
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Outermost: every log line of the request carries the correlation ID
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Service-layer exceptions become ErrorDetail responses here; routers only
# raise. Starlette picks the handler of the most specific exception class.
# =============================================================================

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error_response(
        status_code: int,
        error: str,
        message: str,
        details: dict | None = None,
        headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(error=error, message=message, details=details).model_dump(),
        headers=headers,
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle position / record / category not found (404)."""
    logger.warning(f"{exc.resource_type or 'Resource'} not found: {exc.resource_id}")
    details = None
    if exc.resource_type:
        details = {"resource_type": exc.resource_type, "resource_id": exc.resource_id}
    return _error_response(404, type(exc).__name__, str(exc), details)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle business rule validation errors (400)."""
    logger.warning(f"Validation error: {exc}")
    return _error_response(
        400, "ValidationError", str(exc), {"field": exc.field} if exc.field else None
    )


@app.exception_handler(DuplicatePositionError)
async def duplicate_position_handler(request: Request, exc: DuplicatePositionError) -> JSONResponse:
    """Handle a position name already in use (409)."""
    logger.warning(f"Duplicate position name: {exc.name}")
    return _error_response(409, "DuplicatePositionError", str(exc), {"name": exc.name})


@app.exception_handler(LedgerValidationError)
async def ledger_validation_handler(request: Request, exc: LedgerValidationError) -> JSONResponse:
    """
    Handle a record the position's timeline rejects (400).

    The error field carries the ledger code (e.g. INSUFFICIENT_QUANTITY)
    so clients can branch on it.
    """
    logger.warning(f"Ledger rejected change ({exc.code}): {exc.message}")
    return _error_response(400, exc.code, exc.message)


@app.exception_handler(RecalculationError)
async def recalculation_error_handler(request: Request, exc: RecalculationError) -> JSONResponse:
    """Handle a failed snapshot recalculation (500). The transaction is rolled back."""
    logger.error(f"Recalculation failed for position {exc.position_id} ({exc.code}): {exc.message}")
    return _error_response(
        500,
        exc.code,
        exc.message,
        {"position_id": exc.position_id} if exc.position_id is not None else None,
    )


@app.exception_handler(TickerNotFoundError)
async def ticker_not_found_handler(request: Request, exc: TickerNotFoundError) -> JSONResponse:
    """Handle a symbol unknown to the market data provider (404)."""
    logger.warning(f"Ticker not found on provider: {exc.ticker}")
    return _error_response(404, "TickerNotFoundError", str(exc), {"ticker": exc.ticker})


@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError) -> JSONResponse:
    """Handle market data provider unavailable or disabled (503)."""
    logger.error(f"Provider unavailable: {exc}")
    return _error_response(503, "ProviderUnavailableError", str(exc))


@app.exception_handler(RateLimitError)
async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    """Handle the upstream provider's rate limit (429)."""
    logger.warning(f"Provider rate limit: {exc}")
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return _error_response(
        429,
        "RateLimitError",
        str(exc),
        {"retry_after": exc.retry_after} if exc.retry_after else None,
        headers,
    )


@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError) -> JSONResponse:
    """Handle other market data failures (503)."""
    logger.error(f"Market data error: {exc}")
    return _error_response(503, "MarketDataError", str(exc))


@app.exception_handler(FXRateError)
async def fx_rate_error_handler(request: Request, exc: FXRateError) -> JSONResponse:
    """Handle exchange rate failures (503)."""
    logger.error(f"FX rate error: {exc}")
    details = None
    if exc.base_currency:
        details = {"base_currency": exc.base_currency, "quote_currency": exc.quote_currency}
    return _error_response(503, type(exc).__name__, str(exc), details)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    """Handle invalid or expired credentials (401)."""
    logger.warning(f"Authentication error: {exc}")
    return _error_response(
        401, type(exc).__name__, str(exc), headers={"WWW-Authenticate": "Bearer"}
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle generic service errors (500)."""
    logger.error(f"Service error: {exc}")
    return _error_response(500, "ServiceError", str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle all HTTPExceptions with consistent error format.

    Converts FastAPI's default {"detail": "..."} format to ErrorDetail.
    """
    error_types = {
        400: "BadRequestError",
        401: "UnauthorizedError",
        403: "ForbiddenError",
        404: "NotFoundError",
        405: "MethodNotAllowedError",
        409: "ConflictError",
        422: "ValidationError",
        429: "RateLimitError",
        500: "InternalServerError",
        503: "ServiceUnavailableError",
    }
    return _error_response(
        exc.status_code,
        error_types.get(exc.status_code, "HTTPError"),
        str(exc.detail) if exc.detail else "An error occurred",
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Converts the default 422 body to ValidationErrorDetail."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(
            error="ValidationError",
            message="Request validation failed",
            details=errors,
        ).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(positions_router)  # /positions/*
app.include_router(records_router)  # /records/*
app.include_router(snapshots_router)  # /snapshots/*
app.include_router(analytics_router)  # /analytics/*


# =============================================================================
# GLOBAL ENDPOINTS
# =============================================================================

@app.get("/", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
async def root(request: Request):
    """API root - returns basic application info."""
    return {
        "message": f"Welcome to {settings.app_name}!",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
async def health_check(request: Request):
    """
    Comprehensive health check endpoint.

    **Response Status Codes:**
    - 200: Database reachable (market data may be disabled: status "degraded")
    - 503: Database unreachable - do not route traffic here
    """
    checks = {}
    overall_status = "healthy"

    database = await check_database_health()
    checks["database"] = {**database, "critical": True}
    if database["status"] != "healthy":
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "checks": checks},
        )

    if settings.market_data_enabled:
        checks["market_data"] = {"status": "enabled", "critical": False}
    else:
        checks["market_data"] = {"status": "disabled", "critical": False}
        overall_status = "degraded"

    return {"status": overall_status, "checks": checks}


@app.get("/health/live", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
async def liveness_check(request: Request):
    """
    Liveness probe. Always 200 while the process is alive; does NOT check
    dependencies (use /health/ready for that).
    """
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
async def readiness_check(request: Request):
    """Readiness probe. 503 while the database is unreachable."""
    database = await check_database_health()
    if database["status"] != "healthy":
        logger.error(f"Readiness check failed: {database.get('error')}")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "error": "Database unavailable"},
        )
    return {"status": "ready"}
