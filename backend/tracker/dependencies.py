# backend/tracker/dependencies.py
"""
Dependency injection module for FastAPI services.

Services hold no per-request state (the AsyncSession is passed to every
call), so one instance of each is shared across requests. Instances are
created lazily on first use to avoid import-time side effects, and
clear_service_caches() drops them (tests, settings reloads).

With MARKET_DATA_ENABLED=false there is no market data provider: no
market prices (manual valuation everywhere), FX from the cache only, and
no dividend data.

Usage in routers:
    from tracker.dependencies import CurrentUser, get_record_service

    @router.post("")
    async def create_record(
        current_user: CurrentUser,
        service: RecordService = Depends(get_record_service),
    ):
        ...
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import settings
from tracker.database import get_db
from tracker.models import User
from tracker.security import JWTHandler
from tracker.services.analytics import (
    AllocationService,
    NetWorthService,
    PerformanceService,
    ProjectedIncomeService,
)
from tracker.services.exceptions import InvalidCredentialsError, TokenExpiredError
from tracker.services.fx_rate_service import FXRateService
from tracker.services.ledger import SnapshotRecalculator
from tracker.services.market_data import (
    DividendService,
    DomainValuationProvider,
    DomainValuationService,
    MarketPriceService,
    QuoteService,
    YahooFinanceProvider,
)
from tracker.services.positions_service import PositionService
from tracker.services.records_service import RecordService
from tracker.services.snapshots_service import SnapshotService
from tracker.services.valuation import PositionValuationService

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# SINGLETON SERVICE INSTANCES
# =============================================================================
# Order matters: define dependencies before dependents
# 1. get_market_data_provider (no deps)
# 2. get_market_price_service, get_fx_rate_service, get_dividend_service
# 3. get_recalculator, get_valuation_service
# 4. position/record/snapshot services and analytics


@lru_cache(maxsize=1)
def get_market_data_provider() -> YahooFinanceProvider | None:
    """Shared provider for quotes, FX closes and dividends (None when disabled)."""
    if not settings.market_data_enabled:
        logger.info("Market data disabled; valuations use stored unit values")
        return None
    logger.debug("Initializing singleton YahooFinanceProvider")
    return YahooFinanceProvider()


@lru_cache(maxsize=1)
def get_market_price_service() -> MarketPriceService | None:
    provider = get_market_data_provider()
    if provider is None:
        return None
    logger.debug("Initializing singleton MarketPriceService")
    domains = None
    if settings.replicate_api_token:
        domains = DomainValuationService(DomainValuationProvider(api_token=settings.replicate_api_token))
    return MarketPriceService(
        quotes=QuoteService(provider, lookback_days=settings.price_lookback_days),
        domains=domains,
    )


@lru_cache(maxsize=1)
def get_fx_rate_service() -> FXRateService:
    logger.debug("Initializing singleton FXRateService")
    return FXRateService(
        provider=get_market_data_provider(),
        stale_guard_days=settings.fx_stale_guard_days,
        cutoff_hour_utc=settings.fx_cutoff_hour_utc,
    )


@lru_cache(maxsize=1)
def get_dividend_service() -> DividendService:
    logger.debug("Initializing singleton DividendService")
    return DividendService(get_market_data_provider())


@lru_cache(maxsize=1)
def get_recalculator() -> SnapshotRecalculator:
    """The snapshot recalculation engine shared by every ledger mutation."""
    logger.debug("Initializing singleton SnapshotRecalculator")
    return SnapshotRecalculator(price_service=get_market_price_service())


@lru_cache(maxsize=1)
def get_valuation_service() -> PositionValuationService:
    logger.debug("Initializing singleton PositionValuationService")
    return PositionValuationService(price_service=get_market_price_service())


@lru_cache(maxsize=1)
def get_position_service() -> PositionService:
    logger.debug("Initializing singleton PositionService")
    return PositionService(
        recalculator=get_recalculator(),
        valuation=get_valuation_service(),
        price_service=get_market_price_service(),
    )


@lru_cache(maxsize=1)
def get_record_service() -> RecordService:
    logger.debug("Initializing singleton RecordService")
    return RecordService(recalculator=get_recalculator())


@lru_cache(maxsize=1)
def get_snapshot_service() -> SnapshotService:
    logger.debug("Initializing singleton SnapshotService")
    return SnapshotService(recalculator=get_recalculator(), price_service=get_market_price_service())


# =============================================================================
# ANALYTICS SERVICES
# =============================================================================


@lru_cache(maxsize=1)
def get_net_worth_service() -> NetWorthService:
    logger.debug("Initializing singleton NetWorthService")
    return NetWorthService(
        valuation=get_valuation_service(),
        fx_service=get_fx_rate_service(),
        price_service=get_market_price_service(),
    )


@lru_cache(maxsize=1)
def get_allocation_service() -> AllocationService:
    logger.debug("Initializing singleton AllocationService")
    return AllocationService(valuation=get_valuation_service(), fx_service=get_fx_rate_service())


@lru_cache(maxsize=1)
def get_performance_service() -> PerformanceService:
    logger.debug("Initializing singleton PerformanceService")
    return PerformanceService(valuation=get_valuation_service(), fx_service=get_fx_rate_service())


@lru_cache(maxsize=1)
def get_projected_income_service() -> ProjectedIncomeService:
    logger.debug("Initializing singleton ProjectedIncomeService")
    return ProjectedIncomeService(
        valuation=get_valuation_service(),
        dividends=get_dividend_service(),
        fx_service=get_fx_rate_service(),
    )


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency that extracts and validates the current user from the bearer token.

    Raises:
        HTTPException 401: No token, invalid or expired token, unknown or inactive user
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = JWTHandler.validate_access_token(credentials.credentials)
        user_id = int(payload["sub"])
    except TokenExpiredError:
        raise _unauthorized("Token has expired")
    except InvalidCredentialsError as e:
        raise _unauthorized(str(e))
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid token subject")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("User account is inactive")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================

def clear_service_caches() -> None:
    """Drop every singleton; the next call creates a fresh instance."""
    for factory in (
        get_market_data_provider,
        get_market_price_service,
        get_fx_rate_service,
        get_dividend_service,
        get_recalculator,
        get_valuation_service,
        get_position_service,
        get_record_service,
        get_snapshot_service,
        get_net_worth_service,
        get_allocation_service,
        get_performance_service,
        get_projected_income_service,
    ):
        factory.cache_clear()
    logger.info("Cleared all service singleton caches")
