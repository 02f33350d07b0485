# backend/tracker/middleware/rate_limit.py
"""
Per-client rate limiting with slowapi.

Limits are defined in tracker/services/constants.py per endpoint kind
(read, write, price refresh, import, analytics, health) and applied with
@limiter.limit(...) on the route. Clients are keyed by IP; forwarded
headers are honoured only when the direct peer is a trusted proxy.

Storage is in-memory, so limits are per process.

Usage:
    from tracker.middleware.rate_limit import limiter
    from tracker.services.constants import RATE_LIMIT_WRITE

    @router.post("")
    @limiter.limit(RATE_LIMIT_WRITE)
    async def create_record(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from tracker.config import settings
from tracker.schemas.errors import ErrorDetail
from tracker.services.constants import RATE_LIMIT_DEFAULT

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def client_ip(request: Request) -> str:
    """
    Client address used as the rate limit key.

    X-Forwarded-For (first hop) and X-Real-IP are only read when the peer
    is trusted: TRUST_PROXY_HEADERS=true or the peer is listed in
    TRUSTED_PROXY_IPS.
    """
    peer = get_remote_address(request)
    if settings.trust_proxy_headers or peer in settings.trusted_proxy_ips:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return peer


limiter = Limiter(key_func=client_ip, default_limits=[RATE_LIMIT_DEFAULT])


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the API's ErrorDetail shape with a Retry-After header."""
    limit = str(exc.detail) if exc.detail else "Rate limit exceeded"
    logger.warning(f"Rate limit exceeded for {client_ip(request)} on {request.url.path}: {limit}")
    return JSONResponse(
        status_code=429,
        content=ErrorDetail(
            error="RateLimitError",
            message=f"Too many requests. {limit}",
            details={"retry_after": RETRY_AFTER_SECONDS},
        ).model_dump(),
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )
