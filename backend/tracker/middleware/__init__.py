# backend/tracker/middleware/__init__.py
"""
ASGI middleware:
- Correlation ID tracking for request tracing
- Rate limiting (slowapi)

Usage:
    from tracker.middleware import CorrelationIdMiddleware, limiter

    app.add_middleware(CorrelationIdMiddleware)
    app.state.limiter = limiter
"""

from slowapi.middleware import SlowAPIMiddleware

from tracker.middleware.correlation import CorrelationIdMiddleware
from tracker.middleware.rate_limit import limiter, rate_limit_exceeded_handler

__all__ = [
    "CorrelationIdMiddleware",
    "SlowAPIMiddleware",
    "limiter",
    "rate_limit_exceeded_handler",
]
