# backend/tracker/middleware/correlation.py
"""
Correlation ID middleware for request tracing.

Correlation ID sources (first match wins):
1. X-Correlation-ID request header
2. X-Request-ID request header
3. A new UUID4

The ID is bound to the request context for the duration of the request
(every log record carries it) and echoed in the X-Correlation-ID response
header.

Client Usage:
    curl -H "X-Correlation-ID: trace-42" http://localhost:8000/health
"""

import uuid
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tracker.utils.context import reset_correlation_id, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"

# Incoming IDs longer than this are replaced by a fresh UUID
MAX_CORRELATION_ID_LENGTH = 128


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
            self,
            request: Request,
            call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = self.resolve_correlation_id(request)
        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            reset_correlation_id(token)

    @staticmethod
    def resolve_correlation_id(request: Request) -> str:
        for header in (CORRELATION_ID_HEADER, REQUEST_ID_HEADER):
            value = (request.headers.get(header) or "").strip()
            if value and len(value) <= MAX_CORRELATION_ID_LENGTH:
                return value
        return str(uuid.uuid4())
