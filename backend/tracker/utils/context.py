# backend/tracker/utils/context.py
"""
Request-scoped context.

Holds the correlation ID of the request being served in a ContextVar, so
it follows the request through every await and into the log records
written on its behalf (see utils/logging.py).

Usage:
    from tracker.utils.context import get_correlation_id

    logger.info(f"Handling request {get_correlation_id()}")
"""

from contextvars import ContextVar, Token

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Correlation ID of the current request, or None outside a request."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> Token:
    """
    Bind a correlation ID to the current context.

    Returns:
        Token for reset_correlation_id()
    """
    return _correlation_id_var.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    """Restore the value that was current before set_correlation_id()."""
    _correlation_id_var.reset(token)
