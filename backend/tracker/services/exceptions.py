# backend/tracker/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
The router layer (main.py exception handlers) maps them to HTTP responses.

The ledger core (validation, recalculation) never raises these: it returns
typed results. Services translate failed results into exceptions at their
boundary.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidTaxRateError
    ├── NotFoundError
    │   ├── PositionNotFoundError
    │   └── RecordNotFoundError
    ├── DuplicatePositionError
    ├── LedgerValidationError      (INVALID_QUANTITY, INSUFFICIENT_QUANTITY, ...)
    ├── RecalculationError         (POSITION_NOT_FOUND, store failures)
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── TickerNotFoundError
    │   └── RateLimitError
    ├── AuthenticationError
    │   ├── TokenExpiredError
    │   └── InvalidCredentialsError
    └── FXRateError
        └── FXProviderError
"""


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    This is for programmatic validation errors (invalid parameters, missing
    required fields, etc.), NOT for request body validation which is handled
    by Pydantic.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidTaxRateError(ValidationError):
    """Raised when a capital gains tax rate is outside 0-100%."""

    def __init__(self, value) -> None:
        self.value = value
        super().__init__(
            f"Invalid capital gains tax rate: {value}. Use a percentage (0-100) or a decimal (0-1).",
            field="capital_gains_tax_rate",
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Position", "Record")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PositionNotFoundError(NotFoundError):
    """
    Raised when a position does not exist or is not owned by the caller.

    Ownership failures are reported as "not found" so callers cannot probe
    other users' ids.
    """

    def __init__(self, position_id: int | str) -> None:
        self.position_id = position_id
        super().__init__(
            f"Position {position_id} not found",
            resource_type="Position",
            resource_id=position_id,
        )


class RecordNotFoundError(NotFoundError):
    """Raised when a portfolio record does not exist or is not owned by the caller."""

    def __init__(self, record_id: int) -> None:
        self.record_id = record_id
        super().__init__(
            f"Record {record_id} not found",
            resource_type="Record",
            resource_id=record_id,
        )


class DuplicatePositionError(ServiceError):
    """Raised when an active position with the same name already exists."""

    code = "DUPLICATE_NAME"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'A position named "{name}" already exists.')


# =============================================================================
# LEDGER ERRORS
# =============================================================================


class LedgerValidationError(ServiceError):
    """
    Raised when a proposed ledger mutation would corrupt the timeline.

    Attributes:
        code: Machine-readable reason (INVALID_QUANTITY, INSUFFICIENT_QUANTITY,
              or a store error code when the base snapshot could not be read)
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class RecalculationError(ServiceError):
    """
    Raised when snapshot recalculation fails after a ledger mutation.

    The enclosing transaction is rolled back, so the mutation that
    triggered the recalculation is not persisted either.

    Attributes:
        code: Engine code (POSITION_NOT_FOUND or the store's error code)
        position_id: Position being recalculated
    """

    def __init__(self, code: str, message: str, position_id: int | None = None) -> None:
        self.code = code
        self.position_id = position_id
        super().__init__(message)


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is temporarily unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)

    This is a retryable error.
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when a symbol is not known to the provider.

    This is NOT a retryable error.
    """

    def __init__(self, ticker: str, provider: str) -> None:
        message = f"Ticker '{ticker}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.ticker = ticker


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


# =============================================================================
# AUTHENTICATION ERRORS
# =============================================================================


class AuthenticationError(ServiceError):
    """Base exception for bearer token failures."""
    pass


class TokenExpiredError(AuthenticationError):
    """Raised when an access token has expired."""
    pass


class InvalidCredentialsError(AuthenticationError):
    """Raised when an access token is malformed, mis-signed or of the wrong type."""
    pass


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        base_currency: The base currency code
        quote_currency: The quote currency code
    """

    def __init__(
            self,
            message: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        super().__init__(message)


class FXProviderError(FXRateError):
    """
    Raised when the FX data provider fails.

    Attributes:
        provider: Name of the FX data provider
        reason: Specific reason for failure
    """

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"FX provider '{provider}' error: {reason}")


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidTaxRateError",
    # Not Found
    "NotFoundError",
    "PositionNotFoundError",
    "RecordNotFoundError",
    "DuplicatePositionError",
    # Ledger
    "LedgerValidationError",
    "RecalculationError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    # Authentication
    "AuthenticationError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # FX Rate
    "FXRateError",
    "FXProviderError",
]
