"""
MarketData Access Layer - Custom Exceptions
Typed market data errors shared by adapters and the data service
"""
from enum import Enum
from typing import Optional, Any, Dict


class ErrorCode(str, Enum):
    """Machine-readable error kinds."""
    UNKNOWN = "UNKNOWN"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    TIMEOUT = "TIMEOUT"
    INVALID_API_KEY = "INVALID_API_KEY"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"


# Error kinds that describe a temporarily degraded system rather than bad input
TRANSIENT_CODES = frozenset({
    ErrorCode.RATE_LIMIT_EXCEEDED,
    ErrorCode.API_UNAVAILABLE,
    ErrorCode.TIMEOUT,
})

HTTP_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.UNKNOWN: 500,
    ErrorCode.SYMBOL_NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.API_UNAVAILABLE: 503,
    ErrorCode.INVALID_DATE_RANGE: 400,
    ErrorCode.INVALID_PARAMETER: 400,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.INVALID_API_KEY: 502,
    ErrorCode.COST_LIMIT_EXCEEDED: 503,
}


class StockDataError(Exception):
    """Base exception for market data access."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str = "Market data error",
        symbol: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.symbol = symbol
        self.code = code or self.default_code
        self.provider = provider
        self.details = details or {}
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        """True when retrying later may succeed."""
        return self.code in TRANSIENT_CODES

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code.value,
            "message": self.message,
            "symbol": self.symbol,
            "provider": self.provider,
            "transient": self.is_transient,
            "details": self.details,
        }


# =========================
# Data Errors
# =========================

class SymbolNotFoundError(StockDataError):
    """The requested symbol does not exist at the provider."""

    default_code = ErrorCode.SYMBOL_NOT_FOUND

    def __init__(self, symbol: str = "", message: Optional[str] = None, **kwargs):
        super().__init__(
            message=message or f"Symbol not found: {symbol}",
            symbol=symbol,
            **kwargs,
        )


# =========================
# Availability Errors
# =========================

class RateLimitExceededError(StockDataError):
    """Provider quota exhausted."""

    default_code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        symbol: Optional[str] = None,
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        self.retry_after = retry_after
        super().__init__(message=message, symbol=symbol, **kwargs)


class ApiUnavailableError(StockDataError):
    """Provider unreachable or returned an unusable response."""

    default_code = ErrorCode.API_UNAVAILABLE

    def __init__(self, message: str = "Data provider unavailable", symbol: Optional[str] = None, **kwargs):
        super().__init__(message=message, symbol=symbol, **kwargs)


class ProviderTimeoutError(StockDataError):
    """Provider did not answer within its timeout."""

    default_code = ErrorCode.TIMEOUT

    def __init__(self, message: str = "Request timed out", symbol: Optional[str] = None, **kwargs):
        super().__init__(message=message, symbol=symbol, **kwargs)


class InvalidApiKeyError(StockDataError):
    """Provider rejected the configured credentials."""

    default_code = ErrorCode.INVALID_API_KEY

    def __init__(self, message: str = "Invalid API key", **kwargs):
        super().__init__(message=message, **kwargs)


class CostLimitExceededError(StockDataError):
    """Provider cost threshold reached while limits are enforced."""

    default_code = ErrorCode.COST_LIMIT_EXCEEDED

    def __init__(self, message: str = "Provider cost threshold exceeded", **kwargs):
        super().__init__(message=message, **kwargs)


# =========================
# Caller Errors
# =========================

class InvalidDateRangeError(StockDataError):
    """Start/end dates are inverted or span too long a period."""

    default_code = ErrorCode.INVALID_DATE_RANGE

    def __init__(self, message: str = "Invalid date range", symbol: Optional[str] = None, **kwargs):
        super().__init__(message=message, symbol=symbol, **kwargs)


class InvalidParameterError(StockDataError):
    """A request argument is malformed or out of range."""

    default_code = ErrorCode.INVALID_PARAMETER

    def __init__(self, message: str = "Invalid parameter", symbol: Optional[str] = None, **kwargs):
        super().__init__(message=message, symbol=symbol, **kwargs)


class UnsupportedProviderError(InvalidParameterError):
    """Unknown provider type or name."""

    def __init__(self, provider: str = "", valid: Optional[list[str]] = None):
        message = f"Unsupported provider: '{provider}'"
        if valid:
            message += f". Valid values are: {', '.join(valid)}"
        super().__init__(message=message, provider=provider or None)
