"""
Unit Tests - Exceptions
Tests for the typed market data error taxonomy.
"""
import pytest

from marketdata.utils.exceptions import (
    ErrorCode,
    StockDataError,
    SymbolNotFoundError,
    RateLimitExceededError,
    ApiUnavailableError,
    ProviderTimeoutError,
    InvalidApiKeyError,
    CostLimitExceededError,
    InvalidDateRangeError,
    InvalidParameterError,
    UnsupportedProviderError,
)


class TestErrorCodes:
    """Each error carries its own code."""

    @pytest.mark.parametrize("error,code", [
        (SymbolNotFoundError("AAPL"), ErrorCode.SYMBOL_NOT_FOUND),
        (RateLimitExceededError(), ErrorCode.RATE_LIMIT_EXCEEDED),
        (ApiUnavailableError(), ErrorCode.API_UNAVAILABLE),
        (ProviderTimeoutError(), ErrorCode.TIMEOUT),
        (InvalidApiKeyError(), ErrorCode.INVALID_API_KEY),
        (CostLimitExceededError(), ErrorCode.COST_LIMIT_EXCEEDED),
        (InvalidDateRangeError(), ErrorCode.INVALID_DATE_RANGE),
        (InvalidParameterError(), ErrorCode.INVALID_PARAMETER),
        (StockDataError(), ErrorCode.UNKNOWN),
    ])
    def test_default_code(self, error, code):
        assert error.code == code

    def test_all_errors_share_base(self):
        assert issubclass(SymbolNotFoundError, StockDataError)
        assert issubclass(UnsupportedProviderError, InvalidParameterError)


class TestTransientErrors:
    """Transient errors describe a degraded system, not bad input."""

    def test_transient_kinds(self):
        assert RateLimitExceededError().is_transient
        assert ApiUnavailableError().is_transient
        assert ProviderTimeoutError().is_transient

    def test_terminal_kinds(self):
        assert not SymbolNotFoundError("XYZ").is_transient
        assert not InvalidDateRangeError().is_transient
        assert not InvalidParameterError().is_transient


class TestErrorDetails:

    def test_symbol_not_found_message(self):
        error = SymbolNotFoundError("ZZZZ", provider="mock")
        assert error.symbol == "ZZZZ"
        assert error.provider == "mock"
        assert "ZZZZ" in str(error)

    def test_rate_limit_retry_after(self):
        error = RateLimitExceededError("slow down", symbol="AAPL", retry_after=12.5)
        assert error.retry_after == 12.5
        assert error.http_status == 429

    def test_unsupported_provider_lists_valid_values(self):
        error = UnsupportedProviderError("bloomberg", valid=["yahoo_finance", "mock"])
        assert "bloomberg" in error.message
        assert "yahoo_finance, mock" in error.message
        assert error.code == ErrorCode.INVALID_PARAMETER

    def test_to_dict(self):
        error = ApiUnavailableError("down", symbol="MSFT", provider="alpha_vantage")
        data = error.to_dict()
        assert data["error"] == "API_UNAVAILABLE"
        assert data["symbol"] == "MSFT"
        assert data["provider"] == "alpha_vantage"
        assert data["transient"] is True
