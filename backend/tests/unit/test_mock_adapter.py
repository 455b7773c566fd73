"""
Unit Tests - Mock Adapter
"""
from datetime import date
from decimal import Decimal
import pytest

from marketdata.data_providers.adapters import MockAdapter, create_mock_config, TimeInterval
from marketdata.data_providers.adapters.mock import BASE_PRICES, DEFAULT_BASE_PRICE
from marketdata.utils.exceptions import InvalidDateRangeError


@pytest.fixture
def adapter() -> MockAdapter:
    return MockAdapter(create_mock_config(0), seed=42)


class TestMockQuotes:

    @pytest.mark.asyncio
    async def test_quote_near_base_price(self, adapter):
        quote = await adapter.get_quote("aapl")
        assert quote.symbol == "AAPL"
        assert abs(quote.price - BASE_PRICES["AAPL"]) <= Decimal("5")
        assert quote.bid < quote.price < quote.ask
        assert quote.provider == "mock"

    @pytest.mark.asyncio
    async def test_unknown_symbol_uses_default_base(self, adapter):
        quote = await adapter.get_quote("ZZZZ")
        assert abs(quote.price - DEFAULT_BASE_PRICE) <= Decimal("5")

    @pytest.mark.asyncio
    async def test_seed_is_deterministic(self):
        first = await MockAdapter(create_mock_config(0), seed=7).get_quote("MSFT")
        second = await MockAdapter(create_mock_config(0), seed=7).get_quote("MSFT")
        assert first.price == second.price

    @pytest.mark.asyncio
    async def test_always_healthy(self, adapter):
        assert await adapter.is_healthy() is True


class TestMockHistory:

    @pytest.mark.asyncio
    async def test_daily_bars_skip_weekends(self, adapter):
        bars = await adapter.get_historical_prices("AAPL", date(2024, 1, 1), date(2024, 1, 14))
        assert len(bars) == 10
        assert all(bar.date.weekday() < 5 for bar in bars)
        assert all(bar.low <= bar.close <= bar.high for bar in bars)
        assert [b.date for b in bars] == sorted(b.date for b in bars)

    @pytest.mark.asyncio
    async def test_weekly_interval(self, adapter):
        bars = await adapter.get_historical_prices(
            "AAPL", date(2024, 1, 1), date(2024, 1, 14), TimeInterval.WEEKLY
        )
        assert [b.date for b in bars] == [date(2024, 1, 1), date(2024, 1, 8)]

    @pytest.mark.asyncio
    async def test_single_day_range(self, adapter):
        bars = await adapter.get_historical_prices("AAPL", date(2024, 1, 2), date(2024, 1, 2))
        assert len(bars) == 1

    @pytest.mark.asyncio
    async def test_inverted_range(self, adapter):
        with pytest.raises(InvalidDateRangeError):
            await adapter.get_historical_prices("AAPL", date(2024, 2, 1), date(2024, 1, 1))


class TestMockReference:

    @pytest.mark.asyncio
    async def test_profile_and_fundamentals(self, adapter):
        profile = await adapter.get_company_profile("nvda")
        fundamentals = await adapter.get_fundamentals("NVDA")

        assert profile.company_name == "NVIDIA Corporation"
        assert profile.sector == "Technology"
        assert fundamentals.symbol == "NVDA"
        assert 10 <= fundamentals.pe_ratio <= 40

    @pytest.mark.asyncio
    async def test_search_exact_match_first(self, adapter):
        results = await adapter.search_symbols("amd")
        assert results[0].symbol == "AMD"
        assert results[0].match_score == 1.0

    @pytest.mark.asyncio
    async def test_search_by_name_and_limit(self, adapter):
        results = await adapter.search_symbols("apple")
        assert [r.symbol for r in results] == ["AAPL"]

        limited = await adapter.search_symbols("a", limit=2)
        assert len(limited) == 2
