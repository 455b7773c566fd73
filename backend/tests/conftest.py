"""
MarketData Access Layer - Test Configuration
Shared fixtures and test configuration.
"""
import os
import sys
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENABLE_PROVIDER_HEALTH_MONITOR"] = "false"

from marketdata.data_providers.adapters.base import (
    StockDataProvider,
    ProviderConfig,
    ProviderType,
    TimeInterval,
    Quote,
    HistoricalPrice,
    FundamentalData,
    CompanyProfile,
    SymbolSearchResult,
)
from marketdata.data_providers.provider_factory import ProviderFactory
from marketdata.data_providers.health_monitor import ProviderHealthMonitor, HealthConfig
from marketdata.data_providers.rate_limiter import RateLimiter
from marketdata.data_providers.cost_tracker import CostTracker
from marketdata.data_providers.metrics_tracker import ProviderMetricsTracker
from marketdata.data_providers.cache_manager import CacheManager, CacheConfig, InMemoryCacheStore
from marketdata.data_providers.strategies import FallbackProviderStrategy
from marketdata.data_providers.orchestrator import ProviderOrchestrator, OrchestratorConfig


# =========================
# Fake Adapters
# =========================

class FakeProvider(StockDataProvider):
    """
    Scriptable adapter for tests.

    Set `error` to make every data call raise it; `calls` records each
    call as (method, args).
    """

    def __init__(self, provider_type: ProviderType, price: str = "100.00"):
        super().__init__(ProviderConfig(name=provider_type.value))
        self.provider_type = provider_type
        self.price = Decimal(price)
        self.error: Optional[Exception] = None
        self.healthy = True
        self.calls: list[tuple[str, tuple]] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if self.error is not None:
            raise self.error

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def get_quote(self, symbol: str) -> Quote:
        self._record("get_quote", symbol)
        return Quote(symbol=symbol, price=self.price, volume=1000, provider=self.name)

    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
    ) -> list[HistoricalPrice]:
        self._record("get_historical_prices", symbol, start_date, end_date, interval)
        return [
            HistoricalPrice(
                symbol=symbol,
                date=start_date,
                open=self.price,
                high=self.price + 1,
                low=self.price - 1,
                close=self.price,
                volume=500,
                provider=self.name,
            )
        ]

    async def get_fundamentals(self, symbol: str) -> FundamentalData:
        self._record("get_fundamentals", symbol)
        return FundamentalData(symbol=symbol, pe_ratio=25.5, provider=self.name)

    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        self._record("get_company_profile", symbol)
        return CompanyProfile(symbol=symbol, company_name=f"{symbol} Inc.", provider=self.name)

    async def search_symbols(self, query: str, limit: int = 10) -> list[SymbolSearchResult]:
        self._record("search_symbols", query, limit)
        return [SymbolSearchResult(symbol=query.upper(), name=f"{query} Corp")][:limit]

    async def is_healthy(self) -> bool:
        self.calls.append(("is_healthy", ()))
        return self.healthy


class FixedClock:
    """Controllable UTC clock for rate limiter tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 10, 30, 15, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# =========================
# Component Fixtures
# =========================

@pytest.fixture
def primary_provider() -> FakeProvider:
    return FakeProvider(ProviderType.YAHOO_FINANCE, price="175.50")


@pytest.fixture
def fallback_provider() -> FakeProvider:
    return FakeProvider(ProviderType.ALPHA_VANTAGE, price="175.25")


@pytest.fixture
def factory(primary_provider, fallback_provider) -> ProviderFactory:
    factory = ProviderFactory()
    factory.register_instance(ProviderType.YAHOO_FINANCE, primary_provider)
    factory.register_instance(ProviderType.ALPHA_VANTAGE, fallback_provider)
    return factory


@pytest.fixture
def health_monitor(factory) -> ProviderHealthMonitor:
    return ProviderHealthMonitor(factory, HealthConfig(failure_threshold=5))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def rate_limiter(clock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def cost_tracker() -> CostTracker:
    return CostTracker()


@pytest.fixture
def metrics_tracker(cost_tracker) -> ProviderMetricsTracker:
    return ProviderMetricsTracker(cost_tracker)


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore(max_size=100)


@pytest.fixture
def cache(cache_store) -> CacheManager:
    return CacheManager(cache_store, CacheConfig())


@pytest.fixture
def orchestrator(factory, health_monitor, rate_limiter, cost_tracker, metrics_tracker, cache):
    """Orchestrator with Yahoo Finance primary and Alpha Vantage fallback."""
    strategy = FallbackProviderStrategy(
        factory,
        health_monitor,
        primary=ProviderType.YAHOO_FINANCE,
        fallback=ProviderType.ALPHA_VANTAGE,
    )
    return ProviderOrchestrator(
        factory=factory,
        strategy=strategy,
        health_monitor=health_monitor,
        rate_limiter=rate_limiter,
        cost_tracker=cost_tracker,
        metrics_tracker=metrics_tracker,
        cache=cache,
        config=OrchestratorConfig(enable_health_monitor=False),
    )


# =========================
# Data Fixtures
# =========================

@pytest.fixture
def sample_quote() -> Quote:
    return Quote(
        symbol="AAPL",
        price=Decimal("175.50"),
        change=Decimal("2.50"),
        change_percent=Decimal("1.45"),
        volume=50000000,
        bid=Decimal("175.45"),
        ask=Decimal("175.55"),
        day_high=Decimal("176.00"),
        day_low=Decimal("173.00"),
        exchange="NASDAQ",
        timestamp=datetime(2024, 1, 15, 16, 0, tzinfo=timezone.utc),
        provider="yahoo_finance",
    )
