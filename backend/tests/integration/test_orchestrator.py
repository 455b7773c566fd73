"""
Integration Tests - Provider Orchestrator
End-to-end request flow: cache, strategy, rate limiting, fallback,
health/metrics/cost recording and single-flight de-duplication.
"""
import asyncio
from datetime import date
from decimal import Decimal
import pytest
from unittest.mock import AsyncMock, MagicMock

from marketdata.data_providers.adapters import YahooFinanceAdapter, create_yahoo_finance_config
from marketdata.data_providers.adapters.base import ProviderType, Quote
from marketdata.data_providers.cache_manager import CacheManager, CacheConfig, CacheKind
from marketdata.data_providers.cost_tracker import ProviderCostConfig
from marketdata.data_providers.orchestrator import ProviderOrchestrator, OrchestratorConfig
from marketdata.data_providers.rate_limiter import RateLimitConfig
from marketdata.data_providers.strategies import FallbackProviderStrategy, PrimaryProviderStrategy
from marketdata.utils.exceptions import (
    ApiUnavailableError,
    ProviderTimeoutError,
    RateLimitExceededError,
    SymbolNotFoundError,
    InvalidDateRangeError,
    InvalidParameterError,
)

from conftest import FakeProvider


YF = ProviderType.YAHOO_FINANCE
AV = ProviderType.ALPHA_VANTAGE


class GatedProvider(FakeProvider):
    """Quote calls block until `gate` is set."""

    def __init__(self, provider_type: ProviderType, price: str = "100.00"):
        super().__init__(provider_type, price)
        self.gate = asyncio.Event()
        self.cancelled = False

    async def get_quote(self, symbol: str) -> Quote:
        self._record("get_quote", symbol)
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return Quote(symbol=symbol, price=self.price, provider=self.name)


class SelectiveProvider(FakeProvider):
    """Raises SymbolNotFoundError for symbols in `unknown`."""

    def __init__(self, provider_type: ProviderType, unknown: set[str], price: str = "100.00"):
        super().__init__(provider_type, price)
        self.unknown = unknown

    async def get_quote(self, symbol: str) -> Quote:
        if symbol in self.unknown:
            self._record("get_quote", symbol)
            raise SymbolNotFoundError(symbol, provider=self.name)
        return await super().get_quote(symbol)


class MalformedProvider(FakeProvider):
    """Raises an untyped error for symbols in `broken`."""

    def __init__(self, provider_type: ProviderType, broken: set[str], price: str = "100.00"):
        super().__init__(provider_type, price)
        self.broken = broken

    async def get_quote(self, symbol: str) -> Quote:
        if symbol in self.broken:
            self._record("get_quote", symbol)
            raise AttributeError("'NoneType' object has no attribute 'get'")
        return await super().get_quote(symbol)


@pytest.fixture
def build(factory, health_monitor, rate_limiter, cost_tracker, metrics_tracker, cache):
    """Build an orchestrator over the shared components with overrides."""

    def _build(strategy=None, cache_manager=None, **config_overrides) -> ProviderOrchestrator:
        config_overrides.setdefault("enable_health_monitor", False)
        return ProviderOrchestrator(
            factory=factory,
            strategy=strategy or FallbackProviderStrategy(factory, health_monitor, YF, AV),
            health_monitor=health_monitor,
            rate_limiter=rate_limiter,
            cost_tracker=cost_tracker,
            metrics_tracker=metrics_tracker,
            cache=cache_manager or cache,
            config=OrchestratorConfig(**config_overrides),
        )

    return _build


class TestQuoteFlow:
    """Cache and primary provider path."""

    @pytest.mark.asyncio
    async def test_cache_hit_records_nothing(self, orchestrator, cache, sample_quote,
                                             primary_provider, metrics_tracker, cost_tracker):
        await cache.set_quote(sample_quote)

        quote = await orchestrator.get_quote("aapl")

        assert quote == sample_quote
        assert primary_provider.calls == []
        assert metrics_tracker.get_metrics(YF).total_requests == 0
        assert cost_tracker.get_call_count(YF) == 0

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, orchestrator, primary_provider,
                                           metrics_tracker, cost_tracker, health_monitor):
        first = await orchestrator.get_quote("AAPL")
        second = await orchestrator.get_quote("AAPL")

        assert first.price == Decimal("175.50")
        assert second == first
        assert primary_provider.count("get_quote") == 1
        assert metrics_tracker.get_metrics(YF).successful_requests == 1
        assert cost_tracker.get_call_count(YF) == 1
        assert health_monitor.get_health_status(YF).last_checked is not None

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, orchestrator, cache, sample_quote, primary_provider):
        stale = Quote(symbol="AAPL", price=Decimal("1.00"), provider="yahoo_finance")
        await cache.set_quote(stale)

        quote = await orchestrator.get_quote("AAPL", force_refresh=True)

        assert quote.price == Decimal("175.50")
        assert primary_provider.count("get_quote") == 1
        assert (await cache.get_quote("AAPL")).price == Decimal("175.50")

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self, orchestrator, primary_provider):
        await orchestrator.get_quote("AAPL")
        await orchestrator.invalidate("AAPL", CacheKind.QUOTE)
        await orchestrator.get_quote("AAPL")

        assert primary_provider.count("get_quote") == 2


class TestFallback:
    """Fallback on availability failures only."""

    @pytest.mark.asyncio
    async def test_unavailable_primary_falls_back(self, orchestrator, primary_provider, fallback_provider,
                                                  metrics_tracker, health_monitor):
        primary_provider.error = ApiUnavailableError("yahoo down")

        quote = await orchestrator.get_quote("AAPL")

        assert quote.provider == "alpha_vantage"
        assert quote.price == Decimal("175.25")
        assert health_monitor.get_health_status(YF).consecutive_failures == 1
        assert metrics_tracker.get_metrics(YF).failed_requests == 1
        assert metrics_tracker.get_metrics(AV).successful_requests == 1

    @pytest.mark.asyncio
    async def test_symbol_not_found_does_not_fall_back(self, orchestrator, primary_provider, fallback_provider,
                                                       metrics_tracker, health_monitor):
        primary_provider.error = SymbolNotFoundError("NOPE")

        with pytest.raises(SymbolNotFoundError):
            await orchestrator.get_quote("NOPE")

        assert fallback_provider.calls == []
        assert health_monitor.get_health_status(YF).consecutive_failures == 0
        assert health_monitor.is_healthy(YF)
        assert metrics_tracker.get_metrics(YF).failed_requests == 1

    @pytest.mark.asyncio
    async def test_both_failing_raises_fallback_error(self, orchestrator, primary_provider, fallback_provider):
        primary_provider.error = ApiUnavailableError("yahoo down")
        fallback_provider.error = ProviderTimeoutError("alpha vantage slow")

        with pytest.raises(ProviderTimeoutError):
            await orchestrator.get_quote("AAPL")

        assert primary_provider.count("get_quote") == 1
        assert fallback_provider.count("get_quote") == 1

    @pytest.mark.asyncio
    async def test_unhealthy_primary_routes_to_fallback(self, orchestrator, health_monitor,
                                                        primary_provider, fallback_provider):
        for _ in range(5):
            await health_monitor.record_failure(YF, "down")

        await orchestrator.get_quote("AAPL")

        assert primary_provider.calls == []
        assert fallback_provider.count("get_quote") == 1

    @pytest.mark.asyncio
    async def test_null_vendor_body_falls_back(self, factory, orchestrator, fallback_provider):
        yahoo = YahooFinanceAdapter(create_yahoo_finance_config(retry_attempts=0))
        yahoo._session = MagicMock()
        response = yahoo._session.get.return_value.__aenter__.return_value
        response.status = 200
        response.json = AsyncMock(return_value=None)
        factory.register_instance(YF, yahoo)

        quote = await orchestrator.get_quote("AAPL")

        assert quote.provider == "alpha_vantage"
        assert fallback_provider.count("get_quote") == 1

    @pytest.mark.asyncio
    async def test_primary_strategy_surfaces_error(self, build, factory, health_monitor,
                                                   primary_provider, fallback_provider):
        orchestrator = build(strategy=PrimaryProviderStrategy(factory, health_monitor, YF))
        primary_provider.error = ApiUnavailableError("yahoo down")

        with pytest.raises(ApiUnavailableError):
            await orchestrator.get_quote("AAPL")
        assert fallback_provider.calls == []

    @pytest.mark.asyncio
    async def test_automatic_fallback_disabled(self, build, primary_provider, fallback_provider):
        orchestrator = build(enable_automatic_fallback=False)
        primary_provider.error = ApiUnavailableError("yahoo down")

        with pytest.raises(ApiUnavailableError):
            await orchestrator.get_quote("AAPL")
        assert fallback_provider.calls == []


class TestGovernance:
    """Rate limiting and cost enforcement."""

    @pytest.mark.asyncio
    async def test_fail_fast_rate_limit_uses_fallback(self, build, rate_limiter, primary_provider,
                                                      fallback_provider, metrics_tracker):
        orchestrator = build(rate_limit_wait=False)
        rate_limiter.configure(YF, RateLimitConfig(requests_per_minute=1))

        await orchestrator.get_quote("AAPL", force_refresh=True)
        quote = await orchestrator.get_quote("AAPL", force_refresh=True)

        assert quote.provider == "alpha_vantage"
        assert primary_provider.count("get_quote") == 1
        # The refusal itself is not an attempt
        assert metrics_tracker.get_metrics(YF).total_requests == 1

    @pytest.mark.asyncio
    async def test_fail_fast_without_fallback(self, build, factory, health_monitor, rate_limiter):
        orchestrator = build(
            strategy=PrimaryProviderStrategy(factory, health_monitor, YF),
            rate_limit_wait=False,
        )
        rate_limiter.configure(YF, RateLimitConfig(requests_per_minute=1))
        await orchestrator.get_quote("AAPL")

        with pytest.raises(RateLimitExceededError) as exc_info:
            await orchestrator.get_quote("MSFT")
        assert exc_info.value.retry_after == pytest.approx(45.0)

    @pytest.mark.asyncio
    async def test_cost_enforcement_uses_fallback(self, orchestrator, cost_tracker,
                                                  primary_provider, fallback_provider):
        cost_tracker.enforce_limits = True
        cost_tracker.configure(YF, ProviderCostConfig.from_values(cost_per_call=1.0, cost_threshold=1.0))
        await cost_tracker.record_api_call(YF)

        quote = await orchestrator.get_quote("AAPL")

        assert quote.provider == "alpha_vantage"
        assert primary_provider.calls == []
        assert cost_tracker.get_call_count(YF) == 1


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self, factory, orchestrator, metrics_tracker):
        gated = GatedProvider(YF, price="175.50")
        factory.register_instance(YF, gated)

        async def release():
            await asyncio.sleep(0.01)
            gated.gate.set()

        results = await asyncio.gather(
            orchestrator.get_quote("AAPL"),
            orchestrator.get_quote("AAPL"),
            orchestrator.get_quote("aapl"),
            release(),
        )

        assert results[0] == results[1] == results[2]
        assert gated.count("get_quote") == 1
        assert metrics_tracker.get_metrics(YF).total_requests == 1

    @pytest.mark.asyncio
    async def test_cancellation_records_nothing(self, factory, orchestrator, metrics_tracker,
                                                health_monitor, cost_tracker):
        gated = GatedProvider(YF)
        factory.register_instance(YF, gated)

        task = asyncio.create_task(orchestrator.get_quote("AAPL"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)

        assert gated.cancelled
        assert metrics_tracker.get_metrics(YF).total_requests == 0
        assert cost_tracker.get_call_count(YF) == 0
        assert health_monitor.is_healthy(YF)

    @pytest.mark.asyncio
    async def test_one_cancelled_waiter_does_not_cancel_others(self, factory, orchestrator):
        gated = GatedProvider(YF)
        factory.register_instance(YF, gated)

        first = asyncio.create_task(orchestrator.get_quote("AAPL"))
        second = asyncio.create_task(orchestrator.get_quote("AAPL"))
        await asyncio.sleep(0.01)

        first.cancel()
        await asyncio.sleep(0.01)
        gated.gate.set()

        quote = await second
        assert quote.symbol == "AAPL"
        assert not gated.cancelled
        with pytest.raises(asyncio.CancelledError):
            await first


class TestBatchQuotes:

    @pytest.mark.asyncio
    async def test_only_missing_symbols_fetched(self, orchestrator, cache, sample_quote, primary_provider):
        await cache.set_quote(sample_quote)

        quotes = await orchestrator.get_quotes(["aapl", "MSFT", "AAPL"])

        assert list(quotes) == ["AAPL", "MSFT"]
        assert quotes["AAPL"] == sample_quote
        assert primary_provider.calls == [("get_quote", ("MSFT",))]

    @pytest.mark.asyncio
    async def test_unknown_symbols_left_out(self, factory, orchestrator):
        factory.register_instance(YF, SelectiveProvider(YF, unknown={"NOPE"}))

        quotes = await orchestrator.get_quotes(["AAPL", "NOPE", "MSFT"])

        assert list(quotes) == ["AAPL", "MSFT"]

    @pytest.mark.asyncio
    async def test_all_unknown_returns_empty(self, factory, orchestrator):
        factory.register_instance(YF, SelectiveProvider(YF, unknown={"NOPE", "NADA"}))
        assert await orchestrator.get_quotes(["NOPE", "NADA"]) == {}

    @pytest.mark.asyncio
    async def test_total_failure_raises(self, orchestrator, primary_provider, fallback_provider):
        primary_provider.error = ApiUnavailableError("yahoo down")
        fallback_provider.error = ApiUnavailableError("alpha vantage down")

        with pytest.raises(ApiUnavailableError):
            await orchestrator.get_quotes(["AAPL", "MSFT"])

    @pytest.mark.asyncio
    async def test_empty_request(self, orchestrator, primary_provider):
        assert await orchestrator.get_quotes([]) == {}
        assert primary_provider.calls == []


class TestOtherOperations:

    @pytest.mark.asyncio
    async def test_historical_cached(self, orchestrator, primary_provider):
        start, end = date(2024, 1, 1), date(2024, 1, 31)
        first = await orchestrator.get_historical_prices("aapl", start, end)
        second = await orchestrator.get_historical_prices("AAPL", start, end)

        assert first == second
        assert primary_provider.count("get_historical_prices") == 1

    @pytest.mark.asyncio
    async def test_historical_invalid_range(self, orchestrator, primary_provider):
        with pytest.raises(InvalidDateRangeError):
            await orchestrator.get_historical_prices("AAPL", date(2024, 2, 1), date(2024, 1, 1))
        assert primary_provider.calls == []

    @pytest.mark.asyncio
    async def test_fundamentals_and_profile(self, orchestrator, primary_provider):
        fundamentals = await orchestrator.get_fundamentals("msft")
        profile = await orchestrator.get_company_profile("msft")
        await orchestrator.get_fundamentals("MSFT")
        await orchestrator.get_company_profile("MSFT")

        assert fundamentals.pe_ratio == 25.5
        assert profile.company_name == "MSFT Inc."
        assert primary_provider.count("get_fundamentals") == 1
        assert primary_provider.count("get_company_profile") == 1

    @pytest.mark.asyncio
    async def test_search(self, orchestrator, primary_provider):
        results = await orchestrator.search_symbols("apple", limit=5)
        await orchestrator.search_symbols(" Apple ", limit=5)

        assert results[0].symbol == "APPLE"
        assert primary_provider.count("search_symbols") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query,limit", [("", 10), ("   ", 10), ("apple", 0)])
    async def test_search_validation(self, orchestrator, primary_provider, query, limit):
        with pytest.raises(InvalidParameterError):
            await orchestrator.search_symbols(query, limit=limit)
        assert primary_provider.calls == []


class TestCacheWarming:

    @pytest.mark.asyncio
    async def test_warm_cache(self, orchestrator, cache, primary_provider):
        warmed = await orchestrator.warm_cache(["AAPL", "MSFT", "aapl"])

        assert warmed == 2
        assert await cache.get_quote("MSFT") is not None
        assert primary_provider.count("get_quote") == 2

    @pytest.mark.asyncio
    async def test_warm_cache_skips_failures(self, factory, orchestrator):
        factory.register_instance(YF, SelectiveProvider(YF, unknown={"NOPE"}))
        assert await orchestrator.warm_cache(["AAPL", "NOPE"]) == 1

    @pytest.mark.asyncio
    async def test_warm_cache_disabled(self, build, cache_store, primary_provider):
        orchestrator = build(cache_manager=CacheManager(cache_store, CacheConfig(enabled=False)))
        assert await orchestrator.warm_cache(["AAPL"]) == 0
        assert primary_provider.calls == []

    @pytest.mark.asyncio
    async def test_warm_cache_survives_unexpected_errors(self, factory, orchestrator, cache):
        factory.register_instance(YF, MalformedProvider(YF, broken={"BAD"}))

        assert await orchestrator.warm_cache(["AAPL", "BAD", "MSFT"]) == 2
        assert await cache.get_quote("MSFT") is not None
        assert await cache.get_quote("BAD") is None

    @pytest.mark.asyncio
    async def test_initialize_survives_warm_up_errors(self, build, factory, cache_store, cache):
        factory.register_instance(YF, MalformedProvider(YF, broken={"BAD"}))
        orchestrator = build(
            cache_manager=CacheManager(cache_store, CacheConfig(enable_warming=True)),
            warm_symbols=["BAD", "AAPL"],
        )

        await orchestrator.initialize()

        assert await cache.get_quote("AAPL") is not None
        await orchestrator.shutdown()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self, orchestrator, primary_provider, fallback_provider, health_monitor):
        await orchestrator.initialize()

        assert primary_provider.initialized
        assert fallback_provider.initialized
        assert set(health_monitor.get_all_health_statuses()) == {YF, AV}

        await orchestrator.shutdown()
        assert primary_provider.closed
        assert fallback_provider.closed

    @pytest.mark.asyncio
    async def test_initialize_warms_cache(self, build, cache_store, cache, primary_provider):
        orchestrator = build(
            cache_manager=CacheManager(cache_store, CacheConfig(enable_warming=True)),
            warm_symbols=["AAPL", "MSFT"],
        )
        await orchestrator.initialize()

        assert await cache.get_quote("AAPL") is not None
        assert primary_provider.count("get_quote") == 2
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_starts_health_checks(self, build, health_monitor):
        orchestrator = build(enable_health_monitor=True, health_check_interval=3600)
        await orchestrator.initialize()
        assert health_monitor.is_monitoring

        await orchestrator.shutdown()
        assert not health_monitor.is_monitoring


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_snapshot(self, orchestrator):
        await orchestrator.get_quote("AAPL")
        status = orchestrator.get_status()

        assert status["strategy"] == "Fallback"
        assert status["overall_healthy"] is True
        assert status["metrics"]["yahoo_finance"]["total_requests"] == 1
        assert status["cache"]["misses"] == 1
        assert {"health", "rate_limits", "costs", "total_cost", "timestamp"} <= set(status)

    @pytest.mark.asyncio
    async def test_unhealthy_provider_flags_overall(self, orchestrator, health_monitor):
        for _ in range(5):
            await health_monitor.record_failure(AV, "down")
        assert orchestrator.get_status()["overall_healthy"] is False
