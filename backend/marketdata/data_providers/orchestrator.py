"""
Provider Orchestrator

Central coordinator for all data provider operations.
Every call goes through the cache, then strategy selection, the rate
limiter gate, the adapter, and health/metrics/cost recording, with one
fallback retry when the strategy offers a different provider.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from loguru import logger

from marketdata.data_providers.adapters.base import (
    StockDataProvider,
    ProviderType,
    TimeInterval,
    Quote,
    HistoricalPrice,
    FundamentalData,
    CompanyProfile,
    SymbolSearchResult,
    validate_date_range,
)
from marketdata.data_providers.provider_factory import ProviderFactory
from marketdata.data_providers.strategies import ProviderStrategy, ProviderSelectionContext
from marketdata.data_providers.health_monitor import ProviderHealthMonitor
from marketdata.data_providers.rate_limiter import RateLimiter
from marketdata.data_providers.cost_tracker import CostTracker
from marketdata.data_providers.metrics_tracker import ProviderMetricsTracker
from marketdata.data_providers.cache_manager import CacheManager, CacheKind
from marketdata.utils.exceptions import (
    StockDataError,
    ApiUnavailableError,
    ProviderTimeoutError,
    RateLimitExceededError,
    CostLimitExceededError,
    SymbolNotFoundError,
    InvalidDateRangeError,
    InvalidParameterError,
)


T = TypeVar("T")

# Errors that send a request to the fallback provider
FALLBACK_ERRORS = (
    ApiUnavailableError,
    ProviderTimeoutError,
    RateLimitExceededError,
    CostLimitExceededError,
)

# Errors caused by the request rather than the provider
CALLER_ERRORS = (SymbolNotFoundError, InvalidDateRangeError, InvalidParameterError)


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""
    enable_automatic_fallback: bool = True

    # Block on rate limits instead of failing fast
    rate_limit_wait: bool = True

    # Periodic health checks
    enable_health_monitor: bool = True
    health_check_interval: float = 60.0

    # Parallel request settings
    max_parallel_requests: int = 10

    # Symbols warmed on initialize() when cache warming is enabled
    warm_symbols: list[str] = field(default_factory=list)


@dataclass
class _Flight:
    """A shared in-flight fetch and the number of callers awaiting it."""
    task: asyncio.Task
    waiters: int = 0


class ProviderOrchestrator:
    """
    Central orchestrator for market data operations.

    This is the main interface for fetching market data. It coordinates:
    - Provider selection and fallback
    - Caching with per-kind TTLs
    - Rate limiting and cost tracking
    - Health and metrics recording

    Usage:
        orchestrator = create_orchestrator(settings)
        await orchestrator.initialize()

        quote = await orchestrator.get_quote("AAPL")
        history = await orchestrator.get_historical_prices("AAPL", start, end)
    """

    def __init__(
        self,
        factory: ProviderFactory,
        strategy: ProviderStrategy,
        health_monitor: ProviderHealthMonitor,
        rate_limiter: RateLimiter,
        cost_tracker: CostTracker,
        metrics_tracker: ProviderMetricsTracker,
        cache: CacheManager,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.factory = factory
        self.strategy = strategy
        self.health_monitor = health_monitor
        self.rate_limiter = rate_limiter
        self.cost_tracker = cost_tracker
        self.metrics_tracker = metrics_tracker
        self.cache = cache
        self.config = config or OrchestratorConfig()

        self._initialized = False
        self._semaphore = asyncio.Semaphore(self.config.max_parallel_requests)
        self._inflight: dict[str, _Flight] = {}

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Initialize every configured provider and start health checks."""
        if self._initialized:
            return

        providers = self.factory.get_available_providers()
        self.health_monitor.initialize_providers(providers)

        for provider_type in providers:
            try:
                await self.factory.create_provider(provider_type).initialize()
                logger.info(f"Initialized provider: {provider_type.value}")
            except Exception as e:
                logger.error(f"Failed to initialize provider {provider_type.value}: {e}")
                await self.health_monitor.record_failure(provider_type, str(e))

        if self.config.enable_health_monitor:
            self.health_monitor.start_periodic_health_checks(self.config.health_check_interval)

        self._initialized = True
        logger.info(f"Provider orchestrator initialized with {self.strategy.get_strategy_name()} strategy")

        if self.cache.config.enable_warming and self.config.warm_symbols:
            await self.warm_cache(self.config.warm_symbols)

    async def shutdown(self) -> None:
        """Stop health checks and close all providers."""
        await self.health_monitor.stop_periodic_health_checks()

        for adapter in self.factory.created_providers():
            try:
                await adapter.close()
                logger.info(f"Closed provider: {adapter.name}")
            except Exception as e:
                logger.error(f"Error closing provider {adapter.name}: {e}")

        self._initialized = False

    # ==================== Routing ====================

    def _build_context(
        self,
        operation: str,
        symbol: Optional[str],
        force_refresh: bool,
    ) -> ProviderSelectionContext:
        providers = self.factory.get_available_providers()
        return ProviderSelectionContext(
            operation=operation,
            symbol=symbol,
            force_refresh=force_refresh,
            provider_health=self.health_monitor.get_all_health_statuses(),
            rate_limit_remaining={p: self.rate_limiter.get_remaining(p) for p in providers},
        )

    async def _acquire_rate_limit(self, provider: ProviderType, symbol: Optional[str]) -> None:
        if self.config.rate_limit_wait:
            await self.rate_limiter.acquire(provider)
            return

        if not self.rate_limiter.try_acquire(provider):
            retry_after = self.rate_limiter.seconds_until_available(provider)
            logger.warning(f"Rate limit reached for {provider.value}, retry in {retry_after:.1f}s")
            raise RateLimitExceededError(
                f"Rate limit exceeded for {provider.value}",
                symbol=symbol,
                retry_after=retry_after,
                provider=provider.value,
            )

    async def _attempt(
        self,
        adapter: StockDataProvider,
        symbol: Optional[str],
        call: Callable[[StockDataProvider], Awaitable[T]],
    ) -> T:
        """
        One gated, recorded adapter call.

        Refusals by the rate limiter or cost enforcement are not attempts
        and record nothing; a cancelled call records nothing either.
        """
        provider = adapter.provider_type
        await self._acquire_rate_limit(provider, symbol)

        if not self.cost_tracker.can_afford(provider):
            raise CostLimitExceededError(
                f"Cost threshold exceeded for {provider.value}",
                symbol=symbol,
                provider=provider.value,
            )

        start = time.perf_counter()
        try:
            result = await call(adapter)
        except asyncio.CancelledError:
            raise
        except CALLER_ERRORS:
            # The provider answered; the request itself was bad
            await self.health_monitor.record_success(provider, (time.perf_counter() - start) * 1000)
            await self.metrics_tracker.record_failure(provider)
            raise
        except Exception as e:
            await self.health_monitor.record_failure(provider, f"{type(e).__name__}: {e}")
            await self.metrics_tracker.record_failure(provider)
            raise

        await self.health_monitor.record_success(provider, (time.perf_counter() - start) * 1000)
        await self.metrics_tracker.record_success(provider)
        return result

    def _fallback_for(self, tried: StockDataProvider) -> Optional[StockDataProvider]:
        if not self.config.enable_automatic_fallback:
            return None
        fallback = self.strategy.get_fallback_provider()
        if fallback is None or fallback.provider_type == tried.provider_type:
            return None
        return fallback

    async def _execute(
        self,
        operation: str,
        symbol: Optional[str],
        call: Callable[[StockDataProvider], Awaitable[T]],
        force_refresh: bool = False,
    ) -> T:
        """Run an operation against the selected provider, retrying once on the fallback."""
        context = self._build_context(operation, symbol, force_refresh)
        adapter = self.strategy.select_provider(context)

        try:
            return await self._attempt(adapter, symbol, call)
        except FALLBACK_ERRORS as e:
            fallback = self._fallback_for(adapter)
            if fallback is None:
                raise
            logger.warning(
                f"{operation}({symbol}) failed on {adapter.provider_type.value}: {e}. "
                f"Retrying with fallback {fallback.provider_type.value}"
            )
            return await self._attempt(fallback, symbol, call)

    async def _single_flight(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Collapse concurrent fetches for the same key into one.

        The shared fetch is cancelled only when its last waiter is cancelled.
        """
        flight = self._inflight.get(key)
        if flight is None:
            flight = _Flight(task=asyncio.ensure_future(fetch()))
            self._inflight[key] = flight

            def _done(_task: asyncio.Task, key: str = key, flight: _Flight = flight) -> None:
                if self._inflight.get(key) is flight:
                    del self._inflight[key]

            flight.task.add_done_callback(_done)
        else:
            logger.debug(f"Joining in-flight request: {key}")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    # ==================== Quote Operations ====================

    async def get_quote(self, symbol: str, force_refresh: bool = False) -> Quote:
        """
        Get a real-time quote for a symbol.

        Args:
            symbol: Ticker symbol
            force_refresh: Skip cache and fetch fresh data
        """
        symbol = symbol.upper()

        if not force_refresh:
            cached = await self.cache.get_quote(symbol)
            if cached is not None:
                return cached

        async def fetch() -> Quote:
            quote = await self._execute(
                "get_quote", symbol, lambda p: p.get_quote(symbol), force_refresh
            )
            await self.cache.set_quote(quote)
            return quote

        return await self._single_flight(self.cache.quote_key(symbol), fetch)

    async def get_quotes(self, symbols: list[str], force_refresh: bool = False) -> dict[str, Quote]:
        """
        Get quotes for multiple symbols.

        Cached symbols are served from cache; only the missing ones are
        fetched, in parallel. Unknown symbols are left out of the result.

        Returns:
            Dictionary mapping symbols to Quote objects
        """
        symbols = list(dict.fromkeys(s.upper() for s in symbols))
        result: dict[str, Quote] = {}
        symbols_to_fetch: list[str] = []

        if not force_refresh:
            cached = await self.cache.get_quotes(symbols)
            for symbol in symbols:
                if cached.get(symbol) is not None:
                    result[symbol] = cached[symbol]
                else:
                    symbols_to_fetch.append(symbol)
        else:
            symbols_to_fetch = symbols

        if not symbols_to_fetch:
            return result

        async def fetch_one(symbol: str) -> Quote:
            async with self._semaphore:
                return await self.get_quote(symbol, force_refresh=True)

        fetched = await asyncio.gather(
            *(fetch_one(s) for s in symbols_to_fetch),
            return_exceptions=True,
        )

        last_error: Optional[BaseException] = None
        for symbol, outcome in zip(symbols_to_fetch, fetched):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, SymbolNotFoundError):
                logger.warning(f"Skipping unknown symbol {symbol}")
            elif isinstance(outcome, BaseException):
                logger.error(f"Failed to fetch quote for {symbol}: {outcome}")
                last_error = outcome
            else:
                result[symbol] = outcome

        if not result and last_error is not None:
            raise last_error

        return {s: result[s] for s in symbols if s in result}

    # ==================== Historical Data Operations ====================

    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
        force_refresh: bool = False,
    ) -> list[HistoricalPrice]:
        """
        Get historical OHLCV bars for a symbol.

        Raises:
            InvalidDateRangeError: start_date is after end_date
        """
        symbol = symbol.upper()
        validate_date_range(symbol, start_date, end_date)

        if not force_refresh:
            cached = await self.cache.get_historical(symbol, start_date, end_date, interval)
            if cached is not None:
                return cached

        async def fetch() -> list[HistoricalPrice]:
            bars = await self._execute(
                "get_historical_prices",
                symbol,
                lambda p: p.get_historical_prices(symbol, start_date, end_date, interval),
                force_refresh,
            )
            await self.cache.set_historical(symbol, start_date, end_date, interval, bars)
            return bars

        key = self.cache.historical_key(symbol, start_date, end_date, interval)
        return await self._single_flight(key, fetch)

    # ==================== Fundamentals & Profile ====================

    async def get_fundamentals(self, symbol: str, force_refresh: bool = False) -> FundamentalData:
        symbol = symbol.upper()

        if not force_refresh:
            cached = await self.cache.get_fundamentals(symbol)
            if cached is not None:
                return cached

        async def fetch() -> FundamentalData:
            data = await self._execute(
                "get_fundamentals", symbol, lambda p: p.get_fundamentals(symbol), force_refresh
            )
            await self.cache.set_fundamentals(data)
            return data

        return await self._single_flight(self.cache.fundamentals_key(symbol), fetch)

    async def get_company_profile(self, symbol: str, force_refresh: bool = False) -> CompanyProfile:
        symbol = symbol.upper()

        if not force_refresh:
            cached = await self.cache.get_profile(symbol)
            if cached is not None:
                return cached

        async def fetch() -> CompanyProfile:
            profile = await self._execute(
                "get_company_profile", symbol, lambda p: p.get_company_profile(symbol), force_refresh
            )
            await self.cache.set_profile(profile)
            return profile

        return await self._single_flight(self.cache.profile_key(symbol), fetch)

    # ==================== Search ====================

    async def search_symbols(
        self,
        query: str,
        limit: int = 10,
        force_refresh: bool = False,
    ) -> list[SymbolSearchResult]:
        """
        Search for symbols by name or ticker.

        Raises:
            InvalidParameterError: Empty query or non-positive limit
        """
        query = query.strip()
        if not query:
            raise InvalidParameterError("Search query must not be empty")
        if limit <= 0:
            raise InvalidParameterError(f"Search limit must be positive, got {limit}")

        if not force_refresh:
            cached = await self.cache.get_search(query, limit)
            if cached is not None:
                return cached

        async def fetch() -> list[SymbolSearchResult]:
            results = await self._execute(
                "search_symbols", query, lambda p: p.search_symbols(query, limit), force_refresh
            )
            await self.cache.set_search(query, limit, results)
            return results

        return await self._single_flight(self.cache.search_key(query, limit), fetch)

    # ==================== Cache Management ====================

    async def warm_cache(self, symbols: list[str]) -> int:
        """
        Pre-populate quote cache for a batch of symbols.

        Best-effort: failures are logged and skipped.

        Returns:
            Number of symbols warmed
        """
        if not self.cache.enabled:
            logger.debug("Cache disabled, skipping warm-up")
            return 0

        symbols = list(dict.fromkeys(s.upper() for s in symbols))

        async def warm_one(symbol: str) -> bool:
            async with self._semaphore:
                try:
                    await self.get_quote(symbol, force_refresh=True)
                    return True
                except StockDataError as e:
                    logger.warning(f"Cache warm-up failed for {symbol}: {e}")
                    return False
                except Exception as e:
                    logger.error(f"❌ Unexpected error warming {symbol}: {type(e).__name__}: {e}")
                    return False

        results = await asyncio.gather(*(warm_one(s) for s in symbols))
        warmed = sum(1 for ok in results if ok)
        logger.info(f"Cache warm-up complete: {warmed}/{len(symbols)} symbols")
        return warmed

    async def invalidate(self, symbol: str, kind: Optional[CacheKind] = None) -> None:
        """Drop cached data for a symbol (all kinds when kind is None)."""
        await self.cache.invalidate(symbol, kind)

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        """Read-only snapshot of health, rate limits, costs and metrics."""
        health = self.health_monitor.get_all_health_statuses()
        providers = self.factory.get_available_providers()

        return {
            "strategy": self.strategy.get_strategy_name(),
            "overall_healthy": all(self.health_monitor.is_healthy(p) for p in providers),
            "health": {p.value: h.to_dict() for p, h in health.items()},
            "rate_limits": {
                p.value: s.to_dict() for p, s in self.rate_limiter.get_all_statuses().items()
            },
            "costs": {
                p.value: m.to_dict() for p, m in self.cost_tracker.get_all_cost_metrics().items()
            },
            "total_cost": float(self.cost_tracker.get_total_cost()),
            "metrics": {
                p.value: m.to_dict() for p, m in self.metrics_tracker.get_all_metrics().items()
            },
            "cache": self.cache.get_stats(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
