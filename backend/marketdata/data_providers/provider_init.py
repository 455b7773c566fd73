"""
Provider Initialization Module

Builds every data provider component from Settings and wires them
into a ProviderOrchestrator.
"""
from typing import Optional
from loguru import logger

from marketdata.config import Settings, settings as default_settings
from marketdata.db.redis_client import RedisClient
from marketdata.utils.logger import setup_logging
from marketdata.data_providers.adapters.base import ProviderConfig, ProviderType
from marketdata.data_providers.adapters.yahoo_finance import create_yahoo_finance_config
from marketdata.data_providers.adapters.alpha_vantage import create_alpha_vantage_config
from marketdata.data_providers.adapters.mock import create_mock_config
from marketdata.data_providers.provider_factory import ProviderFactory, resolve_provider_type
from marketdata.data_providers.strategies import StrategyType, create_strategy
from marketdata.data_providers.health_monitor import ProviderHealthMonitor, HealthConfig
from marketdata.data_providers.rate_limiter import RateLimiter, RateLimitConfig
from marketdata.data_providers.cost_tracker import CostTracker, ProviderCostConfig
from marketdata.data_providers.metrics_tracker import ProviderMetricsTracker
from marketdata.data_providers.cache_manager import (
    CacheManager,
    CacheConfig,
    CacheStore,
    InMemoryCacheStore,
)
from marketdata.data_providers.orchestrator import ProviderOrchestrator, OrchestratorConfig
from marketdata.utils.exceptions import InvalidParameterError


def build_provider_configs(settings: Settings) -> dict[ProviderType, ProviderConfig]:
    """
    Adapter configurations for every usable provider.

    Yahoo Finance and the mock provider need no credentials; Alpha Vantage
    is only configured with an API key or when explicitly selected.
    """
    primary = resolve_provider_type(settings.DATA_PROVIDER_PRIMARY)
    fallback = (
        resolve_provider_type(settings.DATA_PROVIDER_FALLBACK)
        if settings.DATA_PROVIDER_FALLBACK else None
    )

    configs: dict[ProviderType, ProviderConfig] = {
        ProviderType.YAHOO_FINANCE: create_yahoo_finance_config(
            base_url=settings.YAHOO_FINANCE_BASE_URL,
            timeout_seconds=settings.YAHOO_FINANCE_TIMEOUT,
            retry_attempts=settings.YAHOO_FINANCE_MAX_RETRIES,
        ),
        ProviderType.MOCK: create_mock_config(settings.MOCK_PROVIDER_DELAY_MS),
    }

    if settings.ALPHA_VANTAGE_API_KEY or ProviderType.ALPHA_VANTAGE in (primary, fallback):
        if not settings.ALPHA_VANTAGE_API_KEY:
            logger.warning("Alpha Vantage selected but ALPHA_VANTAGE_API_KEY is not set")
        configs[ProviderType.ALPHA_VANTAGE] = create_alpha_vantage_config(
            settings.ALPHA_VANTAGE_API_KEY,
            base_url=settings.ALPHA_VANTAGE_BASE_URL,
            timeout_seconds=settings.ALPHA_VANTAGE_TIMEOUT,
            retry_attempts=settings.ALPHA_VANTAGE_MAX_RETRIES,
        )

    return configs


def build_rate_limiter(settings: Settings) -> RateLimiter:
    limiter = RateLimiter()
    for name, limits in settings.PROVIDER_RATE_LIMITS.items():
        limiter.configure(resolve_provider_type(name), RateLimitConfig(**limits))
    return limiter


def build_cost_tracker(settings: Settings) -> CostTracker:
    tracker = CostTracker(
        enabled=settings.COST_TRACKING_ENABLED,
        enforce_limits=settings.COST_ENFORCE_LIMITS,
        warning_threshold_percentage=settings.COST_WARNING_THRESHOLD_PERCENTAGE,
    )
    for name, costs in settings.PROVIDER_COSTS.items():
        tracker.configure(resolve_provider_type(name), ProviderCostConfig.from_values(**costs))
    return tracker


def build_cache_config(settings: Settings) -> CacheConfig:
    return CacheConfig(
        quote_ttl=settings.CACHE_QUOTE_TTL,
        historical_ttl=settings.CACHE_HISTORICAL_TTL,
        fundamentals_ttl=settings.CACHE_FUNDAMENTALS_TTL,
        profile_ttl=settings.CACHE_PROFILE_TTL,
        search_ttl=settings.CACHE_SEARCH_TTL,
        prefix=settings.CACHE_PREFIX,
        enabled=settings.CACHE_ENABLED,
        enable_warming=settings.CACHE_ENABLE_WARMING,
        max_size=settings.CACHE_MAX_SIZE,
    )


def build_cache_store(settings: Settings) -> CacheStore:
    """Redis in production, a bounded in-memory store otherwise."""
    backend = settings.CACHE_BACKEND.lower()
    if backend == "redis":
        return RedisClient(settings.redis_url)
    if backend == "memory":
        return InMemoryCacheStore(max_size=settings.CACHE_MAX_SIZE)
    raise InvalidParameterError(
        f"Unsupported cache backend: '{settings.CACHE_BACKEND}'. Valid values are: redis, memory"
    )


def create_orchestrator(
    settings: Optional[Settings] = None,
    cache_store: Optional[CacheStore] = None,
) -> ProviderOrchestrator:
    """
    Wire a ProviderOrchestrator from settings.

    Nothing is opened here; call initialize() on the result (or use
    initialize_providers) before serving requests.
    """
    settings = settings or default_settings

    try:
        strategy_type = StrategyType(settings.DATA_PROVIDER_STRATEGY.strip().lower())
    except ValueError:
        raise InvalidParameterError(
            f"Unsupported provider strategy: '{settings.DATA_PROVIDER_STRATEGY}'. "
            f"Valid values are: {', '.join(s.value for s in StrategyType)}"
        )

    primary = resolve_provider_type(settings.DATA_PROVIDER_PRIMARY)
    fallback = (
        resolve_provider_type(settings.DATA_PROVIDER_FALLBACK)
        if settings.DATA_PROVIDER_FALLBACK else None
    )

    factory = ProviderFactory(build_provider_configs(settings))
    health_monitor = ProviderHealthMonitor(
        factory,
        HealthConfig(
            failure_threshold=settings.HEALTH_FAILURE_THRESHOLD,
            health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
        ),
    )
    cost_tracker = build_cost_tracker(settings)
    strategy = create_strategy(strategy_type, factory, health_monitor, cost_tracker, primary, fallback)

    orchestrator = ProviderOrchestrator(
        factory=factory,
        strategy=strategy,
        health_monitor=health_monitor,
        rate_limiter=build_rate_limiter(settings),
        cost_tracker=cost_tracker,
        metrics_tracker=ProviderMetricsTracker(cost_tracker),
        cache=CacheManager(cache_store or build_cache_store(settings), build_cache_config(settings)),
        config=OrchestratorConfig(
            enable_automatic_fallback=settings.DATA_PROVIDER_ENABLE_AUTOMATIC_FALLBACK,
            rate_limit_wait=settings.RATE_LIMIT_WAIT,
            enable_health_monitor=settings.ENABLE_PROVIDER_HEALTH_MONITOR,
            health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
            warm_symbols=list(settings.CACHE_WARM_SYMBOLS),
        ),
    )

    logger.info(
        f"Data providers configured: primary={primary.value}, "
        f"fallback={fallback.value if fallback else None}, strategy={strategy.get_strategy_name()}"
    )
    return orchestrator


async def initialize_providers(settings: Optional[Settings] = None) -> ProviderOrchestrator:
    """
    Application startup: configure logging, connect the cache store and
    initialize every provider.
    """
    settings = settings or default_settings
    setup_logging(settings.console_log_level, settings.LOG_DIR if settings.LOG_TO_FILE else None)

    orchestrator = create_orchestrator(settings)
    if isinstance(orchestrator.cache.store, RedisClient):
        await orchestrator.cache.store.initialize()

    await orchestrator.initialize()
    logger.info(f"✅ {settings.APP_NAME} ready")
    return orchestrator


async def shutdown_providers(orchestrator: ProviderOrchestrator) -> None:
    """Shutdown all providers gracefully."""
    await orchestrator.shutdown()
    if isinstance(orchestrator.cache.store, RedisClient):
        await orchestrator.cache.store.close()
    logger.info("All providers shut down")
