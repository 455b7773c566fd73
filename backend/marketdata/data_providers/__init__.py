"""
Data Providers Package

Provider adapters plus the routing, health, rate limiting, cost and
caching infrastructure that sits in front of them.
"""
from marketdata.data_providers.provider_factory import (
    ProviderFactory,
    ADAPTER_REGISTRY,
    resolve_provider_type,
)
from marketdata.data_providers.strategies import (
    StrategyType,
    ProviderSelectionContext,
    ProviderStrategy,
    PrimaryProviderStrategy,
    FallbackProviderStrategy,
    RoundRobinProviderStrategy,
    CostOptimizedProviderStrategy,
    create_strategy,
)
from marketdata.data_providers.health_monitor import (
    ProviderHealthMonitor,
    ProviderHealth,
    HealthConfig,
)
from marketdata.data_providers.rate_limiter import RateLimiter, RateLimitConfig, RateLimitStatus
from marketdata.data_providers.cost_tracker import CostTracker, ProviderCostConfig, ProviderCostMetrics
from marketdata.data_providers.metrics_tracker import ProviderMetricsTracker, ProviderMetrics
from marketdata.data_providers.cache_manager import (
    CacheManager,
    CacheConfig,
    CacheKind,
    InMemoryCacheStore,
)
from marketdata.data_providers.orchestrator import ProviderOrchestrator, OrchestratorConfig

__all__ = [
    # Factory
    "ProviderFactory",
    "ADAPTER_REGISTRY",
    "resolve_provider_type",
    # Strategies
    "StrategyType",
    "ProviderSelectionContext",
    "ProviderStrategy",
    "PrimaryProviderStrategy",
    "FallbackProviderStrategy",
    "RoundRobinProviderStrategy",
    "CostOptimizedProviderStrategy",
    "create_strategy",
    # Health Monitor
    "ProviderHealthMonitor",
    "ProviderHealth",
    "HealthConfig",
    # Rate Limiter
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitStatus",
    # Cost / Metrics
    "CostTracker",
    "ProviderCostConfig",
    "ProviderCostMetrics",
    "ProviderMetricsTracker",
    "ProviderMetrics",
    # Cache Manager
    "CacheManager",
    "CacheConfig",
    "CacheKind",
    "InMemoryCacheStore",
    # Orchestrator
    "ProviderOrchestrator",
    "OrchestratorConfig",
]
