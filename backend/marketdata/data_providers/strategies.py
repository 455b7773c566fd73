"""
Provider Selection Strategies

Decide which provider serves a request, given the configured
primary/fallback providers and current health.

- Primary: always the primary provider, no substitution.
- Fallback: the primary while healthy (or not yet observed), else the fallback.
- RoundRobin: rotate across healthy providers with rate-limit capacity.
- CostOptimized: cheapest healthy provider with rate-limit capacity.
"""
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from loguru import logger

from marketdata.data_providers.adapters.base import StockDataProvider, ProviderType
from marketdata.data_providers.provider_factory import ProviderFactory
from marketdata.data_providers.health_monitor import ProviderHealthMonitor, ProviderHealth
from marketdata.data_providers.cost_tracker import CostTracker
from marketdata.utils.exceptions import InvalidParameterError


class StrategyType(str, Enum):
    """Provider selection policies."""
    PRIMARY = "primary"
    FALLBACK = "fallback"
    ROUND_ROBIN = "round_robin"
    COST_OPTIMIZED = "cost_optimized"


@dataclass
class ProviderSelectionContext:
    """Per-request input to a strategy. Never persisted."""
    operation: str
    symbol: Optional[str] = None
    force_refresh: bool = False
    provider_health: dict[ProviderType, ProviderHealth] = field(default_factory=dict)
    rate_limit_remaining: dict[ProviderType, Optional[int]] = field(default_factory=dict)


class ProviderStrategy(ABC):
    """Base class for provider selection strategies."""

    def __init__(self, factory: ProviderFactory, health_monitor: ProviderHealthMonitor):
        self._factory = factory
        self._health_monitor = health_monitor

    @abstractmethod
    def select_provider(self, context: ProviderSelectionContext) -> StockDataProvider:
        """Pick the adapter for a request."""

    def get_fallback_provider(self) -> Optional[StockDataProvider]:
        """Adapter to retry with after a failure, if the strategy has one."""
        return None

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Descriptive name for logs and status output."""

    def _is_provider_healthy(self, context: ProviderSelectionContext, provider: ProviderType) -> bool:
        """Context snapshot first, then the live monitor; unknown means healthy."""
        health = context.provider_health.get(provider)
        if health is not None:
            return health.is_healthy
        return self._health_monitor.is_healthy(provider)

    @staticmethod
    def _has_rate_limit_capacity(context: ProviderSelectionContext, provider: ProviderType) -> bool:
        remaining = context.rate_limit_remaining.get(provider)
        return remaining is None or remaining > 0

    def _log_selection(self, context: ProviderSelectionContext, provider: ProviderType) -> None:
        logger.debug(
            f"{self.get_strategy_name()} strategy selected {provider.value} "
            f"for {context.operation} on {context.symbol}"
        )


class PrimaryProviderStrategy(ProviderStrategy):
    """Always use the primary provider; callers absorb its failures."""

    def __init__(
        self,
        factory: ProviderFactory,
        health_monitor: ProviderHealthMonitor,
        primary: ProviderType,
    ):
        super().__init__(factory, health_monitor)
        self.primary = primary

    def select_provider(self, context: ProviderSelectionContext) -> StockDataProvider:
        self._log_selection(context, self.primary)
        return self._factory.create_provider(self.primary)

    def get_strategy_name(self) -> str:
        return "Primary"


class FallbackProviderStrategy(ProviderStrategy):
    """Use the primary while healthy, otherwise switch to the fallback."""

    def __init__(
        self,
        factory: ProviderFactory,
        health_monitor: ProviderHealthMonitor,
        primary: ProviderType,
        fallback: Optional[ProviderType] = None,
    ):
        super().__init__(factory, health_monitor)
        self.primary = primary
        self.fallback = fallback

    def select_provider(self, context: ProviderSelectionContext) -> StockDataProvider:
        if self._is_provider_healthy(context, self.primary):
            self._log_selection(context, self.primary)
            return self._factory.create_provider(self.primary)

        primary_health = self._health_monitor.get_health_status(self.primary)
        failures = primary_health.consecutive_failures if primary_health else 0

        if self.fallback is None:
            logger.warning(
                f"Primary provider {self.primary.value} is unhealthy ({failures} consecutive failures) "
                f"but no fallback is configured. Using primary anyway."
            )
            return self._factory.create_provider(self.primary)

        if not self._is_provider_healthy(context, self.fallback):
            logger.error(
                f"Both primary {self.primary.value} and fallback {self.fallback.value} "
                f"are unhealthy. Using primary anyway."
            )
            return self._factory.create_provider(self.primary)

        logger.warning(
            f"Falling back to {self.fallback.value} because primary {self.primary.value} "
            f"is unhealthy ({failures} consecutive failures) for {context.operation} on {context.symbol}"
        )
        return self._factory.create_provider(self.fallback)

    def get_fallback_provider(self) -> Optional[StockDataProvider]:
        if self.fallback is None:
            return None
        return self._factory.create_provider(self.fallback)

    def get_strategy_name(self) -> str:
        return "Fallback"


class RoundRobinProviderStrategy(ProviderStrategy):
    """Spread load evenly over healthy providers that have capacity."""

    def __init__(self, factory: ProviderFactory, health_monitor: ProviderHealthMonitor):
        super().__init__(factory, health_monitor)
        self._counter = itertools.count()

    def _viable(self, context: ProviderSelectionContext) -> list[ProviderType]:
        available = self._factory.get_available_providers()
        if not available:
            raise InvalidParameterError("No data providers are available")

        viable = [
            p for p in available
            if self._is_provider_healthy(context, p) and self._has_rate_limit_capacity(context, p)
        ]
        if not viable:
            logger.warning("No healthy providers with capacity available. Using all providers.")
            return available
        return viable

    def select_provider(self, context: ProviderSelectionContext) -> StockDataProvider:
        candidates = self._viable(context)
        selected = candidates[next(self._counter) % len(candidates)]
        self._log_selection(context, selected)
        return self._factory.create_provider(selected)

    def get_strategy_name(self) -> str:
        return "RoundRobin"


class CostOptimizedProviderStrategy(ProviderStrategy):
    """Prefer the cheapest healthy provider with capacity, paid ones last."""

    def __init__(
        self,
        factory: ProviderFactory,
        health_monitor: ProviderHealthMonitor,
        cost_tracker: CostTracker,
    ):
        super().__init__(factory, health_monitor)
        self._cost_tracker = cost_tracker

    def select_provider(self, context: ProviderSelectionContext) -> StockDataProvider:
        available = self._factory.get_available_providers()
        if not available:
            raise InvalidParameterError("No data providers are available")

        # sorted() is stable, so equal-cost providers keep declaration order
        by_cost = sorted(available, key=self._cost_tracker.get_cost_per_call)
        viable = [
            p for p in by_cost
            if self._is_provider_healthy(context, p) and self._has_rate_limit_capacity(context, p)
        ]

        if viable:
            selected = viable[0]
        else:
            selected = by_cost[0]
            logger.warning(
                f"No healthy providers with capacity. Falling back to cheapest: {selected.value}"
            )

        self._log_selection(context, selected)
        return self._factory.create_provider(selected)

    def get_strategy_name(self) -> str:
        return "CostOptimized"


def create_strategy(
    strategy_type: StrategyType,
    factory: ProviderFactory,
    health_monitor: ProviderHealthMonitor,
    cost_tracker: CostTracker,
    primary: ProviderType,
    fallback: Optional[ProviderType] = None,
) -> ProviderStrategy:
    """Build the configured strategy."""
    if strategy_type == StrategyType.PRIMARY:
        return PrimaryProviderStrategy(factory, health_monitor, primary)
    if strategy_type == StrategyType.FALLBACK:
        return FallbackProviderStrategy(factory, health_monitor, primary, fallback)
    if strategy_type == StrategyType.ROUND_ROBIN:
        return RoundRobinProviderStrategy(factory, health_monitor)
    if strategy_type == StrategyType.COST_OPTIMIZED:
        return CostOptimizedProviderStrategy(factory, health_monitor, cost_tracker)
    raise InvalidParameterError(f"Unknown provider strategy: {strategy_type}")
