"""
Cost Tracker

Meters API calls per provider and converts them into estimated spend.
Cost parameters come from configuration; totals are derived on read:

    total_cost = calls * cost_per_call + monthly_subscription

A threshold of 0 means the provider has no spending limit.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from collections import defaultdict
from loguru import logger

from marketdata.data_providers.adapters.base import ProviderType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProviderCostConfig:
    """Cost configuration for a provider."""
    cost_per_call: Decimal = Decimal("0")
    monthly_subscription: Decimal = Decimal("0")
    cost_threshold: Decimal = Decimal("0")  # 0 = unlimited

    @classmethod
    def from_values(
        cls,
        cost_per_call: float = 0.0,
        monthly_subscription: float = 0.0,
        cost_threshold: float = 0.0,
    ) -> "ProviderCostConfig":
        """Build from plain numbers without float rounding noise."""
        return cls(
            cost_per_call=Decimal(str(cost_per_call)),
            monthly_subscription=Decimal(str(monthly_subscription)),
            cost_threshold=Decimal(str(cost_threshold)),
        )


@dataclass
class CostUsage:
    """Mutable call counter for a provider."""
    provider: ProviderType
    total_calls: int = 0
    tracking_start: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)
    warning_logged: bool = False
    exceeded_logged: bool = False


@dataclass(frozen=True)
class ProviderCostMetrics:
    """Read-only cost view for a provider."""
    provider: ProviderType
    total_calls: int
    cost_per_call: Decimal
    monthly_subscription: Decimal
    total_cost: Decimal
    cost_threshold: Decimal
    threshold_percentage: float
    is_threshold_exceeded: bool
    tracking_start: datetime
    last_updated: datetime

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "total_calls": self.total_calls,
            "cost_per_call": float(self.cost_per_call),
            "monthly_subscription": float(self.monthly_subscription),
            "total_cost": float(self.total_cost),
            "cost_threshold": float(self.cost_threshold),
            "threshold_percentage": round(self.threshold_percentage, 2),
            "is_threshold_exceeded": self.is_threshold_exceeded,
            "tracking_start": self.tracking_start.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }


class CostTracker:
    """
    Tracks API costs across providers.

    Features:
    - Per-provider call counting (monotonic until reset)
    - Cost estimation from per-call and subscription pricing
    - Warning logs at a configurable percentage of the threshold
    - Optional enforcement via can_afford()
    """

    def __init__(
        self,
        enabled: bool = True,
        enforce_limits: bool = False,
        warning_threshold_percentage: float = 80.0,
    ):
        self.enabled = enabled
        self.enforce_limits = enforce_limits
        self.warning_threshold_percentage = warning_threshold_percentage
        self._configs: dict[ProviderType, ProviderCostConfig] = {}
        self._usage: dict[ProviderType, CostUsage] = {}
        self._locks: dict[ProviderType, asyncio.Lock] = defaultdict(asyncio.Lock)

    def configure(self, provider: ProviderType, config: ProviderCostConfig) -> None:
        """Configure pricing for a provider."""
        self._configs[provider] = config
        logger.info(
            f"Cost tracking configured for {provider.value}: "
            f"${config.cost_per_call}/call, ${config.monthly_subscription}/month, "
            f"threshold=${config.cost_threshold}"
        )

    def _get_or_create_usage(self, provider: ProviderType) -> CostUsage:
        if provider not in self._usage:
            self._usage[provider] = CostUsage(provider=provider)
        return self._usage[provider]

    # ==================== Recording ====================

    async def record_api_call(self, provider: ProviderType, count: int = 1) -> None:
        """Record billed API calls. A no-op when tracking is disabled."""
        if not self.enabled:
            return

        async with self._locks[provider]:
            usage = self._get_or_create_usage(provider)
            usage.total_calls += count
            usage.last_updated = _utcnow()

        self._check_thresholds(provider, usage)

    def _check_thresholds(self, provider: ProviderType, usage: CostUsage) -> None:
        threshold = self.get_cost_threshold(provider)
        if threshold <= 0:
            return

        total = self.get_total_estimated_cost(provider)
        percentage = self.get_cost_threshold_percentage(provider)

        if total >= threshold:
            if not usage.exceeded_logged:
                usage.exceeded_logged = True
                logger.error(
                    f"Cost threshold exceeded for {provider.value}: "
                    f"${total} / ${threshold} ({percentage:.1f}%)"
                )
        elif percentage >= self.warning_threshold_percentage and not usage.warning_logged:
            usage.warning_logged = True
            logger.warning(
                f"Cost threshold warning for {provider.value}: "
                f"${total} / ${threshold} ({percentage:.1f}%)"
            )

    # ==================== Pricing ====================

    def get_cost_per_call(self, provider: ProviderType) -> Decimal:
        config = self._configs.get(provider)
        return config.cost_per_call if config else Decimal("0")

    def get_monthly_subscription(self, provider: ProviderType) -> Decimal:
        config = self._configs.get(provider)
        return config.monthly_subscription if config else Decimal("0")

    def get_cost_threshold(self, provider: ProviderType) -> Decimal:
        config = self._configs.get(provider)
        return config.cost_threshold if config else Decimal("0")

    def calculate_cost(self, provider: ProviderType, call_count: int) -> Decimal:
        """Usage cost for a number of calls, excluding subscription."""
        return self.get_cost_per_call(provider) * call_count

    def get_call_count(self, provider: ProviderType) -> int:
        usage = self._usage.get(provider)
        return usage.total_calls if usage else 0

    def get_total_estimated_cost(self, provider: ProviderType) -> Decimal:
        return (
            self.calculate_cost(provider, self.get_call_count(provider))
            + self.get_monthly_subscription(provider)
        )

    def get_total_cost(self) -> Decimal:
        """Estimated spend across every provider."""
        return sum(
            (self.get_total_estimated_cost(p) for p in self._tracked_providers()),
            Decimal("0"),
        )

    # ==================== Thresholds ====================

    def is_cost_threshold_exceeded(self, provider: ProviderType) -> bool:
        threshold = self.get_cost_threshold(provider)
        return threshold > 0 and self.get_total_estimated_cost(provider) >= threshold

    def get_cost_threshold_percentage(self, provider: ProviderType) -> float:
        threshold = self.get_cost_threshold(provider)
        if threshold <= 0:
            return 0.0
        return float(self.get_total_estimated_cost(provider) / threshold * 100)

    def can_afford(self, provider: ProviderType) -> bool:
        """False only when limits are enforced and the threshold is reached."""
        if not (self.enabled and self.enforce_limits):
            return True
        return not self.is_cost_threshold_exceeded(provider)

    # ==================== Reads ====================

    def _tracked_providers(self) -> list[ProviderType]:
        return list(dict.fromkeys(list(self._configs) + list(self._usage)))

    def get_cost_metrics(self, provider: ProviderType) -> ProviderCostMetrics:
        usage = self._usage.get(provider) or CostUsage(provider=provider)
        return ProviderCostMetrics(
            provider=provider,
            total_calls=usage.total_calls,
            cost_per_call=self.get_cost_per_call(provider),
            monthly_subscription=self.get_monthly_subscription(provider),
            total_cost=self.get_total_estimated_cost(provider),
            cost_threshold=self.get_cost_threshold(provider),
            threshold_percentage=self.get_cost_threshold_percentage(provider),
            is_threshold_exceeded=self.is_cost_threshold_exceeded(provider),
            tracking_start=usage.tracking_start,
            last_updated=usage.last_updated,
        )

    def get_all_cost_metrics(self) -> dict[ProviderType, ProviderCostMetrics]:
        return {p: self.get_cost_metrics(p) for p in self._tracked_providers()}

    # ==================== Reset ====================

    def reset_cost_tracking(self, provider: ProviderType) -> None:
        """Zero the call counter and restart the tracking period."""
        self._usage[provider] = CostUsage(provider=provider)
        logger.info(f"Reset cost tracking for provider: {provider.value}")

    def reset_all_cost_tracking(self) -> None:
        for provider in self._tracked_providers():
            self._usage[provider] = CostUsage(provider=provider)
        logger.info("Reset cost tracking for all providers")
