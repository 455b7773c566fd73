"""
Provider Metrics Tracker

Raw request counters per provider, kept apart from health policy so
volume statistics survive threshold changes. Every recorded attempt is
also forwarded to the cost tracker as one billed call.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from collections import defaultdict
from loguru import logger

from marketdata.data_providers.adapters.base import ProviderType
from marketdata.data_providers.cost_tracker import CostTracker


@dataclass
class ProviderMetrics:
    """Request counters for a provider."""
    provider: ProviderType
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_request: Optional[datetime] = None
    tracking_start: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success_rate(self) -> float:
        """Percentage of successful requests."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": round(self.success_rate, 2),
            "last_request": self.last_request.isoformat() if self.last_request else None,
            "tracking_start": self.tracking_start.isoformat(),
        }


class ProviderMetricsTracker:
    """Counts successes and failures of every adapter call."""

    def __init__(self, cost_tracker: Optional[CostTracker] = None):
        self._cost_tracker = cost_tracker
        self._metrics: dict[ProviderType, ProviderMetrics] = {}
        self._locks: dict[ProviderType, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _get_or_create(self, provider: ProviderType) -> ProviderMetrics:
        if provider not in self._metrics:
            self._metrics[provider] = ProviderMetrics(provider=provider)
        return self._metrics[provider]

    async def record_success(self, provider: ProviderType) -> None:
        async with self._locks[provider]:
            metrics = self._get_or_create(provider)
            metrics.total_requests += 1
            metrics.successful_requests += 1
            metrics.last_request = datetime.now(timezone.utc)

        if self._cost_tracker:
            await self._cost_tracker.record_api_call(provider)

    async def record_failure(self, provider: ProviderType) -> None:
        async with self._locks[provider]:
            metrics = self._get_or_create(provider)
            metrics.total_requests += 1
            metrics.failed_requests += 1
            metrics.last_request = datetime.now(timezone.utc)

        # Failed attempts are billed too
        if self._cost_tracker:
            await self._cost_tracker.record_api_call(provider)

    def get_metrics(self, provider: ProviderType) -> ProviderMetrics:
        """Copy of the counters for a provider (zeros if never used)."""
        metrics = self._metrics.get(provider)
        if metrics is None:
            return ProviderMetrics(provider=provider)
        return ProviderMetrics(**vars(metrics))

    def get_all_metrics(self) -> dict[ProviderType, ProviderMetrics]:
        return {p: self.get_metrics(p) for p in self._metrics}

    def reset_metrics(self, provider: ProviderType) -> None:
        self._metrics.pop(provider, None)
        logger.info(f"Reset metrics for provider: {provider.value}")

    def reset_all_metrics(self) -> None:
        self._metrics.clear()
        logger.info("Reset metrics for all providers")
