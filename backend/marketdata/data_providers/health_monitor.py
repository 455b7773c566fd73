"""
Provider Health Monitor

Tracks the health of every data provider from organic traffic and
periodic active probes.

Each provider is either healthy or unhealthy:
- A success resets the consecutive-failure count and marks it healthy.
- A failure increments the count; reaching the threshold marks it unhealthy.
- Only a later success (organic or probe) marks it healthy again.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Callable, Awaitable
from collections import defaultdict, deque
from loguru import logger

from marketdata.data_providers.adapters.base import ProviderType
from marketdata.data_providers.provider_factory import ProviderFactory


MAX_RESPONSE_TIME_SAMPLES = 100


@dataclass
class HealthConfig:
    """Health monitoring configuration."""
    failure_threshold: int = 5            # Consecutive failures before unhealthy
    health_check_interval: float = 60.0   # Seconds between periodic probes
    warning_latency_ms: float = 2000.0    # Latency warning threshold


@dataclass(frozen=True)
class ProviderHealth:
    """Read-only view of a provider's health."""
    provider: ProviderType
    is_healthy: bool
    consecutive_failures: int
    last_checked: Optional[datetime]
    average_response_time_ms: float

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "is_healthy": self.is_healthy,
            "consecutive_failures": self.consecutive_failures,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "average_response_time_ms": round(self.average_response_time_ms, 2),
        }


@dataclass
class HealthRecord:
    """Mutable health state for a provider. Owned by the monitor."""
    provider: ProviderType
    is_healthy: bool = True
    consecutive_failures: int = 0
    last_checked: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None

    # Latency tracking (last N requests)
    latencies: deque = field(default_factory=lambda: deque(maxlen=MAX_RESPONSE_TIME_SAMPLES))

    @property
    def average_response_time_ms(self) -> float:
        """Windowed average latency."""
        if not self.latencies:
            return 0.0
        return sum(self.latencies) / len(self.latencies)

    def snapshot(self) -> ProviderHealth:
        return ProviderHealth(
            provider=self.provider,
            is_healthy=self.is_healthy,
            consecutive_failures=self.consecutive_failures,
            last_checked=self.last_checked,
            average_response_time_ms=self.average_response_time_ms,
        )


class ProviderHealthMonitor:
    """
    Monitors health status of data providers.

    Features:
    - Consecutive failure tracking with a configurable threshold
    - Windowed average response time
    - Active probes through each adapter's is_healthy()
    - Idempotent periodic background checks
    - Event callbacks for status changes
    """

    def __init__(self, factory: ProviderFactory, config: Optional[HealthConfig] = None):
        self.config = config or HealthConfig()
        self._factory = factory
        self._records: dict[ProviderType, HealthRecord] = {}
        self._locks: dict[ProviderType, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._status_callbacks: list[Callable[[ProviderType, bool], Awaitable[None]]] = []

        # Periodic checks
        self._health_check_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def initialize_providers(self, providers: list[ProviderType]) -> None:
        """Seed a healthy record for each provider."""
        for provider in providers:
            self._get_or_create_record(provider)
        logger.info(f"Initialized health monitoring for {len(providers)} providers")

    def register_status_callback(
        self,
        callback: Callable[[ProviderType, bool], Awaitable[None]]
    ) -> None:
        """
        Register a callback for status changes.

        Callback receives: provider, is_healthy
        """
        self._status_callbacks.append(callback)

    # ==================== Recording ====================

    async def record_success(self, provider: ProviderType, response_time_ms: float) -> None:
        """Record a successful request or probe."""
        async with self._locks[provider]:
            record = self._get_or_create_record(provider)
            was_healthy = record.is_healthy

            record.consecutive_failures = 0
            record.is_healthy = True
            record.last_success = datetime.now(timezone.utc)
            record.latencies.append(response_time_ms)

            if response_time_ms > self.config.warning_latency_ms:
                logger.warning(f"High latency for {provider.value}: {response_time_ms:.0f}ms")

            logger.debug(
                f"Recorded success for {provider.value} - response time: {response_time_ms:.0f}ms, "
                f"avg: {record.average_response_time_ms:.0f}ms"
            )

        if not was_healthy:
            logger.info(f"Provider {provider.value} recovered - marked healthy")
            await self._notify_status_change(provider, True)

    async def record_failure(self, provider: ProviderType, error: Optional[str] = None) -> None:
        """Record a failed request or probe."""
        async with self._locks[provider]:
            record = self._get_or_create_record(provider)
            was_healthy = record.is_healthy

            record.consecutive_failures += 1
            record.last_failure = datetime.now(timezone.utc)
            record.last_error = error

            logger.warning(
                f"Request failed for {provider.value} "
                f"({record.consecutive_failures} consecutive): {error}"
            )

            if record.consecutive_failures >= self.config.failure_threshold:
                record.is_healthy = False

        if was_healthy and not record.is_healthy:
            logger.error(
                f"Provider {provider.value} marked unhealthy after "
                f"{record.consecutive_failures} consecutive failures"
            )
            await self._notify_status_change(provider, False)

    async def _notify_status_change(self, provider: ProviderType, is_healthy: bool) -> None:
        """Notify registered callbacks of status change."""
        for callback in self._status_callbacks:
            try:
                await callback(provider, is_healthy)
            except Exception as e:
                logger.error(f"Error in health status callback: {e}")

    def _get_or_create_record(self, provider: ProviderType) -> HealthRecord:
        if provider not in self._records:
            self._records[provider] = HealthRecord(provider=provider)
        return self._records[provider]

    # ==================== Reads ====================

    def get_health_status(self, provider: ProviderType) -> Optional[ProviderHealth]:
        """Health view for a provider, or None if it was never observed."""
        record = self._records.get(provider)
        return record.snapshot() if record else None

    def get_all_health_statuses(self) -> dict[ProviderType, ProviderHealth]:
        return {provider: record.snapshot() for provider, record in self._records.items()}

    def is_healthy(self, provider: ProviderType) -> bool:
        """Unknown providers are assumed healthy."""
        record = self._records.get(provider)
        return record.is_healthy if record else True

    def get_healthy_providers(self) -> list[ProviderType]:
        return [p for p, r in self._records.items() if r.is_healthy]

    def reset(self, provider: ProviderType) -> None:
        """Reset a provider to a fresh healthy record."""
        if provider in self._records:
            self._records[provider] = HealthRecord(provider=provider)
            logger.info(f"Health metrics reset for {provider.value}")

    # ==================== Active Probes ====================

    async def check_health(self, provider: ProviderType) -> bool:
        """
        Probe a provider via its adapter and feed the result into the state machine.

        This is the only path that can recover an unhealthy provider when
        no organic traffic is flowing.
        """
        logger.debug(f"Performing health check for provider: {provider.value}")
        start = time.perf_counter()
        healthy = False

        try:
            adapter = self._factory.create_provider(provider)
            healthy = await adapter.is_healthy()
            elapsed_ms = (time.perf_counter() - start) * 1000

            if healthy:
                await self.record_success(provider, elapsed_ms)
                logger.info(f"Health check passed for {provider.value} in {elapsed_ms:.0f}ms")
            else:
                await self.record_failure(provider, "health probe reported unhealthy")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.record_failure(provider, f"health probe raised {type(e).__name__}: {e}")
            logger.error(f"Health check failed for {provider.value}: {e}")

        self._get_or_create_record(provider).last_checked = datetime.now(timezone.utc)
        return healthy

    async def check_all_providers(self) -> dict[ProviderType, bool]:
        """Probe every configured provider concurrently."""
        providers = self._factory.get_available_providers()
        results = await asyncio.gather(*(self.check_health(p) for p in providers))
        return dict(zip(providers, results))

    # ==================== Periodic Checks ====================

    @property
    def is_monitoring(self) -> bool:
        return self._health_check_task is not None and not self._health_check_task.done()

    def start_periodic_health_checks(self, interval: Optional[float] = None) -> bool:
        """
        Start the background probe loop. Must be called from a running event loop.

        Returns False (and schedules nothing) if the loop is already running.
        """
        if self.is_monitoring:
            logger.warning("Periodic health checks already running")
            return False

        interval = interval or self.config.health_check_interval
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._health_check_task = asyncio.create_task(self._health_check_loop(interval, self._stop_event))
        logger.info(f"Started periodic health checks every {interval}s")
        return True

    def request_stop(self) -> None:
        """Signal the probe loop to exit. Safe to call from any thread."""
        if self._stop_event is None or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._stop_event.set)

    async def stop_periodic_health_checks(self) -> None:
        """
        Stop the probe loop, letting an in-flight round of probes finish.

        Idempotent; a no-op when nothing is running.
        """
        task = self._health_check_task
        if task is None:
            return

        self.request_stop()
        if asyncio.get_running_loop() is self._loop:
            await task
        else:
            await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(self._await_task(task), self._loop))

        self._health_check_task = None
        self._stop_event = None
        logger.info("Stopped periodic health checks")

    @staticmethod
    async def _await_task(task: asyncio.Task) -> None:
        await task

    async def _health_check_loop(self, interval: float, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            results = await self.check_all_providers()
            healthy = sum(1 for ok in results.values() if ok)
            logger.debug(f"Periodic health check complete: {healthy}/{len(results)} healthy")
