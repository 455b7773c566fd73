"""
Rate Limiter

Per-provider token buckets with hard wall-clock window resets.
Each provider has independent minute, hour and day buckets; a request
needs a token from every limited bucket and consumes from all of them
or from none.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from loguru import logger

from marketdata.data_providers.adapters.base import ProviderType


# Padding after a window edge before retrying
RESET_PADDING_SECONDS = 0.1
# Upper bound on a single sleep while waiting for a long window (e.g. daily)
MAX_WAIT_SLICE_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateLimitConfig:
    """Per-provider limits. 0 disables a window."""
    requests_per_minute: int = 0
    requests_per_hour: int = 0
    requests_per_day: int = 0


def next_window_edge(window: str, now: datetime) -> datetime:
    """Start of the next minute, hour or UTC day after `now`."""
    if window == "minute":
        return now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    if window == "hour":
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    if window == "day":
        return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    raise ValueError(f"Unknown window: {window}")


@dataclass
class TokenBucket:
    """Token bucket refilled in full at the next window edge."""
    window: str
    capacity: int
    tokens: int
    reset_at: Optional[datetime] = None

    @property
    def unlimited(self) -> bool:
        return self.capacity <= 0

    def refill(self, now: datetime) -> None:
        if self.reset_at is not None and now >= self.reset_at:
            self.tokens = self.capacity
            self.reset_at = None

    def has_capacity(self, now: datetime) -> bool:
        if self.unlimited:
            return True
        self.refill(now)
        return self.tokens > 0

    def consume(self, now: datetime) -> None:
        if self.unlimited:
            return
        self.tokens = max(0, self.tokens - 1)
        if self.reset_at is None:
            self.reset_at = next_window_edge(self.window, now)

    def remaining(self, now: datetime) -> Optional[int]:
        if self.unlimited:
            return None
        if self.reset_at is not None and now >= self.reset_at:
            return self.capacity
        return self.tokens

    def seconds_until_reset(self, now: datetime) -> float:
        if self.unlimited or self.reset_at is None or now >= self.reset_at:
            return 0.0
        return (self.reset_at - now).total_seconds()


@dataclass(frozen=True)
class WindowStatus:
    limit: int
    remaining: Optional[int]
    resets_in_seconds: float

    def to_dict(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "resets_in_seconds": round(self.resets_in_seconds, 1),
        }


@dataclass(frozen=True)
class RateLimitStatus:
    """Derived snapshot of a provider's buckets."""
    provider: ProviderType
    minute: WindowStatus
    hour: WindowStatus
    day: WindowStatus

    @property
    def is_rate_limited(self) -> bool:
        """True iff any limited window is exhausted."""
        return any(
            w.remaining == 0 for w in (self.minute, self.hour, self.day) if w.limit > 0
        )

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "minute": self.minute.to_dict(),
            "hour": self.hour.to_dict(),
            "day": self.day.to_dict(),
            "is_rate_limited": self.is_rate_limited,
        }


class RateLimiter:
    """
    Rate limiter with independent minute, hour and day windows per provider.

    Unconfigured providers are never limited. Adapters do not call this;
    the data service gates every adapter call through it.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._configs: dict[ProviderType, RateLimitConfig] = {}
        self._buckets: dict[ProviderType, dict[str, TokenBucket]] = {}
        self._locks: dict[ProviderType, asyncio.Lock] = defaultdict(asyncio.Lock)

    def configure(self, provider: ProviderType, config: RateLimitConfig) -> None:
        """Configure rate limits for a provider, resetting its buckets."""
        self._configs[provider] = config
        self._buckets[provider] = {
            "minute": TokenBucket("minute", config.requests_per_minute, config.requests_per_minute),
            "hour": TokenBucket("hour", config.requests_per_hour, config.requests_per_hour),
            "day": TokenBucket("day", config.requests_per_day, config.requests_per_day),
        }
        logger.info(f"Rate limiter configured for {provider.value}: {config}")

    def try_acquire(self, provider: ProviderType) -> bool:
        """
        Take one token from every window without waiting.

        Returns False and leaves all buckets untouched if any window is empty.
        """
        buckets = self._buckets.get(provider)
        if not buckets:
            return True

        now = self._clock()
        if not all(b.has_capacity(now) for b in buckets.values()):
            return False

        for bucket in buckets.values():
            bucket.consume(now)
        return True

    def seconds_until_available(self, provider: ProviderType) -> float:
        """Seconds until every limited window has capacity again."""
        buckets = self._buckets.get(provider)
        if not buckets:
            return 0.0
        now = self._clock()
        blocked = [b for b in buckets.values() if not b.has_capacity(now)]
        if not blocked:
            return 0.0
        return max(b.seconds_until_reset(now) for b in blocked)

    async def wait_for_availability(self, provider: ProviderType) -> None:
        """
        Suspend until every window has capacity.

        Sleeps to the blocking window's edge (in slices of at most a minute)
        and is cancellable at any point.
        """
        while True:
            wait_time = self.seconds_until_available(provider)
            if wait_time <= 0 and self.can_proceed(provider):
                return
            sleep_for = min(wait_time + RESET_PADDING_SECONDS, MAX_WAIT_SLICE_SECONDS)
            logger.warning(f"Rate limit: waiting {sleep_for:.2f}s for {provider.value}")
            await asyncio.sleep(sleep_for)

    async def acquire(self, provider: ProviderType) -> None:
        """
        Acquire a token, waiting for window resets if necessary.

        Waiters on the same provider are served in arrival order.
        """
        async with self._locks[provider]:
            while not self.try_acquire(provider):
                await self.wait_for_availability(provider)

    def can_proceed(self, provider: ProviderType) -> bool:
        """Check if a request can proceed immediately."""
        buckets = self._buckets.get(provider)
        if not buckets:
            return True
        now = self._clock()
        return all(b.has_capacity(now) for b in buckets.values())

    def get_remaining(self, provider: ProviderType) -> Optional[int]:
        """Tightest remaining count across limited windows, None if unlimited."""
        buckets = self._buckets.get(provider)
        if not buckets:
            return None
        now = self._clock()
        remaining = [r for r in (b.remaining(now) for b in buckets.values()) if r is not None]
        return min(remaining) if remaining else None

    def get_status(self, provider: ProviderType) -> RateLimitStatus:
        """Current status for a provider. Never mutates bucket state."""
        now = self._clock()
        buckets = self._buckets.get(provider, {})

        def window(name: str) -> WindowStatus:
            bucket = buckets.get(name)
            if bucket is None or bucket.unlimited:
                return WindowStatus(limit=0, remaining=None, resets_in_seconds=0.0)
            return WindowStatus(
                limit=bucket.capacity,
                remaining=bucket.remaining(now),
                resets_in_seconds=bucket.seconds_until_reset(now),
            )

        return RateLimitStatus(
            provider=provider,
            minute=window("minute"),
            hour=window("hour"),
            day=window("day"),
        )

    def is_rate_limited(self, provider: ProviderType) -> bool:
        return self.get_status(provider).is_rate_limited

    def get_all_statuses(self) -> dict[ProviderType, RateLimitStatus]:
        return {provider: self.get_status(provider) for provider in self._configs}

    def reset(self, provider: ProviderType) -> None:
        """Refill every window for a provider."""
        config = self._configs.get(provider)
        if config:
            self.configure(provider, config)
            logger.info(f"Rate limits reset for {provider.value}")
