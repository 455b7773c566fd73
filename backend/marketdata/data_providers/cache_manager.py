"""
Cache Manager

Caching layer in front of the data providers.
Owns key construction and per-kind TTLs; the store itself is Redis in
production or an in-memory store for development and tests.
"""
import json
import math
import time
import fnmatch
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Optional, Protocol
from cachetools import TLRUCache
from loguru import logger

from marketdata.data_providers.adapters.base import (
    Quote,
    HistoricalPrice,
    FundamentalData,
    CompanyProfile,
    SymbolSearchResult,
    TimeInterval,
)


class CacheKind(str, Enum):
    """Kinds of cached data, each with its own TTL tier."""
    QUOTE = "quote"
    HISTORICAL = "historical"
    FUNDAMENTALS = "fundamentals"
    PROFILE = "profile"
    SEARCH = "search"


@dataclass
class CacheConfig:
    """Cache configuration."""
    # TTL in seconds for different data types
    quote_ttl: int = 900              # Quotes: 15 minutes
    historical_ttl: int = 86400       # Historical bars: 24 hours
    fundamentals_ttl: int = 21600     # Fundamentals: 6 hours
    profile_ttl: int = 604800         # Company profile: 7 days
    search_ttl: int = 3600            # Symbol search: 1 hour

    # Key prefix
    prefix: str = "marketdata"

    enabled: bool = True
    enable_warming: bool = False

    # Max entries for the in-memory store
    max_size: int = 10000

    def __post_init__(self):
        for kind in CacheKind:
            if self.ttl_for(kind) <= 0:
                raise ValueError(f"{kind.value} TTL must be positive, got {self.ttl_for(kind)}")

    def ttl_for(self, kind: CacheKind) -> int:
        return {
            CacheKind.QUOTE: self.quote_ttl,
            CacheKind.HISTORICAL: self.historical_ttl,
            CacheKind.FUNDAMENTALS: self.fundamentals_ttl,
            CacheKind.PROFILE: self.profile_ttl,
            CacheKind.SEARCH: self.search_ttl,
        }[kind]


class CacheStore(Protocol):
    """Key/value store with per-entry expiry."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_pattern(self, pattern: str) -> int: ...


def _entry_expiry(key: str, entry: tuple[str, Optional[int]], now: float) -> float:
    _, ttl = entry
    return now + ttl if ttl is not None else math.inf


class InMemoryCacheStore:
    """
    Process-local cache store backed by a cachetools TLRUCache.

    Each entry carries its own TTL. The store holds at most `max_size`
    entries: expired entries are dropped first, then the least recently
    used ones.
    """

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self._cache = TLRUCache(
            maxsize=max_size, ttu=_entry_expiry, timer=clock
        )

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        if ex is not None and ex <= 0:
            # Already expired: never stored
            self._cache.pop(key, None)
            return True
        self._cache[key] = (value, ex)
        return True

    async def exists(self, key: str) -> bool:
        return key in self._cache

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._cache.pop(key, None) is not None)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in list(self._cache.keys()) if fnmatch.fnmatchcase(k, pattern)]
        return await self.delete(*keys)

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)


class CacheSerializer:
    """Handles serialization/deserialization of cached data."""

    @staticmethod
    def serialize_quote(quote: Quote) -> str:
        return json.dumps(quote.to_dict())

    @staticmethod
    def deserialize_quote(data: str) -> Quote:
        return Quote.from_dict(json.loads(data))

    @staticmethod
    def serialize_history(bars: list[HistoricalPrice]) -> str:
        return json.dumps([b.to_dict() for b in bars])

    @staticmethod
    def deserialize_history(data: str) -> list[HistoricalPrice]:
        return [HistoricalPrice.from_dict(d) for d in json.loads(data)]

    @staticmethod
    def serialize_fundamentals(data: FundamentalData) -> str:
        return json.dumps(data.to_dict())

    @staticmethod
    def deserialize_fundamentals(data: str) -> FundamentalData:
        return FundamentalData.from_dict(json.loads(data))

    @staticmethod
    def serialize_profile(profile: CompanyProfile) -> str:
        return json.dumps(profile.to_dict())

    @staticmethod
    def deserialize_profile(data: str) -> CompanyProfile:
        return CompanyProfile.from_dict(json.loads(data))

    @staticmethod
    def serialize_search(results: list[SymbolSearchResult]) -> str:
        return json.dumps([r.to_dict() for r in results])

    @staticmethod
    def deserialize_search(data: str) -> list[SymbolSearchResult]:
        return [SymbolSearchResult.from_dict(d) for d in json.loads(data)]


class CacheManager:
    """
    Cache manager for market data.

    Features:
    - Separate TTLs per data kind
    - Automatic serialization/deserialization
    - Store failures degrade to a miss and never abort the request
    - Cache invalidation patterns
    - Statistics tracking
    """

    def __init__(self, store: CacheStore, config: Optional[CacheConfig] = None):
        self.store = store
        self.config = config or CacheConfig()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    # ==================== Keys ====================

    def _key(self, *parts: str) -> str:
        """Build a cache key from parts."""
        return f"{self.config.prefix}:{':'.join(parts)}"

    def quote_key(self, symbol: str) -> str:
        return self._key(CacheKind.QUOTE.value, symbol.upper())

    def historical_key(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval,
    ) -> str:
        return self._key(
            CacheKind.HISTORICAL.value,
            symbol.upper(),
            start_date.isoformat(),
            end_date.isoformat(),
            interval.value,
        )

    def fundamentals_key(self, symbol: str) -> str:
        return self._key(CacheKind.FUNDAMENTALS.value, symbol.upper())

    def profile_key(self, symbol: str) -> str:
        return self._key(CacheKind.PROFILE.value, symbol.upper())

    def search_key(self, query: str, limit: int) -> str:
        return self._key(CacheKind.SEARCH.value, query.strip().lower(), str(limit))

    # ==================== Generic Read/Write ====================

    async def _read(self, key: str, decode: Callable[[str], Any]) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            data = await self.store.get(key)
            if data is None:
                self._stats["misses"] += 1
                logger.debug(f"Cache miss: {key}")
                return None
            value = decode(data)
            self._stats["hits"] += 1
            logger.debug(f"Cache hit: {key}")
            return value
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def _write(self, key: str, kind: CacheKind, value: Any, encode: Callable[[Any], str]) -> None:
        if not self.enabled:
            return
        try:
            await self.store.set(key, encode(value), ex=self.config.ttl_for(kind))
            self._stats["sets"] += 1
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache set error for {key}: {e}")

    # ==================== Quote Caching ====================

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get a cached quote for a symbol."""
        return await self._read(self.quote_key(symbol), CacheSerializer.deserialize_quote)

    async def set_quote(self, quote: Quote) -> None:
        await self._write(
            self.quote_key(quote.symbol), CacheKind.QUOTE, quote, CacheSerializer.serialize_quote
        )

    async def get_quotes(self, symbols: list[str]) -> dict[str, Optional[Quote]]:
        """Get cached quotes for multiple symbols."""
        return {s.upper(): await self.get_quote(s) for s in symbols}

    # ==================== Historical Data Caching ====================

    async def get_historical(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval,
    ) -> Optional[list[HistoricalPrice]]:
        key = self.historical_key(symbol, start_date, end_date, interval)
        return await self._read(key, CacheSerializer.deserialize_history)

    async def set_historical(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval,
        bars: list[HistoricalPrice],
    ) -> None:
        key = self.historical_key(symbol, start_date, end_date, interval)
        await self._write(key, CacheKind.HISTORICAL, bars, CacheSerializer.serialize_history)

    # ==================== Fundamentals / Profile ====================

    async def get_fundamentals(self, symbol: str) -> Optional[FundamentalData]:
        return await self._read(self.fundamentals_key(symbol), CacheSerializer.deserialize_fundamentals)

    async def set_fundamentals(self, data: FundamentalData) -> None:
        await self._write(
            self.fundamentals_key(data.symbol),
            CacheKind.FUNDAMENTALS,
            data,
            CacheSerializer.serialize_fundamentals,
        )

    async def get_profile(self, symbol: str) -> Optional[CompanyProfile]:
        return await self._read(self.profile_key(symbol), CacheSerializer.deserialize_profile)

    async def set_profile(self, profile: CompanyProfile) -> None:
        await self._write(
            self.profile_key(profile.symbol),
            CacheKind.PROFILE,
            profile,
            CacheSerializer.serialize_profile,
        )

    # ==================== Search Caching ====================

    async def get_search(self, query: str, limit: int) -> Optional[list[SymbolSearchResult]]:
        return await self._read(self.search_key(query, limit), CacheSerializer.deserialize_search)

    async def set_search(self, query: str, limit: int, results: list[SymbolSearchResult]) -> None:
        await self._write(
            self.search_key(query, limit), CacheKind.SEARCH, results, CacheSerializer.serialize_search
        )

    # ==================== Cache Invalidation ====================

    async def _delete(self, *keys: str) -> None:
        try:
            self._stats["deletes"] += await self.store.delete(*keys)
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache delete error for {keys}: {e}")

    async def _delete_pattern(self, pattern: str) -> None:
        try:
            self._stats["deletes"] += await self.store.delete_pattern(pattern)
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache delete error for {pattern}: {e}")

    async def invalidate(self, symbol: str, kind: Optional[CacheKind] = None) -> None:
        """
        Invalidate cached data for a symbol.

        With no kind, every symbol-keyed entry is removed. For SEARCH the
        symbol is treated as the search query.
        """
        symbol_up = symbol.upper()
        if kind is None:
            await self._delete(
                self.quote_key(symbol),
                self.fundamentals_key(symbol),
                self.profile_key(symbol),
            )
            await self._delete_pattern(self._key(CacheKind.HISTORICAL.value, symbol_up, "*"))
        elif kind == CacheKind.QUOTE:
            await self._delete(self.quote_key(symbol))
        elif kind == CacheKind.HISTORICAL:
            await self._delete_pattern(self._key(CacheKind.HISTORICAL.value, symbol_up, "*"))
        elif kind == CacheKind.FUNDAMENTALS:
            await self._delete(self.fundamentals_key(symbol))
        elif kind == CacheKind.PROFILE:
            await self._delete(self.profile_key(symbol))
        elif kind == CacheKind.SEARCH:
            await self._delete_pattern(self._key(CacheKind.SEARCH.value, symbol.strip().lower(), "*"))
        logger.debug(f"Invalidated cache for {symbol_up} ({kind.value if kind else 'all'})")

    async def clear_all(self) -> None:
        """Clear all market data cache."""
        await self._delete_pattern(f"{self.config.prefix}:*")
        logger.info("Cleared market data cache")

    # ==================== Cache Stats ====================

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total if total > 0 else 0

        return {
            **self._stats,
            "enabled": self.enabled,
            "total_requests": total,
            "hit_rate": round(hit_rate * 100, 2),
        }

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()
