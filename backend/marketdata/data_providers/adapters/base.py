"""
Base Provider Adapter Interface

Defines the canonical market data model and the abstract interface that
every data provider adapter implements. Adapters translate vendor responses
into these structures and raise the typed errors from
marketdata.utils.exceptions instead of generic ones.
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Any
import aiohttp
from loguru import logger

from marketdata.utils.exceptions import (
    StockDataError,
    SymbolNotFoundError,
    RateLimitExceededError,
    ApiUnavailableError,
    ProviderTimeoutError,
    InvalidApiKeyError,
    InvalidDateRangeError,
)


class ProviderType(str, Enum):
    """Supported market data vendors."""
    YAHOO_FINANCE = "yahoo_finance"
    ALPHA_VANTAGE = "alpha_vantage"
    MOCK = "mock"


class TimeInterval(str, Enum):
    """Bar interval for historical prices."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a vendor number (or numeric string) to Decimal, None if absent."""
    if value is None or value == "" or value == "None" or value == "-":
        return None
    try:
        return Decimal(str(value))
    except (ArithmeticError, ValueError):
        return None


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or value == "None" or value == "-":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> Optional[int]:
    f = to_float(value)
    return int(f) if f is not None else None


def _dec_out(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class ProviderConfig:
    """Configuration for a data provider."""
    name: str
    api_key: Optional[str] = None
    base_url: str = ""

    # Timeouts and retries
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_delay: float = 0.1

    # Mock provider only
    simulated_delay_ms: int = 0


# ==================== Canonical Data Model ====================

@dataclass
class Quote:
    """Normalized real-time quote."""
    symbol: str
    price: Decimal
    change: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    volume: Optional[int] = None
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None

    # Day / 52-week range
    day_high: Optional[Decimal] = None
    day_low: Optional[Decimal] = None
    fifty_two_week_high: Optional[Decimal] = None
    fifty_two_week_low: Optional[Decimal] = None

    average_volume: Optional[int] = None
    market_cap: Optional[Decimal] = None
    exchange: Optional[str] = None
    market_state: Optional[str] = None
    currency: str = "USD"
    timestamp: datetime = field(default_factory=_utcnow)
    provider: str = ""

    _DECIMALS = (
        "price", "change", "change_percent", "bid", "ask", "day_high", "day_low",
        "fifty_two_week_high", "fifty_two_week_low", "market_cap",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "symbol": self.symbol,
            "price": _dec_out(self.price),
            "change": _dec_out(self.change),
            "change_percent": _dec_out(self.change_percent),
            "volume": self.volume,
            "bid": _dec_out(self.bid),
            "ask": _dec_out(self.ask),
            "day_high": _dec_out(self.day_high),
            "day_low": _dec_out(self.day_low),
            "fifty_two_week_high": _dec_out(self.fifty_two_week_high),
            "fifty_two_week_low": _dec_out(self.fifty_two_week_low),
            "average_volume": self.average_volume,
            "market_cap": _dec_out(self.market_cap),
            "exchange": self.exchange,
            "market_state": self.market_state,
            "currency": self.currency,
            "timestamp": self.timestamp.isoformat(),
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Quote":
        data = dict(d)
        for name in cls._DECIMALS:
            data[name] = to_decimal(data.get(name))
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return cls(**data)


@dataclass
class HistoricalPrice:
    """One OHLCV bar."""
    symbol: str
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int
    adjusted_close: Optional[Decimal] = None
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "date": self.date.isoformat(),
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": self.volume,
            "adjusted_close": _dec_out(self.adjusted_close),
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HistoricalPrice":
        return cls(
            symbol=d["symbol"],
            date=date.fromisoformat(d["date"]),
            open=Decimal(d["open"]),
            high=Decimal(d["high"]),
            low=Decimal(d["low"]),
            close=Decimal(d["close"]),
            volume=d["volume"],
            adjusted_close=to_decimal(d.get("adjusted_close")),
            provider=d.get("provider", ""),
        )


@dataclass
class FundamentalData:
    """Valuation, profitability, growth, dividend and balance-sheet ratios."""
    symbol: str

    # Valuation
    pe_ratio: Optional[float] = None
    peg_ratio: Optional[float] = None
    price_to_book: Optional[float] = None
    price_to_sales: Optional[float] = None
    enterprise_value: Optional[float] = None
    ev_to_ebitda: Optional[float] = None

    # Profitability
    profit_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    return_on_equity: Optional[float] = None
    return_on_assets: Optional[float] = None

    # Growth
    revenue_growth: Optional[float] = None
    earnings_growth: Optional[float] = None
    eps: Optional[float] = None

    # Dividends
    dividend_yield: Optional[float] = None
    payout_ratio: Optional[float] = None

    # Financial health
    current_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    quick_ratio: Optional[float] = None

    last_updated: datetime = field(default_factory=_utcnow)
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["last_updated"] = self.last_updated.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "FundamentalData":
        data = dict(d)
        data["last_updated"] = datetime.fromisoformat(data["last_updated"])
        return cls(**data)


@dataclass
class CompanyProfile:
    """Descriptive company metadata."""
    symbol: str
    company_name: str = ""
    sector: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    employee_count: Optional[int] = None
    ceo: Optional[str] = None
    founded_year: Optional[int] = None
    exchange: Optional[str] = None
    currency: Optional[str] = None
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "CompanyProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})


@dataclass
class SymbolSearchResult:
    """A symbol lookup match."""
    symbol: str
    name: str
    exchange: Optional[str] = None
    asset_type: Optional[str] = None
    region: Optional[str] = None
    match_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SymbolSearchResult":
        return cls(**d)


# ==================== Adapter Contract ====================

class StockDataProvider(ABC):
    """
    Abstract base class for all data provider adapters.

    Each provider adapter must implement:
    - get_quote(): Real-time quote for a symbol
    - get_historical_prices(): OHLCV bars for a date range
    - get_fundamentals(): Fundamental ratios
    - get_company_profile(): Descriptive metadata
    - search_symbols(): Symbol lookup
    - is_healthy(): Lightweight connectivity probe

    Adapters do not throttle themselves; rate limiting is the caller's job.
    """

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name

    async def initialize(self) -> None:
        """Initialize the adapter (create sessions, validate credentials)."""

    async def close(self) -> None:
        """Clean up resources."""

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        """
        Get real-time quote for a single symbol.

        Raises:
            SymbolNotFoundError: Unknown symbol
            ApiUnavailableError / ProviderTimeoutError: Transport failures
        """

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """
        Get quotes for multiple symbols.

        Unknown symbols are skipped; any other error aborts the batch.
        """
        results = await asyncio.gather(
            *(self.get_quote(s) for s in symbols),
            return_exceptions=True,
        )
        quotes = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, SymbolNotFoundError):
                logger.warning(f"{self.name}: skipping unknown symbol {symbol}")
                continue
            if isinstance(result, BaseException):
                raise result
            quotes.append(result)
        return quotes

    @abstractmethod
    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
    ) -> list[HistoricalPrice]:
        """Get OHLCV bars sorted by date, inclusive of both ends."""

    @abstractmethod
    async def get_fundamentals(self, symbol: str) -> FundamentalData:
        """Get fundamental ratios for a symbol."""

    @abstractmethod
    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        """Get company profile for a symbol."""

    @abstractmethod
    async def search_symbols(self, query: str, limit: int = 10) -> list[SymbolSearchResult]:
        """Search symbols by ticker or company name."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Check if the provider is reachable. Must not raise for ordinary failures."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"


class HttpStockDataProvider(StockDataProvider):
    """
    Base class for adapters backed by an aiohttp session.

    Maps transport failures onto the typed error taxonomy so every
    HTTP adapter reports errors the same way.
    """

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "Mozilla/5.0 (compatible; marketdata/1.0)"},
            )
            logger.info(f"{self.name} adapter initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info(f"{self.name} adapter closed")

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        symbol: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        GET a JSON object, raising typed errors for failures.

        Timeouts and network errors are retried up to `retry_attempts` more
        times with exponential backoff (retry_delay * 2^attempt). HTTP error
        statuses are not retried.
        """
        if self._session is None:
            await self.initialize()

        retries = max(0, self.config.retry_attempts)
        attempt = 0
        while True:
            if attempt > 0:
                delay = self.config.retry_delay * (2 ** attempt)
                logger.info(f"Retrying {self.name} request (attempt {attempt + 1}/{retries + 1}) in {delay:.2f}s")
                await asyncio.sleep(delay)
            try:
                return await self._request_json(url, params, symbol)
            except (ProviderTimeoutError, ApiUnavailableError) as e:
                if attempt >= retries or not isinstance(e.__cause__, (asyncio.TimeoutError, aiohttp.ClientError)):
                    raise
                logger.warning(f"{self.name} transient network error: {e}")
                attempt += 1

    async def _request_json(
        self,
        url: str,
        params: Optional[dict[str, Any]],
        symbol: Optional[str],
    ) -> dict[str, Any]:
        try:
            async with self._session.get(url, params=params) as response:
                if response.status == 404:
                    raise SymbolNotFoundError(symbol or "", provider=self.name)
                if response.status == 429:
                    retry_after = to_float(response.headers.get("Retry-After"))
                    raise RateLimitExceededError(
                        f"{self.name} rate limit exceeded",
                        symbol=symbol,
                        retry_after=retry_after,
                        provider=self.name,
                    )
                if response.status in (401, 403):
                    raise InvalidApiKeyError(
                        f"{self.name} rejected credentials (HTTP {response.status})",
                        symbol=symbol,
                        provider=self.name,
                    )
                if response.status != 200:
                    raise ApiUnavailableError(
                        f"{self.name} returned status code {response.status}",
                        symbol=symbol,
                        provider=self.name,
                    )
                data = await response.json(content_type=None)

        except StockDataError:
            raise
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"Request timeout from {self.name}",
                symbol=symbol,
                provider=self.name,
            ) from e
        except aiohttp.ClientError as e:
            raise ApiUnavailableError(
                f"Network error from {self.name}: {e}",
                symbol=symbol,
                provider=self.name,
            ) from e
        except ValueError as e:
            raise ApiUnavailableError(
                f"Failed to parse {self.name} response",
                symbol=symbol,
                provider=self.name,
            ) from e

        if not isinstance(data, dict):
            raise ApiUnavailableError(
                f"Unexpected {self.name} response: expected a JSON object, got {type(data).__name__}",
                symbol=symbol,
                provider=self.name,
            )
        return data

    @contextmanager
    def _parsing(self, symbol: Optional[str] = None):
        """Report a payload of the wrong shape as ApiUnavailableError."""
        try:
            yield
        except StockDataError:
            raise
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise ApiUnavailableError(
                f"Unexpected {self.name} payload: {e!r}",
                symbol=symbol,
                provider=self.name,
            ) from e


def validate_date_range(
    symbol: str,
    start_date: date,
    end_date: date,
    max_days: Optional[int] = None,
) -> None:
    """Raise InvalidDateRangeError when start > end or the span exceeds max_days."""
    if start_date > end_date:
        raise InvalidDateRangeError(
            f"Start date ({start_date:%Y-%m-%d}) must not be after end date ({end_date:%Y-%m-%d})",
            symbol=symbol,
        )
    if max_days is not None and (end_date - start_date).days > max_days:
        raise InvalidDateRangeError(
            f"Date range exceeds maximum allowed period of {max_days} days "
            f"({start_date:%Y-%m-%d} to {end_date:%Y-%m-%d})",
            symbol=symbol,
        )
