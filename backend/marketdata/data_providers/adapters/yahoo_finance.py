"""
Yahoo Finance Adapter

Provides access to the public Yahoo Finance JSON endpoints.
Free, no API key, generous but undocumented rate limits.

Endpoints:
- /v7/finance/quote          quotes (batch capable)
- /v8/finance/chart/{symbol} historical bars
- /v10/finance/quoteSummary  fundamentals and company profile
- /v1/finance/search         symbol search
"""
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Any
from loguru import logger

from marketdata.data_providers.adapters.base import (
    HttpStockDataProvider,
    ProviderConfig,
    ProviderType,
    TimeInterval,
    Quote,
    HistoricalPrice,
    FundamentalData,
    CompanyProfile,
    SymbolSearchResult,
    to_decimal,
    to_float,
    to_int,
    validate_date_range,
)
from marketdata.utils.exceptions import (
    StockDataError,
    SymbolNotFoundError,
    ApiUnavailableError,
    InvalidParameterError,
)


YAHOO_FINANCE_BASE_URL = "https://query1.finance.yahoo.com"

# Yahoo rejects chart ranges longer than this for daily bars
MAX_HISTORY_DAYS = 5 * 365

INTERVAL_MAP = {
    TimeInterval.DAILY: "1d",
    TimeInterval.WEEKLY: "1wk",
    TimeInterval.MONTHLY: "1mo",
}

FUNDAMENTAL_MODULES = "defaultKeyStatistics,financialData,summaryDetail"
PROFILE_MODULES = "assetProfile,price"


def create_yahoo_finance_config(
    base_url: str = YAHOO_FINANCE_BASE_URL,
    timeout_seconds: float = 10.0,
    retry_attempts: int = 3,
) -> ProviderConfig:
    """Create configuration for Yahoo Finance adapter."""
    return ProviderConfig(
        name=ProviderType.YAHOO_FINANCE.value,
        base_url=base_url.rstrip("/"),
        timeout_seconds=timeout_seconds,
        retry_attempts=retry_attempts,
    )


def _raw(node: Any) -> Any:
    """Unwrap Yahoo's {"raw": ..., "fmt": ...} number envelopes."""
    if isinstance(node, dict):
        return node.get("raw")
    return node


class YahooFinanceAdapter(HttpStockDataProvider):
    """
    Yahoo Finance data provider adapter.

    Usage:
        adapter = YahooFinanceAdapter(create_yahoo_finance_config())
        await adapter.initialize()

        quote = await adapter.get_quote("AAPL")
        bars = await adapter.get_historical_prices("MSFT", start, end)
    """

    provider_type = ProviderType.YAHOO_FINANCE

    def __init__(self, config: Optional[ProviderConfig] = None):
        super().__init__(config or create_yahoo_finance_config())

    async def is_healthy(self) -> bool:
        """Probe the chart endpoint with a well-known symbol."""
        try:
            data = await self._get_json(f"{self.config.base_url}/v8/finance/chart/AAPL", symbol="AAPL")
            with self._parsing("AAPL"):
                return bool(data["chart"].get("result"))
        except StockDataError as e:
            logger.warning(f"Yahoo Finance health check failed: {e}")
            return False

    # ==================== Quote Methods ====================

    async def get_quote(self, symbol: str) -> Quote:
        """Get real-time quote for a symbol."""
        symbol = symbol.upper()
        quotes = await self._fetch_quotes([symbol])
        if not quotes:
            raise SymbolNotFoundError(symbol, provider=self.name)
        return quotes[0]

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """Get quotes in a single batch request. Unknown symbols are omitted."""
        if not symbols:
            return []
        return await self._fetch_quotes([s.upper() for s in symbols])

    async def _fetch_quotes(self, symbols: list[str]) -> list[Quote]:
        data = await self._get_json(
            f"{self.config.base_url}/v7/finance/quote",
            params={"symbols": ",".join(symbols)},
            symbol=symbols[0] if len(symbols) == 1 else None,
        )
        with self._parsing(symbols[0] if len(symbols) == 1 else None):
            results = data["quoteResponse"]["result"] or []
            return [self._parse_quote(item) for item in results if item.get("regularMarketPrice") is not None]

    # ==================== Historical Methods ====================

    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
    ) -> list[HistoricalPrice]:
        """Get historical bars from the chart endpoint."""
        symbol = symbol.upper()
        validate_date_range(symbol, start_date, end_date, max_days=MAX_HISTORY_DAYS)

        period1 = int(datetime.combine(start_date, time.min, tzinfo=timezone.utc).timestamp())
        # period2 is exclusive
        period2 = int(datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc).timestamp())

        data = await self._get_json(
            f"{self.config.base_url}/v8/finance/chart/{symbol}",
            params={
                "period1": period1,
                "period2": period2,
                "interval": INTERVAL_MAP[interval],
                "events": "div,splits",
            },
            symbol=symbol,
        )

        with self._parsing(symbol):
            chart = data.get("chart", {})
            if chart.get("error"):
                description = chart["error"].get("description", "")
                if chart["error"].get("code") == "Not Found":
                    raise SymbolNotFoundError(symbol, provider=self.name)
                raise ApiUnavailableError(f"Yahoo Finance chart error: {description}", symbol=symbol, provider=self.name)

            results = chart.get("result") or []
            if not results:
                raise SymbolNotFoundError(symbol, provider=self.name)

            return self._parse_chart(symbol, results[0], start_date, end_date)

    def _parse_chart(
        self,
        symbol: str,
        result: dict[str, Any],
        start_date: date,
        end_date: date,
    ) -> list[HistoricalPrice]:
        timestamps = result.get("timestamp") or []
        indicators = result.get("indicators", {})
        quote = (indicators.get("quote") or [{}])[0]
        adjclose = (indicators.get("adjclose") or [{}])[0].get("adjclose") or []

        opens, highs, lows, closes = (quote.get(k) or [] for k in ("open", "high", "low", "close"))
        volumes = quote.get("volume") or []
        rows = min(len(timestamps), len(opens), len(highs), len(lows), len(closes))

        bars = []
        for i in range(rows):
            if None in (opens[i], highs[i], lows[i], closes[i]):
                # Yahoo emits null rows for halted sessions
                continue
            bar_date = datetime.fromtimestamp(timestamps[i], tz=timezone.utc).date()
            if bar_date < start_date or bar_date > end_date:
                continue
            bars.append(HistoricalPrice(
                symbol=symbol,
                date=bar_date,
                open=to_decimal(opens[i]),
                high=to_decimal(highs[i]),
                low=to_decimal(lows[i]),
                close=to_decimal(closes[i]),
                volume=int(volumes[i] or 0) if i < len(volumes) else 0,
                adjusted_close=to_decimal(adjclose[i]) if i < len(adjclose) else None,
                provider=self.name,
            ))

        bars.sort(key=lambda b: b.date)
        return bars

    # ==================== Fundamentals & Profile ====================

    async def _quote_summary(self, symbol: str, modules: str) -> dict[str, Any]:
        data = await self._get_json(
            f"{self.config.base_url}/v10/finance/quoteSummary/{symbol}",
            params={"modules": modules},
            symbol=symbol,
        )
        with self._parsing(symbol):
            summary = data.get("quoteSummary", {})
            if summary.get("error") or not summary.get("result"):
                raise SymbolNotFoundError(symbol, provider=self.name)
            return summary["result"][0]

    async def get_fundamentals(self, symbol: str) -> FundamentalData:
        symbol = symbol.upper()
        result = await self._quote_summary(symbol, FUNDAMENTAL_MODULES)
        with self._parsing(symbol):
            return self._parse_fundamentals(symbol, result)

    def _parse_fundamentals(self, symbol: str, result: dict[str, Any]) -> FundamentalData:
        stats = result.get("defaultKeyStatistics", {})
        fin = result.get("financialData", {})
        detail = result.get("summaryDetail", {})

        return FundamentalData(
            symbol=symbol,
            pe_ratio=to_float(_raw(detail.get("trailingPE"))),
            peg_ratio=to_float(_raw(stats.get("pegRatio"))),
            price_to_book=to_float(_raw(stats.get("priceToBook"))),
            price_to_sales=to_float(_raw(detail.get("priceToSalesTrailing12Months"))),
            enterprise_value=to_float(_raw(stats.get("enterpriseValue"))),
            ev_to_ebitda=to_float(_raw(stats.get("enterpriseToEbitda"))),
            profit_margin=to_float(_raw(fin.get("profitMargins"))),
            operating_margin=to_float(_raw(fin.get("operatingMargins"))),
            return_on_equity=to_float(_raw(fin.get("returnOnEquity"))),
            return_on_assets=to_float(_raw(fin.get("returnOnAssets"))),
            revenue_growth=to_float(_raw(fin.get("revenueGrowth"))),
            earnings_growth=to_float(_raw(fin.get("earningsGrowth"))),
            eps=to_float(_raw(stats.get("trailingEps"))),
            dividend_yield=to_float(_raw(detail.get("dividendYield"))),
            payout_ratio=to_float(_raw(detail.get("payoutRatio"))),
            current_ratio=to_float(_raw(fin.get("currentRatio"))),
            debt_to_equity=to_float(_raw(fin.get("debtToEquity"))),
            quick_ratio=to_float(_raw(fin.get("quickRatio"))),
            provider=self.name,
        )

    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        symbol = symbol.upper()
        result = await self._quote_summary(symbol, PROFILE_MODULES)
        with self._parsing(symbol):
            return self._parse_profile(symbol, result)

    def _parse_profile(self, symbol: str, result: dict[str, Any]) -> CompanyProfile:
        profile = result.get("assetProfile", {})
        price = result.get("price", {})

        officers = profile.get("companyOfficers") or []
        ceo = next(
            (o.get("name") for o in officers if "CEO" in (o.get("title") or "")),
            None,
        )

        return CompanyProfile(
            symbol=symbol,
            company_name=price.get("longName") or price.get("shortName") or symbol,
            sector=profile.get("sector"),
            industry=profile.get("industry"),
            description=profile.get("longBusinessSummary"),
            website=profile.get("website"),
            country=profile.get("country"),
            city=profile.get("city"),
            employee_count=to_int(profile.get("fullTimeEmployees")),
            ceo=ceo,
            exchange=price.get("exchangeName"),
            currency=price.get("currency"),
            provider=self.name,
        )

    # ==================== Search ====================

    async def search_symbols(self, query: str, limit: int = 10) -> list[SymbolSearchResult]:
        if not query or not query.strip():
            raise InvalidParameterError("Search query must not be empty")

        data = await self._get_json(
            f"{self.config.base_url}/v1/finance/search",
            params={"q": query.strip(), "quotesCount": limit, "newsCount": 0},
        )
        with self._parsing():
            matches = data.get("quotes") or []
            results = [
                SymbolSearchResult(
                    symbol=item["symbol"],
                    name=item.get("longname") or item.get("shortname") or item["symbol"],
                    exchange=item.get("exchDisp") or item.get("exchange"),
                    asset_type=item.get("quoteType"),
                    region=item.get("region"),
                    match_score=to_float(item.get("score")) or 0.0,
                )
                for item in matches
                if item.get("symbol")
            ]
        return results[:limit]

    # ==================== Parsing Methods ====================

    def _parse_quote(self, item: dict[str, Any]) -> Quote:
        """Parse a v7 quote result row."""
        market_time = item.get("regularMarketTime")
        timestamp = (
            datetime.fromtimestamp(market_time, tz=timezone.utc)
            if isinstance(market_time, (int, float))
            else datetime.now(timezone.utc)
        )
        return Quote(
            symbol=item["symbol"].upper(),
            price=to_decimal(item.get("regularMarketPrice")),
            change=to_decimal(item.get("regularMarketChange")),
            change_percent=to_decimal(item.get("regularMarketChangePercent")),
            volume=to_int(item.get("regularMarketVolume")),
            bid=to_decimal(item.get("bid")),
            ask=to_decimal(item.get("ask")),
            day_high=to_decimal(item.get("regularMarketDayHigh")),
            day_low=to_decimal(item.get("regularMarketDayLow")),
            fifty_two_week_high=to_decimal(item.get("fiftyTwoWeekHigh")),
            fifty_two_week_low=to_decimal(item.get("fiftyTwoWeekLow")),
            average_volume=to_int(item.get("averageDailyVolume3Month")),
            market_cap=to_decimal(item.get("marketCap")),
            exchange=item.get("fullExchangeName") or item.get("exchange"),
            market_state=item.get("marketState"),
            currency=item.get("currency") or "USD",
            timestamp=timestamp,
            provider=self.name,
        )
