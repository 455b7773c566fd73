"""
Alpha Vantage Adapter

Provides access to Alpha Vantage API for market data.
Free tier with 5 requests/minute and 25 requests/day, premium plans available.

API Documentation: https://www.alphavantage.co/documentation/
"""
from datetime import datetime, date, timezone
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
    RateLimitExceededError,
    InvalidApiKeyError,
    InvalidParameterError,
)


ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"

TIME_SERIES = {
    TimeInterval.DAILY: ("TIME_SERIES_DAILY_ADJUSTED", "Time Series (Daily)"),
    TimeInterval.WEEKLY: ("TIME_SERIES_WEEKLY_ADJUSTED", "Weekly Adjusted Time Series"),
    TimeInterval.MONTHLY: ("TIME_SERIES_MONTHLY_ADJUSTED", "Monthly Adjusted Time Series"),
}


def create_alpha_vantage_config(
    api_key: str,
    base_url: str = ALPHA_VANTAGE_BASE_URL,
    timeout_seconds: float = 10.0,
    retry_attempts: int = 3,
) -> ProviderConfig:
    """Create configuration for Alpha Vantage adapter."""
    return ProviderConfig(
        name=ProviderType.ALPHA_VANTAGE.value,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        retry_attempts=retry_attempts,
    )


class AlphaVantageAdapter(HttpStockDataProvider):
    """
    Alpha Vantage data provider adapter.

    Features:
    - Stock quotes and historical data
    - Fundamental data and company overview
    - Symbol search

    Limitations:
    - Strict rate limiting (5 req/min free)
    - One symbol per request
    - Quota errors arrive as HTTP 200 with a "Note" or "Information" field

    Usage:
        config = create_alpha_vantage_config("your_api_key")
        adapter = AlphaVantageAdapter(config)
        await adapter.initialize()

        quote = await adapter.get_quote("AAPL")
    """

    provider_type = ProviderType.ALPHA_VANTAGE

    async def is_healthy(self) -> bool:
        """Check API connectivity and quota."""
        try:
            await self._query({"function": "GLOBAL_QUOTE", "symbol": "IBM"}, symbol="IBM")
            return True
        except StockDataError as e:
            logger.warning(f"Alpha Vantage health check failed: {e}")
            return False

    async def _query(self, params: dict[str, Any], symbol: Optional[str] = None) -> dict[str, Any]:
        """Run an API function and translate in-band errors."""
        if not self.config.api_key:
            raise InvalidApiKeyError("Alpha Vantage API key is not configured", provider=self.name)

        data = await self._get_json(
            self.config.base_url,
            params={**params, "apikey": self.config.api_key},
            symbol=symbol,
        )

        if "Note" in data or "Information" in data:
            message = str(data.get("Note") or data.get("Information"))
            if "apikey" in message.lower() and "invalid" in message.lower():
                raise InvalidApiKeyError(message, symbol=symbol, provider=self.name)
            raise RateLimitExceededError(message, symbol=symbol, retry_after=60, provider=self.name)

        if "Error Message" in data:
            raise SymbolNotFoundError(symbol or "", message=str(data["Error Message"]), provider=self.name)

        return data

    # ==================== Quote Methods ====================

    async def get_quote(self, symbol: str) -> Quote:
        """Get real-time quote for a symbol."""
        symbol = symbol.upper()
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol}, symbol=symbol)

        quote_data = data.get("Global Quote", {})
        if not quote_data:
            raise SymbolNotFoundError(symbol, provider=self.name)

        with self._parsing(symbol):
            return self._parse_quote(quote_data)

    # ==================== Historical Methods ====================

    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
    ) -> list[HistoricalPrice]:
        """Get historical data."""
        symbol = symbol.upper()
        validate_date_range(symbol, start_date, end_date)

        function, series_key = TIME_SERIES[interval]
        params = {"function": function, "symbol": symbol}
        if interval == TimeInterval.DAILY:
            # compact only covers the last 100 sessions
            days_back = (date.today() - start_date).days
            params["outputsize"] = "compact" if days_back <= 100 else "full"

        data = await self._query(params, symbol=symbol)
        time_series = data.get(series_key)
        if time_series is None:
            raise SymbolNotFoundError(symbol, provider=self.name)

        bars = []
        with self._parsing(symbol):
            for date_str, values in time_series.items():
                bar_date = datetime.strptime(date_str, "%Y-%m-%d").date()
                if bar_date < start_date or bar_date > end_date:
                    continue
                bars.append(self._parse_bar(symbol, bar_date, values))

        bars.sort(key=lambda b: b.date)
        return bars

    # ==================== Fundamentals & Profile ====================

    async def _overview(self, symbol: str) -> dict[str, Any]:
        data = await self._query({"function": "OVERVIEW", "symbol": symbol}, symbol=symbol)
        if not data or "Symbol" not in data:
            raise SymbolNotFoundError(symbol, provider=self.name)
        return data

    async def get_fundamentals(self, symbol: str) -> FundamentalData:
        symbol = symbol.upper()
        data = await self._overview(symbol)
        with self._parsing(symbol):
            return self._parse_fundamentals(symbol, data)

    def _parse_fundamentals(self, symbol: str, data: dict[str, Any]) -> FundamentalData:
        return FundamentalData(
            symbol=symbol,
            pe_ratio=to_float(data.get("PERatio")),
            peg_ratio=to_float(data.get("PEGRatio")),
            price_to_book=to_float(data.get("PriceToBookRatio")),
            price_to_sales=to_float(data.get("PriceToSalesRatioTTM")),
            enterprise_value=None,
            ev_to_ebitda=to_float(data.get("EVToEBITDA")),
            profit_margin=to_float(data.get("ProfitMargin")),
            operating_margin=to_float(data.get("OperatingMarginTTM")),
            return_on_equity=to_float(data.get("ReturnOnEquityTTM")),
            return_on_assets=to_float(data.get("ReturnOnAssetsTTM")),
            revenue_growth=to_float(data.get("QuarterlyRevenueGrowthYOY")),
            earnings_growth=to_float(data.get("QuarterlyEarningsGrowthYOY")),
            eps=to_float(data.get("EPS")),
            dividend_yield=to_float(data.get("DividendYield")),
            payout_ratio=None,
            current_ratio=None,
            debt_to_equity=None,
            quick_ratio=None,
            provider=self.name,
        )

    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        symbol = symbol.upper()
        data = await self._overview(symbol)
        with self._parsing(symbol):
            return self._parse_profile(symbol, data)

    def _parse_profile(self, symbol: str, data: dict[str, Any]) -> CompanyProfile:
        # Address looks like "1 APPLE PARK WAY, CUPERTINO, CA, US"
        address_parts = [p.strip() for p in (data.get("Address") or "").split(",")]
        city = address_parts[1].title() if len(address_parts) > 2 else None

        return CompanyProfile(
            symbol=symbol,
            company_name=data.get("Name") or symbol,
            sector=data.get("Sector"),
            industry=data.get("Industry"),
            description=data.get("Description"),
            website=data.get("OfficialSite"),
            country=data.get("Country"),
            city=city,
            employee_count=to_int(data.get("FullTimeEmployees")),
            exchange=data.get("Exchange"),
            currency=data.get("Currency"),
            provider=self.name,
        )

    # ==================== Search ====================

    async def search_symbols(self, query: str, limit: int = 10) -> list[SymbolSearchResult]:
        """Search for symbols."""
        if not query or not query.strip():
            raise InvalidParameterError("Search query must not be empty")

        data = await self._query({"function": "SYMBOL_SEARCH", "keywords": query.strip()})
        with self._parsing():
            matches = data.get("bestMatches", [])
            results = [
                SymbolSearchResult(
                    symbol=item.get("1. symbol"),
                    name=item.get("2. name") or item.get("1. symbol"),
                    asset_type=item.get("3. type"),
                    region=item.get("4. region"),
                    exchange=None,
                    match_score=to_float(item.get("9. matchScore")) or 0.0,
                )
                for item in matches
                if item.get("1. symbol")
            ]
        return results[:limit]

    # ==================== Parsing Methods ====================

    def _parse_quote(self, data: dict[str, Any]) -> Quote:
        """Parse Global Quote response."""
        change_pct_str = (data.get("10. change percent") or "").replace("%", "")
        trading_day = data.get("07. latest trading day")
        timestamp = (
            datetime.strptime(trading_day, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            if trading_day
            else datetime.now(timezone.utc)
        )

        return Quote(
            symbol=data.get("01. symbol", "").upper(),
            price=to_decimal(data.get("05. price")),
            change=to_decimal(data.get("09. change")),
            change_percent=to_decimal(change_pct_str),
            volume=to_int(data.get("06. volume")),
            day_high=to_decimal(data.get("03. high")),
            day_low=to_decimal(data.get("04. low")),
            timestamp=timestamp,
            provider=self.name,
        )

    def _parse_bar(self, symbol: str, bar_date: date, data: dict[str, Any]) -> HistoricalPrice:
        """Parse historical bar data."""
        return HistoricalPrice(
            symbol=symbol,
            date=bar_date,
            open=to_decimal(data.get("1. open")),
            high=to_decimal(data.get("2. high")),
            low=to_decimal(data.get("3. low")),
            close=to_decimal(data.get("4. close")),
            adjusted_close=to_decimal(data.get("5. adjusted close")),
            volume=to_int(data.get("6. volume") or data.get("5. volume")) or 0,
            provider=self.name,
        )
