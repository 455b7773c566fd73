"""
Mock Adapter

Offline data provider used for development, demos and tests.
Generates plausible prices around fixed base values with a simulated
network delay. Never fails and always reports healthy.
"""
import asyncio
import random
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from loguru import logger

from marketdata.data_providers.adapters.base import (
    StockDataProvider,
    ProviderConfig,
    ProviderType,
    TimeInterval,
    Quote,
    HistoricalPrice,
    FundamentalData,
    CompanyProfile,
    SymbolSearchResult,
    validate_date_range,
)


BASE_PRICES: dict[str, Decimal] = {
    "AAPL": Decimal("175.00"),
    "MSFT": Decimal("380.00"),
    "GOOGL": Decimal("140.00"),
    "AMZN": Decimal("155.00"),
    "NVDA": Decimal("495.00"),
    "TSLA": Decimal("245.00"),
    "META": Decimal("350.00"),
    "AMD": Decimal("145.00"),
    "SMCI": Decimal("900.00"),
    "^GSPC": Decimal("4950.00"),   # S&P 500
    "^NDX": Decimal("15300.00"),   # NASDAQ 100
    "^DJI": Decimal("37500.00"),   # Dow Jones
}
DEFAULT_BASE_PRICE = Decimal("100.00")

COMPANY_NAMES = {
    "AAPL": "Apple Inc.",
    "MSFT": "Microsoft Corporation",
    "GOOGL": "Alphabet Inc.",
    "AMZN": "Amazon.com Inc.",
    "NVDA": "NVIDIA Corporation",
    "TSLA": "Tesla Inc.",
    "META": "Meta Platforms Inc.",
    "AMD": "Advanced Micro Devices Inc.",
    "SMCI": "Super Micro Computer Inc.",
    "^GSPC": "S&P 500 Index",
    "^NDX": "NASDAQ 100 Index",
    "^DJI": "Dow Jones Industrial Average",
}

SECTORS = {
    "AAPL": ("Technology", "Consumer Electronics"),
    "MSFT": ("Technology", "Software"),
    "GOOGL": ("Technology", "Internet Content & Information"),
    "AMZN": ("Consumer Cyclical", "Internet Retail"),
    "NVDA": ("Technology", "Semiconductors"),
    "AMD": ("Technology", "Semiconductors"),
    "SMCI": ("Technology", "Computer Hardware"),
    "TSLA": ("Consumer Cyclical", "Auto Manufacturers"),
    "META": ("Communication Services", "Internet Content & Information"),
}

CENT = Decimal("0.01")


def create_mock_config(simulated_delay_ms: int = 100) -> ProviderConfig:
    """Create configuration for the mock adapter."""
    return ProviderConfig(
        name=ProviderType.MOCK.value,
        simulated_delay_ms=simulated_delay_ms,
    )


class MockAdapter(StockDataProvider):
    """
    Mock data provider adapter.

    Usage:
        adapter = MockAdapter(create_mock_config(simulated_delay_ms=0), seed=42)
        quote = await adapter.get_quote("AAPL")
    """

    provider_type = ProviderType.MOCK

    def __init__(self, config: Optional[ProviderConfig] = None, seed: Optional[int] = None):
        super().__init__(config or create_mock_config())
        self._random = random.Random(seed)

    async def _delay(self, scale: float = 1.0) -> None:
        delay_ms = self.config.simulated_delay_ms * scale
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def _variation(self, low: float, high: float) -> Decimal:
        return Decimal(str(self._random.uniform(low, high))).quantize(CENT)

    @staticmethod
    def _company_name(symbol: str) -> str:
        return COMPANY_NAMES.get(symbol, f"{symbol} Company")

    async def is_healthy(self) -> bool:
        await self._delay(0.1)
        return True

    async def get_quote(self, symbol: str) -> Quote:
        await self._delay()
        symbol = symbol.upper()
        logger.debug(f"Mock: fetching quote for {symbol}")

        base_price = BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE)
        change = self._variation(-5, 5)
        price = base_price + change

        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=(change / base_price * 100).quantize(CENT),
            volume=self._random.randint(10_000_000, 100_000_000),
            bid=price - CENT,
            ask=price + CENT,
            day_high=price + self._variation(0, 3),
            day_low=price - self._variation(0, 3),
            fifty_two_week_high=(base_price * Decimal("1.2")).quantize(CENT),
            fifty_two_week_low=(base_price * Decimal("0.8")).quantize(CENT),
            average_volume=50_000_000,
            market_cap=(price * self._random.randint(1_000_000_000, 3_000_000_000)).quantize(CENT),
            exchange="NASDAQ",
            market_state="REGULAR",
            provider=self.name,
        )

    async def get_historical_prices(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval = TimeInterval.DAILY,
    ) -> list[HistoricalPrice]:
        symbol = symbol.upper()
        validate_date_range(symbol, start_date, end_date)
        await self._delay(1.5)

        step = {
            TimeInterval.DAILY: timedelta(days=1),
            TimeInterval.WEEKLY: timedelta(days=7),
            TimeInterval.MONTHLY: timedelta(days=30),
        }[interval]

        bars = []
        close = BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE)
        current = start_date
        while current <= end_date:
            # Skip weekends
            if current.weekday() < 5:
                close = max(close + self._variation(-3, 3), CENT)
                open_ = max(close + self._variation(-1, 1), CENT)
                bars.append(HistoricalPrice(
                    symbol=symbol,
                    date=current,
                    open=open_,
                    high=max(open_, close) + self._variation(0, 2),
                    low=max(min(open_, close) - self._variation(0, 2), CENT),
                    close=close,
                    volume=self._random.randint(10_000_000, 100_000_000),
                    adjusted_close=close,
                    provider=self.name,
                ))
            current += step

        return bars

    async def get_fundamentals(self, symbol: str) -> FundamentalData:
        await self._delay()
        symbol = symbol.upper()
        pe = self._random.uniform(10, 40)
        base_price = float(BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE))

        return FundamentalData(
            symbol=symbol,
            pe_ratio=round(pe, 2),
            peg_ratio=round(self._random.uniform(0.5, 3.0), 2),
            price_to_book=round(self._random.uniform(1, 50), 2),
            price_to_sales=round(self._random.uniform(1, 15), 2),
            profit_margin=round(self._random.uniform(0, 0.25), 4),
            operating_margin=round(self._random.uniform(0, 0.30), 4),
            return_on_equity=round(self._random.uniform(0, 0.20), 4),
            return_on_assets=round(self._random.uniform(0, 0.15), 4),
            revenue_growth=round(self._random.uniform(0, 0.15), 4),
            earnings_growth=round(self._random.uniform(0, 0.20), 4),
            eps=round(base_price / pe, 2),
            dividend_yield=round(self._random.uniform(0, 0.03), 4),
            payout_ratio=round(self._random.uniform(0, 0.6), 4),
            current_ratio=round(self._random.uniform(0.8, 3.0), 2),
            debt_to_equity=round(self._random.uniform(0, 2.0), 2),
            quick_ratio=round(self._random.uniform(0.5, 2.5), 2),
            provider=self.name,
        )

    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        await self._delay()
        symbol = symbol.upper()
        name = self._company_name(symbol)
        sector, industry = SECTORS.get(symbol, ("Financial Services", "Diversified"))

        return CompanyProfile(
            symbol=symbol,
            company_name=name,
            sector=sector,
            industry=industry,
            description=f"{name} is a leading company in the {sector} sector, specializing in {industry}.",
            website=f"https://www.{symbol.lower().replace('^', '')}.com",
            country="United States",
            city="Cupertino",
            employee_count=self._random.randint(10_000, 200_000),
            exchange="NASDAQ",
            currency="USD",
            provider=self.name,
        )

    async def search_symbols(self, query: str, limit: int = 10) -> list[SymbolSearchResult]:
        await self._delay(0.5)
        needle = query.strip().lower()

        results = []
        for symbol in BASE_PRICES:
            name = self._company_name(symbol)
            if needle in symbol.lower() or needle in name.lower():
                score = 1.0 if symbol.lower() == needle else 0.5
                results.append(SymbolSearchResult(
                    symbol=symbol,
                    name=name,
                    exchange="NASDAQ",
                    asset_type="Index" if symbol.startswith("^") else "Equity",
                    region="United States",
                    match_score=score,
                ))

        results.sort(key=lambda r: r.match_score, reverse=True)
        return results[:limit]
