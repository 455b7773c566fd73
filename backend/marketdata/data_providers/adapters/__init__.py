"""
Provider Adapters Package

Contains adapters for all supported data providers.
Each adapter implements the StockDataProvider interface for consistent data access.
"""
from marketdata.data_providers.adapters.base import (
    StockDataProvider,
    HttpStockDataProvider,
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
from marketdata.data_providers.adapters.yahoo_finance import (
    YahooFinanceAdapter,
    create_yahoo_finance_config,
)
from marketdata.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_config,
)
from marketdata.data_providers.adapters.mock import (
    MockAdapter,
    create_mock_config,
)

__all__ = [
    # Base
    "StockDataProvider",
    "HttpStockDataProvider",
    "ProviderConfig",
    "ProviderType",
    "TimeInterval",
    "Quote",
    "HistoricalPrice",
    "FundamentalData",
    "CompanyProfile",
    "SymbolSearchResult",
    "validate_date_range",
    # Providers
    "YahooFinanceAdapter",
    "create_yahoo_finance_config",
    "AlphaVantageAdapter",
    "create_alpha_vantage_config",
    "MockAdapter",
    "create_mock_config",
]
