"""
Provider Factory

Resolves adapter instances by provider type or by name.
Backed by a lookup table from provider identity to adapter class, so
adding a vendor means adding one registry entry.
"""
from typing import Optional, Union
from loguru import logger

from marketdata.data_providers.adapters.base import (
    StockDataProvider,
    ProviderConfig,
    ProviderType,
)
from marketdata.data_providers.adapters.yahoo_finance import YahooFinanceAdapter
from marketdata.data_providers.adapters.alpha_vantage import AlphaVantageAdapter
from marketdata.data_providers.adapters.mock import MockAdapter
from marketdata.utils.exceptions import UnsupportedProviderError


ADAPTER_REGISTRY: dict[ProviderType, type[StockDataProvider]] = {
    ProviderType.YAHOO_FINANCE: YahooFinanceAdapter,
    ProviderType.ALPHA_VANTAGE: AlphaVantageAdapter,
    ProviderType.MOCK: MockAdapter,
}


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def resolve_provider_type(value: Union[ProviderType, str]) -> ProviderType:
    """
    Resolve a provider name to its ProviderType.

    Case-insensitive and tolerant of separators, so "YahooFinance",
    "yahoo_finance" and "yahoo-finance" all resolve the same way.
    """
    if isinstance(value, ProviderType):
        return value
    if not value or not value.strip():
        raise UnsupportedProviderError("", valid=[p.value for p in ProviderType])

    wanted = _normalize(value)
    for provider_type in ProviderType:
        if wanted in (_normalize(provider_type.value), _normalize(provider_type.name)):
            return provider_type

    raise UnsupportedProviderError(value, valid=[p.value for p in ProviderType])


class ProviderFactory:
    """
    Creates and caches one live adapter per provider type.

    Usage:
        factory = ProviderFactory({ProviderType.MOCK: create_mock_config()})
        adapter = factory.create_provider("mock")
    """

    def __init__(
        self,
        configs: Optional[dict[ProviderType, ProviderConfig]] = None,
        registry: Optional[dict[ProviderType, type[StockDataProvider]]] = None,
    ):
        self._registry = dict(registry or ADAPTER_REGISTRY)
        self._configs: dict[ProviderType, ProviderConfig] = dict(configs or {})
        self._instances: dict[ProviderType, StockDataProvider] = {}

    def configure(self, provider_type: ProviderType, config: ProviderConfig) -> None:
        """Set the configuration used when the adapter is first created."""
        self._configs[provider_type] = config
        self._instances.pop(provider_type, None)

    def register_instance(self, provider_type: ProviderType, adapter: StockDataProvider) -> None:
        """Register a pre-built adapter (e.g. a test double)."""
        self._instances[provider_type] = adapter
        logger.info(f"Registered provider instance: {provider_type.value}")

    def create_provider(self, provider: Union[ProviderType, str]) -> StockDataProvider:
        """
        Return the live adapter for a provider type or name.

        Raises:
            UnsupportedProviderError: Unknown or unconfigured provider
        """
        provider_type = resolve_provider_type(provider)

        adapter = self._instances.get(provider_type)
        if adapter is not None:
            return adapter

        adapter_class = self._registry.get(provider_type)
        config = self._configs.get(provider_type)
        if adapter_class is None or config is None:
            raise UnsupportedProviderError(
                provider_type.value,
                valid=[p.value for p in self.get_available_providers()],
            )

        adapter = adapter_class(config)
        self._instances[provider_type] = adapter
        logger.info(f"Created provider adapter: {provider_type.value}")
        return adapter

    def get_available_providers(self) -> list[ProviderType]:
        """Provider types this factory can produce, in declaration order."""
        available = set(self._instances) | {
            p for p in self._configs if p in self._registry
        }
        return [p for p in ProviderType if p in available]

    def created_providers(self) -> list[StockDataProvider]:
        """Adapters instantiated so far."""
        return list(self._instances.values())
