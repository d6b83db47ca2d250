"""Name-keyed provider factories."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from tally.config import get_settings
from tally.core.errors import ConfigurationError
from tally.core.providers.base import DataProvider
from tally.core.providers.models import ConnectionMeta

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, ConnectionMeta], DataProvider]


class ProviderRegistry:
    """Maps provider names to factories ``(credential, meta) -> DataProvider``.

    Pure indirection: no network or disk I/O happens here.
    """

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Install a factory, replacing any previous one under the same name."""
        if name in self._factories:
            logger.debug(f"Replacing provider factory for {name}")
        self._factories[name] = factory

    @property
    def registered_providers(self) -> List[str]:
        """Names of all registered providers."""
        return list(self._factories)

    def create(self, name: str, credential: str, meta: Optional[ConnectionMeta] = None) -> DataProvider:
        """Instantiate a provider.

        Args:
            name: Registered provider name
            credential: Secret resolved from the secret store
            meta: Stored connection identifiers

        Returns:
            DataProvider instance

        Raises:
            ConfigurationError: If no provider is registered under name
        """
        factory = self._factories.get(name)
        if factory is None:
            if self._factories:
                available = ", ".join(self._factories)
                raise ConfigurationError(f'No provider registered for "{name}". Available: {available}')
            raise ConfigurationError(f'No provider registered for "{name}". No providers are registered yet.')
        return factory(credential, meta or ConnectionMeta())


def build_default_registry(settings=None) -> ProviderRegistry:
    """Registry with the live providers: plaid, finicity and coinbase.

    Provider clients are built lazily inside each factory, so missing
    settings for one provider only fail when that provider is used.
    """
    from tally.core.providers.coinbase_provider import CoinbaseDataProvider
    from tally.core.providers.finicity_provider import FinicityDataProvider
    from tally.core.providers.plaid_provider import PlaidDataProvider

    settings = settings or get_settings()
    registry = ProviderRegistry()
    registry.register(
        "plaid",
        lambda credential, meta: PlaidDataProvider(credential, meta, settings=settings),
    )
    registry.register(
        "finicity",
        lambda credential, meta: FinicityDataProvider(credential, meta, settings=settings),
    )
    registry.register(
        "coinbase",
        lambda credential, meta: CoinbaseDataProvider.from_credential(
            credential, timeout=settings.http_timeout_seconds
        ),
    )
    return registry
