"""Shared provider wiring for CLI commands."""

from functools import lru_cache
from typing import Tuple

from tally.config import get_settings
from tally.core.providers.registry import ProviderRegistry, build_default_registry
from tally.credentials.store import SecretStore, build_secret_store


@lru_cache()
def provider_services() -> Tuple[ProviderRegistry, SecretStore]:
    """Provider registry and secret store for this process."""
    settings = get_settings()
    return build_default_registry(settings), build_secret_store(settings)
