"""Coinbase API key link: validate, check for duplicates, persist, sync."""

from __future__ import annotations

import json
from typing import Callable

import requests
from sqlalchemy.orm import Session

from tally.core.errors import ProviderAuthError, TallyError
from tally.core.linking.base import ConnectionLinker
from tally.core.linking.models import LinkOutcome
from tally.core.providers.coinbase_client import CoinbaseClient
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore


class CoinbaseLink(ConnectionLinker):
    """Single-step Coinbase link. Only one Coinbase connection may exist."""

    provider_name = "coinbase"

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        secrets: SecretStore,
        client_factory: Callable[[str, str], CoinbaseClient] = CoinbaseClient,
    ):
        super().__init__(db, registry, secrets)
        self.client_factory = client_factory

    def link(self, api_key: str, api_secret: str) -> LinkOutcome:
        """Link a Coinbase account by API key.

        Raises:
            ProviderAuthError: If Coinbase rejects the key; nothing is stored
        """
        try:
            self.client_factory(api_key, api_secret).get_accounts()
        except (TallyError, requests.RequestException) as e:
            raise ProviderAuthError(
                f"Failed to authenticate with Coinbase: {e}. "
                f"Check that your API key and secret are correct and have read permissions."
            ) from e

        existing = self.find_connection(provider="coinbase")
        if existing:
            return LinkOutcome.duplicate(existing.id, existing.institution_name)

        credential = json.dumps({"apiKey": api_key, "apiSecret": api_secret})
        linked = self.persist_and_sync(credential, institution_name="Coinbase")
        return LinkOutcome.complete([linked])
