"""Finicity Connect flow.

Step 1 reuses (or creates) a Finicity customer and generates a Connect URL.
Step 2 reads the customer's accounts, groups them by institution login and
creates one connection per login not yet linked. One customer can hold
several institution logins.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy.orm import Session

from tally.config import get_settings
from tally.core.errors import TallyError
from tally.core.linking.base import ConnectionLinker
from tally.core.linking.models import InstitutionMatch, LinkOutcome, LinkStart
from tally.core.providers.finicity_client import FinicityClient
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore

logger = logging.getLogger(__name__)


class FinicityLinkFlow(ConnectionLinker):
    """Two-step Finicity Connect."""

    provider_name = "finicity"

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        secrets: SecretStore,
        client: Optional[FinicityClient] = None,
        settings=None,
        clock=time.time,
    ):
        super().__init__(db, registry, secrets)
        self._client = client
        self.settings = settings or get_settings()
        self._clock = clock

    @property
    def client(self) -> FinicityClient:
        if self._client is None:
            self._client = FinicityClient.from_settings(self.settings)
        return self._client

    def search(self, query: str) -> Optional[InstitutionMatch]:
        institutions = self.client.search_institutions(query)
        if not institutions:
            return None
        first = institutions[0]
        return InstitutionMatch(provider="finicity", institution_id=str(first["id"]), name=first["name"])

    def _customer_id(self) -> str:
        existing = self.find_connection(provider="finicity")
        if existing:
            stored = self.secrets.get(existing.keychain_key)
            if stored:
                return stored
            logger.warning(f"Finicity customer for connection {existing.id} is missing; creating a new customer")

        customer = self.client.create_customer(f"tally-{int(self._clock() * 1000)}")
        return str(customer["id"])

    def start(self) -> LinkStart:
        customer_id = self._customer_id()
        connect_url = self.client.generate_connect_url(customer_id)
        return LinkStart(provider="finicity", link_url=connect_url, completion_token=customer_id)

    def _institution_name(self, institution_id: str, login_accounts: List[Dict[str, Any]]) -> str:
        try:
            institutions = self.client.search_institutions(institution_id)
        except (TallyError, requests.RequestException) as e:
            logger.warning(f"Could not resolve Finicity institution {institution_id}: {e}")
            institutions = []
        if institutions:
            return institutions[0]["name"]

        account_name = (login_accounts[0].get("name") or "").split(" ")[0]
        return account_name or "Unknown Institution"

    def complete(self, customer_id: str) -> LinkOutcome:
        """Create connections for institution logins added since the last link.

        A login whose institution is already linked is skipped; the others are
        still linked. The outcome is ``duplicate`` only when every new login
        was skipped.
        """
        accounts = self.client.get_customer_accounts(customer_id)
        if not accounts:
            return LinkOutcome.waiting()

        logins: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for account in accounts:
            logins.setdefault(str(account.get("institutionLoginId")), []).append(account)

        linked = []
        duplicates = []
        for login_id, login_accounts in logins.items():
            if self.find_connection(provider="finicity", item_id=login_id):
                continue

            institution_id = str(login_accounts[0].get("institutionId"))
            existing = self.find_connection(institution_id=institution_id)
            if existing:
                logger.info(f"Finicity login {login_id} duplicates connection {existing.id}; skipping")
                duplicates.append(existing)
                continue

            linked.append(
                self.persist_and_sync(
                    customer_id,
                    institution_id=institution_id,
                    institution_name=self._institution_name(institution_id, login_accounts),
                    item_id=login_id,
                )
            )

        if linked:
            return LinkOutcome.complete(linked, [d.id for d in duplicates])
        if duplicates:
            return LinkOutcome.duplicate(duplicates[0].id, duplicates[0].institution_name)
        return LinkOutcome.waiting()
