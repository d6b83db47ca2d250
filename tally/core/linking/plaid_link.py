"""Plaid Hosted Link flow.

Step 1 creates a link token with a hosted URL for the user to open.
Step 2 polls the link session until the user finishes, exchanges the public
token for an access token and stores the connection.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import plaid
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.institutions_search_request import InstitutionsSearchRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_hosted_link import LinkTokenCreateHostedLink
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.link_token_get_request import LinkTokenGetRequest
from plaid.model.products import Products
from sqlalchemy.orm import Session

from tally.config import PRODUCT_NAME, get_settings
from tally.core.errors import LinkAbortedError, ProviderAPIError
from tally.core.linking.base import ConnectionLinker
from tally.core.linking.models import InstitutionMatch, LinkOutcome, LinkStart
from tally.core.providers.plaid_provider import create_plaid_client, payload, translate_plaid_error
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore

logger = logging.getLogger(__name__)

LINK_URL_LIFETIME_SECONDS = 1800
CLIENT_USER_ID = "tally-user"
DEFAULT_EXIT_REASON = "User exited Plaid Link without connecting a bank."


class PlaidLinkFlow(ConnectionLinker):
    """Two-step Plaid Hosted Link."""

    provider_name = "plaid"

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        secrets: SecretStore,
        client: Optional[plaid_api.PlaidApi] = None,
        settings=None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        super().__init__(db, registry, secrets)
        self._client = client
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock

    @property
    def client(self) -> plaid_api.PlaidApi:
        if self._client is None:
            self._client = create_plaid_client(self.settings)
        return self._client

    def search(self, query: str) -> Optional[InstitutionMatch]:
        """First US institution supporting Transactions whose name matches query."""
        response = self.client.institutions_search(
            InstitutionsSearchRequest(
                query=query,
                country_codes=[CountryCode("US")],
                products=[Products("transactions")],
            )
        )
        institutions = payload(response).get("institutions") or []
        if not institutions:
            return None
        first = institutions[0]
        return InstitutionMatch(provider="plaid", institution_id=first["institution_id"], name=first["name"])

    def start(self, institution_name: Optional[str] = None) -> LinkStart:
        """Create a Hosted Link session.

        Raises:
            ProviderAPIError: If Plaid returns no hosted_link_url
        """
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=CLIENT_USER_ID),
            client_name=PRODUCT_NAME,
            products=[Products("transactions")],
            additional_consented_products=[Products("investments")],
            country_codes=[CountryCode("US")],
            language="en",
            hosted_link=LinkTokenCreateHostedLink(url_lifetime_seconds=LINK_URL_LIFETIME_SECONDS),
        )
        try:
            data = payload(self.client.link_token_create(request))
        except plaid.ApiException as e:
            raise translate_plaid_error(e) from e

        hosted_link_url = data.get("hosted_link_url")
        if not hosted_link_url:
            raise ProviderAPIError(
                "Plaid did not return a hosted_link_url. "
                "Ensure Hosted Link is enabled in your Plaid dashboard (Settings > Link Customization)."
            )

        return LinkStart(
            provider="plaid",
            link_url=hosted_link_url,
            completion_token=data["link_token"],
            institution_name=institution_name,
        )

    def wait_for_public_token(self, link_token: str) -> Optional[str]:
        """Poll the link session until it finishes or the timeout passes.

        Returns:
            The public token, or None if the session is still open at the deadline

        Raises:
            LinkAbortedError: If the user finished without connecting
        """
        deadline = self._clock() + self.settings.link_poll_timeout_seconds

        while self._clock() < deadline:
            self._sleep(self.settings.link_poll_interval_seconds)

            try:
                data = payload(self.client.link_token_get(LinkTokenGetRequest(link_token=link_token)))
            except plaid.ApiException as e:
                raise translate_plaid_error(e) from e

            sessions = data.get("link_sessions") or []
            if not sessions:
                continue
            session = sessions[0]
            if not session.get("finished_at"):
                continue

            item_results = (session.get("results") or {}).get("item_add_results") or []
            if item_results and item_results[0].get("public_token"):
                return item_results[0]["public_token"]

            error = (session.get("exit") or {}).get("error") or {}
            raise LinkAbortedError(
                error.get("display_message") or error.get("error_message") or DEFAULT_EXIT_REASON
            )

        return None

    def _release_item(self, access_token: str) -> None:
        try:
            self.client.item_remove(ItemRemoveRequest(access_token=access_token))
        except plaid.ApiException as e:
            logger.warning(f"Could not remove duplicate Plaid item: {translate_plaid_error(e)}")

    def _institution_name(self, institution_id: str) -> Optional[str]:
        try:
            response = self.client.institutions_get_by_id(
                InstitutionsGetByIdRequest(institution_id=institution_id, country_codes=[CountryCode("US")])
            )
        except plaid.ApiException as e:
            logger.warning(f"Could not resolve Plaid institution {institution_id}: {translate_plaid_error(e)}")
            return None
        return payload(response)["institution"]["name"]

    def complete(self, link_token: str, institution_name: Optional[str] = None) -> LinkOutcome:
        """Finish the link once the user is done in Plaid Link."""
        public_token = self.wait_for_public_token(link_token)
        if public_token is None:
            return LinkOutcome.waiting()

        try:
            exchange = payload(
                self.client.item_public_token_exchange(ItemPublicTokenExchangeRequest(public_token=public_token))
            )
        except plaid.ApiException as e:
            raise translate_plaid_error(e) from e
        access_token = exchange["access_token"]
        item_id = exchange["item_id"]

        existing = self.find_connection(provider="plaid", item_id=item_id)
        if existing:
            self._release_item(access_token)
            return LinkOutcome.duplicate(existing.id, existing.institution_name)

        try:
            accounts = payload(self.client.accounts_get(AccountsGetRequest(access_token=access_token)))
        except plaid.ApiException as e:
            self._release_item(access_token)
            raise translate_plaid_error(e) from e
        institution_id = (accounts.get("item") or {}).get("institution_id")

        resolved_name = institution_name or institution_id or "Unknown Institution"
        if institution_id:
            resolved_name = self._institution_name(institution_id) or resolved_name

            existing = self.find_connection(institution_id=institution_id)
            if existing:
                self._release_item(access_token)
                return LinkOutcome.duplicate(existing.id, existing.institution_name)

        linked = self.persist_and_sync(
            access_token,
            institution_id=institution_id,
            institution_name=resolved_name,
            item_id=item_id,
        )
        return LinkOutcome.complete([linked])
