"""HTTP client for the Finicity (Mastercard Open Banking) API.

Auth flow:
1. Partner authenticates via POST /aggregation/v2/partners/authentication
2. The returned token is valid for 90 minutes
3. Every request sends Finicity-App-Key and Finicity-App-Token headers

Required env vars: FINICITY_PARTNER_ID, FINICITY_PARTNER_SECRET, FINICITY_APP_KEY
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from tally.config import get_settings
from tally.core.errors import ConfigurationError, ProviderAPIError, ProviderAuthError

logger = logging.getLogger(__name__)

BASE_URL = "https://api.finicity.com"
TOKEN_LIFETIME_SECONDS = 90 * 60
TRANSACTIONS_PAGE_SIZE = 1000
DOCS_URL = "https://developer.mastercard.com/open-banking-us/documentation/"


class FinicityClient:
    """Thin wrapper over the Finicity REST endpoints used for sync and linking."""

    def __init__(
        self,
        partner_id: str,
        partner_secret: str,
        app_key: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        clock=time.monotonic,
    ):
        self.partner_id = partner_id
        self.partner_secret = partner_secret
        self.app_key = app_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings=None, session: Optional[requests.Session] = None) -> "FinicityClient":
        """Build a client from settings.

        Raises:
            ConfigurationError: If any Finicity credential is not set
        """
        settings = settings or get_settings()
        required = (
            ("FINICITY_PARTNER_ID", settings.finicity_partner_id),
            ("FINICITY_PARTNER_SECRET", settings.finicity_partner_secret),
            ("FINICITY_APP_KEY", settings.finicity_app_key),
        )
        missing = [name for name, value in required if not value]
        if missing:
            raise ConfigurationError(
                f"Missing env var: {', '.join(missing)}\nGet your credentials at {DOCS_URL}"
            )
        return cls(
            settings.finicity_partner_id,
            settings.finicity_partner_secret,
            settings.finicity_app_key,
            session=session,
            timeout=settings.http_timeout_seconds,
        )

    def _base_headers(self) -> Dict[str, str]:
        return {
            "Finicity-App-Key": self.app_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def authenticate(self) -> str:
        """Return a partner token, reusing the cached one until it expires."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        response = self.session.post(
            f"{BASE_URL}/aggregation/v2/partners/authentication",
            json={"partnerId": self.partner_id, "partnerSecret": self.partner_secret},
            headers=self._base_headers(),
            timeout=self.timeout,
        )
        if not response.ok:
            raise ProviderAuthError(f"Finicity authentication failed ({response.status_code}): {response.text}")

        self._token = response.json()["token"]
        self._token_expires_at = self._clock() + TOKEN_LIFETIME_SECONDS
        logger.debug("Authenticated with Finicity")
        return self._token

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = self._base_headers()
        headers["Finicity-App-Token"] = self.authenticate()

        response = self.session.request(
            method,
            f"{BASE_URL}{path}",
            params=params,
            json=body,
            headers=headers,
            timeout=self.timeout,
        )

        if not response.ok:
            message = f"Finicity API error {response.status_code}"
            try:
                parsed = response.json()
                message = parsed.get("message") or parsed.get("error") or message
            except ValueError:
                pass
            raise ProviderAPIError(message, status_code=response.status_code)

        # DELETE endpoints return no body
        if not response.text:
            return None
        return response.json()

    def create_customer(self, username: str) -> Dict[str, Any]:
        """Create an active customer, required before generating Connect URLs."""
        return self._request(
            "POST",
            "/aggregation/v2/customers/active",
            body={"username": username, "firstName": "Tally", "lastName": "User"},
        )

    def get_customer_accounts(self, customer_id: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/aggregation/v1/customers/{customer_id}/accounts")
        return (data or {}).get("accounts") or []

    def get_customer_transactions(self, customer_id: str, from_date: int, to_date: int) -> List[Dict[str, Any]]:
        """Fetch transactions between two epoch-second bounds, draining pagination.

        Finicity pages are 1-based and continue while ``moreAvailable`` is "true".
        """
        transactions: List[Dict[str, Any]] = []
        start = 1
        while True:
            data = self._request(
                "GET",
                f"/aggregation/v3/customers/{customer_id}/transactions",
                params={
                    "fromDate": from_date,
                    "toDate": to_date,
                    "start": start,
                    "limit": TRANSACTIONS_PAGE_SIZE,
                },
            ) or {}
            transactions.extend(data.get("transactions") or [])
            if str(data.get("moreAvailable")).lower() != "true":
                break
            start += TRANSACTIONS_PAGE_SIZE
        return transactions

    def generate_connect_url(self, customer_id: str) -> str:
        data = self._request(
            "POST",
            "/connect/v2/generate",
            body={"partnerId": self.partner_id, "customerId": customer_id},
        )
        return data["link"]

    def search_institutions(self, query: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            "/institution/v2/institutions",
            params={"search": query, "start": 1, "limit": 10},
        )
        return (data or {}).get("institutions") or []

    def delete_institution_login(self, customer_id: str, institution_login_id: str) -> None:
        self._request(
            "DELETE",
            f"/aggregation/v1/customers/{customer_id}/institutionLogins/{institution_login_id}",
        )
