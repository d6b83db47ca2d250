"""HTTP client for the Coinbase v2 API with HMAC-SHA256 request signing.

Auth headers:
    CB-ACCESS-KEY       API key
    CB-ACCESS-SIGN      hex HMAC-SHA256(secret, timestamp + METHOD + path + body)
    CB-ACCESS-TIMESTAMP Unix epoch seconds
    CB-VERSION          API version date
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from tally.core.errors import ProviderAPIError, ProviderAuthError

logger = logging.getLogger(__name__)

BASE_URL = "https://api.coinbase.com"
API_VERSION = "2023-01-01"


class CoinbaseClient:
    """Signed GET client for wallets and wallet transactions."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.session = session or requests.Session()
        self.timeout = timeout

    def sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        """Compute the CB-ACCESS-SIGN header value."""
        message = f"{timestamp}{method.upper()}{path}{body}"
        return hmac.new(self.api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()

    def _request(self, method: str, path: str) -> Dict[str, Any]:
        timestamp = str(int(time.time()))
        headers = {
            "CB-ACCESS-KEY": self.api_key,
            "CB-ACCESS-SIGN": self.sign(timestamp, method, path),
            "CB-ACCESS-TIMESTAMP": timestamp,
            "CB-VERSION": API_VERSION,
            "Content-Type": "application/json",
        }
        response = self.session.request(method, f"{BASE_URL}{path}", headers=headers, timeout=self.timeout)

        if not response.ok:
            message = f"Coinbase API error {response.status_code}"
            try:
                errors = response.json().get("errors") or []
                if errors and errors[0].get("message"):
                    message = errors[0]["message"]
            except ValueError:
                pass
            if response.status_code in (401, 403):
                raise ProviderAuthError(message)
            raise ProviderAPIError(message, status_code=response.status_code)

        return response.json()

    def _paginate(self, path: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while path:
            data = self._request("GET", path)
            items.extend(data.get("data") or [])
            path = (data.get("pagination") or {}).get("next_uri") or ""
        return items

    def get_accounts(self) -> List[Dict[str, Any]]:
        """Fetch every wallet."""
        return self._paginate("/v2/accounts?limit=100")

    def get_transactions(self, account_id: str) -> List[Dict[str, Any]]:
        """Fetch every transaction of one wallet."""
        return self._paginate(f"/v2/accounts/{account_id}/transactions?limit=100")
