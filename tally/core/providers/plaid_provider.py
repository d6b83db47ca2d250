"""Plaid data provider.

Plaid connects to 12,000+ financial institutions. Transactions come from
``/transactions/sync``, a cursor-based incremental feed that reports added,
modified and removed transactions.

Setup:
1. Create a Plaid account at https://dashboard.plaid.com/
2. Get your client_id and secret from the dashboard
3. Set PLAID_CLIENT_ID, PLAID_SECRET, PLAID_ENV in your .env
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import plaid
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from tally.config import get_settings
from tally.core.errors import ConfigurationError, ProviderAPIError, ProviderAuthError
from tally.core.providers.base import DataProvider
from tally.core.providers.models import (
    ConnectionMeta,
    CursorToken,
    RawAccount,
    RawBalance,
    RawHolding,
    RawTransaction,
    TransactionPage,
)

logger = logging.getLogger(__name__)

SYNC_PAGE_SIZE = 500
HOLDINGS_UNAVAILABLE_CODES = ("INVALID_PRODUCT", "PRODUCTS_NOT_SUPPORTED", "NO_INVESTMENT_ACCOUNTS")
AUTH_ERROR_CODES = ("INVALID_API_KEYS", "INVALID_ACCESS_TOKEN", "ITEM_LOGIN_REQUIRED")

SECURITY_TYPE_MAP = {
    "equity": "stock",
    "etf": "etf",
    "cryptocurrency": "crypto",
    "fixed income": "bond",
    "mutual fund": "etf",  # Yahoo Finance prices most funds by ticker
}


def create_plaid_client(settings=None) -> plaid_api.PlaidApi:
    """Build a Plaid API client from settings.

    Raises:
        ConfigurationError: If PLAID_CLIENT_ID or PLAID_SECRET is not set
    """
    settings = settings or get_settings()
    missing = [
        name
        for name, value in (("PLAID_CLIENT_ID", settings.plaid_client_id), ("PLAID_SECRET", settings.plaid_secret))
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing env var: {', '.join(missing)}\n"
            f"Get your credentials at https://dashboard.plaid.com"
        )

    env = settings.plaid_env.lower()
    host = plaid.Environment.Production if env == "production" else plaid.Environment.Sandbox
    configuration = plaid.Configuration(
        host=host,
        api_key={
            "clientId": settings.plaid_client_id,
            "secret": settings.plaid_secret,
        },
    )
    logger.debug(f"Plaid client initialized (env={env})")
    return plaid_api.PlaidApi(plaid.ApiClient(configuration))


def payload(response: Any) -> Dict[str, Any]:
    """Plain-dict view of a Plaid response model."""
    if hasattr(response, "to_dict"):
        return response.to_dict()
    return response


def translate_plaid_error(error: plaid.ApiException) -> ProviderAPIError:
    """Convert a Plaid ApiException into an application error, keeping Plaid's message."""
    code = None
    message = str(error.reason or error)
    try:
        body = json.loads(error.body or "{}")
        code = body.get("error_code")
        message = body.get("display_message") or body.get("error_message") or message
    except (TypeError, ValueError):
        pass

    if code in AUTH_ERROR_CODES:
        return ProviderAuthError(f"Plaid: {message}")
    return ProviderAPIError(f"Plaid: {message}", status_code=error.status, code=code)


def map_account_type(account_type: Optional[str], subtype: Optional[str]) -> str:
    """Collapse Plaid's type/subtype pair onto the ledger's account types."""
    if account_type == "depository":
        return "savings" if subtype == "savings" else "checking"
    if account_type == "credit":
        return "credit"
    if account_type in ("investment", "brokerage"):
        return "investment"
    if account_type == "loan":
        return "loan"
    return "other"


def map_security_type(security_type: Optional[str]) -> str:
    return SECURITY_TYPE_MAP.get(security_type or "", "other")


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _map_transaction(tx: Dict[str, Any]) -> RawTransaction:
    category = tx.get("personal_finance_category") or {}
    return RawTransaction(
        external_id=tx["transaction_id"],
        account_external_id=tx["account_id"],
        date=_as_date(tx["date"]),
        amount=-float(tx["amount"]),  # Plaid: positive = money out
        currency=tx.get("iso_currency_code") or "USD",
        description=tx.get("name"),
        merchant=tx.get("merchant_name"),
        category=category.get("primary"),
        subcategory=category.get("detailed"),
        type=tx.get("payment_channel"),
        pending=bool(tx.get("pending")),
    )


class PlaidDataProvider(DataProvider):
    """Cursor-style provider backed by Plaid ``/transactions/sync``."""

    name = "plaid"
    cursor_type = CursorToken
    supports_holdings = True
    supports_disconnect = True

    def __init__(
        self,
        access_token: str,
        meta: Optional[ConnectionMeta] = None,
        client: Optional[plaid_api.PlaidApi] = None,
        settings=None,
    ):
        """Initialize provider.

        Args:
            access_token: Plaid item access token
            meta: Stored connection identifiers
            client: Plaid client; built from settings on first use when omitted
            settings: Settings used to build the client
        """
        self.access_token = access_token
        self.meta = meta or ConnectionMeta()
        self._client = client
        self._settings = settings

    @property
    def client(self) -> plaid_api.PlaidApi:
        if self._client is None:
            self._client = create_plaid_client(self._settings)
        return self._client

    def _accounts_get(self) -> List[Dict[str, Any]]:
        try:
            response = self.client.accounts_get(AccountsGetRequest(access_token=self.access_token))
        except plaid.ApiException as e:
            raise translate_plaid_error(e) from e
        return payload(response)["accounts"]

    def get_accounts(self) -> List[RawAccount]:
        accounts = []
        for account in self._accounts_get():
            balances = account.get("balances") or {}
            accounts.append(
                RawAccount(
                    external_id=account["account_id"],
                    name=account.get("name") or account.get("official_name") or "Account",
                    type=map_account_type(account.get("type"), account.get("subtype")),
                    institution=self.meta.institution_name,
                    currency=balances.get("iso_currency_code") or "USD",
                    balance=balances.get("current"),
                )
            )
        return accounts

    def get_transactions(self, cursor: Optional[CursorToken] = None) -> TransactionPage:
        """Drain ``/transactions/sync`` until ``has_more`` is false.

        Pages are merged; only the final page's cursor is kept.
        """
        page = TransactionPage()
        next_cursor = cursor.token if cursor else ""
        has_more = True

        while has_more:
            request_args = {"access_token": self.access_token, "count": SYNC_PAGE_SIZE}
            if next_cursor:
                request_args["cursor"] = next_cursor
            try:
                response = self.client.transactions_sync(TransactionsSyncRequest(**request_args))
            except plaid.ApiException as e:
                raise translate_plaid_error(e) from e

            data = payload(response)
            page.added.extend(_map_transaction(tx) for tx in data.get("added", []))
            page.modified.extend(_map_transaction(tx) for tx in data.get("modified", []))
            page.removed.extend(r["transaction_id"] for r in data.get("removed", []) if r.get("transaction_id"))
            next_cursor = data["next_cursor"]
            has_more = bool(data.get("has_more"))

        page.next_cursor = CursorToken(next_cursor) if next_cursor else None
        logger.debug(
            f"Plaid sync: {len(page.added)} added, {len(page.modified)} modified, {len(page.removed)} removed"
        )
        return page

    def get_balances(self) -> List[RawBalance]:
        # accounts/get is included with Transactions; accounts/balance/get is a separate product
        balances = []
        for account in self._accounts_get():
            account_balances = account.get("balances") or {}
            balances.append(
                RawBalance(
                    account_external_id=account["account_id"],
                    balance=account_balances.get("current") or 0.0,
                    currency=account_balances.get("iso_currency_code") or "USD",
                )
            )
        return balances

    def get_holdings(self) -> List[RawHolding]:
        """Fetch investment positions.

        Items linked without the Investments product report no holdings
        instead of failing.
        """
        try:
            response = self.client.investments_holdings_get(
                InvestmentsHoldingsGetRequest(access_token=self.access_token)
            )
        except plaid.ApiException as e:
            error = translate_plaid_error(e)
            if getattr(error, "code", None) in HOLDINGS_UNAVAILABLE_CODES:
                logger.info(f"Plaid item has no investments product ({error.code})")
                return []
            raise error from e

        data = payload(response)
        securities = {s["security_id"]: s for s in data.get("securities", [])}

        holdings = []
        for holding in data.get("holdings", []):
            security = securities.get(holding["security_id"], {})
            symbol = security.get("ticker_symbol") or holding["security_id"]
            if not symbol:
                continue
            holdings.append(
                RawHolding(
                    account_external_id=holding["account_id"],
                    symbol=symbol,
                    name=security.get("name"),
                    quantity=float(holding["quantity"]),
                    price=holding.get("institution_price"),
                    price_as_of=holding.get("institution_price_as_of"),
                    value=holding.get("institution_value"),
                    currency=holding.get("iso_currency_code") or holding.get("unofficial_currency_code") or "USD",
                    asset_type=map_security_type(security.get("type")),
                )
            )
        return holdings

    def disconnect(self) -> None:
        try:
            self.client.item_remove(ItemRemoveRequest(access_token=self.access_token))
        except plaid.ApiException as e:
            raise translate_plaid_error(e) from e
