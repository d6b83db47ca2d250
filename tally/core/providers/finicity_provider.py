"""Finicity data provider.

The credential is a Finicity customer id; the connection's ``item_id`` is an
institution login id that narrows the customer's accounts to one bank.
Finicity has no change feed, so every fetched transaction is reported as
added and duplicates are dropped by the ledger's uniqueness constraint. The
cursor is the latest transaction time seen.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from tally.config import get_settings
from tally.core.providers.base import DataProvider
from tally.core.providers.finicity_client import FinicityClient
from tally.core.providers.models import (
    ConnectionMeta,
    RawAccount,
    RawBalance,
    RawTransaction,
    TimestampCursor,
    TransactionPage,
)

logger = logging.getLogger(__name__)

ACCOUNT_TYPE_MAP = {
    "checking": "checking",
    "savings": "savings",
    "moneyMarket": "savings",
    "cd": "savings",
    "creditCard": "credit",
    "lineOfCredit": "credit",
    "investment": "investment",
    "brokerageAccount": "investment",
    "401k": "investment",
    "ira": "investment",
    "roth": "investment",
    "403b": "investment",
    "mortgage": "loan",
    "loan": "loan",
    "studentLoan": "loan",
    "autoLoan": "loan",
}


def map_account_type(finicity_type: Optional[str]) -> str:
    return ACCOUNT_TYPE_MAP.get(finicity_type or "", "other")


def _from_epoch(epoch: int) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class FinicityDataProvider(DataProvider):
    """Date-range provider filtered to one institution login."""

    name = "finicity"
    cursor_type = TimestampCursor
    supports_holdings = False
    supports_disconnect = True

    def __init__(
        self,
        customer_id: str,
        meta: Optional[ConnectionMeta] = None,
        client: Optional[FinicityClient] = None,
        settings=None,
        now=None,
    ):
        """Initialize provider.

        Args:
            customer_id: Finicity customer id (the stored credential)
            meta: Connection identifiers; ``item_id`` is the institution login id
            client: Finicity client; built from settings on first use when omitted
            settings: Settings used for the client and the lookback window
            now: Clock returning an aware UTC datetime
        """
        self.customer_id = customer_id
        self.meta = meta or ConnectionMeta()
        self.institution_login_id = self.meta.item_id
        self._client = client
        self._settings = settings or get_settings()
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def client(self) -> FinicityClient:
        if self._client is None:
            self._client = FinicityClient.from_settings(self._settings)
        return self._client

    def _login_accounts(self) -> List[Dict[str, Any]]:
        accounts = self.client.get_customer_accounts(self.customer_id)
        if not self.institution_login_id:
            return accounts
        return [a for a in accounts if str(a.get("institutionLoginId")) == str(self.institution_login_id)]

    def get_accounts(self) -> List[RawAccount]:
        return [
            RawAccount(
                external_id=str(a["id"]),
                name=a.get("name") or "Account",
                type=map_account_type(a.get("type")),
                institution=self.meta.institution_name,
                currency=a.get("currency") or "USD",
                balance=a.get("balance"),
            )
            for a in self._login_accounts()
        ]

    def get_transactions(self, cursor: Optional[TimestampCursor] = None) -> TransactionPage:
        """Fetch everything from the cursor (or the lookback window) until now.

        The range start is inclusive, so the transaction at the cursor is
        fetched again and dropped as a duplicate by the ledger.
        """
        now = self._now()
        if cursor is not None:
            from_dt = cursor.at
        else:
            from_dt = now - timedelta(days=self._settings.sync_lookback_days)
        from_epoch = int(from_dt.timestamp())

        transactions = self.client.get_customer_transactions(self.customer_id, from_epoch, int(now.timestamp()))
        login_account_ids = {str(a["id"]) for a in self._login_accounts()}

        page = TransactionPage()
        latest_epoch = 0
        for tx in transactions:
            if str(tx.get("accountId")) not in login_account_ids:
                continue

            tx_epoch = tx.get("transactionDate") or tx.get("postedDate")
            if not tx_epoch:
                logger.warning(f"Skipping Finicity transaction {tx.get('id')} without a date")
                continue
            latest_epoch = max(latest_epoch, tx_epoch)

            categorization = tx.get("categorization") or {}
            page.added.append(
                RawTransaction(
                    external_id=str(tx["id"]),
                    account_external_id=str(tx["accountId"]),
                    date=_from_epoch(tx_epoch).date(),
                    amount=-float(tx["amount"]),  # Finicity: positive = money out
                    currency="USD",
                    description=tx.get("description"),
                    merchant=categorization.get("normalizedPayeeName"),
                    category=categorization.get("category"),
                    type=tx.get("type"),
                    pending=tx.get("status") == "pending",
                    notes=tx.get("memo") or None,
                )
            )

        if latest_epoch:
            page.next_cursor = TimestampCursor(_from_epoch(latest_epoch))
        elif cursor is not None:
            page.next_cursor = cursor
        else:
            page.next_cursor = TimestampCursor(_from_epoch(from_epoch))
        return page

    def get_balances(self) -> List[RawBalance]:
        return [
            RawBalance(
                account_external_id=str(a["id"]),
                balance=a.get("balance") or 0.0,
                currency=a.get("currency") or "USD",
            )
            for a in self._login_accounts()
        ]

    def disconnect(self) -> None:
        if self.institution_login_id:
            self.client.delete_institution_login(self.customer_id, self.institution_login_id)
