"""Coinbase data provider.

All crypto wallets are reported as one aggregated ``crypto`` account, with
one holding per non-empty wallet. Fiat wallets with a balance become
``checking`` accounts. Coinbase transactions are immutable, so everything
newer than the cursor is reported as added.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from tally.core.errors import ConfigurationError, TallyError
from tally.core.providers.base import DataProvider
from tally.core.providers.coinbase_client import CoinbaseClient
from tally.core.providers.models import (
    RawAccount,
    RawBalance,
    RawHolding,
    RawTransaction,
    TimestampCursor,
    TransactionPage,
)

logger = logging.getLogger(__name__)

CRYPTO_ACCOUNT_EXTERNAL_ID = "coinbase-crypto-aggregate"


def _amount(money: Optional[Dict[str, Any]]) -> float:
    return float((money or {}).get("amount") or 0)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_crypto(wallet: Dict[str, Any]) -> bool:
    return (wallet.get("currency") or {}).get("type") == "crypto"


def _is_fiat(wallet: Dict[str, Any]) -> bool:
    return (wallet.get("currency") or {}).get("type") == "fiat"


class CoinbaseDataProvider(DataProvider):
    """Date-range provider over Coinbase wallets."""

    name = "coinbase"
    cursor_type = TimestampCursor
    supports_holdings = True
    supports_disconnect = False

    def __init__(self, client: CoinbaseClient):
        self.client = client

    @classmethod
    def from_credential(cls, credential: str, timeout: int = 30) -> "CoinbaseDataProvider":
        """Build from the stored JSON credential ``{"apiKey": ..., "apiSecret": ...}``."""
        try:
            parsed = json.loads(credential)
            return cls(CoinbaseClient(parsed["apiKey"], parsed["apiSecret"], timeout=timeout))
        except (ValueError, KeyError, TypeError) as e:
            raise ConfigurationError("Stored Coinbase credential is malformed; link Coinbase again") from e

    def _crypto_total(self, wallets: List[Dict[str, Any]]) -> Optional[float]:
        crypto = [w for w in wallets if _is_crypto(w)]
        if not crypto:
            return None
        return round(sum(_amount(w.get("native_balance")) for w in crypto), 2)

    def _funded_fiat(self, wallets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [w for w in wallets if _is_fiat(w) and _amount(w.get("balance")) != 0]

    def get_accounts(self) -> List[RawAccount]:
        wallets = self.client.get_accounts()
        accounts = []

        crypto_total = self._crypto_total(wallets)
        if crypto_total is not None:
            accounts.append(
                RawAccount(
                    external_id=CRYPTO_ACCOUNT_EXTERNAL_ID,
                    name="Coinbase Crypto",
                    institution="Coinbase",
                    type="crypto",
                    currency="USD",
                    balance=crypto_total,
                )
            )

        for wallet in self._funded_fiat(wallets):
            code = wallet["currency"]["code"]
            accounts.append(
                RawAccount(
                    external_id=wallet["id"],
                    name=f"Coinbase {code} Wallet",
                    institution="Coinbase",
                    type="checking",
                    currency=code,
                    balance=_amount(wallet.get("balance")),
                )
            )
        return accounts

    def get_holdings(self) -> List[RawHolding]:
        holdings = []
        for wallet in self.client.get_accounts():
            if not _is_crypto(wallet):
                continue
            quantity = _amount(wallet.get("balance"))
            if quantity == 0:
                continue
            native_value = _amount(wallet.get("native_balance"))
            holdings.append(
                RawHolding(
                    account_external_id=CRYPTO_ACCOUNT_EXTERNAL_ID,
                    symbol=wallet["currency"]["code"],
                    name=wallet["currency"].get("name"),
                    quantity=quantity,
                    price=round(native_value / quantity, 2),
                    value=round(native_value, 2),
                    currency="USD",
                    asset_type="crypto",
                )
            )
        return holdings

    def get_transactions(self, cursor: Optional[TimestampCursor] = None) -> TransactionPage:
        """Fetch completed transactions strictly newer than the cursor.

        A wallet whose transaction listing fails (e.g. missing permission) is
        skipped.
        """
        page = TransactionPage()
        latest = cursor.at if cursor else None

        for wallet in self.client.get_accounts():
            try:
                transactions = self.client.get_transactions(wallet["id"])
            except (TallyError, requests.RequestException) as e:
                logger.warning(f"Skipping Coinbase wallet {wallet['id']}: {e}")
                continue

            account_external_id = CRYPTO_ACCOUNT_EXTERNAL_ID if _is_crypto(wallet) else wallet["id"]

            for tx in transactions:
                if tx.get("status") != "completed":
                    continue
                created_at = _parse_timestamp(tx["created_at"])
                if cursor is not None and created_at <= cursor.at:
                    continue
                if latest is None or created_at > latest:
                    latest = created_at

                details = tx.get("details") or {}
                native = tx.get("native_amount") or {}
                page.added.append(
                    RawTransaction(
                        external_id=tx["id"],
                        account_external_id=account_external_id,
                        date=created_at.date(),
                        amount=_amount(native),  # already signed
                        currency=native.get("currency") or "USD",
                        description=details.get("title") or tx.get("type"),
                        merchant="Coinbase",
                        type=tx.get("type"),
                        notes=details.get("subtitle"),
                    )
                )

        page.next_cursor = TimestampCursor(latest) if latest else None
        return page

    def get_balances(self) -> List[RawBalance]:
        wallets = self.client.get_accounts()
        balances = []

        crypto_total = self._crypto_total(wallets)
        if crypto_total is not None:
            balances.append(RawBalance(CRYPTO_ACCOUNT_EXTERNAL_ID, crypto_total, "USD"))

        for wallet in self._funded_fiat(wallets):
            balances.append(
                RawBalance(wallet["id"], _amount(wallet.get("balance")), wallet["currency"]["code"])
            )
        return balances
