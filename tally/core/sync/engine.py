"""Reconciliation engine: merges provider data into the local ledger.

One sync pass runs in a fixed order: accounts, transactions, balances,
holdings, then the cursor. Account reconciliation builds the external id ->
local id map that every later step resolves through. All writes share one
database transaction that is committed only after the cursor is written, so
a failure anywhere leaves the previous cursor and data untouched.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional, Set

from sqlalchemy.orm import Session

from tally.core.errors import MissingCredentialError, NotFoundError, SyncInProgressError
from tally.core.providers.base import DataProvider
from tally.core.providers.models import ConnectionMeta, RawAccount, RawHolding, RawTransaction
from tally.core.providers.registry import ProviderRegistry
from tally.core.sync.models import SyncResult
from tally.credentials.store import SecretStore
from tally.db.database import insert_ignore
from tally.db.models import Account, PortfolioHolding, ProviderConnection, Transaction, utcnow

logger = logging.getLogger(__name__)

TRANSACTION_KEY = ["source", "external_id"]


class SyncEngine:
    """Syncs provider connections into the ledger.

    At most one sync per connection runs at a time in this process; a second
    concurrent call raises SyncInProgressError. Syncs of different
    connections are independent.
    """

    _in_flight: Set[str] = set()
    _guard = threading.Lock()

    def __init__(self, db: Session, registry: ProviderRegistry, secrets: SecretStore):
        self.db = db
        self.registry = registry
        self.secrets = secrets

    @classmethod
    @contextmanager
    def exclusive(cls, connection_id: str) -> Iterator[None]:
        """Hold the in-flight guard for one connection."""
        with cls._guard:
            if connection_id in cls._in_flight:
                raise SyncInProgressError(connection_id)
            cls._in_flight.add(connection_id)
        try:
            yield
        finally:
            with cls._guard:
                cls._in_flight.discard(connection_id)

    def sync_connection(self, connection_id: str) -> SyncResult:
        """Pull everything new for one connection and commit it atomically.

        Args:
            connection_id: ProviderConnection id

        Returns:
            SyncResult with counts

        Raises:
            NotFoundError: If the connection does not exist
            MissingCredentialError: If the connection's secret is gone
            SyncInProgressError: If this connection is already syncing
        """
        with self.exclusive(connection_id):
            try:
                result = self._sync(connection_id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Synced {result.provider} connection {connection_id}: "
            f"{result.accounts_synced} accounts, {result.transactions_added} added, "
            f"{result.transactions_modified} modified, {result.transactions_removed} removed, "
            f"{result.transactions_skipped} skipped, {result.holdings_synced} holdings"
        )
        return result

    def sync_all(self) -> List[SyncResult]:
        """Sync every connection. A failed connection is reported, not raised."""
        connection_ids = [row.id for row in self.db.query(ProviderConnection.id).all()]
        results = []

        for connection_id in connection_ids:
            try:
                results.append(self.sync_connection(connection_id))
            except Exception as e:
                logger.error(f"Sync failed for connection {connection_id}: {e}")
                results.append(SyncResult(connection_id=connection_id, error=str(e)))

        return results

    def provider_for(self, connection: ProviderConnection) -> DataProvider:
        """Resolve the connection's credential and build its provider.

        Raises:
            MissingCredentialError: If the secret store has no entry for the connection
        """
        credential = self.secrets.get(connection.keychain_key)
        if credential is None:
            raise MissingCredentialError(connection.id, connection.institution_name)

        meta = ConnectionMeta(
            item_id=connection.item_id,
            institution_id=connection.institution_id,
            institution_name=connection.institution_name,
        )
        return self.registry.create(connection.provider, credential, meta)

    def _sync(self, connection_id: str) -> SyncResult:
        connection = self.db.get(ProviderConnection, connection_id)
        if connection is None:
            raise NotFoundError(f"Connection not found: {connection_id}")

        provider = self.provider_for(connection)
        source = connection.provider
        result = SyncResult(connection_id=connection.id, provider=source)

        accounts = self._reconcile_accounts(connection, source, provider.get_accounts())
        self.db.flush()
        account_ids = {external_id: account.id for external_id, account in accounts.items()}
        result.accounts_synced = len(accounts)

        page = provider.get_transactions(provider.decode_cursor(connection.cursor))
        self._apply_added(page.added, source, account_ids, result)
        self._apply_modified(page.modified, account_ids, result)
        self._apply_removed(page.removed, source, result)

        for balance in provider.get_balances():
            account = accounts.get(balance.account_external_id)
            if account is None:
                continue
            account.balance = balance.balance

        if provider.supports_holdings:
            result.holdings_synced = self._reconcile_holdings(provider.get_holdings(), account_ids)

        if page.next_cursor is not None:
            connection.cursor = page.next_cursor.encode()
        connection.last_synced_at = utcnow()
        self.db.flush()

        result.last_synced_at = connection.last_synced_at
        return result

    def _reconcile_accounts(
        self,
        connection: ProviderConnection,
        source: str,
        raw_accounts: List[RawAccount],
    ) -> Dict[str, Account]:
        """Upsert accounts by (source, external_id), keeping local ids stable."""
        accounts: Dict[str, Account] = {}

        for raw in raw_accounts:
            account = accounts.get(raw.external_id) or (
                self.db.query(Account)
                .filter_by(source=source, external_id=raw.external_id)
                .first()
            )
            institution = raw.institution or connection.institution_name

            if account is None:
                account = Account(
                    name=raw.name,
                    institution=institution,
                    type=raw.type,
                    currency=raw.currency or "USD",
                    balance=raw.balance,
                    source=source,
                    external_id=raw.external_id,
                    connection_id=connection.id,
                    is_active=True,
                )
                self.db.add(account)
            else:
                account.name = raw.name
                account.institution = institution
                account.type = raw.type
                account.currency = raw.currency or account.currency
                if raw.balance is not None:
                    account.balance = raw.balance
                if account.connection_id is None:
                    account.connection_id = connection.id

            accounts[raw.external_id] = account

        return accounts

    def _apply_added(
        self,
        added: List[RawTransaction],
        source: str,
        account_ids: Dict[str, str],
        result: SyncResult,
    ) -> None:
        for tx in added:
            account_id = account_ids.get(tx.account_external_id)
            if account_id is None:
                logger.warning(
                    f"Skipping {source} transaction {tx.external_id}: "
                    f"unknown account {tx.account_external_id}"
                )
                result.transactions_skipped += 1
                continue

            values = _transaction_fields(tx)
            values.update(account_id=account_id, source=source, external_id=tx.external_id)
            if insert_ignore(self.db, Transaction, values, TRANSACTION_KEY):
                result.transactions_added += 1
            else:
                result.transactions_skipped += 1

    def _apply_modified(
        self,
        modified: List[RawTransaction],
        account_ids: Dict[str, str],
        result: SyncResult,
    ) -> None:
        for tx in modified:
            account_id = account_ids.get(tx.account_external_id)
            if account_id is None:
                continue
            row = (
                self.db.query(Transaction)
                .filter_by(account_id=account_id, external_id=tx.external_id)
                .first()
            )
            if row is None:
                continue
            for field, value in _transaction_fields(tx).items():
                setattr(row, field, value)
            result.transactions_modified += 1

    def _apply_removed(self, removed: List[str], source: str, result: SyncResult) -> None:
        if not removed:
            return
        deleted = (
            self.db.query(Transaction)
            .filter(Transaction.source == source, Transaction.external_id.in_(removed))
            .delete(synchronize_session=False)
        )
        result.transactions_removed += deleted

    def _reconcile_holdings(self, raw_holdings: List[RawHolding], account_ids: Dict[str, str]) -> int:
        """Upsert reported positions and drop positions no longer reported."""
        seen: Dict[str, Set[str]] = {account_id: set() for account_id in account_ids.values()}
        synced = 0

        for raw in raw_holdings:
            account_id = account_ids.get(raw.account_external_id)
            if account_id is None:
                continue

            if raw.price is not None:
                value = round(raw.quantity * raw.price, 2)
            elif raw.value is not None:
                value = round(raw.value, 2)
            else:
                value = None

            holding = (
                self.db.query(PortfolioHolding)
                .filter_by(account_id=account_id, symbol=raw.symbol)
                .first()
            )
            if holding is None:
                holding = PortfolioHolding(account_id=account_id, symbol=raw.symbol)
                self.db.add(holding)

            holding.name = raw.name
            holding.quantity = raw.quantity
            holding.price = raw.price
            holding.value = value
            holding.currency = raw.currency or "USD"
            holding.asset_type = raw.asset_type
            holding.price_source = "provider"
            holding.price_as_of = _as_datetime(raw.price_as_of) or utcnow()

            seen[account_id].add(raw.symbol)
            synced += 1

        for account_id, symbols in seen.items():
            stale = self.db.query(PortfolioHolding).filter(PortfolioHolding.account_id == account_id)
            if symbols:
                stale = stale.filter(PortfolioHolding.symbol.notin_(symbols))
            stale.delete(synchronize_session=False)

        return synced


def _transaction_fields(tx: RawTransaction) -> dict:
    return {
        "date": tx.date,
        "amount": tx.amount,
        "currency": tx.currency or "USD",
        "description": tx.description,
        "merchant": tx.merchant,
        "category": tx.category,
        "subcategory": tx.subcategory,
        "type": tx.type,
        "pending": tx.pending,
        "notes": tx.notes,
    }


def _as_datetime(value) -> Optional[datetime]:
    """Naive UTC datetime from a provider date, datetime or ISO string."""
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
