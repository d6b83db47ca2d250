"""Provider connection management and teardown."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError, TallyError
from tally.core.providers.models import ConnectionMeta
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore
from tally.db.models import Account, PortfolioHolding, ProviderConnection, Transaction

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """A connection as shown to users. Never carries the secret reference."""

    id: str
    provider: str
    institution_id: Optional[str]
    institution_name: Optional[str]
    item_id: Optional[str]
    last_synced_at: Optional[datetime]
    created_at: datetime
    account_count: int = 0


@dataclass
class RemovalResult:
    """What a connection or account removal deleted."""

    deleted_accounts: int = 0
    deleted_transactions: int = 0
    deleted_holdings: int = 0
    connection_removed: bool = False


class ConnectionService:
    """List, update and remove provider connections."""

    def __init__(self, db: Session, registry: Optional[ProviderRegistry] = None, secrets: Optional[SecretStore] = None):
        self.db = db
        self.registry = registry
        self.secrets = secrets

    def get(self, connection_id: str) -> ProviderConnection:
        connection = self.db.get(ProviderConnection, connection_id)
        if connection is None:
            raise NotFoundError(f'Connection "{connection_id}" not found')
        return connection

    def list_connections(self) -> List[ConnectionInfo]:
        """All connections, newest first."""
        counts = dict(
            self.db.query(Account.connection_id, func.count(Account.id))
            .filter(Account.connection_id.isnot(None))
            .group_by(Account.connection_id)
            .all()
        )
        connections = self.db.query(ProviderConnection).order_by(ProviderConnection.created_at.desc()).all()
        return [
            ConnectionInfo(
                id=c.id,
                provider=c.provider,
                institution_id=c.institution_id,
                institution_name=c.institution_name,
                item_id=c.item_id,
                last_synced_at=c.last_synced_at,
                created_at=c.created_at,
                account_count=counts.get(c.id, 0),
            )
            for c in connections
        ]

    def update_cursor(self, connection_id: str, cursor: Optional[str]) -> ProviderConnection:
        """Overwrite a connection's stored cursor (None forces a full re-fetch)."""
        connection = self.get(connection_id)
        connection.cursor = cursor
        self.db.flush()
        return connection

    def remove_connection(self, connection_id: str) -> RemovalResult:
        """Remove a connection and every account it owns.

        Server-side revocation and secret deletion are best-effort.

        Raises:
            NotFoundError: If the connection does not exist
        """
        return self.teardown(self.get(connection_id))

    def teardown(self, connection: ProviderConnection) -> RemovalResult:
        self._disconnect_upstream(connection)

        result = RemovalResult()
        accounts = self.db.query(Account).filter_by(connection_id=connection.id).all()
        for account in accounts:
            result.deleted_transactions += self.db.query(Transaction).filter_by(account_id=account.id).count()
            result.deleted_holdings += self.db.query(PortfolioHolding).filter_by(account_id=account.id).count()
            self.db.delete(account)
            result.deleted_accounts += 1

        if self.secrets is not None:
            try:
                self.secrets.delete(connection.keychain_key)
            except (OSError, TallyError) as e:
                logger.warning(f"Could not delete credential for connection {connection.id}: {e}")

        self.db.delete(connection)
        self.db.flush()
        result.connection_removed = True
        logger.info(
            f"Removed {connection.provider} connection {connection.id}: "
            f"{result.deleted_accounts} accounts, {result.deleted_transactions} transactions"
        )
        return result

    def _disconnect_upstream(self, connection: ProviderConnection) -> None:
        if self.registry is None or self.secrets is None:
            return

        try:
            credential = self.secrets.get(connection.keychain_key)
        except (OSError, TallyError) as e:
            credential = None
            logger.warning(f"Credential lookup failed for connection {connection.id}: {e}")
        if credential is None:
            logger.warning(
                f"Credential for connection {connection.id} is unavailable; "
                f"skipping server-side disconnect at {connection.provider}"
            )
            return

        try:
            provider = self.registry.create(
                connection.provider,
                credential,
                ConnectionMeta(
                    item_id=connection.item_id,
                    institution_id=connection.institution_id,
                    institution_name=connection.institution_name,
                ),
            )
            if provider.supports_disconnect:
                provider.disconnect()
        except Exception as e:
            logger.warning(f"{connection.provider} disconnect failed for connection {connection.id}: {e}")
