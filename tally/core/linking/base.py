"""Shared persistence for link flows."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from tally.core.linking.models import LinkedConnection
from tally.core.providers.registry import ProviderRegistry
from tally.core.sync.engine import SyncEngine
from tally.credentials.store import SecretStore
from tally.db.models import ProviderConnection, generate_uuid

logger = logging.getLogger(__name__)


class ConnectionLinker:
    """Base for link flows: duplicate lookup, credential storage and first sync."""

    provider_name: str = ""

    def __init__(self, db: Session, registry: ProviderRegistry, secrets: SecretStore):
        self.db = db
        self.registry = registry
        self.secrets = secrets

    def find_connection(self, **filters) -> Optional[ProviderConnection]:
        """First connection matching all column filters."""
        return self.db.query(ProviderConnection).filter_by(**filters).first()

    def persist_and_sync(
        self,
        credential: str,
        institution_id: Optional[str] = None,
        institution_name: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> LinkedConnection:
        """Store the credential, create the connection and sync it immediately.

        The connection row is committed before syncing, so a failed first sync
        leaves a connection that can be synced again later.
        """
        connection_id = generate_uuid()
        keychain_key = f"{self.provider_name}-{connection_id}"
        self.secrets.set(keychain_key, credential)

        try:
            self.db.add(
                ProviderConnection(
                    id=connection_id,
                    provider=self.provider_name,
                    institution_id=institution_id,
                    institution_name=institution_name,
                    item_id=item_id,
                    keychain_key=keychain_key,
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.secrets.delete(keychain_key)
            raise

        logger.info(f"Linked {self.provider_name} connection {connection_id} ({institution_name})")
        result = SyncEngine(self.db, self.registry, self.secrets).sync_connection(connection_id)

        return LinkedConnection(
            connection_id=connection_id,
            institution_name=institution_name,
            accounts_synced=result.accounts_synced,
            transactions_added=result.transactions_added,
            holdings_synced=result.holdings_synced,
        )
