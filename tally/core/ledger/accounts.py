"""Account repository."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError
from tally.core.ledger.connections import ConnectionService, RemovalResult
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore
from tally.db.models import ACCOUNT_TYPES, Account, PortfolioHolding, ProviderConnection, Transaction


class AccountRepository:
    """Repository for Account CRUD operations."""

    def __init__(
        self,
        db: Session,
        registry: Optional[ProviderRegistry] = None,
        secrets: Optional[SecretStore] = None,
    ):
        """Initialize repository.

        Args:
            db: Database session
            registry: Needed to disconnect upstream when deleting linked accounts
            secrets: Needed to clean up credentials when deleting linked accounts
        """
        self.db = db
        self.connections = ConnectionService(db, registry, secrets)

    def add_account(
        self,
        name: str,
        type: str,
        institution: Optional[str] = None,
        balance: Optional[float] = None,
        currency: str = "USD",
        source: str = "manual",
        external_id: Optional[str] = None,
    ) -> Account:
        """Create an account.

        Raises:
            ValueError: If type is not a known account type
        """
        if type not in ACCOUNT_TYPES:
            raise ValueError(f'Invalid account type "{type}". Must be one of: {", ".join(ACCOUNT_TYPES)}')

        account = Account(
            name=name,
            type=type,
            institution=institution,
            balance=balance,
            currency=currency,
            source=source,
            external_id=external_id,
            is_active=True,
        )
        self.db.add(account)
        self.db.flush()
        return account

    def list_accounts(self) -> List[Account]:
        """Active accounts ordered by name."""
        return (
            self.db.query(Account)
            .filter(Account.is_active == True)  # noqa: E712
            .order_by(Account.name)
            .all()
        )

    def get_account(self, account_id: str) -> Account:
        account = self.db.get(Account, account_id)
        if account is None:
            raise NotFoundError(f'Account "{account_id}" not found')
        return account

    def update_balance(self, account_id: str, balance: float) -> Account:
        account = self.get_account(account_id)
        account.balance = balance
        self.db.flush()
        return account

    def delete_account(self, account_id: str) -> RemovalResult:
        """Delete an account with its transactions and holdings.

        An account owned by a provider connection takes the whole connection
        with it: every account of that connection is deleted, the upstream
        link is revoked and the credential is removed.
        """
        account = self.get_account(account_id)

        if account.connection_id:
            connection = self.db.get(ProviderConnection, account.connection_id)
            if connection is not None:
                return self.connections.teardown(connection)

        result = RemovalResult(
            deleted_accounts=1,
            deleted_transactions=self.db.query(Transaction).filter_by(account_id=account.id).count(),
            deleted_holdings=self.db.query(PortfolioHolding).filter_by(account_id=account.id).count(),
        )
        self.db.delete(account)
        self.db.flush()
        return result
