"""Shared fixtures: an in-memory ledger and fake providers."""

from datetime import date
from typing import List, Optional

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tally.core.providers.base import DataProvider
from tally.core.providers.models import (
    CursorToken,
    RawAccount,
    RawBalance,
    RawHolding,
    RawTransaction,
    TransactionPage,
)
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import InMemorySecretStore
from tally.db.database import create_db_engine, init_db
from tally.db.models import Account, ProviderConnection


class FakeProvider(DataProvider):
    """Scriptable provider. Each get_transactions call pops the next page."""

    name = "fake"
    cursor_type = CursorToken
    supports_holdings = True
    supports_disconnect = True

    def __init__(
        self,
        accounts: Optional[List[RawAccount]] = None,
        pages: Optional[List[TransactionPage]] = None,
        balances: Optional[List[RawBalance]] = None,
        holdings: Optional[List[RawHolding]] = None,
    ):
        self.accounts = accounts or []
        self.pages = list(pages or [])
        self.balances = balances or []
        self.holdings = holdings or []
        self.balance_error: Optional[Exception] = None
        self.cursors_seen: list = []
        self.disconnected = False

    def get_accounts(self):
        return list(self.accounts)

    def get_transactions(self, cursor=None):
        self.cursors_seen.append(cursor)
        if not self.pages:
            return TransactionPage(next_cursor=cursor)
        return self.pages.pop(0)

    def get_balances(self):
        if self.balance_error is not None:
            raise self.balance_error
        return list(self.balances)

    def get_holdings(self):
        return list(self.holdings)

    def disconnect(self):
        self.disconnected = True


def raw_tx(external_id, amount, account="acc-1", day=date(2026, 2, 10), **kwargs) -> RawTransaction:
    return RawTransaction(
        external_id=external_id,
        account_external_id=account,
        date=day,
        amount=amount,
        **kwargs,
    )


@pytest.fixture
def engine():
    db_engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def secrets():
    return InMemorySecretStore()


@pytest.fixture
def fake_provider():
    return FakeProvider(
        accounts=[
            RawAccount(external_id="acc-1", name="Everyday Checking", type="checking", balance=1000.0),
            RawAccount(external_id="acc-2", name="Rewards Card", type="credit", balance=-250.0),
        ],
        balances=[RawBalance("acc-1", 1200.0), RawBalance("acc-2", -300.0)],
    )


@pytest.fixture
def registry(fake_provider):
    providers = ProviderRegistry()
    providers.register("fake", lambda credential, meta: fake_provider)
    return providers


@pytest.fixture
def connection(db, secrets):
    """A committed fake connection with a stored credential."""
    conn = ProviderConnection(
        provider="fake",
        institution_id="ins_1",
        institution_name="Test Bank",
        item_id="item-1",
        keychain_key="fake-key-1",
    )
    db.add(conn)
    db.commit()
    secrets.set("fake-key-1", "secret-token")
    return conn


@pytest.fixture
def checking(db):
    """A committed manual checking account."""
    account = Account(name="Checking", type="checking", balance=500.0, source="manual")
    db.add(account)
    db.commit()
    return account
