"""Tests for the Plaid, Finicity and Coinbase link flows and bank routing."""

import itertools
import threading
import time
from unittest.mock import MagicMock, Mock

import plaid
import pytest

from conftest import FakeProvider
from tally.core.errors import (
    ConfigurationError,
    LinkAbortedError,
    NotFoundError,
    ProviderAPIError,
    ProviderAuthError,
)
from tally.core.linking.coinbase_link import CoinbaseLink
from tally.core.linking.connect import BankConnector
from tally.core.linking.finicity_link import FinicityLinkFlow
from tally.core.linking.models import InstitutionMatch, LinkStart, LinkStatus
from tally.core.linking.plaid_link import PlaidLinkFlow
from tally.db.models import Account, ProviderConnection


def _settings():
    return Mock(link_poll_timeout_seconds=10, link_poll_interval_seconds=2, search_timeout_seconds=5)


def _finished_session(public_token=None, exit_error=None):
    session = {"finished_at": "2026-02-10T12:00:00Z"}
    if public_token:
        session["results"] = {"item_add_results": [{"public_token": public_token}]}
    if exit_error:
        session["exit"] = {"error": exit_error}
    return {"link_sessions": [session]}


@pytest.fixture
def plaid_client():
    client = MagicMock()
    client.link_token_get.return_value = _finished_session(public_token="public-1")
    client.item_public_token_exchange.return_value = {"access_token": "access-1", "item_id": "item-9"}
    client.accounts_get.return_value = {"item": {"institution_id": "ins_9"}}
    client.institutions_get_by_id.return_value = {"institution": {"name": "Chase"}}
    return client


@pytest.fixture
def plaid_flow(db, registry, secrets, plaid_client, fake_provider):
    registry.register("plaid", lambda credential, meta: fake_provider)
    return PlaidLinkFlow(
        db,
        registry,
        secrets,
        client=plaid_client,
        settings=_settings(),
        sleep=lambda seconds: None,
        clock=itertools.count(0, 2).__next__,
    )


class TestPlaidLinkFlow:
    """Tests for PlaidLinkFlow."""

    def test_start_returns_hosted_url(self, plaid_flow, plaid_client):
        """start() hands back the hosted URL and link token."""
        plaid_client.link_token_create.return_value = {
            "hosted_link_url": "https://hosted.plaid.com/link/abc",
            "link_token": "link-token-1",
        }

        start = plaid_flow.start("Chase")

        assert (start.link_url, start.completion_token) == ("https://hosted.plaid.com/link/abc", "link-token-1")

    def test_complete_success(self, db, secrets, plaid_flow, plaid_client):
        """A finished session creates a connection and runs the first sync."""
        outcome = plaid_flow.complete("link-token-1")

        connection = db.query(ProviderConnection).one()
        assert outcome.status == LinkStatus.COMPLETE
        assert outcome.connection_id == connection.id
        assert (connection.item_id, connection.institution_id, connection.institution_name) == (
            "item-9",
            "ins_9",
            "Chase",
        )
        assert secrets.get(connection.keychain_key) == "access-1"
        assert outcome.connections[0].accounts_synced == 2
        assert db.query(Account).filter_by(connection_id=connection.id).count() == 2

    def test_complete_waits_until_timeout(self, db, plaid_flow, plaid_client):
        """An unfinished session returns waiting and creates nothing."""
        plaid_client.link_token_get.return_value = {"link_sessions": [{"finished_at": None}]}

        outcome = plaid_flow.complete("link-token-1")

        assert outcome.status == LinkStatus.WAITING
        assert db.query(ProviderConnection).count() == 0
        plaid_client.item_public_token_exchange.assert_not_called()

    def test_user_exit_raises(self, plaid_flow, plaid_client):
        """A session finished without a public token is an aborted link."""
        plaid_client.link_token_get.return_value = _finished_session(
            exit_error={"display_message": "The bank is down"}
        )

        with pytest.raises(LinkAbortedError, match="The bank is down"):
            plaid_flow.complete("link-token-1")

    def test_duplicate_item(self, db, plaid_flow, plaid_client):
        """Re-linking the same Plaid item returns the existing connection."""
        existing = ProviderConnection(provider="plaid", item_id="item-9", keychain_key="plaid-old")
        db.add(existing)
        db.commit()

        outcome = plaid_flow.complete("link-token-1")

        assert (outcome.status, outcome.connection_id) == (LinkStatus.DUPLICATE, existing.id)
        assert db.query(ProviderConnection).count() == 1
        plaid_client.item_remove.assert_called_once()

    def test_accounts_failure_releases_item(self, db, plaid_flow, plaid_client):
        """A failure after the token exchange removes the new Plaid item."""
        plaid_client.accounts_get.side_effect = plaid.ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(ProviderAPIError):
            plaid_flow.complete("link-token-1")

        assert plaid_client.item_remove.call_args.args[0].access_token == "access-1"
        assert db.query(ProviderConnection).count() == 0

    def test_duplicate_institution_across_providers(self, db, plaid_flow, plaid_client, connection):
        """An institution already linked through another provider is not linked twice."""
        plaid_client.accounts_get.return_value = {"item": {"institution_id": "ins_1"}}

        outcome = plaid_flow.complete("link-token-1")

        assert (outcome.status, outcome.connection_id) == (LinkStatus.DUPLICATE, connection.id)
        assert db.query(ProviderConnection).count() == 1


class TestFinicityLinkFlow:
    """Tests for FinicityLinkFlow."""

    @pytest.fixture
    def finicity_client(self):
        client = MagicMock()
        client.search_institutions.return_value = [{"id": 101, "name": "Chase"}]
        return client

    @pytest.fixture
    def flow(self, db, registry, secrets, finicity_client):
        registry.register("finicity", lambda credential, meta: FakeProvider())
        return FinicityLinkFlow(db, registry, secrets, client=finicity_client, settings=_settings(), clock=lambda: 1.5)

    def test_start_creates_customer(self, flow, finicity_client):
        """Without a prior connection a new customer is created."""
        finicity_client.create_customer.return_value = {"id": 555}
        finicity_client.generate_connect_url.return_value = "https://connect.finicity.com/x"

        start = flow.start()

        finicity_client.create_customer.assert_called_once_with("tally-1500")
        assert (start.completion_token, start.link_url) == ("555", "https://connect.finicity.com/x")

    def test_start_reuses_customer(self, db, secrets, flow, finicity_client):
        """The stored customer id of an earlier connection is reused."""
        db.add(ProviderConnection(provider="finicity", item_id="login-1", keychain_key="finicity-old"))
        db.commit()
        secrets.set("finicity-old", "777")

        assert flow.start().completion_token == "777"
        finicity_client.create_customer.assert_not_called()

    def test_complete_without_accounts_waits(self, flow, finicity_client):
        """No accounts yet means the user has not finished."""
        finicity_client.get_customer_accounts.return_value = []

        assert flow.complete("555").status == LinkStatus.WAITING

    def test_complete_one_connection_per_login(self, db, flow, finicity_client):
        """Accounts are grouped into one connection per institution login."""
        finicity_client.get_customer_accounts.return_value = [
            {"id": "1", "institutionLoginId": 11, "institutionId": 101, "name": "Chase Checking"},
            {"id": "2", "institutionLoginId": 11, "institutionId": 101, "name": "Chase Savings"},
            {"id": "3", "institutionLoginId": 22, "institutionId": 202, "name": "Ally Savings"},
        ]

        outcome = flow.complete("555")

        assert outcome.status == LinkStatus.COMPLETE
        assert len(outcome.connections) == 2
        assert sorted(c.item_id for c in db.query(ProviderConnection).all()) == ["11", "22"]

    def test_complete_links_around_duplicate_login(self, db, flow, finicity_client):
        """A login for an already linked institution does not stop the others."""
        plaid_connection = ProviderConnection(
            provider="plaid", institution_id="202", institution_name="Ally", keychain_key="plaid-ally"
        )
        db.add(plaid_connection)
        db.commit()
        finicity_client.get_customer_accounts.return_value = [
            {"id": "1", "institutionLoginId": 11, "institutionId": 101, "name": "Chase Checking"},
            {"id": "2", "institutionLoginId": 22, "institutionId": 202, "name": "Ally Savings"},
            {"id": "3", "institutionLoginId": 33, "institutionId": 303, "name": "Citi Card"},
        ]

        outcome = flow.complete("555")

        logins = sorted(c.item_id for c in db.query(ProviderConnection).filter_by(provider="finicity").all())
        assert outcome.status == LinkStatus.COMPLETE
        assert len(outcome.connections) == 2
        assert outcome.duplicates == [plaid_connection.id]
        assert logins == ["11", "33"]

    def test_complete_all_duplicates(self, db, flow, finicity_client):
        """When every new login is already linked the outcome is duplicate."""
        existing = ProviderConnection(provider="plaid", institution_id="101", institution_name="Chase", keychain_key="p")
        db.add(existing)
        db.commit()
        finicity_client.get_customer_accounts.return_value = [
            {"id": "1", "institutionLoginId": 11, "institutionId": 101, "name": "Chase Checking"},
        ]

        outcome = flow.complete("555")

        assert (outcome.status, outcome.connection_id) == (LinkStatus.DUPLICATE, existing.id)
        assert db.query(ProviderConnection).count() == 1

    def test_complete_skips_known_logins(self, db, flow, finicity_client):
        """Logins that already have a connection are not linked again."""
        db.add(ProviderConnection(provider="finicity", item_id="11", institution_id="101", keychain_key="f-1"))
        db.commit()
        finicity_client.get_customer_accounts.return_value = [
            {"id": "1", "institutionLoginId": 11, "institutionId": 101, "name": "Chase Checking"},
        ]

        assert flow.complete("555").status == LinkStatus.WAITING
        assert db.query(ProviderConnection).count() == 1


class TestCoinbaseLink:
    """Tests for CoinbaseLink."""

    def test_auth_failure_stores_nothing(self, db, registry, secrets):
        """Rejected keys raise and leave no connection or secret behind."""
        client = Mock()
        client.get_accounts.side_effect = ProviderAuthError("401 Unauthorized")

        with pytest.raises(ProviderAuthError, match="Failed to authenticate with Coinbase"):
            CoinbaseLink(db, registry, secrets, client_factory=lambda key, secret: client).link("k", "s")

        assert db.query(ProviderConnection).count() == 0
        assert len(secrets) == 0

    def test_duplicate(self, db, registry, secrets):
        """Only one Coinbase connection may exist."""
        existing = ProviderConnection(provider="coinbase", institution_name="Coinbase", keychain_key="cb-1")
        db.add(existing)
        db.commit()

        outcome = CoinbaseLink(db, registry, secrets, client_factory=lambda key, secret: Mock()).link("k", "s")

        assert (outcome.status, outcome.connection_id) == (LinkStatus.DUPLICATE, existing.id)

    def test_link_stores_key_pair(self, db, registry, secrets):
        """A valid key is stored as JSON and synced."""
        registry.register("coinbase", lambda credential, meta: FakeProvider())

        outcome = CoinbaseLink(db, registry, secrets, client_factory=lambda key, secret: Mock()).link("k", "s")

        connection = db.get(ProviderConnection, outcome.connection_id)
        assert outcome.status == LinkStatus.COMPLETE
        assert secrets.get(connection.keychain_key) == '{"apiKey": "k", "apiSecret": "s"}'


class TestBankConnector:
    """Tests for BankConnector routing."""

    @pytest.fixture
    def flows(self):
        plaid_flow = Mock()
        plaid_flow.start.return_value = LinkStart(provider="plaid", link_url="https://plaid", completion_token="lt")
        finicity_flow = Mock()
        finicity_flow.start.return_value = LinkStart(provider="finicity", link_url="https://fin", completion_token="c")
        return plaid_flow, finicity_flow

    def _connector(self, db, registry, secrets, flows, searchers):
        plaid_flow, finicity_flow = flows
        return BankConnector(
            db,
            registry,
            secrets,
            plaid_flow=plaid_flow,
            finicity_flow=finicity_flow,
            searchers=searchers,
            settings=_settings(),
        )

    def test_prefers_plaid(self, db, registry, secrets, flows):
        """Plaid wins when both providers know the institution."""
        connector = self._connector(db, registry, secrets, flows, {
            "plaid": lambda q: InstitutionMatch("plaid", "ins_3", "Chase"),
            "finicity": lambda q: InstitutionMatch("finicity", "101", "JPMorgan Chase"),
        })

        start = connector.connect("chase")

        assert start.provider == "plaid"
        assert (start.plaid_match, start.finicity_match) == ("Chase", "JPMorgan Chase")
        flows[0].start.assert_called_once_with("Chase")

    def test_falls_back_to_finicity(self, db, registry, secrets, flows):
        """A failing Plaid search counts as no match."""
        def broken(query):
            raise RuntimeError("Plaid not configured")

        connector = self._connector(db, registry, secrets, flows, {
            "plaid": broken,
            "finicity": lambda q: InstitutionMatch("finicity", "101", "Local Credit Union"),
        })

        start = connector.connect("local cu")

        assert start.provider == "finicity"
        assert start.institution_name == "Local Credit Union"
        assert start.plaid_match is None

    def test_slow_provider_does_not_block(self, db, registry, secrets, flows):
        """A search still running at the timeout counts as no match."""
        release = threading.Event()

        def slow(query):
            release.wait(5)
            return InstitutionMatch("plaid", "ins_3", "Chase")

        connector = self._connector(db, registry, secrets, flows, {
            "plaid": slow,
            "finicity": lambda q: InstitutionMatch("finicity", "101", "JPMorgan Chase"),
        })
        connector.settings = Mock(search_timeout_seconds=0.2)

        started = time.monotonic()
        try:
            start = connector.connect("chase")
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 2
        assert start.provider == "finicity"
        assert start.plaid_match is None

    def test_no_match(self, db, registry, secrets, flows):
        """No provider knowing the institution is a NotFoundError."""
        connector = self._connector(db, registry, secrets, flows, {"plaid": lambda q: None, "finicity": lambda q: None})

        with pytest.raises(NotFoundError, match="Plaid or Finicity"):
            connector.connect("Nowhere Bank")

    def test_complete_routes_by_provider(self, db, registry, secrets, flows):
        """complete() dispatches to the flow that started the link."""
        connector = self._connector(db, registry, secrets, flows, {})

        connector.complete("plaid", "lt", "Chase")
        connector.complete("finicity", "c")

        flows[0].complete.assert_called_once_with("lt", "Chase")
        flows[1].complete.assert_called_once_with("c")
        with pytest.raises(ConfigurationError):
            connector.complete("mx", "token")
