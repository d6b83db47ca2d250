"""Tests for the provider registry and upstream providers."""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, Mock

import plaid
import pytest

from tally.core.errors import ConfigurationError, ProviderAPIError, ProviderAuthError
from tally.core.providers import ProviderRegistry, build_default_registry
from tally.core.providers.coinbase_client import CoinbaseClient
from tally.core.providers.coinbase_provider import CRYPTO_ACCOUNT_EXTERNAL_ID, CoinbaseDataProvider
from tally.core.providers.finicity_client import FinicityClient
from tally.core.providers.finicity_provider import FinicityDataProvider
from tally.core.providers.models import ConnectionMeta, CursorToken, TimestampCursor
from tally.core.providers.plaid_provider import PlaidDataProvider, map_account_type, translate_plaid_error


def _response(status=200, body=None, text=None):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = body if body is not None else {}
    response.text = text if text is not None else (json.dumps(body) if body is not None else "")
    response.reason = "Error"
    return response


def _plaid_error(status, body):
    error = plaid.ApiException(status=status, reason="Bad Request")
    error.body = json.dumps(body)
    return error


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_create_passes_credential_and_meta(self):
        """Factories should receive the credential and stored identifiers."""
        registry = ProviderRegistry()
        factory = Mock(return_value="provider")
        registry.register("plaid", factory)
        meta = ConnectionMeta(item_id="item-1")

        assert registry.create("plaid", "token", meta) == "provider"
        factory.assert_called_once_with("token", meta)

    def test_unknown_name_lists_available(self):
        """Unknown providers should name the registered ones."""
        registry = ProviderRegistry()
        registry.register("plaid", Mock())
        registry.register("coinbase", Mock())

        with pytest.raises(ConfigurationError) as exc_info:
            registry.create("mx", "x")

        assert "Available: plaid, coinbase" in str(exc_info.value)

    def test_empty_registry_message(self):
        """An empty registry should say nothing is registered."""
        with pytest.raises(ConfigurationError) as exc_info:
            ProviderRegistry().create("plaid", "x")

        assert "No providers are registered yet" in str(exc_info.value)

    def test_default_coinbase_uses_configured_timeout(self):
        """The Coinbase client should use the configured HTTP timeout."""
        registry = build_default_registry(Mock(http_timeout_seconds=7))

        provider = registry.create("coinbase", json.dumps({"apiKey": "k", "apiSecret": "s"}))

        assert provider.client.timeout == 7

    def test_register_replaces(self):
        """Registering the same name twice should keep the latest factory."""
        registry = ProviderRegistry()
        registry.register("plaid", Mock(return_value="old"))
        registry.register("plaid", Mock(return_value="new"))

        assert registry.registered_providers == ["plaid"]
        assert registry.create("plaid", "x") == "new"


class TestPlaidDataProvider:
    """Tests for PlaidDataProvider with a mocked Plaid client."""

    def _provider(self, client):
        return PlaidDataProvider("access-token", ConnectionMeta(institution_name="Chase"), client=client)

    def test_drains_sync_pages_and_flips_sign(self):
        """All pages should be merged, keeping only the last cursor."""
        client = MagicMock()
        client.transactions_sync.side_effect = [
            {
                "added": [{
                    "transaction_id": "t1", "account_id": "a1", "date": "2026-02-03", "amount": 45.0,
                    "name": "COFFEE", "merchant_name": "Cafe", "payment_channel": "in store",
                    "personal_finance_category": {"primary": "FOOD_AND_DRINK", "detailed": "FOOD_AND_DRINK_COFFEE"},
                }],
                "modified": [], "removed": [], "next_cursor": "c1", "has_more": True,
            },
            {
                "added": [{"transaction_id": "t2", "account_id": "a1", "date": date(2026, 2, 4), "amount": -3000.0}],
                "modified": [], "removed": [{"transaction_id": "t0"}], "next_cursor": "c2", "has_more": False,
            },
        ]

        page = self._provider(client).get_transactions()

        assert [t.amount for t in page.added] == [-45.0, 3000.0]
        assert page.added[0].category == "FOOD_AND_DRINK"
        assert page.added[0].subcategory == "FOOD_AND_DRINK_COFFEE"
        assert page.added[0].type == "in store"
        assert page.removed == ["t0"]
        assert page.next_cursor == CursorToken("c2")
        assert client.transactions_sync.call_count == 2

    def test_first_sync_omits_cursor(self):
        """The first request should not send a cursor field."""
        client = MagicMock()
        client.transactions_sync.return_value = {"added": [], "modified": [], "removed": [],
                                                 "next_cursor": "c1", "has_more": False}

        self._provider(client).get_transactions(None)

        request = client.transactions_sync.call_args[0][0]
        assert "cursor" not in request.to_dict()

    def test_account_type_mapping(self):
        """Plaid type/subtype pairs should collapse onto ledger types."""
        assert map_account_type("depository", "checking") == "checking"
        assert map_account_type("depository", "savings") == "savings"
        assert map_account_type("credit", "credit card") == "credit"
        assert map_account_type("brokerage", None) == "investment"
        assert map_account_type("loan", "mortgage") == "loan"
        assert map_account_type("other", None) == "other"

    def test_get_accounts_uses_institution_name(self):
        """Accounts should carry the connection's institution name."""
        client = MagicMock()
        client.accounts_get.return_value = {"accounts": [{
            "account_id": "a1", "name": "Plaid Checking", "type": "depository", "subtype": "checking",
            "balances": {"current": 110.0, "iso_currency_code": "USD"},
        }]}

        accounts = self._provider(client).get_accounts()

        assert accounts[0].institution == "Chase"
        assert accounts[0].balance == 110.0
        assert accounts[0].type == "checking"

    def test_holdings_unavailable_returns_empty(self):
        """Items without the investments product should report no holdings."""
        client = MagicMock()
        client.investments_holdings_get.side_effect = _plaid_error(400, {"error_code": "NO_INVESTMENT_ACCOUNTS"})

        assert self._provider(client).get_holdings() == []

    def test_holdings_joined_with_securities(self):
        """Holdings should take ticker and type from the securities list."""
        client = MagicMock()
        client.investments_holdings_get.return_value = {
            "holdings": [{"account_id": "inv", "security_id": "s1", "quantity": 10,
                          "institution_price": 200.0, "institution_value": 2000.0}],
            "securities": [{"security_id": "s1", "ticker_symbol": "AAPL", "name": "Apple", "type": "equity"}],
        }

        holdings = self._provider(client).get_holdings()

        assert holdings[0].symbol == "AAPL"
        assert holdings[0].asset_type == "stock"
        assert holdings[0].price == 200.0

    def test_translate_auth_error(self):
        """Login-required errors should become ProviderAuthError."""
        error = translate_plaid_error(_plaid_error(400, {
            "error_code": "ITEM_LOGIN_REQUIRED", "display_message": "Please log in again",
        }))

        assert isinstance(error, ProviderAuthError)
        assert "Please log in again" in str(error)

    def test_translate_api_error_keeps_code(self):
        """Other errors should keep Plaid's code and status."""
        error = translate_plaid_error(_plaid_error(500, {
            "error_code": "INTERNAL_SERVER_ERROR", "error_message": "oops",
        }))

        assert isinstance(error, ProviderAPIError)
        assert error.code == "INTERNAL_SERVER_ERROR"
        assert error.status_code == 500


class TestFinicityClient:
    """Tests for FinicityClient with a mocked requests session."""

    def _client(self, session, clock=None):
        return FinicityClient("pid", "psecret", "appkey", session=session, clock=clock or (lambda: 0.0))

    def test_token_cached(self):
        """The partner token should be reused until it expires."""
        session = MagicMock()
        session.post.return_value = _response(body={"token": "tok"})
        session.request.return_value = _response(body={"accounts": []})
        client = self._client(session)

        client.get_customer_accounts("c1")
        client.get_customer_accounts("c1")

        assert session.post.call_count == 1
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Finicity-App-Token"] == "tok"
        assert headers["Finicity-App-Key"] == "appkey"

    def test_token_refreshed_after_expiry(self):
        """An expired token should trigger a new authentication."""
        now = [0.0]
        session = MagicMock()
        session.post.return_value = _response(body={"token": "tok"})
        session.request.return_value = _response(body={"accounts": []})
        client = self._client(session, clock=lambda: now[0])

        client.get_customer_accounts("c1")
        now[0] = 91 * 60
        client.get_customer_accounts("c1")

        assert session.post.call_count == 2

    def test_auth_failure(self):
        """Failed authentication should raise ProviderAuthError."""
        session = MagicMock()
        session.post.return_value = _response(status=401, text="bad partner")

        with pytest.raises(ProviderAuthError):
            self._client(session).authenticate()

    def test_transactions_paginate(self):
        """Pagination should continue while moreAvailable is 'true'."""
        session = MagicMock()
        session.post.return_value = _response(body={"token": "tok"})
        session.request.side_effect = [
            _response(body={"transactions": [{"id": 1}], "moreAvailable": "true"}),
            _response(body={"transactions": [{"id": 2}], "moreAvailable": "false"}),
        ]

        transactions = self._client(session).get_customer_transactions("c1", 100, 200)

        assert [t["id"] for t in transactions] == [1, 2]
        starts = [c.kwargs["params"]["start"] for c in session.request.call_args_list]
        assert starts == [1, 1001]

    def test_api_error_message(self):
        """Error responses should surface Finicity's message."""
        session = MagicMock()
        session.post.return_value = _response(body={"token": "tok"})
        session.request.return_value = _response(status=404, body={"message": "Customer not found"})

        with pytest.raises(ProviderAPIError) as exc_info:
            self._client(session).get_customer_accounts("c1")

        assert str(exc_info.value) == "Customer not found"
        assert exc_info.value.status_code == 404


class TestFinicityDataProvider:
    """Tests for FinicityDataProvider."""

    NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)

    def _provider(self, client):
        settings = Mock(sync_lookback_days=180)
        return FinicityDataProvider(
            "cust-1",
            ConnectionMeta(item_id="login-1", institution_name="Chase"),
            client=client,
            settings=settings,
            now=lambda: self.NOW,
        )

    def _client(self, transactions):
        client = Mock()
        client.get_customer_accounts.return_value = [
            {"id": 10, "name": "Checking", "type": "checking", "balance": 500.0, "institutionLoginId": "login-1"},
            {"id": 20, "name": "Other bank", "type": "savings", "balance": 9.0, "institutionLoginId": "login-2"},
        ]
        client.get_customer_transactions.return_value = transactions
        return client

    def test_accounts_filtered_to_login(self):
        """Only accounts of the connection's institution login are reported."""
        accounts = self._provider(self._client([])).get_accounts()

        assert [a.external_id for a in accounts] == ["10"]
        assert accounts[0].institution == "Chase"

    def test_first_sync_uses_lookback_window(self):
        """Without a cursor the range should start lookback_days ago."""
        client = self._client([])
        page = self._provider(client).get_transactions(None)

        from_epoch = client.get_customer_transactions.call_args[0][1]
        assert from_epoch == int(self.NOW.timestamp()) - 180 * 86400
        assert page.next_cursor.at.timestamp() == from_epoch

    def test_transactions_signed_and_cursor_advanced(self):
        """Amounts flip sign and the cursor becomes the latest transaction time."""
        client = self._client([
            {"id": 1, "accountId": 10, "amount": 45.0, "transactionDate": 1769990400, "description": "Coffee",
             "memo": "note", "categorization": {"category": "Dining", "normalizedPayeeName": "Cafe"}},
            {"id": 2, "accountId": 10, "amount": -3000.0, "postedDate": 1770076800},
            {"id": 3, "accountId": 20, "amount": 1.0, "transactionDate": 1770163200},
        ])
        cursor = TimestampCursor(datetime(2026, 2, 1, tzinfo=timezone.utc))

        page = self._provider(client).get_transactions(cursor)

        assert [t.amount for t in page.added] == [-45.0, 3000.0]
        assert page.added[0].notes == "note"
        assert page.added[0].category == "Dining"
        assert page.next_cursor.at.timestamp() == 1770076800
        assert client.get_customer_transactions.call_args[0][1] == int(cursor.at.timestamp())

    def test_empty_range_keeps_cursor(self):
        """With nothing new the cursor should stay where it was."""
        cursor = TimestampCursor(datetime(2026, 2, 1, tzinfo=timezone.utc))

        page = self._provider(self._client([])).get_transactions(cursor)

        assert page.next_cursor == cursor

    def test_disconnect_deletes_login(self):
        """Disconnect should remove the institution login upstream."""
        client = self._client([])
        self._provider(client).disconnect()

        client.delete_institution_login.assert_called_once_with("cust-1", "login-1")


class TestCoinbaseClient:
    """Tests for CoinbaseClient."""

    def test_signature_is_hex_hmac(self):
        """Signatures should be deterministic lowercase hex SHA-256."""
        client = CoinbaseClient("key", "secret", session=MagicMock())

        signature = client.sign("1700000000", "get", "/v2/accounts")

        assert signature == client.sign("1700000000", "GET", "/v2/accounts")
        assert len(signature) == 64
        assert signature == signature.lower()

    def test_paginates_next_uri(self):
        """Wallet listing should follow pagination.next_uri."""
        session = MagicMock()
        session.request.side_effect = [
            _response(body={"data": [{"id": "w1"}], "pagination": {"next_uri": "/v2/accounts?starting_after=w1"}}),
            _response(body={"data": [{"id": "w2"}], "pagination": {"next_uri": None}}),
        ]

        wallets = CoinbaseClient("key", "secret", session=session).get_accounts()

        assert [w["id"] for w in wallets] == ["w1", "w2"]
        assert session.request.call_args_list[1][0][1].endswith("/v2/accounts?starting_after=w1")

    def test_unauthorized_raises_auth_error(self):
        """401 responses should raise ProviderAuthError with Coinbase's message."""
        session = MagicMock()
        session.request.return_value = _response(status=401, body={"errors": [{"message": "invalid api key"}]})

        with pytest.raises(ProviderAuthError) as exc_info:
            CoinbaseClient("key", "secret", session=session).get_accounts()

        assert "invalid api key" in str(exc_info.value)


class TestCoinbaseDataProvider:
    """Tests for CoinbaseDataProvider."""

    WALLETS = [
        {"id": "btc", "currency": {"code": "BTC", "name": "Bitcoin", "type": "crypto"},
         "balance": {"amount": "0.5"}, "native_balance": {"amount": "30000.00"}},
        {"id": "eth", "currency": {"code": "ETH", "name": "Ethereum", "type": "crypto"},
         "balance": {"amount": "0"}, "native_balance": {"amount": "0"}},
        {"id": "usd", "currency": {"code": "USD", "name": "US Dollar", "type": "fiat"},
         "balance": {"amount": "150.25"}, "native_balance": {"amount": "150.25"}},
    ]

    def _provider(self, transactions=None):
        client = Mock()
        client.get_accounts.return_value = self.WALLETS
        client.get_transactions.side_effect = lambda wallet_id: (transactions or {}).get(wallet_id, [])
        return CoinbaseDataProvider(client)

    def test_accounts_aggregate_crypto(self):
        """Crypto wallets collapse into one account; funded fiat becomes checking."""
        accounts = self._provider().get_accounts()

        assert [(a.external_id, a.type, a.balance) for a in accounts] == [
            (CRYPTO_ACCOUNT_EXTERNAL_ID, "crypto", 30000.0),
            ("usd", "checking", 150.25),
        ]

    def test_holdings_skip_empty_wallets(self):
        """Holdings should cover only non-empty crypto wallets."""
        holdings = self._provider().get_holdings()

        assert len(holdings) == 1
        assert holdings[0].symbol == "BTC"
        assert holdings[0].price == 60000.0
        assert holdings[0].value == 30000.0

    def test_transactions_after_cursor_only(self):
        """Only completed transactions newer than the cursor are reported."""
        provider = self._provider({
            "btc": [
                {"id": "old", "status": "completed", "created_at": "2026-01-01T00:00:00Z",
                 "native_amount": {"amount": "-10", "currency": "USD"}},
                {"id": "new", "status": "completed", "created_at": "2026-02-02T10:00:00Z",
                 "native_amount": {"amount": "-20", "currency": "USD"}, "details": {"title": "Sent Bitcoin"}},
                {"id": "pending", "status": "pending", "created_at": "2026-02-03T10:00:00Z",
                 "native_amount": {"amount": "-5", "currency": "USD"}},
            ],
        })
        cursor = TimestampCursor(datetime(2026, 1, 1, tzinfo=timezone.utc))

        page = provider.get_transactions(cursor)

        assert [t.external_id for t in page.added] == ["new"]
        assert page.added[0].account_external_id == CRYPTO_ACCOUNT_EXTERNAL_ID
        assert page.added[0].description == "Sent Bitcoin"
        assert page.next_cursor.at == datetime(2026, 2, 2, 10, tzinfo=timezone.utc)

    def test_failing_wallet_skipped(self):
        """A wallet whose listing fails should not abort the fetch."""
        client = Mock()
        client.get_accounts.return_value = self.WALLETS[:1]
        client.get_transactions.side_effect = ProviderAuthError("missing permission")

        page = CoinbaseDataProvider(client).get_transactions(None)

        assert page.added == []
        assert page.next_cursor is None

    def test_malformed_credential(self):
        """A stored credential that is not the expected JSON should be reported."""
        with pytest.raises(ConfigurationError):
            CoinbaseDataProvider.from_credential("not json")
