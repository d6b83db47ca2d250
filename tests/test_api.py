"""Tests for the REST API."""

from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from tally.api.app import app
from tally.api.deps import get_db, get_registry, get_secret_store
from tally.db.models import Account, ProviderConnection


@pytest.fixture
def client(db, registry, secrets):
    def override_db():
        yield db
        db.commit()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_secret_store] = lambda: secrets
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        """Health check reports ok."""
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAccountRoutes:
    """Tests for /api/accounts."""

    def test_add_and_list(self, client):
        """A created account shows up in the listing."""
        created = client.post("/api/accounts/", json={"name": "Savings", "type": "savings", "balance": 250.0})

        listed = client.get("/api/accounts/")

        assert created.status_code == 201
        assert created.json()["source"] == "manual"
        assert [a["name"] for a in listed.json()] == ["Savings"]

    def test_invalid_type(self, client):
        """Unknown account types are rejected with 400."""
        response = client.post("/api/accounts/", json={"name": "Mattress", "type": "cash-pile"})

        assert response.status_code == 400
        assert "Invalid account type" in response.json()["detail"]

    def test_delete_manual(self, client, db, checking):
        """Deleting a manual account removes just that account."""
        response = client.delete(f"/api/accounts/{checking.id}")

        assert response.status_code == 200
        assert response.json()["deleted_accounts"] == 1
        assert response.json()["connection_removed"] is False
        assert db.get(Account, checking.id) is None

    def test_delete_missing(self, client):
        """Unknown ids return 404."""
        assert client.delete("/api/accounts/does-not-exist").status_code == 404


class TestConnectionRoutes:
    """Tests for /api/connections."""

    def test_list_hides_credentials(self, client, connection):
        """Connections are listed without their secret key."""
        body = client.get("/api/connections/").json()

        assert [c["institution_name"] for c in body] == ["Test Bank"]
        assert "keychain_key" not in body[0]

    def test_sync_connection(self, client, connection):
        """A sync reports counts from the provider."""
        response = client.post(f"/api/connections/{connection.id}/sync")

        assert response.status_code == 200
        assert response.json()["accounts_synced"] == 2
        assert response.json()["success"] is True

    def test_sync_missing_credential(self, client, connection, secrets):
        """A connection whose secret is gone is a conflict."""
        secrets.delete("fake-key-1")

        response = client.post(f"/api/connections/{connection.id}/sync")

        assert response.status_code == 409

    def test_remove_connection(self, client, db, connection, fake_provider):
        """Removing a connection disconnects upstream and deletes its accounts."""
        client.post(f"/api/connections/{connection.id}/sync")

        response = client.delete(f"/api/connections/{connection.id}")

        assert response.status_code == 200
        assert response.json()["deleted_accounts"] == 2
        assert fake_provider.disconnected is True
        assert db.query(ProviderConnection).count() == 0

    def test_remove_missing(self, client):
        """Unknown connection ids return 404."""
        assert client.delete("/api/connections/nope").status_code == 404


class TestApiKey:
    """Tests for the optional API key check."""

    def test_key_required_when_configured(self, client):
        """With an API key configured, requests must send it."""
        with patch("tally.api.deps.settings", Mock(api_key="s3cret")):
            assert client.get("/api/accounts/").status_code == 401
            assert client.get("/api/accounts/", headers={"X-API-Key": "s3cret"}).status_code == 200

    def test_health_is_open(self, client):
        """Health checks never need a key."""
        with patch("tally.api.deps.settings", Mock(api_key="s3cret")):
            assert client.get("/api/health").status_code == 200
