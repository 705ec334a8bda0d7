"""
API endpoint tests for the ALM Engine.

This module contains tests for all REST API endpoints,
ensuring proper request handling, response formats, and error conditions.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from alm_engine.api.server import app
from alm_engine.models import LockState


@pytest.fixture
def api_engine(engine, store, make_record):
    """Engine over the in-memory store with a small population."""
    store.add_account(make_record("alice", expires_in_days=-1))
    store.add_account(make_record("bob", expires_in_days=3650))
    store.add_account(make_record("carol", expires_in_days=-5, lock_state=LockState.LOCKED))
    return engine


@pytest.fixture
def client(api_engine):
    """Test client for the FastAPI application."""
    with patch("alm_engine.api.server.engine", api_engine):
        with TestClient(app) as client:
            yield client


class TestHealthEndpoints:
    """Tests for health check and system status endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["message"] == "ALM Engine API"
        assert "version" in data
        assert data["status"] == "running"

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["pass_running"] is False
        assert set(data["components"]) == {"engine", "store", "report_sink"}

    def test_health_reports_running_pass(self, client, api_engine):
        with api_engine.pass_lock:
            data = client.get("/health").json()
        assert data["pass_running"] is True


class TestAccountEndpoints:
    """Tests for account inspection endpoints."""

    def test_list_accounts(self, client):
        response = client.get("/accounts")
        assert response.status_code == 200

        decisions = {a["username"]: a["decision"] for a in response.json()}
        assert decisions == {"alice": "LOCK", "bob": "NO_ACTION", "carol": "ALREADY_LOCKED"}

    def test_list_accounts_limit(self, client):
        response = client.get("/accounts", params={"limit": 1})
        assert [a["username"] for a in response.json()] == ["alice"]

    def test_list_accounts_store_unavailable(self, client, store):
        store.available = False
        response = client.get("/accounts")
        assert response.status_code == 503

    def test_get_account(self, client):
        response = client.get("/accounts/bob")
        assert response.status_code == 200

        data = response.json()
        assert data["username"] == "bob"
        assert data["lock_state"] == "ACTIVE"
        assert data["expires_at"] is not None
        assert data["decision"] == "NO_ACTION"
        assert data["defects"] == []

    def test_get_account_not_found(self, client):
        response = client.get("/accounts/ghost")
        assert response.status_code == 404

    def test_listing_does_not_lock(self, client, store):
        client.get("/accounts")
        assert store.get_account("alice").lock_state == LockState.ACTIVE


class TestPassEndpoints:
    """Tests for running passes and reading reports."""

    def test_trigger_pass(self, client, store):
        response = client.post("/passes", json={"now": "2026-03-01T12:00:00+00:00"})
        assert response.status_code == 200

        data = response.json()
        assert data["outcome"] == "COMPLETED"
        assert data["locked"] == 1
        assert data["already_locked"] == 1
        assert [e["username"] for e in data["audit_entries"]] == ["alice"]
        assert data["audit_entries"][0]["reason"] == "expired"
        assert store.get_account("alice").lock_state == LockState.LOCKED

    def test_trigger_pass_without_body(self, client):
        response = client.post("/passes")
        assert response.status_code == 200
        assert response.json()["locked"] == 1

    def test_trigger_pass_verbose_audit(self, client):
        response = client.post("/passes", json={"verbose_audit": True})
        reasons = sorted(e["reason"] for e in response.json()["audit_entries"])
        assert reasons == ["expired", "no-op-already-locked"]

    def test_trigger_pass_while_running_conflicts(self, client, api_engine):
        with api_engine.pass_lock:
            response = client.post("/passes")

        assert response.status_code == 409
        assert response.json()["message"] == "skipped: pass already running"
        assert response.json()["audit_entries"] == []

    def test_trigger_pass_store_unavailable(self, client, store):
        store.available = False
        response = client.post("/passes")

        assert response.status_code == 503
        assert response.json()["outcome"] == "ABORTED"

    def test_list_passes(self, client):
        first = client.post("/passes").json()
        second = client.post("/passes").json()

        response = client.get("/passes")
        assert response.status_code == 200
        assert [r["pass_id"] for r in response.json()] == [second["pass_id"], first["pass_id"]]

        limited = client.get("/passes", params={"limit": 1}).json()
        assert len(limited) == 1

    def test_skipped_pass_not_in_history(self, client, api_engine):
        with api_engine.pass_lock:
            client.post("/passes")
        assert client.get("/passes").json() == []


class TestNoEngine:

    def test_endpoints_return_503_without_engine(self):
        with patch("alm_engine.api.server.engine", None):
            client = TestClient(app)
            assert client.get("/accounts").status_code == 503
            assert client.post("/passes").status_code == 503
            assert client.get("/health").json()["status"] == "degraded"
