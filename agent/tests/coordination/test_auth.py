"""Tests for the cron shared-secret dependency."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from shared.auth import get_cron_auth_headers, require_cron_auth
from shared.config import Settings


def _app() -> FastAPI:
    app = FastAPI()

    @app.get("/api/cron/ping")
    async def ping(_=Depends(require_cron_auth)):
        return {"ok": True}

    return app


@pytest.fixture
def with_secret(monkeypatch):
    monkeypatch.setattr("shared.auth.get_settings", lambda: Settings(cron_secret="s3cret"))


@pytest.fixture
def without_secret(monkeypatch):
    monkeypatch.setattr("shared.auth.get_settings", lambda: Settings(cron_secret=""))


class TestWithSecret:
    def test_valid_bearer(self, with_secret):
        resp = TestClient(_app()).get("/api/cron/ping", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_wrong_secret(self, with_secret):
        resp = TestClient(_app()).get("/api/cron/ping", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert "invalid" in resp.json()["detail"]

    def test_missing_header(self, with_secret):
        resp = TestClient(_app()).get("/api/cron/ping")
        assert resp.status_code == 401

    def test_not_bearer_scheme(self, with_secret):
        resp = TestClient(_app()).get("/api/cron/ping", headers={"Authorization": "Basic s3cret"})
        assert resp.status_code == 401

    def test_auth_headers_helper(self, with_secret):
        assert get_cron_auth_headers() == {"Authorization": "Bearer s3cret"}


class TestWithoutSecret:
    def test_localhost_allowed(self, without_secret):
        client = TestClient(_app(), base_url="http://localhost:8000")
        assert client.get("/api/cron/ping").status_code == 200

    def test_remote_host_rejected(self, without_secret):
        client = TestClient(_app(), base_url="http://notifier.example.com")
        resp = client.get("/api/cron/ping")
        assert resp.status_code == 401
        assert "not configured" in resp.json()["detail"]

    def test_auth_headers_helper_empty(self, without_secret):
        assert get_cron_auth_headers() == {}
