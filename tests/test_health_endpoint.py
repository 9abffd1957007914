from __future__ import annotations

from fastapi.testclient import TestClient

from fundrelease.providers.mock import MockProcessor
from main import create_app
from routes import health
from settings import settings


def test_health_reports_processor_mode(monkeypatch):
    monkeypatch.setattr(settings, "PROCESSOR_MODE", "mock", raising=False)
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.get("/health")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body.get("ok") is True
    assert body.get("processor_mode") == "mock"


def test_healthz_reports_db_error(monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (False, "OperationalError: refused"))
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.get("/healthz")
    assert r.status_code == 200, r.text
    assert r.json()["db_ok"] is False
    assert r.json()["db_error"] == "OperationalError: refused"


def test_readyz_not_ready_on_old_migration(monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (True, None))
    monkeypatch.setattr(health, "_applied_revision", lambda: "0001_payment_records")
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.get("/readyz")
    assert r.status_code == 503, r.text
    assert r.json()["ready"] is False
    assert r.json()["expected_revision"] == "0002_payment_transitions"


def test_readyz_ready_at_head(monkeypatch):
    monkeypatch.setattr(health, "_check_db", lambda: (True, None))
    monkeypatch.setattr(health, "_applied_revision", lambda: health.MIGRATION_REVISION)
    monkeypatch.setattr(health, "get_processor", lambda: MockProcessor())
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.get("/readyz")
    assert r.status_code == 200, r.text
    assert r.json()["ready"] is True


def test_readyz_not_ready_without_processor_credentials(monkeypatch):
    class _Unconfigured(MockProcessor):
        def config_error(self):
            return "STRIPE_SECRET_KEY_NOT_SET"

    monkeypatch.setattr(health, "_check_db", lambda: (True, None))
    monkeypatch.setattr(health, "_applied_revision", lambda: health.MIGRATION_REVISION)
    monkeypatch.setattr(health, "get_processor", lambda: _Unconfigured())
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.get("/readyz")
    assert r.status_code == 503, r.text
    assert r.json()["processor_ok"] is False
