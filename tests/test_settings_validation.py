from __future__ import annotations

import pytest

from settings import DEV_CRON_API_KEY, Settings, settings, validate_env_settings


def test_validate_env_allows_dev_missing(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "", raising=False)
    monkeypatch.setattr(settings, "CRON_API_KEY", DEV_CRON_API_KEY, raising=False)
    validate_env_settings()


def test_validate_env_staging_fails_on_missing(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "staging", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "", raising=False)
    monkeypatch.setattr(settings, "CRON_API_KEY", DEV_CRON_API_KEY, raising=False)
    monkeypatch.setattr(settings, "PROCESSOR_MODE", "stripe", raising=False)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_env_settings()

    message = str(exc.value)
    assert "DATABASE_URL" in message
    assert "CRON_API_KEY" in message
    assert "STRIPE_SECRET_KEY" in message


def test_validate_env_prod_requires_stripe_mode(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://example", raising=False)
    monkeypatch.setattr(settings, "CRON_API_KEY", "prod-key", raising=False)
    monkeypatch.setattr(settings, "PROCESSOR_MODE", "mock", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_env_settings()

    assert "PROCESSOR_MODE=stripe" in str(exc.value)


def test_validate_env_prod_ok(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://example", raising=False)
    monkeypatch.setattr(settings, "CRON_API_KEY", "prod-key", raising=False)
    monkeypatch.setattr(settings, "PROCESSOR_MODE", "stripe", raising=False)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_live_abc", raising=False)
    validate_env_settings()


def test_complaint_window_below_24h_rejected(monkeypatch):
    monkeypatch.setenv("COMPLAINT_WINDOW_HOURS", "12")
    with pytest.raises(ValueError):
        Settings()
