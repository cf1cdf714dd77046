from __future__ import annotations

import pytest

from settings import settings, validate_env_settings


def _complete(monkeypatch, env: str) -> None:
    monkeypatch.setattr(settings, "ENV", env, raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://example", raising=False)
    monkeypatch.setattr(settings, "JWT_SECRET", "a" * 32, raising=False)
    monkeypatch.setattr(settings, "PROVIDER_SIMULATE", False, raising=False)


def test_validate_env_allows_dev_missing(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "", raising=False)
    monkeypatch.setattr(settings, "JWT_SECRET", "dev-secret-change-me", raising=False)
    monkeypatch.setattr(settings, "MPESA_WEBHOOK_SECRET", "", raising=False)
    validate_env_settings()


def test_validate_env_staging_fails_on_missing(monkeypatch):
    _complete(monkeypatch, "staging")
    monkeypatch.setattr(settings, "JWT_SECRET", "dev-secret-change-me", raising=False)
    monkeypatch.setattr(settings, "MPESA_WEBHOOK_SECRET", "", raising=False)
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "  ", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_env_settings()

    message = str(exc.value)
    assert "JWT_SECRET" in message
    assert "MPESA_WEBHOOK_SECRET" in message
    assert "PAYPAL_WEBHOOK_ID" in message
    assert "STRIPE_WEBHOOK_SECRET" not in message


def test_validate_env_staging_tolerates_unsigned_and_simulation(monkeypatch):
    _complete(monkeypatch, "staging")
    monkeypatch.setattr(settings, "WEBHOOKS_ALLOW_UNSIGNED", True, raising=False)
    monkeypatch.setattr(settings, "PROVIDER_SIMULATE", True, raising=False)
    validate_env_settings()


def test_validate_env_prod_fails_on_missing(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "", raising=False)
    monkeypatch.setattr(settings, "JWT_SECRET", "dev-secret-change-me", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_env_settings()

    message = str(exc.value)
    assert "DATABASE_URL" in message
    assert "JWT_SECRET" in message


def test_validate_env_prod_rejects_unsigned_webhooks_and_simulation(monkeypatch):
    _complete(monkeypatch, "prod")
    monkeypatch.setattr(settings, "WEBHOOKS_ALLOW_UNSIGNED", True, raising=False)
    monkeypatch.setattr(settings, "PROVIDER_SIMULATE", True, raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_env_settings()

    message = str(exc.value)
    assert "WEBHOOKS_ALLOW_UNSIGNED" in message
    assert "PROVIDER_SIMULATE" in message


def test_validate_env_prod_passes_when_complete(monkeypatch):
    _complete(monkeypatch, "prod")
    validate_env_settings()
