"""Tests for environment configuration and database URL handling."""

import pytest

from uniflow.config import Settings
from uniflow.infra.sql import normalize_async_url


def test_defaults() -> None:
    settings = Settings.from_env({})

    assert settings.payment_provider == "mock"
    assert settings.paysession_backend == "sql"
    assert settings.stripe_secret_key is None
    assert settings.brevo_api_key is None
    assert settings.webhook_url == "http://localhost:8000/api/webhook"


def test_from_env() -> None:
    settings = Settings.from_env({
        "APP_URL": "https://uniflow.test/",
        "PAYMENT_PROVIDER": "Stripe",
        "STRIPE_SECRET_KEY": " sk_test_123 ",
        "STRIPE_WEBHOOK_SECRET": "",
        "CURRENCY": "EUR",
        "SESSION_TTL_SECONDS": "900",
        "NOTIFY_GRACE_SECONDS": "1.5",
        "DB_POOL_SIZE": "4",
        "LOG_LEVEL": "debug",
        "LOG_JSON": "yes",
    })

    assert settings.base_url == "https://uniflow.test"
    assert settings.webhook_url == "https://uniflow.test/api/webhook"
    assert settings.payment_provider == "stripe"
    assert settings.stripe_secret_key == "sk_test_123"
    # blank secrets count as unset
    assert settings.stripe_webhook_secret is None
    assert settings.currency == "eur"
    assert settings.session_ttl_seconds == 900
    assert settings.notify_grace_seconds == 1.5
    assert settings.db_pool_size == 4
    assert settings.log_level == "DEBUG"
    assert settings.log_json is True


def test_explicit_mock_webhook_url() -> None:
    settings = Settings.from_env({"MOCK_WEBHOOK_URL": "http://worker:9000/hook"})

    assert settings.webhook_url == "http://worker:9000/hook"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite:///./uniflow.db", "sqlite+aiosqlite:///./uniflow.db"),
        ("postgresql://u:p@db/uniflow", "postgresql+asyncpg://u:p@db/uniflow"),
        ("postgres://u:p@db/uniflow", "postgresql+asyncpg://u:p@db/uniflow"),
        ("postgresql+asyncpg://u:p@db/uniflow", "postgresql+asyncpg://u:p@db/uniflow"),
    ],
)
def test_normalize_async_url(url: str, expected: str) -> None:
    assert normalize_async_url(url) == expected
