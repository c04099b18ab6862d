from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_opt(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name, "").strip()
    return value or None


# ----------------------------
# Config
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./uniflow.db"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    app_url: str = "http://localhost:8000"

    # 'mock' | 'stripe'
    payment_provider: str = "mock"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    mock_secret: Optional[str] = None
    mock_webhook_url: Optional[str] = None

    # 'redis' | 'sql'
    paysession_backend: str = "sql"
    redis_url: str = "redis://127.0.0.1:6379"

    brevo_api_key: Optional[str] = None
    brevo_list_id: int = 10
    email_sender_name: str = "Uniflow"
    email_sender_address: str = "noreply@uniflow.com"

    currency: str = "eur"
    timezone: str = "Europe/Paris"
    session_ttl_seconds: int = 30 * 60
    notify_grace_seconds: float = 3.0
    thank_you_delay_seconds: float = 0.2
    http_timeout_seconds: float = 5.0

    session_secret: str = "dev-secret-change-me"
    admin_username: str = "admin"
    admin_password: str = "supasecret"

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def webhook_url(self) -> str:
        return self.mock_webhook_url or f"{self.base_url}/api/webhook"

    @property
    def base_url(self) -> str:
        return self.app_url.rstrip("/")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            database_url=env.get("DATABASE_URL", cls.database_url),
            db_pool_size=int(env.get("DB_POOL_SIZE", cls.db_pool_size)),
            db_max_overflow=int(
                env.get("DB_MAX_OVERFLOW", cls.db_max_overflow)
            ),
            db_pool_timeout=int(
                env.get("DB_POOL_TIMEOUT", cls.db_pool_timeout)
            ),
            app_url=env.get("APP_URL", cls.app_url),
            payment_provider=env.get(
                "PAYMENT_PROVIDER", cls.payment_provider
            ).lower(),
            stripe_secret_key=_env_opt(env, "STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_env_opt(env, "STRIPE_WEBHOOK_SECRET"),
            mock_secret=_env_opt(env, "MOCK_SECRET"),
            mock_webhook_url=_env_opt(env, "MOCK_WEBHOOK_URL"),
            paysession_backend=env.get(
                "PAYSESSION_BACKEND", cls.paysession_backend
            ).lower(),
            redis_url=env.get("REDIS_URL", cls.redis_url),
            brevo_api_key=_env_opt(env, "BREVO_API_KEY"),
            brevo_list_id=int(env.get("BREVO_LIST_ID", cls.brevo_list_id)),
            email_sender_name=env.get(
                "EMAIL_SENDER_NAME", cls.email_sender_name
            ),
            email_sender_address=env.get(
                "EMAIL_SENDER_ADDRESS", cls.email_sender_address
            ),
            currency=env.get("CURRENCY", cls.currency).lower(),
            timezone=env.get("TIMEZONE", cls.timezone),
            session_ttl_seconds=int(
                env.get("SESSION_TTL_SECONDS", cls.session_ttl_seconds)
            ),
            http_timeout_seconds=float(
                env.get("HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds)
            ),
            notify_grace_seconds=float(
                env.get("NOTIFY_GRACE_SECONDS", cls.notify_grace_seconds)
            ),
            thank_you_delay_seconds=float(
                env.get("THANK_YOU_DELAY_SECONDS", cls.thank_you_delay_seconds)
            ),
            session_secret=env.get("SESSION_SECRET", cls.session_secret),
            admin_username=env.get("ADMIN_USERNAME", cls.admin_username),
            admin_password=env.get("ADMIN_PASSWORD", cls.admin_password),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
            log_json=_env_bool(env.get("LOG_JSON"), cls.log_json),
        )
