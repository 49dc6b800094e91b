# storefront/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List


def _truthy(name: str) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    return v in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _csv_env(name: str) -> List[str]:
    raw = (os.getenv(name) or "").strip()
    return [p.strip() for p in raw.split(",") if p.strip()]


def database_url() -> str:
    raw = (os.getenv("DATABASE_URL") or "").strip()
    if raw:
        return raw

    engine = (os.getenv("DB_ENGINE") or "").strip().lower()
    if engine in {"postgres", "postgresql"}:
        user = (os.getenv("APP_POSTGRES_USER") or "app_user").strip()
        pw = (os.getenv("APP_POSTGRES_PASSWORD") or "app_pass").strip()
        host = (os.getenv("APP_POSTGRES_HOST") or "localhost").strip()
        port = (os.getenv("APP_POSTGRES_PORT") or "5432").strip()
        db = (os.getenv("APP_POSTGRES_DB") or "storefront").strip()
        return f"postgresql+psycopg://{user}:{pw}@{host}:{port}/{db}"

    Path("data").mkdir(parents=True, exist_ok=True)
    return "sqlite:///./data/storefront.db"


@dataclass(frozen=True)
class Settings:
    env: str = "local"
    database_url: str = "sqlite:///./data/storefront.db"
    create_schema: bool = True

    admin_user_ids: FrozenSet[str] = field(default_factory=frozenset)
    bypass_auth: bool = False
    auth_jwt_secret: str = ""
    auth_jwt_audience: str = ""
    auth_jwt_issuer: str = ""
    auth_jwt_alg: str = "HS256"

    cron_secret: str = ""

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    public_url: str = "http://localhost:3000"
    currency: str = "gbp"
    checkout_reservation_minutes: int = 30

    order_token_secret: str = ""
    order_token_ttl_days: int = 30
    order_number_prefix: str = "SF"

    resend_api_key: str = ""
    email_from: str = "orders@example.com"
    notify_workers: int = 2

    cors_origins: tuple[str, ...] = ()
    sweep_interval_sec: int = 300
    low_stock_threshold: int = 2
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.env in {"production", "prod"}

    @property
    def is_local(self) -> bool:
        return self.env in {"local", "test", "dev", "development"}


def _require_secret(env: str, name: str, value: str) -> None:
    if env in {"local", "test", "dev", "development"}:
        return
    if os.getenv("STOREFRONT_TESTING") == "1":
        return
    if not value:
        raise RuntimeError(f"{name} must be set when ENV={env}. Set it as an environment variable before starting the API.")


def load_settings() -> Settings:
    env = (os.getenv("ENV") or "local").strip().lower()

    order_token_secret = (os.getenv("ORDER_TOKEN_SECRET") or "").strip()
    _require_secret(env, "ORDER_TOKEN_SECRET", order_token_secret)
    if not order_token_secret:
        order_token_secret = "local-order-token-secret"

    return Settings(
        env=env,
        database_url=database_url(),
        create_schema=(os.getenv("STOREFRONT_CREATE_SCHEMA", "1") == "1"),
        admin_user_ids=frozenset(_csv_env("ADMIN_USER_IDS")),
        bypass_auth=_truthy("BYPASS_AUTH"),
        auth_jwt_secret=(os.getenv("AUTH_JWT_SECRET") or "").strip(),
        auth_jwt_audience=(os.getenv("AUTH_JWT_AUDIENCE") or "").strip(),
        auth_jwt_issuer=(os.getenv("AUTH_JWT_ISSUER") or "").strip(),
        auth_jwt_alg=(os.getenv("AUTH_JWT_ALG") or "HS256").strip(),
        cron_secret=(os.getenv("CRON_SECRET") or "").strip(),
        stripe_secret_key=(os.getenv("STRIPE_SECRET_KEY") or "").strip(),
        stripe_webhook_secret=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
        public_url=(os.getenv("PUBLIC_URL") or "http://localhost:3000").strip().rstrip("/"),
        currency=(os.getenv("CURRENCY") or "gbp").strip().lower(),
        checkout_reservation_minutes=max(1, _int_env("CHECKOUT_RESERVATION_MINUTES", 30)),
        order_token_secret=order_token_secret,
        order_token_ttl_days=max(1, _int_env("ORDER_TOKEN_TTL_DAYS", 30)),
        order_number_prefix=(os.getenv("ORDER_NUMBER_PREFIX") or "SF").strip().upper(),
        resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip(),
        email_from=(os.getenv("EMAIL_FROM") or "orders@example.com").strip(),
        notify_workers=max(0, _int_env("NOTIFY_WORKERS", 2)),
        cors_origins=tuple(_csv_env("CORS_ORIGINS")),
        sweep_interval_sec=max(1, _int_env("SWEEP_INTERVAL_SEC", 300)),
        low_stock_threshold=max(0, _int_env("LOW_STOCK_THRESHOLD", 2)),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
