from __future__ import annotations

import os

from flask import current_app


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "central_aprovacao.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-central-aprovacao")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    AUTH_IDENTITY_HEADER = (os.environ.get("AUTH_IDENTITY_HEADER") or "").strip() or None
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    ERP_TENANTS = os.environ.get("ERP_TENANTS")
    ERP_DEFAULT_TENANT = os.environ.get("ERP_DEFAULT_TENANT", "BR")
    ERP_TIMEOUT_SECONDS = _int_env("ERP_TIMEOUT_SECONDS", 30)
    ERP_QUERY_PATH = os.environ.get("ERP_QUERY_PATH", "/DocAprov/documentos")
    ERP_ACTION_PATH = os.environ.get("ERP_ACTION_PATH", "/aprova_documento")
    ERP_COMPANY_CODE = os.environ.get("ERP_COMPANY_CODE", "01")
    ERP_VERIFY_SSL = _bool_env("ERP_VERIFY_SSL", True)
    ERP_NETWORK_RETRY_ATTEMPTS = _int_env("ERP_NETWORK_RETRY_ATTEMPTS", 0)
    ERP_RETRY_BACKOFF_MS = _int_env("ERP_RETRY_BACKOFF_MS", 300)
    IDEMPOTENCY_TTL_SECONDS = _int_env("IDEMPOTENCY_TTL_SECONDS", 600)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and self.SECRET_KEY == "dev-secret-central-aprovacao":
            raise RuntimeError("SECRET_KEY insegura para producao.")


def get_config(key: str, default: object | None = None) -> object | None:
    try:
        if key in current_app.config:
            value = current_app.config.get(key)
            if value is not None:
                return value
        return os.environ.get(key, default)
    except RuntimeError:
        return os.environ.get(key, default)


def int_config(key: str, default: int) -> int:
    value = get_config(key, default)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def bool_config(key: str, default: bool) -> bool:
    value = get_config(key, default)
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
