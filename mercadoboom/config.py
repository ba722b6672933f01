"""MercadoBoom settings, read once from the environment (and ``.env`` when present)."""
from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Real environment variables win over the file
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on", "si", "sí"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError as exc:
        raise ValueError(f"{name} debe ser un entero, se recibió {raw!r}") from exc


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, "").strip() or default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} debe ser numérico, se recibió {raw!r}") from exc


def _determine_database_url() -> str:
    """
    Connection string, first match wins:

    1. ``DATABASE_URL`` (a bare ``postgres://`` scheme is upgraded for SQLAlchemy)
    2. ``PGUSER``/``PGPASSWORD``/``PGHOST``/``PGPORT``/``PGDATABASE``
    3. SQLite file under ``db/`` for local development
    """
    explicit_url = os.getenv("DATABASE_URL", "").strip()
    if explicit_url:
        if explicit_url.startswith("postgres://"):
            explicit_url = "postgresql+psycopg2://" + explicit_url[len("postgres://"):]
        return explicit_url

    parts = {key: os.getenv(key) for key in ("PGUSER", "PGPASSWORD", "PGHOST", "PGDATABASE")}
    if all(parts.values()):
        port = os.getenv("PGPORT", "5432")
        return (
            f"postgresql+psycopg2://{parts['PGUSER']}:{parts['PGPASSWORD']}"
            f"@{parts['PGHOST']}:{port}/{parts['PGDATABASE']}"
        )

    local_db = BASE_DIR / "db" / "mercadoboom.db"
    local_db.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{local_db.as_posix()}"


class Config:
    """Settings shared by the Flask app, services and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "MercadoBoom")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")
    APP_URL: Final[str] = os.getenv("APP_URL", "http://localhost:5000").rstrip("/")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _env_bool("FLASK_DEBUG", APP_ENV == "development")
    TESTING: Final[bool] = _env_bool("FLASK_TESTING", False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = _env_int("FLASK_RUN_PORT", 5000)

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _env_bool("SQL_ECHO", False)
    DB_POOL_SIZE: Final[int] = _env_int("DB_POOL_SIZE", 10)
    DB_MAX_OVERFLOW: Final[int] = _env_int("DB_MAX_OVERFLOW", 20)

    # MercadoPago
    MERCADOPAGO_ACCESS_TOKEN: Final[str] = os.getenv("MERCADOPAGO_ACCESS_TOKEN", "")
    MERCADOPAGO_PUBLIC_KEY: Final[str] = os.getenv("MERCADOPAGO_PUBLIC_KEY", "")
    MERCADOPAGO_WEBHOOK_SECRET: Final[str] = os.getenv("MERCADOPAGO_WEBHOOK_SECRET", "")
    PREFERENCE_EXPIRATION_MINUTES: Final[int] = _env_int("PREFERENCE_EXPIRATION_MINUTES", 30)
    STATEMENT_DESCRIPTOR: Final[str] = os.getenv("STATEMENT_DESCRIPTOR", "MERCADOBOOM")
    CURRENCY_ID: Final[str] = os.getenv("CURRENCY_ID", "MXN")

    # Pricing
    SHIPPING_COST: Final[Decimal] = _env_decimal("SHIPPING_COST", "99.00")
    DEFAULT_TRANSFER_DISCOUNT_PERCENT: Final[Decimal] = _env_decimal("DEFAULT_TRANSFER_DISCOUNT_PERCENT", "3.50")
    DEFAULT_TRANSFER_DISCOUNT_TEXT: Final[str] = os.getenv(
        "DEFAULT_TRANSFER_DISCOUNT_TEXT", "por evitar comisiones"
    )

    # Bank account shown for direct transfers when no payment config overrides it
    BANK_NAME: Final[str] = os.getenv("BANK_NAME", "BBVA México")
    BANK_CLABE: Final[str] = os.getenv("BANK_CLABE", "012180004799747847")
    BANK_ACCOUNT_HOLDER: Final[str] = os.getenv("BANK_ACCOUNT_HOLDER", "MercadoBoom SA de CV")

    # Email (Resend) and SMS/WhatsApp (Twilio)
    RESEND_API_KEY: Final[str] = os.getenv("RESEND_API_KEY", "")
    EMAIL_FROM: Final[str] = os.getenv("EMAIL_FROM", "MercadoBoom <no-reply@mercadoboom.mx>")
    TWILIO_ACCOUNT_SID: Final[str] = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: Final[str] = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_PHONE_NUMBER: Final[str] = os.getenv("TWILIO_PHONE_NUMBER", "")
    TWILIO_MESSAGING_SERVICE_SID: Final[str] = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "")
    TWILIO_WHATSAPP_NUMBER: Final[str] = os.getenv("TWILIO_WHATSAPP_NUMBER", "")

    # Account security
    RESET_TOKEN_TTL_HOURS: Final[int] = _env_int("RESET_TOKEN_TTL_HOURS", 24)
    VERIFICATION_CODE_TTL_MINUTES: Final[int] = _env_int("VERIFICATION_CODE_TTL_MINUTES", 10)
    MIN_PASSWORD_LENGTH: Final[int] = _env_int("MIN_PASSWORD_LENGTH", 6)
    RESET_PASSWORD_MIN_LENGTH: Final[int] = _env_int("RESET_PASSWORD_MIN_LENGTH", 8)

    # Object storage
    OBJECT_STORAGE_DIR: Final[Path] = Path(
        os.getenv("OBJECT_STORAGE_DIR", (BASE_DIR / "storage").as_posix())
    )
    UPLOAD_URL_TTL_SECONDS: Final[int] = _env_int("UPLOAD_URL_TTL_SECONDS", 900)
    MAX_UPLOAD_BYTES: Final[int] = _env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    _public_paths = [
        path.strip()
        for path in os.getenv("PUBLIC_OBJECT_SEARCH_PATHS", "public").split(",")
        if path.strip()
    ]
    PUBLIC_OBJECT_SEARCH_PATHS: Final[tuple[str, ...]] = tuple(_public_paths) or ("public",)

    # Observability and reliability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _env_bool("STRUCTURED_LOGS_ENABLED", True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _env_bool("OBSERVABILITY_ENABLED", True)
    STATS_SALES_WINDOW_DAYS: Final[int] = _env_int("STATS_SALES_WINDOW_DAYS", 30)

    DEFAULT_TIMEZONE: Final[str] = os.getenv("DEFAULT_TIMEZONE", "America/Mexico_City")
    ADMIN_USERNAME: Final[str] = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: Final[str] = os.getenv("ADMIN_PASSWORD", "admin_mercadoboom_2024")
    ADMIN_EMAIL: Final[str] = os.getenv("ADMIN_EMAIL", "admin@mercadoboom.mx")
    ADMIN_FULL_NAME: Final[str] = os.getenv("ADMIN_FULL_NAME", "Administrador MercadoBoom")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["MAX_CONTENT_LENGTH"] = cls.MAX_UPLOAD_BYTES
        app.json.ensure_ascii = False
        cls.OBJECT_STORAGE_DIR.mkdir(parents=True, exist_ok=True)
        app.config["OBJECT_STORAGE_DIR"] = str(cls.OBJECT_STORAGE_DIR)
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["OBSERVABILITY_ENABLED"] = cls.OBSERVABILITY_ENABLED
