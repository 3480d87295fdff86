"""
Application configuration.

Flask configuration classes for development, testing and production. Every
setting is read from the environment with a safe default so that secrets and
paths stay out of the code and switching environments is a one-liner.
"""

import os
import secrets
import warnings
from datetime import timedelta


def _safe_secret_key() -> str:
    """Read SECRET_KEY from the environment or generate a random one.

    In production ALWAYS set SECRET_KEY, otherwise every issued actor token
    becomes invalid after a restart.
    """
    key = os.environ.get("SECRET_KEY", "").strip()
    if not key:
        key = secrets.token_hex(32)
        if os.environ.get("FLASK_ENV") != "development":
            warnings.warn(
                "SECRET_KEY is not set, using a random key. "
                "Set SECRET_KEY in the environment for production.",
                RuntimeWarning,
                stacklevel=2,
            )
    return key


def _env_flag(name: str, default: str = "0") -> bool:
    return (os.environ.get(name, default) or default).strip().lower() in {"1", "true", "yes", "y"}


class Config:
    """Base configuration."""

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

    # Main database. SQLite file in the project root for local runs; point
    # DATABASE_URI at PostgreSQL in production (row-level locks).
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URI", f"sqlite:///{os.path.join(BASE_DIR, 'dispatch.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # SQLite only: how long a writer waits for the database lock.
    SQLITE_BUSY_TIMEOUT_SEC = float(os.environ.get("SQLITE_BUSY_TIMEOUT_SEC", 30))

    SECRET_KEY = _safe_secret_key()

    # Logging. LOG_FILE unset means stdout only.
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")

    # --- Actor tokens (HTTP bearer + WebSocket) ---
    ACTOR_TOKEN_TTL = timedelta(hours=int(os.environ.get("ACTOR_TOKEN_TTL_HOURS", 12)))
    REALTIME_TOKEN_TTL_SEC = int(os.environ.get("REALTIME_TOKEN_TTL_SEC", 600))

    # --- Realtime fan-out ---
    # Per-connection outbound buffer; a full buffer drops messages (best-effort push).
    REALTIME_SUBSCRIBER_QUEUE_SIZE = int(os.environ.get("REALTIME_SUBSCRIBER_QUEUE_SIZE", 256))
    # Optional Redis relay so that events reach connections held by every worker.
    REDIS_URL = os.environ.get("REDIS_URL", "").strip()
    REALTIME_REDIS_CHANNEL = os.environ.get("REALTIME_REDIS_CHANNEL", "dispatch:realtime").strip()
    # Seconds; bounds how long one relay publish may hold the relay worker.
    REDIS_SOCKET_TIMEOUT = float(os.environ.get("REDIS_SOCKET_TIMEOUT", 2.0))

    # --- Dispatch rules ---
    # Refuse to bind a unit that already holds an active assignment elsewhere.
    DISPATCH_STRICT_UNIT_EXCLUSIVITY = _env_flag("DISPATCH_STRICT_UNIT_EXCLUSIVITY", "1")
    DISPATCH_FOLIO_COUNTER = os.environ.get("DISPATCH_FOLIO_COUNTER", "incident").strip() or "incident"
    DISPATCH_DEFAULT_PRIORITY = int(os.environ.get("DISPATCH_DEFAULT_PRIORITY", 3))

    # --- Side effects (best-effort) ---
    AUDIT_ENABLED = _env_flag("AUDIT_ENABLED", "1")
    PUSH_ENABLED = _env_flag("PUSH_ENABLED", "0")
    FCM_SERVER_KEY = os.environ.get("FCM_SERVER_KEY", "").strip()
    TASKS_MAX_WORKERS = int(os.environ.get("TASKS_MAX_WORKERS", 4))


class DevelopmentConfig(Config):
    """Development settings."""

    DEBUG = True


class TestingConfig(Config):
    """Test settings."""

    TESTING = True
    DEBUG = True
    # Tests never talk to Redis or FCM.
    REDIS_URL = ""
    PUSH_ENABLED = False
    SQLITE_BUSY_TIMEOUT_SEC = 30.0


class ProductionConfig(Config):
    """Production settings."""

    DEBUG = False
