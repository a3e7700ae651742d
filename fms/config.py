"""
FMS Execution Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'fms_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url():
    raw = os.getenv("DATABASE_URL", "")
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.0
    return raw.replace("postgres://", "postgresql://", 1) if raw else ""


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (Flask-Limiter)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    FMS_WRITE_RATE_LIMIT = os.getenv("FMS_WRITE_RATE_LIMIT", "60/minute")
    FMS_READ_RATE_LIMIT = os.getenv("FMS_READ_RATE_LIMIT", "200/minute")

    # ── Engine settings ──────────────────────────────────────────────────
    # Attempts at generating a unique PRJ-NNNN code before giving up.
    FMS_PROJECT_CODE_RETRIES = int(os.getenv("FMS_PROJECT_CODE_RETRIES", "5"))
    # Deliveries of one outbox event before it is left in 'failed'.
    FMS_OUTBOX_MAX_ATTEMPTS = int(os.getenv("FMS_OUTBOX_MAX_ATTEMPTS", "5"))
    # Run outbox consumers right after the primary commit.  When false,
    # events wait for `flask fms-dispatch-events`.
    FMS_DISPATCH_INLINE = os.getenv("FMS_DISPATCH_INLINE", "true").lower() == "true"
    # datetime.weekday() of the excluded day (6 = Sunday).
    FMS_WEEKEND_DAY = int(os.getenv("FMS_WEEKEND_DAY", "6"))
    # exclude | on_time | late
    FMS_TERMINATED_SCORING_POLICY = os.getenv("FMS_TERMINATED_SCORING_POLICY", "exclude")

    # json | text; unset picks text under DEBUG/TESTING, json otherwise
    FMS_LOG_FORMAT = os.getenv("FMS_LOG_FORMAT")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url() or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    FMS_DISPATCH_INLINE = True
    FMS_WEEKEND_DAY = 6
    FMS_TERMINATED_SCORING_POLICY = "exclude"


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url() or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
