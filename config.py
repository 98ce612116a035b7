"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
storage quota and logging. It uses environment variables for sensitive information and defaults for development.
In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    return int(raw)


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'ledger.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens issued by /api/auth/login (seconds)
    AUTH_TOKEN_MAX_AGE = _int_env("AUTH_TOKEN_MAX_AGE", 7 * 24 * 3600)

    # Attachment storage (local filesystem backend)
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    STORAGE_QUOTA_BYTES = _int_env("STORAGE_QUOTA_BYTES", 5 * 1024 * 1024 * 1024)
    MAX_CONTENT_LENGTH = _int_env("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    APP_NAME = "Project Ledger"


class TestingConfig(Config):
    """Configuration used by the test suite (database URI is set per test)."""

    TESTING = True
    SECRET_KEY = "testing-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STORAGE_QUOTA_BYTES = 1024 * 1024
    LOG_LEVEL = "DEBUG"
