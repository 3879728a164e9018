"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
logging and the budget engine switches. It uses environment variables for sensitive information and defaults for
development. In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'budget.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (JSON clients send the token in the X-CSRFToken header)
    WTF_CSRF_ENABLED = True

    # Logging: "text" or "json"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")

    # Budget engine: use SQL SUM()/INSERT..SELECT instead of per-record scans
    BUDGET_SERVER_SIDE_AGGREGATION = _env_flag("BUDGET_SERVER_SIDE_AGGREGATION", True)
    BUDGET_SERVER_SIDE_COPY = _env_flag("BUDGET_SERVER_SIDE_COPY", True)

    # App name (returned by the index endpoint)
    APP_NAME = "Budget Revision Manager"


class TestingConfig(Config):
    """In-memory database, no CSRF, verbose logs."""

    TESTING = True
    SECRET_KEY = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "DEBUG"
