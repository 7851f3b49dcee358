"""
Application settings for the Kanban backend.

All values are read from environment variables once at import time. Invalid
values fall back to safe defaults with a logged warning rather than failing
startup, except where noted.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _int_from_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer env var, falling back to default when missing or out of range."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment. Using default of {default}.")
        return default
    if value < minimum or value > maximum:
        logger.warning(
            f"⚠️  {name}={value} is outside safe range ({minimum}-{maximum}). "
            f"Using default of {default}."
        )
        return default
    return value


ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
APP_NAME = os.environ.get("APP_NAME", "MDW")

# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./kanban.db")

# Frontend base URL used to build invitation join links
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# Task suggestion model (Hugging Face inference API)
HUGGINGFACE_API_KEY = os.environ.get("HUGGINGFACE_API_KEY") or None
HUGGINGFACE_MODEL_URL = os.environ.get(
    "HUGGINGFACE_MODEL_URL",
    "https://api-inference.huggingface.co/models/mistralai/Mixtral-8x7B-Instruct-v0.1",
)
SUGGESTION_TIMEOUT_SECONDS = _int_from_env("SUGGESTION_TIMEOUT_SECONDS", 10, 1, 120)

# Attachments
UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "./uploads"))
MAX_ATTACHMENT_SIZE = 10 * 1024 * 1024  # 10MB

# Outgoing email (invitations). Empty SMTP_HOST means emails are only logged.
SMTP_HOST = os.environ.get("SMTP_HOST") or None
SMTP_PORT = _int_from_env("SMTP_PORT", 25, 1, 65535)
SMTP_FROM = os.environ.get("SMTP_FROM", "no-reply@localhost")

if ENVIRONMENT.lower() in ("production", "staging") and SMTP_HOST is None:
    logger.warning(
        "⚠️  SMTP_HOST not set in a production-like environment. "
        "Invitation emails will be logged instead of delivered."
    )

# Create missing tables on startup (local SQLite development); migrations own the schema elsewhere
CREATE_TABLES_ON_STARTUP = os.environ.get("CREATE_TABLES_ON_STARTUP", "false").lower() in ("1", "true", "yes")
