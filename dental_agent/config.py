"""Centralized configuration for the dental booking agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/dental-agent/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/dental-agent/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /dental-agent/{name} (AWS)."
    )


def _optional_secret(name: str, default: str = "") -> str:
    """Like ``_require_env`` but falls back to *default* instead of raising."""
    try:
        return _require_env(name)
    except OSError:
        return default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")

# Cheap model for the quick-reply classifier
CLASSIFIER_MODEL_NAME: str = os.getenv("CLASSIFIER_MODEL_NAME", "claude-haiku-4-5")

# ── Tool loop ───────────────────────────────────────────────────────
MAX_TOOL_ITERATIONS: int = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "25"))

# ── Scheduling ──────────────────────────────────────────────────────
SLOT_GRANULARITY_MINUTES: int = int(os.getenv("SLOT_GRANULARITY_MINUTES", "30"))
EMERGENCY_BUFFER_MINUTES: int = int(os.getenv("EMERGENCY_BUFFER_MINUTES", "15"))
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Europe/Amsterdam")

# ── Database ────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./dental_agent.db")
DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# ── Background work ─────────────────────────────────────────────────
SIDE_EFFECT_WORKERS: int = int(os.getenv("SIDE_EFFECT_WORKERS", "4"))
REMINDER_INTERVAL_SECONDS: int = int(os.getenv("REMINDER_INTERVAL_SECONDS", "300"))
REMINDERS_ENABLED: bool = os.getenv("REMINDERS_ENABLED", "true").lower() == "true"

# ── Google Calendar (per-doctor refresh tokens live in the DB) ──────
GOOGLE_CLIENT_ID: str = _optional_secret("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET: str = _optional_secret("GOOGLE_CLIENT_SECRET")
GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

# ── Email (AWS SES) ─────────────────────────────────────────────────
SES_REGION: str = os.getenv("SES_REGION", "")
SES_FROM_EMAIL: str = os.getenv("SES_FROM_EMAIL", "")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
