"""Centralized configuration for the Sonrisas dental assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/sonrisas-dental/<VARIABLE_NAME>``.
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
        import boto3  # noqa: PLC0415 (lazy: boto3 is only needed on AWS)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/sonrisas-dental/{name}", WithDecryption=True)
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
        f"Set it in .env (local) or SSM Parameter Store /sonrisas-dental/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_TEMPERATURE: float = float(os.getenv("MODEL_TEMPERATURE", "0.3"))
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "1024"))

# Hard cap on tool-call rounds within a single user turn
MAX_TOOL_ROUNDS: int = max(1, int(os.getenv("MAX_TOOL_ROUNDS", "8")))

# ── Firestore ───────────────────────────────────────────────────────
FIREBASE_CREDENTIALS_PATH: str = os.getenv(
    "FIREBASE_CREDENTIALS_PATH", "service-account.json",
)
APPOINTMENTS_COLLECTION: str = os.getenv("APPOINTMENTS_COLLECTION", "appointments")

# ── Clinic ──────────────────────────────────────────────────────────
# Naive datetimes from the model are interpreted in this zone; "day"
# queries use its calendar days.
CLINIC_TIMEZONE: str = os.getenv("CLINIC_TIMEZONE", "America/Guayaquil")

# ── Conversation memory ─────────────────────────────────────────────
DEFAULT_SESSION_ID: str = "default"
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(24 * 60 * 60)))
MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "1000"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")
