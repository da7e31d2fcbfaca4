"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"WARNING: env var {name}={raw!r} is not a number, using {default}", file=sys.stderr)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# ── LLM ──────────────────────────────────────────────────────────────
MODEL_NAME = os.getenv("MODEL_NAME", "gpt-4.1-mini")
LLM_TIMEOUT_SECONDS = _env_float("LLM_TIMEOUT_SECONDS", 30.0)

# ── Sites ────────────────────────────────────────────────────────────
DEFAULT_SITE = "Abidjan"

# ── Remote store / change feed ───────────────────────────────────────
MUTATION_TIMEOUT_SECONDS = _env_float("MUTATION_TIMEOUT_SECONDS", 15.0)
FEED_RECONNECT_SECONDS = _env_float("FEED_RECONNECT_SECONDS", 5.0)
OPTIMISTIC_UPDATES = _env_bool("OPTIMISTIC_UPDATES", True)

# Auto ticker rebuild interval, catches midnight / week / month rollover.
TICKER_REFRESH_SECONDS = _env_float("TICKER_REFRESH_SECONDS", 600.0)

# ── Auth ─────────────────────────────────────────────────────────────
# Secret used by the managed auth service to sign session tokens.
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_AUDIENCE = "authenticated"

# ── Console ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MAX_LIST_ROWS = 20


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
