"""
shared/config.py
─────────────────────────────────────────────────────────────────────────────
Shared settings used by the orchestrator and both collaborator services.
Every module imports credentials and URLs from here; do NOT read the
environment directly elsewhere.

.env loading:
    find_root_env() walks up from this file to locate the single .env file
    regardless of the working directory the process was started from.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


class ConfigurationError(RuntimeError):
    """A required environment value is missing or unusable."""


# ─────────────────────────────────────────────────────────────────────────────
# .env Discovery
# ─────────────────────────────────────────────────────────────────────────────

def find_root_env() -> Path:
    """
    Walk up the directory tree from this file's location to find a .env
    file.  Raises FileNotFoundError if nothing is found within 6 levels.
    """
    current = Path(__file__).resolve().parent
    for _ in range(6):
        candidate = current / ".env"
        if candidate.exists():
            return candidate
        current = current.parent
    raise FileNotFoundError(
        "Could not locate a .env file. "
        "Copy the variables listed in DESIGN.md into .env or export them."
    )


# Load the .env exactly once when this module is first imported
try:
    _env_path = find_root_env()
    load_dotenv(_env_path, override=False)  # override=False: don't stomp existing env vars
except FileNotFoundError:
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints & Defaults
# ─────────────────────────────────────────────────────────────────────────────

GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
SERPAPI_URL: str     = "https://serpapi.com/search.json"

DEFAULT_PRIMARY_MODEL: str   = "gemini-2.0-flash"
DEFAULT_SECONDARY_MODEL: str = "gemini-1.5-flash"

# Header carrying the shared secret on self-addressed continuation calls
CONTINUE_SECRET_HEADER: str = "X-Continue-Secret"


def split_csv(raw: str | None) -> list[str]:
    """
    Split a comma-separated credential list, dropping blanks.

    Example:
        split_csv(" a, b ,,c ") → ["a", "b", "c"]
    """
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def require(name: str) -> str:
    """Return a required environment value or raise ConfigurationError."""
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def require_list(name: str) -> list[str]:
    values = split_csv(os.environ.get(name))
    if not values:
        raise ConfigurationError(
            f"Required environment variable {name} is empty "
            f"(expected a comma-separated list)"
        )
    return values


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    """
    Snapshot of the environment for one cycle.

    Built per call by get_settings(), never at import time.
    """
    gemini_api_keys: tuple[str, ...]
    serpapi_api_keys: tuple[str, ...]
    self_base_url: str
    continue_secret: str
    extractor_url: str
    verifier_url: str
    primary_model: str   = DEFAULT_PRIMARY_MODEL
    secondary_model: str = DEFAULT_SECONDARY_MODEL
    state_dir: str       = "./state"
    log_dir: str         = "./logs"
    max_cycles: int      = 100
    retry_delay_seconds: float  = 5.0
    http_timeout_seconds: float = 30.0


def get_settings() -> Settings:
    """
    Read every orchestrator setting from the environment.
    Raises ConfigurationError if a required value is absent.
    """
    try:
        max_cycles    = int(os.environ.get("MAX_CYCLES", "100"))
        retry_delay   = float(os.environ.get("RETRY_DELAY_SECONDS", "5"))
        http_timeout  = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

    return Settings(
        gemini_api_keys=tuple(require_list("GEMINI_API_KEYS")),
        serpapi_api_keys=tuple(require_list("SERPAPI_API_KEYS")),
        self_base_url=require("SELF_BASE_URL").rstrip("/"),
        continue_secret=require("CONTINUE_SECRET"),
        extractor_url=require("EXTRACTOR_URL"),
        verifier_url=require("VERIFIER_URL"),
        primary_model=os.environ.get("GEMINI_PRIMARY_MODEL", DEFAULT_PRIMARY_MODEL),
        secondary_model=os.environ.get("GEMINI_SECONDARY_MODEL", DEFAULT_SECONDARY_MODEL),
        state_dir=os.environ.get("STATE_DIR", "./state"),
        log_dir=os.environ.get("LOG_DIR", "./logs"),
        max_cycles=max_cycles,
        retry_delay_seconds=retry_delay,
        http_timeout_seconds=http_timeout,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Cycle Status Constants
# ─────────────────────────────────────────────────────────────────────────────
# Use these string literals everywhere. Never hardcode status strings inline.

class Mode:
    EXPLORE  = "EXPLORE"
    DISCOVER = "DISCOVER"


class CycleStatus:
    SUCCESS   = "SUCCESS"       # Verified-pages list grew; chain stops
    CONTINUE  = "CONTINUE"      # Nothing new; next cycle scheduled
    RETRY     = "RETRY"         # Cycle threw; next cycle scheduled after a delay
    FATAL     = "FATAL"         # Configuration failure; chain stops, no retry
    EXHAUSTED = "EXHAUSTED"     # MAX_CYCLES reached; chain stops


class EventType:
    CYCLE_START      = "CYCLE_START"
    MODE_SELECTED    = "MODE_SELECTED"
    SOURCE_EXPLORED  = "SOURCE_EXPLORED"
    EXTRACT_BATCH    = "EXTRACT_BATCH"
    LEAD_VERIFIED    = "LEAD_VERIFIED"
    PAGE_ACCEPTED    = "PAGE_ACCEPTED"
    QUERY_GENERATED  = "QUERY_GENERATED"
    SEARCH_RESULT    = "SEARCH_RESULT"
    SEED_ADDED       = "SEED_ADDED"
    SEED_PRUNED      = "SEED_PRUNED"
    CYCLE_TERMINAL   = "CYCLE_TERMINAL"
    CYCLE_FAILED     = "CYCLE_FAILED"
    CHAIN_EXHAUSTED  = "CHAIN_EXHAUSTED"
