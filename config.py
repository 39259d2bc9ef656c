"""
config.py
─────────────────────────────────────────────────────────────────────────────
Orchestrator tuning constants.

Credentials, URLs and environment handling live in shared/config.py.
Everything here is a fixed policy value of the crawl state machine.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import timedelta


# ─────────────────────────────────────────────────────────────────────────────
# Mode selection & sources
# ─────────────────────────────────────────────────────────────────────────────

# A seed is eligible for EXPLORE once its last visit is older than this
SOURCE_COOLDOWN: timedelta = timedelta(hours=23)

# Seed library used when the SEED_LIBRARY document does not exist yet
DEFAULT_SEEDS: list[str] = [
    "https://www.ycombinator.com/companies",
    "https://techcrunch.com/category/startups/",
]
DEFAULT_SEED_SCORE: int = 1

# Score given to a seed found through DISCOVER
DISCOVERED_SEED_SCORE: int = 1


# ─────────────────────────────────────────────────────────────────────────────
# Explore fan-out
# ─────────────────────────────────────────────────────────────────────────────

# Max characters per extractor request (downstream prompt budget)
MAX_CHUNK_CHARS: int = 28_000

# Extractor calls in flight at once; batches run one after another
EXTRACT_BATCH_SIZE: int = 5

# (score strictly greater than, lead cap) checked top-down; else FALLBACK_LEAD_CAP
LEAD_CAP_TIERS: list[tuple[int, int]] = [
    (5, 12),
    (2, 8),
]
FALLBACK_LEAD_CAP: int = 6

# Verifier acceptance threshold (strictly greater than)
CONFIDENCE_THRESHOLD: float = 0.8


# ─────────────────────────────────────────────────────────────────────────────
# Discover / creativity
# ─────────────────────────────────────────────────────────────────────────────

MAX_CREATIVITY_LEVEL: int = 5
FAILURES_PER_CREATIVITY_LEVEL: int = 5

QUERIES_PER_GENERATION: int = 3
SUCCESS_PATTERNS_IN_PROMPT: int = 10
FAILED_PATTERNS_IN_PROMPT: int = 15

SEARCH_LOCALE: dict[str, str] = {"gl": "us", "hl": "en"}


# ─────────────────────────────────────────────────────────────────────────────
# Bounded documents
# ─────────────────────────────────────────────────────────────────────────────

PROMPT_HISTORY_CAP: int       = 20
QUERY_PATTERNS_CAP: int       = 100
SUCCESSFUL_PATTERNS_CAP: int  = 20
FAILED_PATTERNS_CAP: int      = 30


def lead_cap_for_score(score: int) -> int:
    """
    Number of new leads a source may contribute per cycle.

    Example:
        lead_cap_for_score(6) → 12
        lead_cap_for_score(3) → 8
        lead_cap_for_score(2) → 6
    """
    for threshold, cap in LEAD_CAP_TIERS:
        if score > threshold:
            return cap
    return FALLBACK_LEAD_CAP
