"""
scout.py
─────────────────────────────────────────────────────────────────────────────
DISCOVER-mode helpers: turn the recent failure streak into a creativity
level, ask the LLM for search queries at that level, and run one query
against the web-search API with rotating credentials.

Schema of the search reply (SerpAPI Google engine):
    {"organic_results": [{"link": "...", "title": "..."}, ...]}
    {"error": "..."}                        ← credential or quota problem
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import logging
import random
from typing import Any, Sequence

import httpx

from config import (
    FAILED_PATTERNS_IN_PROMPT,
    FAILURES_PER_CREATIVITY_LEVEL,
    MAX_CREATIVITY_LEVEL,
    QUERIES_PER_GENERATION,
    SEARCH_LOCALE,
    SUCCESS_PATTERNS_IN_PROMPT,
)
from shared.config import SERPAPI_URL
from shared.llm import KeyFallbackCaller, MalformedResponseError, parse_json_response

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Creativity
# ─────────────────────────────────────────────────────────────────────────────

def creativity_level(consecutive_failures: int) -> int:
    """
    Step function of the failure streak, one level per 5 failures, capped.

    Example:
        creativity_level(0)  → 1
        creativity_level(7)  → 2
        creativity_level(40) → 5
    """
    failures = max(0, consecutive_failures)
    return min(MAX_CREATIVITY_LEVEL, failures // FAILURES_PER_CREATIVITY_LEVEL + 1)


CREATIVITY_TIERS: dict[int, str] = {
    1: (
        "Stay conservative. Use proven patterns: curated startup directories, "
        "well-known 'companies hiring' lists, accelerator portfolio pages, and "
        "recent funding-round roundups."
    ),
    2: (
        "Broaden slightly. Target industry-specific directories, regional tech "
        "hubs, VC portfolio pages, and conference exhibitor or sponsor lists."
    ),
    3: (
        "Be inventive. Look for niche community lists, 'best places to work' "
        "awards in smaller markets, university spin-out registries, and "
        "coworking space member directories."
    ),
    4: (
        "Be unconventional. Combine unusual angles: government grant "
        "recipients, open-source project sponsors, trade association member "
        "rosters, newsletter archives that profile small companies."
    ),
    5: (
        "Be maximally novel and contrarian. Avoid anything resembling the "
        "failed patterns; try obscure sources, non-English regional lists, "
        "supplier and partner pages, or any page type not tried before."
    ),
}

_PROMPT_TEMPLATE = """\
You generate Google search queries that surface web pages listing many
real companies (directories, portfolios, rankings, member lists). The
companies found on those pages will be checked for careers pages.

Creativity level {level}/5: {guidance}

Queries that worked before (reuse their spirit, not their wording):
{successful}

Queries that failed before (avoid these angles):
{failed}

Respond with a JSON array of exactly {count} distinct query strings and
nothing else. Example: ["query one", "query two", "query three"]
"""


def _bullet_list(patterns: Sequence[str]) -> str:
    return "\n".join(f"- {p}" for p in patterns) if patterns else "- (none yet)"


def build_query_prompt(
    level: int,
    successful_patterns: Sequence[str],
    failed_patterns: Sequence[str],
) -> str:
    """Prompt for one query generation, with the most recent patterns injected."""
    level = max(1, min(MAX_CREATIVITY_LEVEL, level))
    return _PROMPT_TEMPLATE.format(
        level=level,
        guidance=CREATIVITY_TIERS[level],
        successful=_bullet_list(list(successful_patterns)[-SUCCESS_PATTERNS_IN_PROMPT:]),
        failed=_bullet_list(list(failed_patterns)[-FAILED_PATTERNS_IN_PROMPT:]),
        count=QUERIES_PER_GENERATION,
    )


async def generate_queries(caller: KeyFallbackCaller, prompt: str) -> list[str]:
    """
    One Key-Fallback Caller round trip → list of query strings.
    Raises MalformedResponseError if the reply is not a non-empty JSON
    array of strings.
    """
    response = await caller.generate(prompt)
    parsed = parse_json_response(response.text)
    if not isinstance(parsed, list):
        raise MalformedResponseError(f"Expected a JSON array of queries, got {type(parsed).__name__}")
    queries = [q.strip() for q in parsed if isinstance(q, str) and q.strip()]
    if not queries:
        raise MalformedResponseError("Query generation returned no usable strings")
    return queries


def pick_query(queries: Sequence[str], rng: random.Random) -> str:
    return rng.choice(list(queries))


# ─────────────────────────────────────────────────────────────────────────────
# Web search
# ─────────────────────────────────────────────────────────────────────────────

async def search_web(
    client: httpx.AsyncClient,
    query: str,
    api_keys: Sequence[str],
    rng: random.Random,
    search_url: str = SERPAPI_URL,
) -> dict[str, Any] | None:
    """
    Run query with each credential in a freshly shuffled order until one
    returns a reply without an "error" field.

    Returns None when every credential fails.  A reply that is not JSON
    raises MalformedResponseError.
    """
    keys = list(api_keys)
    rng.shuffle(keys)

    for attempt_no, api_key in enumerate(keys, start=1):
        params = {"engine": "google", "q": query, "api_key": api_key, **SEARCH_LOCALE}
        try:
            response = await client.get(search_url, params=params)
        except httpx.HTTPError as exc:
            logger.warning(f"[SEARCH] attempt {attempt_no}/{len(keys)} transport error: {exc!r}")
            continue

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(
                f"Search reply is not JSON (HTTP {response.status_code}): {response.text[:120]!r}"
            ) from exc

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Search reply is not a JSON object: {type(data).__name__}")
        if data.get("error"):
            logger.warning(f"[SEARCH] attempt {attempt_no}/{len(keys)} rejected: {str(data['error'])[:120]}")
            continue
        return data

    logger.warning(f"[SEARCH] all {len(keys)} credential(s) failed for query {query!r}")
    return None


def top_organic_url(results: dict[str, Any] | None) -> str | None:
    """Link of the first organic result, or None."""
    if not results:
        return None
    organic = results.get("organic_results") or []
    if not organic or not isinstance(organic[0], dict):
        return None
    link = organic[0].get("link")
    return link if isinstance(link, str) and link.startswith(("http://", "https://")) else None


__all__ = [
    "CREATIVITY_TIERS",
    "build_query_prompt",
    "creativity_level",
    "generate_queries",
    "pick_query",
    "search_web",
    "top_organic_url",
]
