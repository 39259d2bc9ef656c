"""
nodes.py
─────────────────────────────────────────────────────────────────────────────
LangGraph node implementations for one orchestrator cycle.

    load_state → select_mode → explore | discover → decide_continuation

Each node receives the full CycleState plus the graph config (which carries
the CycleContext), performs its work, persists what it changed, and returns
the updated state.

The pure policy helpers (eligibility, source choice, lead caps, scoring)
sit at the top so they can be tested without a graph.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable

from langchain_core.runnables import RunnableConfig

from config import (
    CONFIDENCE_THRESHOLD,
    DISCOVERED_SEED_SCORE,
    EXTRACT_BATCH_SIZE,
    SOURCE_COOLDOWN,
    lead_cap_for_score,
)
from fetcher import chunk_text, fetch_source_text
from scout import (
    build_query_prompt,
    creativity_level,
    generate_queries,
    pick_query,
    search_web,
    top_organic_url,
)
from shared.config import CycleStatus, EventType, Mode
from shared.store import PROMPT_HISTORY, record_query_outcome
from state_types import CycleState, context_from_config
from tools import CallResult, extract_companies, verify_company
from validators import EPOCH, MIN_SEED_SCORE, SeedEntry, VerifierResult

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Policy helpers
# ─────────────────────────────────────────────────────────────────────────────

def eligible_sources(seeds: Iterable[SeedEntry], now: datetime) -> list[SeedEntry]:
    """Seeds whose last visit is older than the revisit cooldown."""
    cutoff = now - SOURCE_COOLDOWN
    return [seed for seed in seeds if seed.last_visited < cutoff]


def select_mode(seeds: Iterable[SeedEntry], now: datetime) -> str:
    return Mode.EXPLORE if eligible_sources(seeds, now) else Mode.DISCOVER


def pick_source(eligible: list[SeedEntry]) -> SeedEntry:
    """Highest score wins; ties go to the lexicographically smallest URL."""
    if not eligible:
        raise ValueError("pick_source() needs at least one eligible seed")
    return min(eligible, key=lambda seed: (-seed.score, seed.url))


def merge_company_names(results: Iterable[list[str]]) -> dict[str, str]:
    """Lower-cased name → name as last seen, across all chunks in order."""
    merged: dict[str, str] = {}
    for names in results:
        for name in names:
            merged[name.lower()] = name
    return merged


def select_leads(merged: dict[str, str], processed: dict[str, str], cap: int) -> list[str]:
    """Unprocessed names in discovery order, at most cap of them."""
    fresh = [name for key, name in merged.items() if key not in processed]
    return fresh[:cap]


def is_accepted(result: VerifierResult) -> bool:
    return (
        result.is_careers_page is True
        and result.confidence_score > CONFIDENCE_THRESHOLD
        and bool(result.final_url)
    )


def rescore(score: int, new_discoveries: int) -> int:
    """Reward a productive source by its yield; otherwise decay by 1, floored."""
    if new_discoveries > 0:
        return score + new_discoveries
    return max(MIN_SEED_SCORE, score - 1)


def prune_seeds(seeds: list[SeedEntry]) -> tuple[list[SeedEntry], list[SeedEntry]]:
    """Split into (kept, pruned); a seed below the score floor is pruned."""
    kept = [seed for seed in seeds if seed.score >= MIN_SEED_SCORE]
    pruned = [seed for seed in seeds if seed.score < MIN_SEED_SCORE]
    return kept, pruned


def _seeds_from_state(state: CycleState) -> list[SeedEntry]:
    return [SeedEntry.model_validate(doc) for doc in state.get("seeds", [])]


# ─────────────────────────────────────────────────────────────────────────────
# Load State Node
# ─────────────────────────────────────────────────────────────────────────────

async def load_state_node(state: CycleState, config: RunnableConfig) -> CycleState:
    """Read all five documents once and fix the cycle clock."""
    ctx = context_from_config(config)
    store = ctx.store

    seeds = await store.load_seeds()
    kept, pruned = prune_seeds(seeds)
    if pruned:
        await store.save_seeds(kept)
        for seed in pruned:
            logger.info(f"[LOAD] Pruned seed below score floor: {seed.url} ({seed.score})")
            ctx.telemetry.log_seed_change(EventType.SEED_PRUNED, seed.url, seed.score)

    processed = await store.load_processed()
    verified = await store.load_verified()
    analytics = await store.load_analytics()
    # Created lazily here so a fresh store holds all five documents
    await store.get(PROMPT_HISTORY)

    ctx.telemetry.log_cycle_start(analytics.consecutiveFailures)

    return {
        **state,
        "now": ctx.clock(),
        "seeds": [seed.to_doc() for seed in kept],
        "processed": processed,
        "initial_verified_count": len(verified),
        "verified_count": len(verified),
        "consecutive_failures": analytics.consecutiveFailures,
        "new_pages": [],
        "leads": [],
        "error_log": list(state.get("error_log", [])),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Select Mode Node
# ─────────────────────────────────────────────────────────────────────────────

async def select_mode_node(state: CycleState, config: RunnableConfig) -> CycleState:
    ctx = context_from_config(config)
    seeds = _seeds_from_state(state)
    eligible = eligible_sources(seeds, state["now"])
    mode = select_mode(seeds, state["now"])

    logger.info(f"[MODE] cycle {state['cycle']}: {mode} ({len(eligible)} eligible source(s))")
    ctx.telemetry.log_mode_selected(mode, len(eligible))

    return {
        **state,
        "mode": mode,
        "eligible_urls": [seed.url for seed in eligible],
    }


# ─────────────────────────────────────────────────────────────────────────────
# Explore Node
# ─────────────────────────────────────────────────────────────────────────────

async def _extract_in_batches(ctx, chunks: list[str]) -> list[list[str]]:
    """
    Send chunks to the extractor EXTRACT_BATCH_SIZE at a time.
    Batches run in sequence; requests inside a batch run concurrently.
    A failed request contributes an empty list for its chunk only.
    """
    per_chunk: list[list[str]] = []
    for batch_no, start in enumerate(range(0, len(chunks), EXTRACT_BATCH_SIZE), start=1):
        batch = chunks[start:start + EXTRACT_BATCH_SIZE]
        outcomes = await asyncio.gather(
            *(extract_companies(ctx.client, ctx.settings.extractor_url, chunk) for chunk in batch),
            return_exceptions=True,
        )

        errors = 0
        found = 0
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.warning(f"[EXPLORE] Extractor task raised: {outcome!r}")
                outcome = CallResult("error", [], str(outcome)[:200])
            if outcome.failed:
                errors += 1
            found += len(outcome.value)
            per_chunk.append(outcome.value)

        ctx.telemetry.log_extract_batch(batch_no, len(batch), errors, found)
    return per_chunk


async def explore_node(state: CycleState, config: RunnableConfig) -> CycleState:
    """
    Explore the best eligible source: fetch → chunk → extract → verify.
    Accepted pages are persisted one at a time as they are confirmed.
    """
    ctx = context_from_config(config)
    store = ctx.store
    now = state["now"]

    eligible_urls = set(state.get("eligible_urls", []))
    eligible = [seed for seed in _seeds_from_state(state) if seed.url in eligible_urls]
    source = pick_source(eligible)
    logger.info(f"[EXPLORE] Selected source {source.url} (score {source.score})")

    # Marked visited before the fetch
    seeds = await store.load_seeds()
    for seed in seeds:
        if seed.url == source.url:
            seed.last_visited = now
    await store.save_seeds(seeds)

    text = await fetch_source_text(ctx.client, source.url)
    chunks = list(chunk_text(text)) if text else []
    ctx.telemetry.log_source_explored(source.url, source.score, len(text), len(chunks))

    per_chunk = await _extract_in_batches(ctx, chunks)
    merged = merge_company_names(per_chunk)

    processed = await store.load_processed()
    leads = select_leads(merged, processed, lead_cap_for_score(source.score))
    logger.info(
        f"[EXPLORE] {len(merged)} name(s) found, {len(leads)} new lead(s) "
        f"(cap {lead_cap_for_score(source.score)})"
    )

    # Marked processed before verification
    processed = await store.mark_processed(leads) if leads else processed

    new_pages: list[str] = []
    append_lock = asyncio.Lock()

    async def verify_and_record(company_name: str) -> None:
        outcome = await verify_company(ctx.client, ctx.settings.verifier_url, company_name)
        result = outcome.value
        accepted = False
        if is_accepted(result):
            async with append_lock:
                accepted = await store.append_verified(result.final_url)
            if accepted:
                new_pages.append(result.final_url)
                logger.info(f"[EXPLORE] Verified careers page for {company_name}: {result.final_url}")
                ctx.telemetry.log_event(
                    EventType.PAGE_ACCEPTED, company_name=company_name, final_url=result.final_url,
                )
        ctx.telemetry.log_lead_verified(
            company_name, outcome.status, result.is_careers_page,
            result.confidence_score, result.final_url, accepted,
        )

    verifications = await asyncio.gather(
        *(verify_and_record(name) for name in leads),
        return_exceptions=True,
    )
    error_log = list(state.get("error_log", []))
    for name, outcome in zip(leads, verifications):
        if isinstance(outcome, BaseException):
            logger.warning(f"[EXPLORE] Verification of {name!r} raised: {outcome!r}")
            error_log.append(f"verify {name}: {outcome!r}"[:200])

    new_discoveries = len(new_pages)

    # Score the source against a fresh read of the library
    seeds = await store.load_seeds()
    for seed in seeds:
        if seed.url == source.url:
            seed.score = rescore(seed.score, new_discoveries)
            logger.info(f"[EXPLORE] Source {seed.url} rescored {source.score} → {seed.score}")
    kept, pruned = prune_seeds(seeds)
    for seed in pruned:
        ctx.telemetry.log_seed_change(EventType.SEED_PRUNED, seed.url, seed.score)
    await store.save_seeds(kept)

    analytics = await store.load_analytics()
    if new_discoveries > 0:
        analytics.consecutiveFailures = 0
    else:
        analytics.consecutiveFailures += 1
    await store.save_analytics(analytics)

    return {
        **state,
        "selected_source": source.url,
        "seeds": [seed.to_doc() for seed in kept],
        "processed": processed,
        "leads": leads,
        "new_pages": new_pages,
        "verified_count": state["initial_verified_count"] + new_discoveries,
        "consecutive_failures": analytics.consecutiveFailures,
        "error_log": error_log,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Discover Node
# ─────────────────────────────────────────────────────────────────────────────

async def discover_node(state: CycleState, config: RunnableConfig) -> CycleState:
    """
    Generate a query at the current creativity level, search it, and add
    the top organic result as a new seed if it is not already known.
    Malformed LLM or search replies propagate to the top-level handler.
    """
    ctx = context_from_config(config)
    store = ctx.store

    analytics = await store.load_analytics()
    level = creativity_level(analytics.consecutiveFailures)
    prompt = build_query_prompt(level, analytics.successfulPatterns, analytics.failedPatterns)

    queries = await generate_queries(ctx.caller, prompt)
    query = pick_query(queries, ctx.rng)
    await store.push_prompt_history(query, level)
    logger.info(f"[DISCOVER] Creativity {level}: searching {query!r}")
    ctx.telemetry.log_event(
        EventType.QUERY_GENERATED, creativity_level=level, query=query, candidates=queries,
    )

    results = await search_web(ctx.client, query, ctx.settings.serpapi_api_keys, ctx.rng)
    url = top_organic_url(results)
    ctx.telemetry.log_event(
        EventType.SEARCH_RESULT,
        query=query,
        organic_results=len((results or {}).get("organic_results") or []),
        top_url=url,
    )

    seeds = await store.load_seeds()
    known = {seed.url for seed in seeds}
    seed_added = None
    if url and url not in known:
        seeds.append(SeedEntry(url=url, score=DISCOVERED_SEED_SCORE, last_visited=EPOCH))
        await store.save_seeds(seeds)
        seed_added = url
        analytics = record_query_outcome(analytics, query, level, success=True)
        logger.info(f"[DISCOVER] Added seed {url}")
        ctx.telemetry.log_seed_change(EventType.SEED_ADDED, url, DISCOVERED_SEED_SCORE)
    else:
        analytics = record_query_outcome(analytics, query, level, success=False)
        analytics.consecutiveFailures += 1
        logger.info(f"[DISCOVER] No new seed (top result: {url})")
    await store.save_analytics(analytics)

    return {
        **state,
        "creativity_level": level,
        "query": query,
        "seed_added": seed_added,
        "seeds": [seed.to_doc() for seed in seeds],
        "consecutive_failures": analytics.consecutiveFailures,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Continuation Decision Node
# ─────────────────────────────────────────────────────────────────────────────

async def decide_continuation_node(state: CycleState, config: RunnableConfig) -> CycleState:
    """
    Stop the chain if the verified-pages list grew; otherwise name the next
    cycle, unless the step counter has reached MAX_CYCLES.
    """
    ctx = context_from_config(config)
    new_pages = state["verified_count"] - state["initial_verified_count"]

    if new_pages > 0:
        analytics = await ctx.store.load_analytics()
        if analytics.consecutiveFailures:
            analytics.consecutiveFailures = 0
            await ctx.store.save_analytics(analytics)
        status, next_cycle = CycleStatus.SUCCESS, None
    else:
        next_cycle = state["cycle"] + 1
        if next_cycle > ctx.settings.max_cycles:
            logger.warning(
                f"[CONTINUE] Cycle limit reached ({ctx.settings.max_cycles}); stopping chain"
            )
            ctx.telemetry.log_event(EventType.CHAIN_EXHAUSTED, max_cycles=ctx.settings.max_cycles)
            status, next_cycle = CycleStatus.EXHAUSTED, None
        else:
            status = CycleStatus.CONTINUE

    ctx.telemetry.log_cycle_terminal(status, new_pages, next_cycle)
    return {
        **state,
        "status": status,
        "next_cycle": next_cycle,
        "consecutive_failures": 0 if new_pages > 0 else state.get("consecutive_failures", 0),
    }


__all__ = [
    "decide_continuation_node",
    "discover_node",
    "eligible_sources",
    "explore_node",
    "is_accepted",
    "load_state_node",
    "merge_company_names",
    "pick_source",
    "prune_seeds",
    "rescore",
    "select_leads",
    "select_mode",
    "select_mode_node",
]
