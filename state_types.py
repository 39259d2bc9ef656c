"""
state_types.py
─────────────────────────────────────────────────────────────────────────────
Shared type definitions for the cycle graph.

CycleState is the dict flowing through the LangGraph nodes.  CycleContext
holds the per-cycle collaborators (store, HTTP client, telemetry, clock)
and travels in the graph config instead of the state, so the state stays
plain data.

Kept apart from graph.py and nodes.py to avoid circular imports.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypedDict

import httpx

from shared.config import Settings
from shared.llm import KeyFallbackCaller
from shared.store import StateStore
from shared.telemetry import TelemetryLogger


class CycleState(TypedDict, total=False):
    """
    State passed through the cycle graph.

    Documents are read once in load_state; nodes write back through the
    store as they go and record what they changed here.
    """
    cycle: int                          # Step counter carried by /__continue
    now: datetime                       # Fixed clock for the whole cycle
    mode: str                           # Mode.EXPLORE | Mode.DISCOVER
    seeds: list[dict]                   # SeedEntry docs as loaded
    eligible_urls: list[str]            # Seeds past the revisit cooldown
    processed: dict[str, str]           # lower-cased name -> first processed
    initial_verified_count: int
    verified_count: int
    consecutive_failures: int
    creativity_level: int
    selected_source: Optional[str]
    leads: list[str]                    # Names sent to the verifier this cycle
    new_pages: list[str]                # URLs accepted this cycle
    query: Optional[str]                # DISCOVER query actually searched
    seed_added: Optional[str]
    status: str                         # CycleStatus, set by decide_continuation
    next_cycle: Optional[int]
    error_log: list[str]                # Non-fatal errors (append only)


@dataclass
class CycleContext:
    """Collaborators for one cycle.  Built by main.run_cycle()."""
    settings: Settings
    store: StateStore
    client: httpx.AsyncClient
    telemetry: TelemetryLogger
    caller: KeyFallbackCaller
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = field(
        default_factory=lambda: (lambda: datetime.now(timezone.utc))
    )


def context_from_config(config: Any) -> CycleContext:
    """Pull the CycleContext out of a LangGraph RunnableConfig."""
    return config["configurable"]["context"]


__all__ = ["CycleContext", "CycleState", "context_from_config"]
