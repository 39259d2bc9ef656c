"""
shared/store.py
─────────────────────────────────────────────────────────────────────────────
Persistent State Store: five named UTF-8 JSON documents.

    SEED_LIBRARY           list[SeedEntry]            sources to explore
    PROCESSED_COMPANIES    {lower name: iso ts}       write-once per key
    VERIFIED_JOB_PAGES     list[str]                  append-only, deduped
    PROMPT_HISTORY         list (cap 20)              past discovery queries
    PERFORMANCE_ANALYTICS  PerformanceAnalytics       creativity feedback

Every document is created lazily with its default on first read and is
read-modify-written on its own; there is no cross-document transaction.
Writers that may race use idempotent operations (membership check before
append, set union for processed companies).

Two backends share one async interface:
    FileStateStore  : one <KEY>.json per document, atomic replace on write
    InMemoryStore   : dict-backed, for tests and dry runs
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config import (
    DEFAULT_SEED_SCORE,
    DEFAULT_SEEDS,
    FAILED_PATTERNS_CAP,
    PROMPT_HISTORY_CAP,
    QUERY_PATTERNS_CAP,
    SUCCESSFUL_PATTERNS_CAP,
)
from validators import (
    EPOCH,
    PerformanceAnalytics,
    PromptHistoryEntry,
    QueryPattern,
    SeedEntry,
)

logger = logging.getLogger(__name__)


SEED_LIBRARY          = "SEED_LIBRARY"
PROCESSED_COMPANIES   = "PROCESSED_COMPANIES"
VERIFIED_JOB_PAGES    = "VERIFIED_JOB_PAGES"
PROMPT_HISTORY        = "PROMPT_HISTORY"
PERFORMANCE_ANALYTICS = "PERFORMANCE_ANALYTICS"

STATE_KEYS: tuple[str, ...] = (
    SEED_LIBRARY,
    PROCESSED_COMPANIES,
    VERIFIED_JOB_PAGES,
    PROMPT_HISTORY,
    PERFORMANCE_ANALYTICS,
)


def _default_document(key: str) -> Any:
    if key == SEED_LIBRARY:
        return [
            SeedEntry(url=url, score=DEFAULT_SEED_SCORE, last_visited=EPOCH).to_doc()
            for url in DEFAULT_SEEDS
        ]
    if key == PROCESSED_COMPANIES:
        return {}
    if key in (VERIFIED_JOB_PAGES, PROMPT_HISTORY):
        return []
    if key == PERFORMANCE_ANALYTICS:
        return PerformanceAnalytics().model_dump()
    raise KeyError(f"Unknown state key: {key}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def push_bounded(items: list, item: Any, cap: int) -> list:
    """Append and evict the oldest entries beyond cap."""
    items = list(items) + [item]
    return items[-cap:] if len(items) > cap else items


# ─────────────────────────────────────────────────────────────────────────────
# Backends
# ─────────────────────────────────────────────────────────────────────────────

class StateStore:
    """
    Raw key-value access plus typed helpers for the five documents.

    Subclasses implement _read_raw / _write_raw.  _read_raw returns None
    for a missing key.
    """

    async def _read_raw(self, key: str) -> Any | None:
        raise NotImplementedError

    async def _write_raw(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> Any:
        value = await self._read_raw(key)
        if value is None:
            value = _default_document(key)
            await self._write_raw(key, value)
            logger.info("[StateStore] Created %s with defaults", key)
        return value

    async def put(self, key: str, value: Any) -> None:
        if key not in STATE_KEYS:
            raise KeyError(f"Unknown state key: {key}")
        await self._write_raw(key, value)

    # ── Seed library ──────────────────────────────────────────────────────

    async def load_seeds(self) -> list[SeedEntry]:
        return [SeedEntry.model_validate(doc) for doc in await self.get(SEED_LIBRARY)]

    async def save_seeds(self, seeds: list[SeedEntry]) -> None:
        await self.put(SEED_LIBRARY, [seed.to_doc() for seed in seeds])

    # ── Processed companies ───────────────────────────────────────────────

    async def load_processed(self) -> dict[str, str]:
        return dict(await self.get(PROCESSED_COMPANIES))

    async def mark_processed(self, names: list[str]) -> dict[str, str]:
        """
        Record names as processed (lower-cased, write-once) and return the
        merged mapping.  Re-reads the stored document first so keys written
        by another writer since this cycle's read are kept.
        """
        current = await self.load_processed()
        stamp = _now_iso()
        for name in names:
            current.setdefault(name.lower(), stamp)
        await self.put(PROCESSED_COMPANIES, current)
        return current

    # ── Verified pages ────────────────────────────────────────────────────

    async def load_verified(self) -> list[str]:
        return list(await self.get(VERIFIED_JOB_PAGES))

    async def append_verified(self, url: str) -> bool:
        """Append url unless already present.  Returns True if appended."""
        pages = await self.load_verified()
        if url in pages:
            return False
        pages.append(url)
        await self.put(VERIFIED_JOB_PAGES, pages)
        return True

    # ── Prompt history ────────────────────────────────────────────────────

    async def push_prompt_history(self, query: str, creativity_level: int) -> list[dict]:
        entry = PromptHistoryEntry(
            query=query, creativity_level=creativity_level, timestamp=_now_iso(),
        )
        history = push_bounded(
            await self.get(PROMPT_HISTORY), entry.model_dump(), PROMPT_HISTORY_CAP,
        )
        await self.put(PROMPT_HISTORY, history)
        return history

    # ── Analytics ─────────────────────────────────────────────────────────

    async def load_analytics(self) -> PerformanceAnalytics:
        return PerformanceAnalytics.model_validate(await self.get(PERFORMANCE_ANALYTICS))

    async def save_analytics(self, analytics: PerformanceAnalytics) -> None:
        await self.put(PERFORMANCE_ANALYTICS, analytics.model_dump())


def record_query_outcome(
    analytics: PerformanceAnalytics,
    query: str,
    creativity_level: int,
    success: bool,
) -> PerformanceAnalytics:
    """Return a copy of analytics with one query outcome logged."""
    pattern = QueryPattern(
        query=query, creativity_level=creativity_level,
        success=success, timestamp=_now_iso(),
    )
    updated = analytics.model_copy(deep=True)
    updated.queryPatterns = push_bounded(updated.queryPatterns, pattern, QUERY_PATTERNS_CAP)
    if success:
        updated.successfulPatterns = push_bounded(
            updated.successfulPatterns, query, SUCCESSFUL_PATTERNS_CAP,
        )
    else:
        updated.failedPatterns = push_bounded(
            updated.failedPatterns, query, FAILED_PATTERNS_CAP,
        )
    return updated


class InMemoryStore(StateStore):
    """Dict-backed store.  Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self.writes: list[str] = []

    async def _read_raw(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def _write_raw(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.writes.append(key)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class FileStateStore(StateStore):
    """
    One JSON file per document under state_dir.
    Writes go to a temp file and are moved into place with os.replace so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, state_dir: str | os.PathLike):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def _read_sync(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _write_sync(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp_path, path)

    async def _read_raw(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def _write_raw(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write_sync, key, value)


__all__ = [
    "FileStateStore",
    "InMemoryStore",
    "PERFORMANCE_ANALYTICS",
    "PROCESSED_COMPANIES",
    "PROMPT_HISTORY",
    "SEED_LIBRARY",
    "STATE_KEYS",
    "StateStore",
    "VERIFIED_JOB_PAGES",
    "push_bounded",
    "record_query_outcome",
]
