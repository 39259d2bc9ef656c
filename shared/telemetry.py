"""
shared/telemetry.py
─────────────────────────────────────────────────────────────────────────────
Telemetry and execution logging for orchestrator cycles.

Responsibilities:
  • Append structured JSON events to execution_log.jsonl (append-only)
  • Track per-cycle counters (extractor / verifier calls, failures)
  • Write cycle_report.json with the summary of the most recent cycle
  • Expose simple log_*() helper methods so node code stays clean

The orchestrator has no external caller; this log plus the stdlib logger
is how failures surface.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.config import EventType

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Internal event dataclass
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class _LogEvent:
    event_type: str
    cycle: int
    mode: str | None
    timestamp_utc: str
    elapsed_seconds: float
    # All extra fields are stored in payload and merged on serialisation
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        base = {
            "event_type":      self.event_type,
            "cycle":           self.cycle,
            "mode":            self.mode,
            "timestamp_utc":   self.timestamp_utc,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
        }
        base.update(self.payload)
        return base


# ─────────────────────────────────────────────────────────────────────────────
# TelemetryLogger
# ─────────────────────────────────────────────────────────────────────────────

class TelemetryLogger:
    """
    Event log for one cycle.

    Instantiate at the start of run_cycle():

        telemetry = TelemetryLogger(cycle=3, log_dir="./logs")

    Then call log_*() helpers from the nodes.  Call finalise() once the
    cycle's status is known to write cycle_report.json.

    log_dir=None keeps events in memory only (used by tests).
    """

    def __init__(self, cycle: int, log_dir: str | None = "./logs"):
        self.cycle = cycle
        self.mode: str | None = None
        self.events: list[dict] = []

        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path    = self.log_dir / "execution_log.jsonl"
            self.report_path = self.log_dir / "cycle_report.json"

        self._cycle_start: float = time.time()
        self._extractor_calls = 0
        self._extractor_errors = 0
        self._verifier_calls = 0
        self._verifier_errors = 0
        self._pages_accepted = 0

    # ──────────────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────────────

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds")

    def _append(self, event: _LogEvent) -> None:
        record = event.to_dict()
        self.events.append(record)
        if self.log_dir is None:
            return
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_event(self, event_type: str, **kwargs: Any) -> None:
        """Generic helper for events without a dedicated log_*() method."""
        self._append(_LogEvent(
            event_type=event_type,
            cycle=self.cycle,
            mode=self.mode,
            timestamp_utc=self._now_iso(),
            elapsed_seconds=time.time() - self._cycle_start,
            payload=dict(kwargs),
        ))

    # ──────────────────────────────────────────────────────────────────────
    # Structured log helpers
    # ──────────────────────────────────────────────────────────────────────

    def log_cycle_start(self, consecutive_failures: int) -> None:
        self.log_event(EventType.CYCLE_START, consecutive_failures=consecutive_failures)

    def log_mode_selected(self, mode: str, eligible_sources: int) -> None:
        self.mode = mode
        self.log_event(EventType.MODE_SELECTED, eligible_sources=eligible_sources)

    def log_source_explored(self, url: str, score: int, chars: int, chunks: int) -> None:
        self.log_event(
            EventType.SOURCE_EXPLORED,
            source_url=url, source_score=score, content_chars=chars, chunks=chunks,
        )

    def log_extract_batch(self, batch_no: int, size: int, errors: int, names_found: int) -> None:
        self._extractor_calls += size
        self._extractor_errors += errors
        self.log_event(
            EventType.EXTRACT_BATCH,
            batch=batch_no, batch_size=size, errors=errors, names_found=names_found,
        )

    def log_lead_verified(
        self,
        company_name: str,
        status: str,
        is_careers_page: bool,
        confidence_score: float,
        final_url: str | None,
        accepted: bool,
    ) -> None:
        self._verifier_calls += 1
        if status == "error":
            self._verifier_errors += 1
        if accepted:
            self._pages_accepted += 1
        self.log_event(
            EventType.LEAD_VERIFIED,
            company_name=company_name,
            call_status=status,
            is_careers_page=is_careers_page,
            confidence_score=round(confidence_score, 4),
            final_url=final_url,
            accepted=accepted,
        )

    def log_seed_change(self, event_type: str, url: str, score: int) -> None:
        self.log_event(event_type, source_url=url, source_score=score)

    def log_cycle_terminal(self, status: str, new_pages: int, next_cycle: int | None) -> None:
        self.log_event(
            EventType.CYCLE_TERMINAL,
            status=status, new_pages=new_pages, next_cycle=next_cycle,
        )

    # ──────────────────────────────────────────────────────────────────────
    # Cycle report
    # ──────────────────────────────────────────────────────────────────────

    def finalise(self, status: str, new_pages: int = 0, error: str | None = None) -> dict:
        """
        Build the cycle summary and write it to cycle_report.json.
        Returns the report dict.
        """
        report = {
            "cycle":                 self.cycle,
            "mode":                  self.mode,
            "status":                status,
            "new_pages":             new_pages,
            "pages_accepted":        self._pages_accepted,
            "extractor_calls":       self._extractor_calls,
            "extractor_errors":      self._extractor_errors,
            "verifier_calls":        self._verifier_calls,
            "verifier_errors":       self._verifier_errors,
            "error":                 error,
            "finished_utc":          self._now_iso(),
            "runtime_seconds":       round(time.time() - self._cycle_start, 2),
        }
        if self.log_dir is not None:
            with open(self.report_path, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2)

        logger.info(
            "[Telemetry] cycle %d %s | mode: %s | new pages: %d | "
            "extractor: %d (%d err) | verifier: %d (%d err) | runtime: %.1fs",
            self.cycle, status, self.mode, new_pages,
            self._extractor_calls, self._extractor_errors,
            self._verifier_calls, self._verifier_errors,
            report["runtime_seconds"],
        )
        return report


__all__ = ["TelemetryLogger"]
