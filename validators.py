"""
validators.py
─────────────────────────────────────────────────────────────────────────────
Pydantic schemas for every persisted document and every collaborator
payload.

Stored documents are validated on read.  A document that fails validation
is state corruption: the ValidationError propagates to the cycle's
top-level handler (failure counted, delayed retry).

Collaborator replies are validated leniently: anything that does not fit
the contract is treated as "no result" by the caller in tools.py.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil.parser import isoparse
from pydantic import BaseModel, Field, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MIN_SEED_SCORE = -5


def to_utc(value: Any) -> datetime:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings, datetimes, and legacy epoch-millisecond
    numbers.  None and empty strings mean "never" (the epoch).
    """
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        dt = isoparse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso(dt: datetime) -> str:
    return to_utc(dt).isoformat()


# ─────────────────────────────────────────────────────────────────────────────
# Persisted documents
# ─────────────────────────────────────────────────────────────────────────────

class SeedEntry(BaseModel):
    """One content source the orchestrator re-crawls for company names."""
    url: str
    score: int = 0
    last_visited: datetime = EPOCH

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Seed URL must be http(s): {v!r}")
        return v

    @field_validator("last_visited", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> datetime:
        return to_utc(v)

    def to_doc(self) -> dict[str, Any]:
        return {"url": self.url, "score": self.score, "last_visited": iso(self.last_visited)}


class PromptHistoryEntry(BaseModel):
    query: str
    creativity_level: int = Field(ge=1, le=5)
    timestamp: str


class QueryPattern(BaseModel):
    query: str
    creativity_level: int = Field(ge=1, le=5)
    success: bool
    timestamp: str


class PerformanceAnalytics(BaseModel):
    """Feedback that drives creativity escalation in DISCOVER mode."""
    queryPatterns: list[QueryPattern] = Field(default_factory=list)
    successfulPatterns: list[str] = Field(default_factory=list)
    failedPatterns: list[str] = Field(default_factory=list)
    consecutiveFailures: int = Field(default=0, ge=0)


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator payloads
# ─────────────────────────────────────────────────────────────────────────────

class ExtractedCompany(BaseModel):
    """One element of the extractor's JSON array reply."""
    company_name: str

    @field_validator("company_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("company_name cannot be blank")
        return v.strip()


class VerifierResult(BaseModel):
    """Verifier reply.  The negative form carries a reason instead of a URL."""
    is_careers_page: bool = False
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    final_url: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, score))


class ContinueRequest(BaseModel):
    """Body of the self-addressed POST /__continue call."""
    nextCycle: int = Field(ge=1)


__all__ = [
    "EPOCH",
    "MIN_SEED_SCORE",
    "ContinueRequest",
    "ExtractedCompany",
    "PerformanceAnalytics",
    "PromptHistoryEntry",
    "QueryPattern",
    "SeedEntry",
    "VerifierResult",
    "iso",
    "to_utc",
]
