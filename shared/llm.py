"""
shared/llm.py
─────────────────────────────────────────────────────────────────────────────
Key-Fallback Caller: sends one prompt to a ranked list of
(credential, model) pairs until one of them answers.

Rules this module enforces:
  • Credential order is shuffled per call to spread load across keys
  • For each credential: primary model first, then the secondary model
  • A response counts only if it carries at least one candidate
  • Raises AllKeysExhaustedError only after every pair has failed
  • Stateless: nothing is persisted between calls

Used by the orchestrator (query generation) and by both services.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Sequence

import httpx

from shared.config import GEMINI_BASE_URL

logger = logging.getLogger(__name__)


class AllKeysExhaustedError(RuntimeError):
    """Every credential failed on both its primary and secondary model."""


class MalformedResponseError(ValueError):
    """An LLM or search response could not be parsed into the expected shape."""


# ─────────────────────────────────────────────────────────────────────────────
# Data Contracts
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class LLMResponse:
    """The first successful generation, plus which pair produced it."""
    data: dict[str, Any]
    model_used: str
    key_index: int
    latency_ms: int = 0

    @property
    def text(self) -> str:
        return response_text(self.data)


# ─────────────────────────────────────────────────────────────────────────────
# KeyFallbackCaller
# ─────────────────────────────────────────────────────────────────────────────

class KeyFallbackCaller:
    """
    Instantiate once per cycle; reuse for every prompt in that cycle.

    Example:
        caller = KeyFallbackCaller(keys, "gemini-2.0-flash", "gemini-1.5-flash")
        response = await caller.generate(prompt)
        queries = parse_json_response(response.text)
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        primary_model: str,
        secondary_model: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 30.0,
        rng: random.Random | None = None,
    ):
        if not api_keys:
            raise ValueError("[KeyFallbackCaller] At least one API key is required")
        self.api_keys        = list(api_keys)
        self.models          = (primary_model, secondary_model)
        self.base_url        = base_url.rstrip("/")
        self.timeout         = timeout
        self._client         = client
        self._rng            = rng or random.Random()

    def attempt_order(self) -> list[tuple[int, str]]:
        """(key index, model) pairs in the order they will be tried."""
        indices = list(range(len(self.api_keys)))
        self._rng.shuffle(indices)
        return [(idx, model) for idx in indices for model in self.models]

    async def generate(self, prompt: str) -> LLMResponse:
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        attempts = self.attempt_order()

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            for attempt_no, (key_index, model) in enumerate(attempts, start=1):
                url = f"{self.base_url}/models/{model}:generateContent"
                t0 = time.monotonic()
                try:
                    response = await client.post(
                        url,
                        params={"key": self.api_keys[key_index]},
                        json=payload,
                    )
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPStatusError as exc:
                    logger.warning(
                        "[KeyFallbackCaller] attempt %d/%d key#%d %s → HTTP %s",
                        attempt_no, len(attempts), key_index, model,
                        exc.response.status_code,
                    )
                    continue
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning(
                        "[KeyFallbackCaller] attempt %d/%d key#%d %s → %s",
                        attempt_no, len(attempts), key_index, model, exc,
                    )
                    continue

                if not isinstance(data, dict) or not data.get("candidates"):
                    logger.warning(
                        "[KeyFallbackCaller] attempt %d/%d key#%d %s → no candidates",
                        attempt_no, len(attempts), key_index, model,
                    )
                    continue

                latency_ms = int((time.monotonic() - t0) * 1000)
                logger.info(
                    "[KeyFallbackCaller] key#%d %s answered in %dms",
                    key_index, model, latency_ms,
                )
                return LLMResponse(
                    data=data, model_used=model,
                    key_index=key_index, latency_ms=latency_ms,
                )
        finally:
            if self._client is None:
                await client.aclose()

        raise AllKeysExhaustedError(
            f"All {len(self.api_keys)} credential(s) failed on both models"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Response helpers
# ─────────────────────────────────────────────────────────────────────────────

def response_text(data: dict[str, Any]) -> str:
    """Concatenated text parts of the first candidate ("" if absent)."""
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


_JSON_BLOCK = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)


def parse_json_response(raw_text: str) -> Any:
    """
    Parse JSON out of an LLM reply.
    Handles markdown fences and leading/trailing prose; raises
    MalformedResponseError when no JSON value can be recovered.
    """
    cleaned = (raw_text or "").strip()
    if cleaned.startswith("```"):
        cleaned = "\n".join(
            line for line in cleaned.splitlines()
            if not line.strip().startswith("```")
        ).strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Last-ditch attempt: the outermost [...] or {...} block
    match = _JSON_BLOCK.search(cleaned)
    if match:
        try:
            return json.loads(match.group())
        except json.JSONDecodeError:
            pass
    raise MalformedResponseError(f"No JSON found in response: {raw_text[:120]!r}")


__all__ = [
    "AllKeysExhaustedError",
    "KeyFallbackCaller",
    "LLMResponse",
    "MalformedResponseError",
    "parse_json_response",
    "response_text",
]
