"""
tools.py
─────────────────────────────────────────────────────────────────────────────
HTTP clients for the two collaborator services the orchestrator fans out to:

1. extract_companies - Extractor Service, text chunk → company names
2. verify_company    - Verifier Service, company name → careers page verdict

Both return a CallResult instead of raising, so one failed request never
fails its batch.  CallResult keeps "nothing found" (empty) apart from
"could not ask" (error); the orchestrator treats both as no contribution
but telemetry counts them separately.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

import httpx
from pydantic import ValidationError

from validators import ExtractedCompany, VerifierResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CallResult(Generic[T]):
    status: Literal["ok", "empty", "error"]
    value: T
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == "error"


# ─────────────────────────────────────────────────────────────────────────────
# Extractor Service
# ─────────────────────────────────────────────────────────────────────────────

def _parse_company_list(data: Any) -> list[str]:
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    names = []
    for item in data:
        try:
            names.append(ExtractedCompany.model_validate(item).company_name)
        except ValidationError:
            continue
    return names


async def extract_companies(
    client: httpx.AsyncClient,
    extractor_url: str,
    text_chunk: str,
) -> CallResult[list[str]]:
    """
    POST one chunk to the Extractor Service.

    Returns ok with the names found, empty if none, or error (with an
    empty list) on any transport / HTTP / shape failure.
    """
    try:
        response = await client.post(extractor_url, json={"text_chunk": text_chunk})
        response.raise_for_status()
        names = _parse_company_list(response.json())
    except httpx.HTTPStatusError as exc:
        logger.warning(f"Extractor HTTP {exc.response.status_code} for chunk of {len(text_chunk)} chars")
        return CallResult("error", [], f"HTTP {exc.response.status_code}")
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Extractor call failed: {exc!r}")
        return CallResult("error", [], str(exc)[:200])

    return CallResult("ok" if names else "empty", names)


# ─────────────────────────────────────────────────────────────────────────────
# Verifier Service
# ─────────────────────────────────────────────────────────────────────────────

_NO_VERDICT = VerifierResult(is_careers_page=False, confidence_score=0.0)


async def verify_company(
    client: httpx.AsyncClient,
    verifier_url: str,
    company_name: str,
) -> CallResult[VerifierResult]:
    """
    POST one company name to the Verifier Service.

    ok carries a positive verdict, empty a negative one (reason set), and
    error a conservative negative verdict when the call itself failed.
    """
    try:
        response = await client.post(verifier_url, json={"company_name": company_name})
        response.raise_for_status()
        result = VerifierResult.model_validate(response.json())
    except httpx.HTTPStatusError as exc:
        logger.warning(f"Verifier HTTP {exc.response.status_code} for {company_name!r}")
        return CallResult("error", _NO_VERDICT, f"HTTP {exc.response.status_code}")
    except (httpx.HTTPError, ValueError) as exc:
        # pydantic's ValidationError is a ValueError
        logger.warning(f"Verifier call failed for {company_name!r}: {exc!r}")
        return CallResult("error", _NO_VERDICT, str(exc)[:200])

    return CallResult("ok" if result.is_careers_page else "empty", result)


__all__ = ["CallResult", "extract_companies", "verify_company"]
