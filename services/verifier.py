"""
services/verifier.py
─────────────────────────────────────────────────────────────────────────────
Verifier Service: company name → careers page verdict.

Two LLM round trips around one fetch:
  1. ask for the company's most likely careers page URL
  2. fetch it (redirects followed; final_url is where we landed)
  3. ask whether the fetched text really is a careers / jobs page

POST /  {"company_name": "..."}
    → 200 {"is_careers_page": true, "confidence_score": 0.93, "final_url": "..."}
    → 200 {"is_careers_page": false, "reason": "..."}
    → 400 {"is_careers_page": false, "reason": "company_name is required"}
    → 500 {"is_careers_page": false, "reason": "..."}
─────────────────────────────────────────────────────────────────────────────
"""

import logging
import os
from typing import AsyncIterator

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from fetcher import USER_AGENT, html_to_text
from services import get_caller
from shared.config import ConfigurationError
from shared.llm import (
    AllKeysExhaustedError,
    KeyFallbackCaller,
    MalformedResponseError,
    parse_json_response,
)
from validators import VerifierResult

logger = logging.getLogger(__name__)

app = FastAPI(title="Careers Scout Verifier")

# Page text sent to the validation prompt
MAX_PAGE_CHARS = 12_000

LOCATE_PROMPT = """\
What is the URL of the official careers or jobs page of the company
"{company_name}"? Prefer the company's own domain; a hosted job board
(Greenhouse, Lever, Ashby, Workable) is acceptable if that is where the
company lists its openings.

Respond with JSON only: {{"careers_url": "https://..."}}
Use {{"careers_url": null}} if you do not know.
"""

VALIDATE_PROMPT = """\
The page below was fetched from {final_url} while looking for the careers
page of "{company_name}". Decide whether it is that company's careers or
job listings page (not a news article, a directory, or another company).

Respond with JSON only:
{{"is_careers_page": true|false, "confidence_score": 0.0-1.0}}

PAGE TEXT:
{page_text}
"""


def _negative(reason: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"is_careers_page": False, "reason": reason},
    )


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    timeout = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))
    async with httpx.AsyncClient(timeout=timeout) as client:
        yield client


async def locate_careers_url(caller: KeyFallbackCaller, company_name: str) -> str | None:
    response = await caller.generate(LOCATE_PROMPT.format(company_name=company_name))
    parsed = parse_json_response(response.text)
    if not isinstance(parsed, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(parsed).__name__}")
    url = parsed.get("careers_url")
    if isinstance(url, str) and url.startswith(("http://", "https://")):
        return url
    return None


async def judge_page(
    caller: KeyFallbackCaller,
    company_name: str,
    final_url: str,
    page_text: str,
) -> VerifierResult:
    prompt = VALIDATE_PROMPT.format(
        company_name=company_name,
        final_url=final_url,
        page_text=page_text[:MAX_PAGE_CHARS],
    )
    response = await caller.generate(prompt)
    parsed = parse_json_response(response.text)
    if not isinstance(parsed, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(parsed).__name__}")
    # ValidationError is a ValueError; the caller maps it to a 500
    return VerifierResult.model_validate({
        "is_careers_page": parsed.get("is_careers_page") is True,
        "confidence_score": parsed.get("confidence_score", 0.0),
        "final_url": final_url,
    })


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Verifier misconfigured: {exc}")
    return _negative("verifier misconfigured", status_code=500)


@app.post("/")
async def verify(
    request: Request,
    caller: KeyFallbackCaller = Depends(get_caller),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        body = await request.json()
    except ValueError:
        return _negative("body must be JSON", status_code=400)

    company_name = body.get("company_name") if isinstance(body, dict) else None
    if not isinstance(company_name, str) or not company_name.strip():
        return _negative("company_name is required", status_code=400)
    company_name = company_name.strip()

    try:
        careers_url = await locate_careers_url(caller, company_name)
        if careers_url is None:
            return _negative("no careers page candidate")

        try:
            page = await client.get(
                careers_url,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
            page.raise_for_status()
        except httpx.HTTPError as exc:
            logger.info(f"[{company_name}] candidate {careers_url} unreachable: {exc!r}")
            return _negative("careers page unreachable")

        final_url = str(page.url)
        page_text = html_to_text(page.text)
        if not page_text:
            return _negative("careers page is empty")

        result = await judge_page(caller, company_name, final_url, page_text)

    except (AllKeysExhaustedError, ValueError) as exc:
        # MalformedResponseError and pydantic's ValidationError are ValueErrors
        logger.error(f"[{company_name}] verification failed: {exc}")
        return _negative("verification failed", status_code=500)

    logger.info(
        f"[{company_name}] {final_url} → careers={result.is_careers_page} "
        f"confidence={result.confidence_score:.2f}"
    )
    if not result.is_careers_page:
        return {
            "is_careers_page": False,
            "confidence_score": result.confidence_score,
            "final_url": final_url,
            "reason": "page is not a careers page",
        }
    return {
        "is_careers_page": True,
        "confidence_score": result.confidence_score,
        "final_url": final_url,
    }
