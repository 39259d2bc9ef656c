"""
services/extractor.py
─────────────────────────────────────────────────────────────────────────────
Extractor Service: text chunk → candidate company names.

POST /  {"text_chunk": "..."}  →  200 [{"company_name": "..."}, ...]
        missing / blank field   →  400 {"reason": "..."}
        LLM failure             →  500 []
Other methods on / get FastAPI's automatic 405.
─────────────────────────────────────────────────────────────────────────────
"""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from services import get_caller
from shared.config import ConfigurationError
from shared.llm import (
    AllKeysExhaustedError,
    KeyFallbackCaller,
    MalformedResponseError,
    parse_json_response,
)
from validators import ExtractedCompany

logger = logging.getLogger(__name__)

app = FastAPI(title="Careers Scout Extractor")

EXTRACT_PROMPT = """\
Below is text scraped from a web page that lists or mentions companies.
List every real company or organisation named in it that could plausibly
employ people. Skip people, products, cities, publications and generic
words.

Respond with a JSON array and nothing else, e.g.
[{{"company_name": "Acme Robotics"}}, {{"company_name": "Globex"}}]
Respond with [] if there are none.

TEXT:
{text_chunk}
"""


def parse_company_names(parsed) -> list[str]:
    """
    Names from the LLM's JSON reply, de-duplicated case-insensitively.
    Accepts [{"company_name": ...}] as well as a bare list of strings.
    """
    if not isinstance(parsed, list):
        raise MalformedResponseError(f"Expected a JSON array, got {type(parsed).__name__}")

    seen: dict[str, str] = {}
    for item in parsed:
        if isinstance(item, str):
            item = {"company_name": item}
        try:
            name = ExtractedCompany.model_validate(item).company_name
        except ValidationError:
            continue
        seen.setdefault(name.lower(), name)
    return list(seen.values())


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Extractor misconfigured: {exc}")
    return JSONResponse(status_code=500, content=[])


@app.post("/")
async def extract(request: Request, caller: KeyFallbackCaller = Depends(get_caller)):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"reason": "body must be JSON"})

    text_chunk = body.get("text_chunk") if isinstance(body, dict) else None
    if not isinstance(text_chunk, str) or not text_chunk.strip():
        return JSONResponse(status_code=400, content={"reason": "text_chunk is required"})

    try:
        response = await caller.generate(EXTRACT_PROMPT.format(text_chunk=text_chunk))
        names = parse_company_names(parse_json_response(response.text))
    except (AllKeysExhaustedError, MalformedResponseError) as exc:
        logger.error(f"Extraction failed for chunk of {len(text_chunk)} chars: {exc}")
        return JSONResponse(status_code=500, content=[])

    logger.info(f"Extracted {len(names)} company name(s) from {len(text_chunk)} chars")
    return [{"company_name": name} for name in names]
