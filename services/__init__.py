"""
LLM-backed collaborator services the orchestrator calls over HTTP.

Each service is its own FastAPI app:
    uvicorn services.extractor:app
    uvicorn services.verifier:app
"""

import os

from shared.config import DEFAULT_PRIMARY_MODEL, DEFAULT_SECONDARY_MODEL, require_list
from shared.llm import KeyFallbackCaller


def get_caller() -> KeyFallbackCaller:
    """
    FastAPI dependency: a Key-Fallback Caller built from the environment.
    Raises ConfigurationError when GEMINI_API_KEYS is unset.
    """
    return KeyFallbackCaller(
        require_list("GEMINI_API_KEYS"),
        os.environ.get("GEMINI_PRIMARY_MODEL", DEFAULT_PRIMARY_MODEL),
        os.environ.get("GEMINI_SECONDARY_MODEL", DEFAULT_SECONDARY_MODEL),
    )
