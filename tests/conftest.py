"""
Shared fixtures.

FakeWeb answers every outbound call a cycle makes (source pages, the
extractor and verifier services, the Gemini endpoint and SerpAPI) from
scripted data, behind an httpx.MockTransport.
"""

import json
import random
from datetime import datetime, timezone

import httpx
import pytest

from shared.config import Settings
from shared.llm import KeyFallbackCaller, LLMResponse
from shared.store import InMemoryStore, SEED_LIBRARY
from shared.telemetry import TelemetryLogger
from state_types import CycleContext
from validators import EPOCH, iso

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

EXTRACTOR_URL = "https://extractor.test/"
VERIFIER_URL = "https://verifier.test/"


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def seed_doc(url: str, score: int = 0, last_visited: datetime = EPOCH) -> dict:
    return {"url": url, "score": score, "last_visited": iso(last_visited)}


class FakeWeb:
    """Scripted responses for every host the orchestrator talks to."""

    def __init__(self):
        self.pages: dict[str, str] = {}
        self.extract = lambda chunk: httpx.Response(200, json=[])
        self.verdicts: dict[str, dict] = {}
        self.llm_texts: list[str] = []
        self.search_replies: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def requests_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def verified_names(self) -> list[str]:
        return [json.loads(r.content)["company_name"] for r in self.requests_to("verifier.test")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == "extractor.test":
            return self.extract(json.loads(request.content)["text_chunk"])

        if host == "verifier.test":
            name = json.loads(request.content)["company_name"]
            verdict = self.verdicts.get(name, {"is_careers_page": False, "reason": "not found"})
            return httpx.Response(200, json=verdict)

        if host == "generativelanguage.googleapis.com":
            if not self.llm_texts:
                return httpx.Response(503, json={"error": "no scripted reply"})
            return httpx.Response(200, json=gemini_reply(self.llm_texts.pop(0)))

        if host == "serpapi.com":
            key = request.url.params.get("api_key")
            return httpx.Response(200, json=self.search_replies.get(key, {"error": "Invalid API key"}))

        url = str(request.url)
        if url in self.pages:
            return httpx.Response(200, text=self.pages[url], headers={"content-type": "text/html"})
        return httpx.Response(404, text="not found")


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        gemini_api_keys=("gem-1",),
        serpapi_api_keys=("serp-1",),
        self_base_url="https://orchestrator.test",
        continue_secret="s3cret",
        extractor_url=EXTRACTOR_URL,
        verifier_url=VERIFIER_URL,
        state_dir=str(tmp_path / "state"),
        log_dir=str(tmp_path / "logs"),
        max_cycles=10,
        retry_delay_seconds=5.0,
    )


@pytest.fixture
def client(web) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(web.handler))


@pytest.fixture
def make_context(settings, client):
    """Build a CycleContext around a given store, with a fixed clock."""
    def _make(store, cycle: int = 1) -> CycleContext:
        rng = random.Random(7)
        return CycleContext(
            settings=settings,
            store=store,
            client=client,
            telemetry=TelemetryLogger(cycle=cycle, log_dir=None),
            caller=KeyFallbackCaller(
                settings.gemini_api_keys, "primary", "secondary", client=client, rng=rng,
            ),
            rng=rng,
            clock=lambda: NOW,
        )
    return _make


def store_with_seeds(*seeds: dict, **documents) -> InMemoryStore:
    return InMemoryStore({SEED_LIBRARY: list(seeds), **documents})


class ScriptedCaller:
    """Stands in for KeyFallbackCaller in the service apps."""

    def __init__(self, *texts: str, error: Exception | None = None):
        self.texts = list(texts)
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return LLMResponse(
            data=gemini_reply(self.texts.pop(0)), model_used="primary", key_index=0, latency_ms=1,
        )
