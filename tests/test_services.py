"""Tests for the extractor and verifier service apps."""

import httpx
import pytest
from fastapi.testclient import TestClient

from services import get_caller
from services import extractor, verifier
from shared.llm import AllKeysExhaustedError

from conftest import ScriptedCaller


def override_caller(app, caller):
    app.dependency_overrides[get_caller] = lambda: caller


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    extractor.app.dependency_overrides.clear()
    verifier.app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# Extractor
# ─────────────────────────────────────────────────────────────────────────────

class TestExtractor:

    def test_returns_company_objects(self):
        caller = ScriptedCaller('```json\n[{"company_name": "Acme"}, "Globex", {"company_name": "acme"}]\n```')
        override_caller(extractor.app, caller)

        response = TestClient(extractor.app).post("/", json={"text_chunk": "Acme and Globex"})

        assert response.status_code == 200
        assert response.json() == [{"company_name": "Acme"}, {"company_name": "Globex"}]
        assert "Acme and Globex" in caller.prompts[0]

    def test_missing_field_is_bad_request(self):
        override_caller(extractor.app, ScriptedCaller())
        response = TestClient(extractor.app).post("/", json={"text": "wrong field"})
        assert response.status_code == 400
        assert "reason" in response.json()

    def test_non_json_body_is_bad_request(self):
        override_caller(extractor.app, ScriptedCaller())
        response = TestClient(extractor.app).post("/", content=b"not json")
        assert response.status_code == 400

    def test_get_is_not_allowed(self):
        assert TestClient(extractor.app).get("/").status_code == 405

    def test_llm_failure_is_empty_server_error(self):
        override_caller(extractor.app, ScriptedCaller(error=AllKeysExhaustedError("all keys failed")))
        response = TestClient(extractor.app).post("/", json={"text_chunk": "Acme"})
        assert response.status_code == 500
        assert response.json() == []

    def test_missing_credentials_is_empty_server_error(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
        response = TestClient(extractor.app).post("/", json={"text_chunk": "Acme"})
        assert response.status_code == 500
        assert response.json() == []


# ─────────────────────────────────────────────────────────────────────────────
# Verifier
# ─────────────────────────────────────────────────────────────────────────────

CAREERS_HTML = "<h1>Careers at Acme</h1><p>Open roles: Engineer, Designer</p>"


def override_pages(handler):
    async def client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as c:
            yield c
    verifier.app.dependency_overrides[verifier.get_http_client] = client


def redirecting_site(request):
    if request.url.path == "/careers":
        return httpx.Response(301, headers={"location": "https://jobs.acme.test/"})
    if request.url.host == "jobs.acme.test":
        return httpx.Response(200, text=CAREERS_HTML, headers={"content-type": "text/html"})
    return httpx.Response(404)


class TestVerifier:

    def test_confirmed_page_reports_final_url(self):
        caller = ScriptedCaller(
            '{"careers_url": "https://acme.test/careers"}',
            '{"is_careers_page": true, "confidence_score": 0.92}',
        )
        override_caller(verifier.app, caller)
        override_pages(redirecting_site)

        response = TestClient(verifier.app).post("/", json={"company_name": "Acme"})

        assert response.status_code == 200
        assert response.json() == {
            "is_careers_page": True,
            "confidence_score": 0.92,
            "final_url": "https://jobs.acme.test/",
        }
        assert "Open roles" in caller.prompts[1]

    def test_rejected_page_carries_reason(self):
        caller = ScriptedCaller(
            '{"careers_url": "https://acme.test/careers"}',
            '{"is_careers_page": false, "confidence_score": 0.7}',
        )
        override_caller(verifier.app, caller)
        override_pages(redirecting_site)

        body = TestClient(verifier.app).post("/", json={"company_name": "Acme"}).json()

        assert body["is_careers_page"] is False
        assert body["reason"]

    def test_unknown_company(self):
        override_caller(verifier.app, ScriptedCaller('{"careers_url": null}'))
        override_pages(redirecting_site)

        response = TestClient(verifier.app).post("/", json={"company_name": "Nobody Inc"})

        assert response.status_code == 200
        assert response.json() == {"is_careers_page": False, "reason": "no careers page candidate"}

    def test_unreachable_candidate(self):
        override_caller(verifier.app, ScriptedCaller('{"careers_url": "https://acme.test/missing"}'))
        override_pages(redirecting_site)

        response = TestClient(verifier.app).post("/", json={"company_name": "Acme"})

        assert response.json() == {"is_careers_page": False, "reason": "careers page unreachable"}

    def test_missing_field_is_bad_request(self):
        override_caller(verifier.app, ScriptedCaller())
        override_pages(redirecting_site)
        response = TestClient(verifier.app).post("/", json={"name": "Acme"})
        assert response.status_code == 400
        assert response.json()["is_careers_page"] is False

    def test_get_is_not_allowed(self):
        assert TestClient(verifier.app).get("/").status_code == 405

    def test_malformed_llm_reply_is_server_error(self):
        override_caller(verifier.app, ScriptedCaller("I think it's acme.test/jobs"))
        override_pages(redirecting_site)

        response = TestClient(verifier.app).post("/", json={"company_name": "Acme"})

        assert response.status_code == 500
        assert response.json() == {"is_careers_page": False, "reason": "verification failed"}
