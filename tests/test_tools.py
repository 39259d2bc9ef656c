"""Tests for the extractor / verifier HTTP clients."""

import json

import httpx
import pytest

from tools import extract_companies, verify_company


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestExtractCompanies:

    @pytest.mark.asyncio
    async def test_names_returned(self):
        def handler(request):
            assert json.loads(request.content) == {"text_chunk": "Acme and Globex are hiring"}
            return httpx.Response(200, json=[{"company_name": "Acme"}, {"company_name": " Globex "}])

        async with client_for(handler) as client:
            result = await extract_companies(client, "https://extractor.test/", "Acme and Globex are hiring")

        assert result.status == "ok"
        assert result.value == ["Acme", "Globex"]

    @pytest.mark.asyncio
    async def test_invalid_items_skipped(self):
        def handler(request):
            return httpx.Response(200, json=[{"company_name": ""}, {"name": "x"}, {"company_name": "Acme"}])

        async with client_for(handler) as client:
            result = await extract_companies(client, "https://extractor.test/", "chunk")
        assert result.value == ["Acme"]

    @pytest.mark.asyncio
    async def test_nothing_found_is_empty_not_error(self):
        async with client_for(lambda request: httpx.Response(200, json=[])) as client:
            result = await extract_companies(client, "https://extractor.test/", "chunk")
        assert result.status == "empty"
        assert not result.failed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, json=[]),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"company_name": "Acme"}),
    ])
    async def test_failures_collapse_to_error(self, response):
        async with client_for(lambda request: response) as client:
            result = await extract_companies(client, "https://extractor.test/", "chunk")
        assert result.failed
        assert result.value == []


class TestVerifyCompany:

    @pytest.mark.asyncio
    async def test_positive_verdict(self):
        verdict = {"is_careers_page": True, "confidence_score": 0.9, "final_url": "https://acme.test/jobs"}
        async with client_for(lambda request: httpx.Response(200, json=verdict)) as client:
            result = await verify_company(client, "https://verifier.test/", "Acme")

        assert result.status == "ok"
        assert result.value.final_url == "https://acme.test/jobs"

    @pytest.mark.asyncio
    async def test_negative_verdict_keeps_reason(self):
        verdict = {"is_careers_page": False, "reason": "no careers page candidate"}
        async with client_for(lambda request: httpx.Response(200, json=verdict)) as client:
            result = await verify_company(client, "https://verifier.test/", "Acme")

        assert result.status == "empty"
        assert result.value.reason == "no careers page candidate"

    @pytest.mark.asyncio
    async def test_server_error_is_conservative_negative(self):
        body = {"is_careers_page": False, "reason": "verification failed"}
        async with client_for(lambda request: httpx.Response(500, json=body)) as client:
            result = await verify_company(client, "https://verifier.test/", "Acme")

        assert result.failed
        assert result.value.is_careers_page is False
        assert result.value.confidence_score == 0.0
