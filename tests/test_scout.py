"""Tests for query generation and credential-rotating web search."""

import random

import httpx
import pytest

from scout import (
    build_query_prompt,
    generate_queries,
    search_web,
    top_organic_url,
)
from shared.llm import MalformedResponseError

from conftest import ScriptedCaller


def search_client(replies: dict, seen: list):
    def handler(request):
        seen.append(request)
        key = request.url.params["api_key"]
        reply = replies[key]
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestQueryPrompt:

    def test_only_recent_patterns_are_injected(self):
        successful = [f"win {i}" for i in range(12)]
        failed = [f"miss {i}" for i in range(20)]
        prompt = build_query_prompt(2, successful, failed)

        assert "win 1\n" not in prompt and "win 2" in prompt and "win 11" in prompt
        assert "miss 4\n" not in prompt and "miss 5" in prompt and "miss 19" in prompt
        assert "Creativity level 2/5" in prompt

    def test_empty_history(self):
        assert "(none yet)" in build_query_prompt(1, [], [])

    @pytest.mark.asyncio
    async def test_generate_queries_returns_strings(self):
        caller = ScriptedCaller('["seed fund portfolio", "  ", 42, "top startups 2026"]')
        assert await generate_queries(caller, "prompt") == ["seed fund portfolio", "top startups 2026"]

    @pytest.mark.asyncio
    async def test_generate_queries_rejects_objects(self):
        with pytest.raises(MalformedResponseError):
            await generate_queries(ScriptedCaller('{"query": "x"}'), "prompt")


class TestSearchWeb:

    @pytest.mark.asyncio
    async def test_error_reply_moves_to_next_key(self):
        seen = []
        replies = {
            "bad": {"error": "Invalid API key."},
            "good": {"organic_results": [{"link": "https://list.test/companies"}]},
        }
        async with search_client(replies, seen) as client:
            results = await search_web(client, "vc portfolio", ["bad", "good"], random.Random(0))

        assert top_organic_url(results) == "https://list.test/companies"
        used = [r.url.params["api_key"] for r in seen]
        assert used[-1] == "good"
        assert seen[0].url.params["gl"] == "us" and seen[0].url.params["hl"] == "en"
        assert seen[0].url.params["q"] == "vc portfolio"

    @pytest.mark.asyncio
    async def test_all_keys_failing_returns_none(self):
        seen = []
        replies = {"a": {"error": "quota"}, "b": {"error": "quota"}}
        async with search_client(replies, seen) as client:
            assert await search_web(client, "q", ["a", "b"], random.Random(0)) is None
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_non_json_reply_raises(self):
        replies = {"a": httpx.Response(200, text="<html>rate limited</html>")}
        async with search_client(replies, []) as client:
            with pytest.raises(MalformedResponseError):
                await search_web(client, "q", ["a"], random.Random(0))

    @pytest.mark.asyncio
    async def test_transport_error_tries_next_key(self):
        def handler(request):
            if request.url.params["api_key"] == "flaky":
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"organic_results": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            results = await search_web(client, "q", ["flaky", "ok"], random.Random(0))
        assert results == {"organic_results": []}


class TestTopOrganicUrl:

    def test_first_result_only(self):
        results = {"organic_results": [{"link": "https://a.test"}, {"link": "https://b.test"}]}
        assert top_organic_url(results) == "https://a.test"

    @pytest.mark.parametrize("results", [
        None,
        {},
        {"organic_results": []},
        {"organic_results": [{"title": "no link"}]},
        {"organic_results": [{"link": "javascript:void(0)"}]},
    ])
    def test_no_usable_result(self, results):
        assert top_organic_url(results) is None
