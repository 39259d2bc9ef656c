"""Tests for the orchestrator HTTP app."""

import pytest
from fastapi.testclient import TestClient

import server

ENV = {
    "GEMINI_API_KEYS": "gem-1,gem-2",
    "SERPAPI_API_KEYS": "serp-1",
    "SELF_BASE_URL": "https://orchestrator.test/",
    "CONTINUE_SECRET": "s3cret",
    "EXTRACTOR_URL": "https://extractor.test/",
    "VERIFIER_URL": "https://verifier.test/",
}


@pytest.fixture
def env(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)


@pytest.fixture
def runs(mocker):
    return mocker.patch("server.run_and_continue", new=mocker.AsyncMock())


@pytest.fixture
def api():
    return TestClient(server.app)


class TestContinue:

    def test_missing_secret_is_forbidden(self, env, runs, api):
        response = api.post("/__continue", json={"nextCycle": 2})
        assert response.status_code == 403
        runs.assert_not_awaited()

    def test_wrong_secret_is_forbidden(self, env, runs, api):
        response = api.post("/__continue", json={"nextCycle": 2}, headers={"X-Continue-Secret": "guess"})
        assert response.status_code == 403
        runs.assert_not_awaited()

    def test_accepted_call_runs_cycle_in_background(self, env, runs, api):
        response = api.post("/__continue", json={"nextCycle": 2}, headers={"X-Continue-Secret": "s3cret"})

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "cycle": 2}
        runs.assert_awaited_once()
        cycle, settings = runs.await_args.args
        assert cycle == 2
        assert settings.self_base_url == "https://orchestrator.test"
        assert settings.gemini_api_keys == ("gem-1", "gem-2")

    def test_cycle_number_must_be_positive(self, env, runs, api):
        response = api.post("/__continue", json={"nextCycle": 0}, headers={"X-Continue-Secret": "s3cret"})
        assert response.status_code == 422
        runs.assert_not_awaited()

    def test_missing_configuration_is_a_server_error(self, env, runs, api, monkeypatch):
        monkeypatch.delenv("CONTINUE_SECRET")
        response = api.post("/__continue", json={"nextCycle": 2}, headers={"X-Continue-Secret": "s3cret"})
        assert response.status_code == 500
        assert response.json()["detail"] == {"reason": "orchestrator misconfigured"}


class TestScheduled:

    def test_scheduled_trigger_starts_at_cycle_one(self, env, runs, api):
        response = api.post("/__scheduled", headers={"X-Continue-Secret": "s3cret"})

        assert response.status_code == 202
        assert runs.await_args.args[0] == 1

    def test_scheduled_trigger_requires_secret(self, env, runs, api):
        assert api.post("/__scheduled").status_code == 403


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}
