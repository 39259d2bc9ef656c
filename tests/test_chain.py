"""Tests for continuation: the self-addressed /__continue call and local chains."""

import json

import httpx
import pytest

from main import CycleOutcome, run_and_continue, run_chain, schedule_next
from shared.config import CycleStatus


class TestScheduleNext:

    @pytest.mark.asyncio
    async def test_posts_next_cycle_with_secret(self, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202, json={"accepted": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await schedule_next(settings, 7, client=client) is True

        request = seen[0]
        assert str(request.url) == "https://orchestrator.test/__continue"
        assert request.headers["X-Continue-Secret"] == "s3cret"
        assert json.loads(request.content) == {"nextCycle": 7}

    @pytest.mark.asyncio
    async def test_rejected_call_reports_failure(self, settings):
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(403))
        ) as client:
            assert await schedule_next(settings, 2, client=client) is False

    @pytest.mark.asyncio
    async def test_waits_for_retry_delay(self, settings, mocker):
        sleep = mocker.patch("main.asyncio.sleep", new=mocker.AsyncMock())
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(202))
        ) as client:
            await schedule_next(settings, 2, delay_seconds=5.0, client=client)
        sleep.assert_awaited_once_with(5.0)


class TestRunAndContinue:

    @pytest.mark.asyncio
    async def test_continue_outcome_schedules_next(self, settings, mocker):
        mocker.patch("main.run_cycle", new=mocker.AsyncMock(
            return_value=CycleOutcome(cycle=1, status=CycleStatus.RETRY, next_cycle=2, delay_seconds=5.0),
        ))
        schedule = mocker.patch("main.schedule_next", new=mocker.AsyncMock(return_value=True))

        await run_and_continue(1, settings)

        schedule.assert_awaited_once_with(settings, 2, 5.0)

    @pytest.mark.asyncio
    async def test_success_does_not_schedule(self, settings, mocker):
        mocker.patch("main.run_cycle", new=mocker.AsyncMock(
            return_value=CycleOutcome(cycle=1, status=CycleStatus.SUCCESS),
        ))
        schedule = mocker.patch("main.schedule_next", new=mocker.AsyncMock())

        await run_and_continue(1, settings)

        schedule.assert_not_awaited()


class TestRunChain:

    @pytest.mark.asyncio
    async def test_runs_until_a_cycle_stops_the_chain(self, mocker):
        run_cycle = mocker.patch("main.run_cycle", new=mocker.AsyncMock(side_effect=[
            CycleOutcome(cycle=1, status=CycleStatus.CONTINUE, next_cycle=2),
            CycleOutcome(cycle=2, status=CycleStatus.CONTINUE, next_cycle=3),
            CycleOutcome(cycle=3, status=CycleStatus.SUCCESS, new_pages=["https://acme.test/jobs"]),
        ]))

        outcomes = await run_chain()

        assert [o.status for o in outcomes] == [CycleStatus.CONTINUE, CycleStatus.CONTINUE, CycleStatus.SUCCESS]
        assert [c.args[0] for c in run_cycle.await_args_list] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_local_cap(self, mocker):
        mocker.patch("main.run_cycle", new=mocker.AsyncMock(
            side_effect=lambda n, **kw: CycleOutcome(cycle=n, status=CycleStatus.CONTINUE, next_cycle=n + 1),
        ))

        outcomes = await run_chain(max_cycles=2)

        assert [o.cycle for o in outcomes] == [1, 2]

    @pytest.mark.asyncio
    async def test_fatal_stops_immediately(self, mocker):
        mocker.patch("main.run_cycle", new=mocker.AsyncMock(
            return_value=CycleOutcome(cycle=1, status=CycleStatus.FATAL, error="missing key"),
        ))

        outcomes = await run_chain()

        assert len(outcomes) == 1
