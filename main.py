"""
main.py
─────────────────────────────────────────────────────────────────────────────
Entrypoint for the careers-page discovery orchestrator.

run_cycle()      one invocation: load → explore|discover → decide, with the
                 top-level failure policy applied around the graph
schedule_next()  self-addressed POST /__continue that starts the next cycle
run_chain()      in-process loop of cycles (local runs, no HTTP re-entry)

Usage:
    python main.py run-cycle --cycle 1          # one cycle, then re-trigger via HTTP
    python main.py run-chain --max-cycles 20    # loop locally until success
    python main.py serve --port 8080            # orchestrator HTTP app
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from graph import build_graph
from shared.config import (
    CONTINUE_SECRET_HEADER,
    ConfigurationError,
    CycleStatus,
    EventType,
    Settings,
    get_settings,
)
from shared.llm import KeyFallbackCaller
from shared.store import FileStateStore, StateStore
from shared.telemetry import TelemetryLogger
from state_types import CycleContext

logger = logging.getLogger(__name__)


@dataclass
class CycleOutcome:
    cycle: int
    status: str
    next_cycle: int | None = None
    delay_seconds: float = 0.0
    new_pages: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def should_continue(self) -> bool:
        return self.next_cycle is not None


async def _record_cycle_result(store: StateStore, succeeded: bool) -> None:
    """Reset or bump the failure count.  Best effort: the store itself may be the problem."""
    try:
        analytics = await store.load_analytics()
        if succeeded:
            analytics.consecutiveFailures = 0
        else:
            analytics.consecutiveFailures += 1
        await store.save_analytics(analytics)
    except Exception as exc:
        logger.error(f"Could not persist failure count: {exc!r}")


async def _pages_added_since(store: StateStore, count_before: int | None) -> list[str]:
    """Verified pages appended after the first count_before entries."""
    if count_before is None:
        return []
    try:
        return (await store.load_verified())[count_before:]
    except Exception as exc:
        logger.error(f"Could not re-read verified pages: {exc!r}")
        return []


async def run_cycle(
    cycle: int = 1,
    settings: Settings | None = None,
    store: StateStore | None = None,
    client: httpx.AsyncClient | None = None,
    rng: random.Random | None = None,
    clock: Any = None,
) -> CycleOutcome:
    """
    Run one cycle and report what should happen next.

    Configuration failures are fatal (no retry).  Any other exception
    counts as a failed cycle and asks for a delayed retry, unless the
    verified-pages list already grew during the cycle.
    """
    try:
        settings = settings or get_settings()
    except ConfigurationError as exc:
        logger.error(f"Cycle {cycle} aborted, configuration error: {exc}")
        return CycleOutcome(cycle=cycle, status=CycleStatus.FATAL, error=str(exc))

    telemetry = TelemetryLogger(cycle=cycle, log_dir=settings.log_dir)
    store = store or FileStateStore(settings.state_dir)
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    rng = rng or random.Random()
    verified_before: int | None = None

    try:
        verified_before = len(await store.load_verified())
        caller = KeyFallbackCaller(
            settings.gemini_api_keys,
            settings.primary_model,
            settings.secondary_model,
            client=client,
            rng=rng,
        )
        ctx = CycleContext(
            settings=settings, store=store, client=client,
            telemetry=telemetry, caller=caller, rng=rng,
        )
        if clock is not None:
            ctx.clock = clock

        logger.info(f"Starting cycle {cycle}")
        final_state = await build_graph().ainvoke(
            {"cycle": cycle, "error_log": []},
            config={"configurable": {"context": ctx}},
        )

        new_pages = list(final_state.get("new_pages", []))
        outcome = CycleOutcome(
            cycle=cycle,
            status=final_state["status"],
            next_cycle=final_state.get("next_cycle"),
            new_pages=new_pages,
        )
        telemetry.finalise(outcome.status, new_pages=len(new_pages))
        return outcome

    except ConfigurationError as exc:
        logger.error(f"Cycle {cycle} aborted, configuration error: {exc}")
        telemetry.log_event(EventType.CYCLE_FAILED, error=str(exc), fatal=True)
        telemetry.finalise(CycleStatus.FATAL, error=str(exc))
        return CycleOutcome(cycle=cycle, status=CycleStatus.FATAL, error=str(exc))

    except Exception as exc:
        logger.exception(f"Cycle {cycle} failed: {exc!r}")
        telemetry.log_event(EventType.CYCLE_FAILED, error=repr(exc)[:300], fatal=False)

        # Pages already appended still end the chain
        added = await _pages_added_since(store, verified_before)
        if added:
            logger.warning(f"Cycle {cycle} verified {len(added)} page(s) before failing; stopping chain")
            await _record_cycle_result(store, succeeded=True)
            telemetry.finalise(CycleStatus.SUCCESS, new_pages=len(added), error=repr(exc)[:300])
            return CycleOutcome(cycle=cycle, status=CycleStatus.SUCCESS, new_pages=added, error=repr(exc))

        await _record_cycle_result(store, succeeded=False)

        next_cycle = cycle + 1
        if next_cycle > settings.max_cycles:
            telemetry.log_event(EventType.CHAIN_EXHAUSTED, max_cycles=settings.max_cycles)
            telemetry.finalise(CycleStatus.EXHAUSTED, error=repr(exc)[:300])
            return CycleOutcome(cycle=cycle, status=CycleStatus.EXHAUSTED, error=repr(exc))

        telemetry.finalise(CycleStatus.RETRY, error=repr(exc)[:300])
        return CycleOutcome(
            cycle=cycle,
            status=CycleStatus.RETRY,
            next_cycle=next_cycle,
            delay_seconds=settings.retry_delay_seconds,
            error=repr(exc),
        )

    finally:
        if own_client:
            await client.aclose()


async def schedule_next(
    settings: Settings,
    next_cycle: int,
    delay_seconds: float = 0.0,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """
    POST {SELF_BASE_URL}/__continue for next_cycle after delay_seconds.
    Returns True if the orchestrator accepted the call.
    """
    if delay_seconds > 0:
        await asyncio.sleep(delay_seconds)

    url = f"{settings.self_base_url}/__continue"
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        response = await client.post(
            url,
            json={"nextCycle": next_cycle},
            headers={CONTINUE_SECRET_HEADER: settings.continue_secret},
        )
        response.raise_for_status()
        logger.info(f"Scheduled cycle {next_cycle} via {url}")
        return True
    except httpx.HTTPError as exc:
        logger.error(f"Failed to schedule cycle {next_cycle}: {exc!r}")
        return False
    finally:
        if own_client:
            await client.aclose()


async def run_and_continue(cycle: int, settings: Settings | None = None) -> CycleOutcome:
    """One cycle, then the self-addressed re-entry call if the chain goes on."""
    outcome = await run_cycle(cycle, settings=settings)
    if outcome.should_continue:
        await schedule_next(settings or get_settings(), outcome.next_cycle, outcome.delay_seconds)
    return outcome


async def run_chain(start_cycle: int = 1, max_cycles: int | None = None, **kwargs: Any) -> list[CycleOutcome]:
    """
    Run cycles in-process until one stops the chain.

    max_cycles caps this local run on top of the MAX_CYCLES setting.
    Extra kwargs are passed to run_cycle().
    """
    outcomes: list[CycleOutcome] = []
    cycle = start_cycle
    while True:
        outcome = await run_cycle(cycle, **kwargs)
        outcomes.append(outcome)
        if not outcome.should_continue:
            break
        if max_cycles is not None and len(outcomes) >= max_cycles:
            logger.info(f"Local chain stopped after {len(outcomes)} cycle(s)")
            break
        if outcome.delay_seconds > 0:
            await asyncio.sleep(outcome.delay_seconds)
        cycle = outcome.next_cycle
    return outcomes


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Careers-page discovery orchestrator")
    sub = ap.add_subparsers(dest="command", required=True)

    one = sub.add_parser("run-cycle", help="Run one cycle and re-trigger via HTTP")
    one.add_argument("--cycle", type=int, default=1, help="Cycle number (step counter)")
    one.add_argument("--no-continue", action="store_true",
                     help="Do not issue the /__continue call afterwards")

    chain = sub.add_parser("run-chain", help="Run cycles in-process until success")
    chain.add_argument("--max-cycles", type=int, default=None,
                       help="Stop the local chain after this many cycles")

    serve = sub.add_parser("serve", help="Serve the orchestrator HTTP app")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    return ap


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    args = _build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("server:app", host=args.host, port=args.port)
        return 0

    if args.command == "run-cycle":
        if args.no_continue:
            outcome = asyncio.run(run_cycle(args.cycle))
        else:
            outcome = asyncio.run(run_and_continue(args.cycle))
        logger.info(f"Cycle {outcome.cycle} finished: {outcome.status}")
        return 1 if outcome.status == CycleStatus.FATAL else 0

    outcomes = asyncio.run(run_chain(max_cycles=args.max_cycles))
    last = outcomes[-1]
    pages = [url for o in outcomes for url in o.new_pages]
    logger.info(f"Chain finished after {len(outcomes)} cycle(s): {last.status}; new pages: {pages}")
    return 1 if last.status == CycleStatus.FATAL else 0


if __name__ == "__main__":
    raise SystemExit(main())
