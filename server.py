"""
server.py
─────────────────────────────────────────────────────────────────────────────
Orchestrator HTTP app.

POST /__continue   self-addressed re-entry, body {"nextCycle": n}
POST /__scheduled  periodic trigger, starts a fresh chain at cycle 1

Both require the shared-secret header and answer 202 immediately; the
cycle runs as a background task and re-triggers /__continue itself when
the chain goes on.
─────────────────────────────────────────────────────────────────────────────
"""

import logging
import secrets

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from main import run_and_continue
from shared.config import ConfigurationError, Settings, get_settings
from validators import ContinueRequest

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Careers Scout Orchestrator")


def load_settings() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as exc:
        logger.error(f"Orchestrator misconfigured: {exc}")
        raise HTTPException(status_code=500, detail={"reason": "orchestrator misconfigured"})


async def verify_continue_secret(
    x_continue_secret: str | None = Header(default=None),
    settings: Settings = Depends(load_settings),
) -> Settings:
    """Raises HTTP 403 unless the shared-secret header matches CONTINUE_SECRET."""
    if not x_continue_secret or not secrets.compare_digest(
        x_continue_secret, settings.continue_secret
    ):
        logger.warning("Rejected trigger with missing or wrong secret")
        raise HTTPException(status_code=403, detail={"reason": "forbidden"})
    return settings


@app.post("/__continue", status_code=202)
async def continue_chain(
    request: ContinueRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(verify_continue_secret),
):
    logger.info(f"Accepted /__continue for cycle {request.nextCycle}")
    background_tasks.add_task(run_and_continue, request.nextCycle, settings)
    return JSONResponse(status_code=202, content={"accepted": True, "cycle": request.nextCycle})


@app.post("/__scheduled", status_code=202)
async def scheduled_trigger(
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(verify_continue_secret),
):
    logger.info("Accepted scheduled trigger, starting at cycle 1")
    background_tasks.add_task(run_and_continue, 1, settings)
    return JSONResponse(status_code=202, content={"accepted": True, "cycle": 1})


@app.get("/health")
async def health():
    return {"status": "ok"}
