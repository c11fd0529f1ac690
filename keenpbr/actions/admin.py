"""
Action Endpoints

POST /api/actions/{action} runs one action to completion and returns its
result. Only one action runs at a time (409 while busy). If the client goes
away mid-run the action is cancelled: units already running finish, pending
ones are skipped.
"""

import asyncio
import logging
import threading
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from keenpbr.deps import get_orchestrator
from keenpbr.errors import NotFound
from .models import ACTIONS, ActionResult, LastActionResult
from .orchestrator import ActionOrchestrator

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/actions",
    tags=["actions"],
)

DISCONNECT_POLL_SECONDS = 0.5


@router.get("/last", response_model=LastActionResult)
def get_last_result(orchestrator: ActionOrchestrator = Depends(get_orchestrator)):
    """Result of the most recent action."""
    if orchestrator.last_result is None:
        raise NotFound("no action has run yet")
    return orchestrator.last_result


@router.post("/{action}", response_model=ActionResult)
async def run_action(
    action: str,
    request: Request,
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    if action not in ACTIONS:
        raise NotFound(f"unknown action '{action}', expected one of: {', '.join(ACTIONS)}")

    cancel = threading.Event()
    task = asyncio.ensure_future(run_in_threadpool(orchestrator.run, action, cancel))

    while not task.done():
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done or cancel.is_set():
            continue
        if await request.is_disconnected():
            logger.warning(f"Client disconnected, cancelling action {action}")
            cancel.set()

    return task.result()
