"""
Request dependencies.

The app factory puts the process-wide ConfigStore and ActionOrchestrator on
app.state; routers reach them through these accessors.
"""

from fastapi import Request

from keenpbr.actions.orchestrator import ActionOrchestrator
from keenpbr.config.store import ConfigStore


def get_store(request: Request) -> ConfigStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> ActionOrchestrator:
    return request.app.state.orchestrator
