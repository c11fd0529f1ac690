"""
Action orchestration: download, apply, self-check and the maintenance
actions, serialized one at a time.

HTTP endpoints live in keenpbr.actions.admin.
"""

from .models import ACTIONS, ActionResult, LastActionResult, UnitOutcome
from .orchestrator import ActionOrchestrator

__all__ = [
    "ACTIONS",
    "ActionResult",
    "LastActionResult",
    "UnitOutcome",
    "ActionOrchestrator",
]
