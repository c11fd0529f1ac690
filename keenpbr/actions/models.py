"""
Action Models

Results of orchestrated actions. Each unit of work (one list or one ipset)
produces its own UnitOutcome; the orchestrator merges them in configuration
order into a single ActionResult.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List
from pydantic import BaseModel, Field


ACTION_DOWNLOAD = "download"
ACTION_APPLY = "apply"
ACTION_SELF_CHECK = "self-check"
ACTION_UNDO_ROUTING = "undo-routing"
ACTION_INTERFACES = "interfaces"
ACTION_DNSMASQ_CONFIG = "print-dnsmasq-config"

ACTIONS = (
    ACTION_DOWNLOAD,
    ACTION_APPLY,
    ACTION_SELF_CHECK,
    ACTION_UNDO_ROUTING,
    ACTION_INTERFACES,
    ACTION_DNSMASQ_CONFIG,
)


@dataclass
class UnitOutcome:
    """Outcome of one list or ipset within an action."""
    unit_id: str
    lines: List[str] = field(default_factory=list)
    fatal: bool = False
    skipped: bool = False

    def add(self, line: str) -> None:
        self.lines.append(f"[{self.unit_id}] {line}")

    def fail(self, line: str) -> None:
        self.fatal = True
        self.add(line)


class ActionResult(BaseModel):
    """Response of POST /api/actions/{action}."""
    success: bool
    output: str = ""


class LastActionResult(ActionResult):
    action: str
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
