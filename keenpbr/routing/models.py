"""
Routing Models

Kernel state of one ipset's routing policy, desired and observed, and the
changes that reconcile them.

One ipset maps to:
- an ipset (hash:net) holding the compiled members
- a firewall-mark rule: packets matching the ipset get the ipset's fwmark
- a policy rule: fwmark -> routing table at a priority
- a default route in that table: via the first interface that is up, or a
  blackhole when the kill switch is on and no interface is up
"""

from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from keenpbr.errors import ApplyFailure


ROUTE_UNICAST = "unicast"
ROUTE_BLACKHOLE = "blackhole"

# Change kinds, in the order they are executed
CREATE_IPSET = "create_ipset"
REPLACE_MEMBERS = "replace_members"
ADD_MEMBERS = "add_members"
SET_ROUTE = "set_route"
DEL_ROUTE = "del_route"
ADD_POLICY_RULE = "add_policy_rule"
DEL_POLICY_RULE = "del_policy_rule"
ADD_MARK_RULE = "add_mark_rule"
DEL_MARK_RULE = "del_mark_rule"


@dataclass(frozen=True)
class MarkRule:
    """Firewall rule setting fwmark on packets whose destination is in the ipset."""
    ipset_name: str
    ip_version: int
    fwmark: int

    def describe(self) -> str:
        return f"mark rule set {self.ipset_name} -> fwmark {self.fwmark:#x}"


@dataclass(frozen=True)
class PolicyRule:
    """`ip rule` entry selecting a table by fwmark."""
    ip_version: int
    fwmark: int
    table: int
    priority: int

    def describe(self) -> str:
        return f"rule fwmark {self.fwmark:#x} table {self.table} priority {self.priority}"


@dataclass(frozen=True)
class TableRoute:
    """Default route of a policy table."""
    ip_version: int
    table: int
    kind: str = ROUTE_UNICAST
    interface: Optional[str] = None

    def describe(self) -> str:
        if self.kind == ROUTE_BLACKHOLE:
            return f"route blackhole default table {self.table}"
        return f"route default dev {self.interface} table {self.table}"


@dataclass
class DesiredState:
    """What the kernel should hold for one ipset."""
    ipset_name: str
    ip_version: int
    members: List[str]
    replace_members: bool
    mark_rule: MarkRule
    policy_rule: PolicyRule
    route: Optional[TableRoute]
    kill_switch: bool = False
    active_interface: Optional[str] = None
    interface_states: List[Tuple[str, bool]] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return self.route is not None and self.route.kind == ROUTE_BLACKHOLE


@dataclass
class CurrentState:
    """What the kernel holds for one ipset."""
    members: Optional[Set[str]]  # None when the ipset does not exist
    mark_rule_present: bool
    policy_rules: List[PolicyRule] = field(default_factory=list)
    routes: List[TableRoute] = field(default_factory=list)

    @property
    def ipset_exists(self) -> bool:
        return self.members is not None


@dataclass(frozen=True)
class Change:
    """One kernel mutation; also reported as drift by self-check."""
    kind: str
    target: str
    description: str
    ipset_name: str = ""
    members: Tuple[str, ...] = ()
    ip_version: int = 4
    mark_rule: Optional[MarkRule] = None
    policy_rule: Optional[PolicyRule] = None
    route: Optional[TableRoute] = None


@dataclass
class ReconcileReport:
    """Outcome of reconciling (or checking) one ipset."""
    ipset_name: str
    changes: List[Change] = field(default_factory=list)
    applied: List[Change] = field(default_factory=list)
    failures: List[ApplyFailure] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    desired: Optional[DesiredState] = None

    @property
    def ok(self) -> bool:
        return not self.failures
