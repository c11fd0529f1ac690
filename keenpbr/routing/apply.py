"""
Routing Applier

Reconciles the live kernel state of one ipset with its compiled membership
and routing policy:

- apply: query current state, diff against desired state, execute changes
- check: same diff, reported as drift, nothing is changed
- undo: remove the ipset's mark rule, policy rules and table routes

Kill switch: when enabled and none of the ipset's interfaces is up, the
table gets a blackhole default route so marked traffic is dropped instead of
falling back to the main table.

The first failing operation stops work on that ipset (later steps depend on
earlier ones, e.g. the mark rule must not steer traffic into a table whose
blackhole route failed to install). Other ipsets are unaffected.
"""

import logging
from typing import List, Optional

from keenpbr.config.models import IPSet
from keenpbr.errors import ApplyFailure
from keenpbr.ipsets.compiler import CompiledIPSet
from .backend import KernelBackend
from .interfaces import InterfaceProbe
from .models import (
    ADD_MARK_RULE,
    ADD_MEMBERS,
    ADD_POLICY_RULE,
    CREATE_IPSET,
    DEL_MARK_RULE,
    DEL_POLICY_RULE,
    DEL_ROUTE,
    REPLACE_MEMBERS,
    ROUTE_BLACKHOLE,
    ROUTE_UNICAST,
    SET_ROUTE,
    Change,
    CurrentState,
    DesiredState,
    MarkRule,
    PolicyRule,
    ReconcileReport,
    TableRoute,
)
from .reconcile import plan_changes, plan_teardown

logger = logging.getLogger(__name__)


class RoutingApplier:
    """
    Reconciles ipsets against a kernel backend.

    Usage:
        applier = RoutingApplier(SystemBackend(), InterfaceProbe(backend))
        report = applier.apply(ipset, compiled)
    """

    def __init__(self, backend: KernelBackend, probe: Optional[InterfaceProbe] = None):
        self.backend = backend
        self.probe = probe or InterfaceProbe(backend)

    # ========================================
    # STATE
    # ========================================

    def desired_state(self, ipset: IPSet, compiled: Optional[CompiledIPSet] = None) -> DesiredState:
        routing = ipset.routing
        version = ipset.ip_version

        active, states = self.probe.select(routing.interfaces)
        if active is not None:
            route: Optional[TableRoute] = TableRoute(version, routing.table, ROUTE_UNICAST, active)
        elif routing.kill_switch:
            route = TableRoute(version, routing.table, ROUTE_BLACKHOLE)
        else:
            route = None

        replace = ipset.flush_before_applying
        if compiled is not None and not compiled.complete:
            replace = False

        return DesiredState(
            ipset_name=ipset.ipset_name,
            ip_version=version,
            members=list(compiled.members) if compiled else [],
            replace_members=replace,
            mark_rule=MarkRule(ipset.ipset_name, version, routing.fwmark),
            policy_rule=PolicyRule(version, routing.fwmark, routing.table, routing.priority),
            route=route,
            kill_switch=routing.kill_switch,
            active_interface=active,
            interface_states=states,
        )

    def current_state(self, desired: DesiredState) -> CurrentState:
        """Query the kernel. Raises ApplyFailure."""
        version = desired.ip_version
        return CurrentState(
            members=self.backend.ipset_members(desired.ipset_name),
            mark_rule_present=self.backend.mark_rule_exists(desired.mark_rule),
            policy_rules=self.backend.policy_rules(version),
            routes=self.backend.table_routes(version, desired.policy_rule.table),
        )

    # ========================================
    # OPERATIONS
    # ========================================

    def apply(self, ipset: IPSet, compiled: CompiledIPSet) -> ReconcileReport:
        desired = self.desired_state(ipset, compiled)
        report = ReconcileReport(ipset_name=ipset.ipset_name, desired=desired)
        if ipset.flush_before_applying and not desired.replace_members:
            report.notes.append(
                f"lists unavailable ({', '.join(compiled.unavailable_lists)}); "
                f"adding members without flushing"
            )
        return self._reconcile(report, lambda current: plan_changes(desired, current))

    def check(self, ipset: IPSet, compiled: CompiledIPSet) -> ReconcileReport:
        desired = self.desired_state(ipset, compiled)
        report = ReconcileReport(ipset_name=ipset.ipset_name, desired=desired)
        try:
            current = self.current_state(desired)
        except ApplyFailure as e:
            report.failures.append(e)
            return report
        report.changes = plan_changes(desired, current)
        return report

    def undo(self, ipset: IPSet) -> ReconcileReport:
        desired = self.desired_state(ipset)
        report = ReconcileReport(ipset_name=ipset.ipset_name, desired=desired)
        return self._reconcile(report, lambda current: plan_teardown(desired, current))

    def _reconcile(self, report: ReconcileReport, planner) -> ReconcileReport:
        try:
            current = self.current_state(report.desired)
        except ApplyFailure as e:
            logger.error(f"ipset {report.ipset_name}: {e.message}")
            report.failures.append(e)
            return report

        report.changes = planner(current)
        for change in report.changes:
            try:
                self.execute(change)
            except ApplyFailure as e:
                logger.error(f"ipset {report.ipset_name}: {e.message}")
                report.failures.append(e)
                break
            report.applied.append(change)
        return report

    def execute(self, change: Change) -> None:
        """Run one change against the backend. Raises ApplyFailure."""
        backend = self.backend
        name = change.ipset_name
        logger.info(change.description)

        if change.kind == CREATE_IPSET:
            backend.ipset_create(name, change.ip_version)
        elif change.kind == REPLACE_MEMBERS:
            backend.ipset_replace(name, change.ip_version, change.members)
        elif change.kind == ADD_MEMBERS:
            backend.ipset_add(name, change.ip_version, change.members)
        elif change.kind == SET_ROUTE:
            backend.route_replace(change.route)
        elif change.kind == DEL_ROUTE:
            backend.route_delete(change.route)
        elif change.kind == ADD_POLICY_RULE:
            backend.policy_rule_add(change.policy_rule)
        elif change.kind == DEL_POLICY_RULE:
            backend.policy_rule_delete(change.policy_rule)
        elif change.kind == ADD_MARK_RULE:
            backend.mark_rule_add(change.mark_rule)
        elif change.kind == DEL_MARK_RULE:
            backend.mark_rule_delete(change.mark_rule)
        else:
            raise ApplyFailure(change.target, f"unknown change kind {change.kind}")


def describe_routing(desired: DesiredState) -> List[str]:
    """Human-readable routing state lines for the action output."""
    lines = []
    for name, up in desired.interface_states:
        marker = " (selected)" if name == desired.active_interface else ""
        lines.append(f"  interface {name}: {'up' if up else 'down'}{marker}")
    if desired.blocking:
        lines.append(f"  kill switch: blocking (no interface up, table {desired.policy_rule.table} blackholed)")
    elif desired.route is None:
        lines.append("  no interface up, traffic uses the default route")
    return lines
