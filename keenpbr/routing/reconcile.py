"""
Kernel state diffing.

`plan_changes` is the single diff used by both apply (execute the changes)
and self-check (report them as drift). `plan_teardown` lists what
undo-routing removes.
"""

from typing import List

from .models import (
    ADD_MARK_RULE,
    ADD_MEMBERS,
    ADD_POLICY_RULE,
    CREATE_IPSET,
    DEL_MARK_RULE,
    DEL_POLICY_RULE,
    DEL_ROUTE,
    REPLACE_MEMBERS,
    SET_ROUTE,
    Change,
    CurrentState,
    DesiredState,
)


def _members_changes(desired: DesiredState, current: CurrentState) -> List[Change]:
    name = desired.ipset_name
    target = set(desired.members)
    existing = current.members or set()
    changes: List[Change] = []

    if desired.replace_members:
        if current.ipset_exists and existing == target:
            return changes
        missing = len(target - existing)
        extra = len(existing - target)
        changes.append(Change(
            kind=REPLACE_MEMBERS,
            target=f"ipset {name}",
            ipset_name=name,
            description=(
                f"replace members of {name}: {len(target)} target, "
                f"{missing} missing, {extra} extra"
                if current.ipset_exists else f"create {name} with {len(target)} members"
            ),
            members=tuple(desired.members),
            ip_version=desired.ip_version,
        ))
        return changes

    if not current.ipset_exists:
        changes.append(Change(
            kind=CREATE_IPSET,
            target=f"ipset {name}",
            ipset_name=name,
            description=f"create ipset {name} (IPv{desired.ip_version})",
            ip_version=desired.ip_version,
        ))

    missing = [m for m in desired.members if m not in existing]
    if missing:
        changes.append(Change(
            kind=ADD_MEMBERS,
            target=f"ipset {name}",
            ipset_name=name,
            description=f"add {len(missing)} members to {name}",
            members=tuple(missing),
            ip_version=desired.ip_version,
        ))
    return changes


def _route_changes(desired: DesiredState, current: CurrentState) -> List[Change]:
    changes: List[Change] = []
    route = desired.route

    if route is not None and route not in current.routes:
        changes.append(Change(
            kind=SET_ROUTE,
            target=route.describe(),
            description=f"set {route.describe()}",
            ip_version=desired.ip_version,
            route=route,
        ))

    for existing in current.routes:
        if existing == route:
            continue
        changes.append(Change(
            kind=DEL_ROUTE,
            target=existing.describe(),
            description=f"remove stale {existing.describe()}",
            ip_version=desired.ip_version,
            route=existing,
        ))
    return changes


def _rule_changes(desired: DesiredState, current: CurrentState) -> List[Change]:
    changes: List[Change] = []
    rule = desired.policy_rule

    if rule not in current.policy_rules:
        changes.append(Change(
            kind=ADD_POLICY_RULE,
            target=rule.describe(),
            description=f"add {rule.describe()}",
            ip_version=desired.ip_version,
            policy_rule=rule,
        ))

    for existing in current.policy_rules:
        if existing.fwmark != rule.fwmark or existing == rule:
            continue
        changes.append(Change(
            kind=DEL_POLICY_RULE,
            target=existing.describe(),
            description=f"remove stale {existing.describe()}",
            ip_version=desired.ip_version,
            policy_rule=existing,
        ))
    return changes


def plan_changes(desired: DesiredState, current: CurrentState) -> List[Change]:
    """
    Changes that bring `current` to `desired`.

    Order: ipset contents, table route, policy rule, mark rule, so the table
    (or its blackhole) exists before traffic is steered into it.
    """
    changes = _members_changes(desired, current)
    changes += _route_changes(desired, current)
    changes += _rule_changes(desired, current)

    if not current.mark_rule_present:
        changes.append(Change(
            kind=ADD_MARK_RULE,
            target=desired.mark_rule.describe(),
            description=f"add {desired.mark_rule.describe()}",
            ip_version=desired.ip_version,
            mark_rule=desired.mark_rule,
        ))
    return changes


def plan_teardown(desired: DesiredState, current: CurrentState) -> List[Change]:
    """Changes removing the ipset's routing (the ipset itself is kept)."""
    changes: List[Change] = []

    if current.mark_rule_present:
        changes.append(Change(
            kind=DEL_MARK_RULE,
            target=desired.mark_rule.describe(),
            description=f"remove {desired.mark_rule.describe()}",
            ip_version=desired.ip_version,
            mark_rule=desired.mark_rule,
        ))

    for existing in current.policy_rules:
        if existing.fwmark != desired.policy_rule.fwmark:
            continue
        changes.append(Change(
            kind=DEL_POLICY_RULE,
            target=existing.describe(),
            description=f"remove {existing.describe()}",
            ip_version=desired.ip_version,
            policy_rule=existing,
        ))

    for existing in current.routes:
        changes.append(Change(
            kind=DEL_ROUTE,
            target=existing.describe(),
            description=f"remove {existing.describe()}",
            ip_version=desired.ip_version,
            route=existing,
        ))
    return changes
