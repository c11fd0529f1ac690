"""
Routing Layer

Diff-and-apply of ipset members, fwmark rules, policy rules and table routes
against the kernel.

- apply: converge the kernel to the desired state
- check: report differences (drift) without changing anything
- undo: remove an ipset's routing
"""

from .models import (
    MarkRule,
    PolicyRule,
    TableRoute,
    DesiredState,
    CurrentState,
    Change,
    ReconcileReport,
)
from .reconcile import plan_changes, plan_teardown
from .backend import KernelBackend, SystemBackend
from .interfaces import InterfaceProbe
from .apply import RoutingApplier, describe_routing
from .dnsmasq import render_dnsmasq_config

__all__ = [
    # Models
    "MarkRule",
    "PolicyRule",
    "TableRoute",
    "DesiredState",
    "CurrentState",
    "Change",
    "ReconcileReport",
    # Functions
    "plan_changes",
    "plan_teardown",
    "describe_routing",
    "render_dnsmasq_config",
    # Kernel
    "KernelBackend",
    "SystemBackend",
    "InterfaceProbe",
    "RoutingApplier",
]
