"""
Shared fixtures: an in-memory kernel backend, a canned DNS resolver and a
configuration store in a temporary directory.
"""

import pytest
from typing import Dict, Iterable, List, Optional, Set, Tuple

from keenpbr.config.store import ConfigStore
from keenpbr.config.validate import parse_document
from keenpbr.errors import ApplyFailure
from keenpbr.ipsets.dns import HostResolver
from keenpbr.routing.backend import KernelBackend
from keenpbr.routing.models import MarkRule, PolicyRule, TableRoute


# ============================================================================
# FAKES
# ============================================================================

class FakeKernelBackend(KernelBackend):
    """
    Kernel state held in dicts.

    `fail_on` holds (operation, key) pairs that raise ApplyFailure; the key is
    the ipset name for ipset and mark operations and the table number (as a
    string) for rule and route operations.
    """

    def __init__(self, links: Optional[Dict[str, bool]] = None):
        self.sets: Dict[str, Set[str]] = {}
        self.mark_rules: Set[MarkRule] = set()
        self.rules: List[PolicyRule] = []
        self.routes: Dict[Tuple[int, int], TableRoute] = {}
        self.links: Dict[str, bool] = dict(links or {})
        self.fail_on: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str]] = []

    def _op(self, op: str, key) -> None:
        key = str(key)
        if (op, key) in self.fail_on:
            raise ApplyFailure(f"{op} {key}", "injected failure")
        self.calls.append((op, key))

    def mutations(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] not in READ_OPS]

    # ipsets
    def ipset_members(self, name: str) -> Optional[Set[str]]:
        self._op("ipset_members", name)
        if name not in self.sets:
            return None
        return set(self.sets[name])

    def ipset_create(self, name: str, ip_version: int) -> None:
        self._op("ipset_create", name)
        self.sets.setdefault(name, set())

    def ipset_add(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        self._op("ipset_add", name)
        self.sets.setdefault(name, set()).update(members)

    def ipset_replace(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        self._op("ipset_replace", name)
        self.sets[name] = set(members)

    # firewall marks
    def mark_rule_exists(self, rule: MarkRule) -> bool:
        self._op("mark_rule_exists", rule.ipset_name)
        return rule in self.mark_rules

    def mark_rule_add(self, rule: MarkRule) -> None:
        self._op("mark_rule_add", rule.ipset_name)
        self.mark_rules.add(rule)

    def mark_rule_delete(self, rule: MarkRule) -> None:
        self._op("mark_rule_delete", rule.ipset_name)
        self.mark_rules.discard(rule)

    # policy rules
    def policy_rules(self, ip_version: int) -> List[PolicyRule]:
        return [r for r in self.rules if r.ip_version == ip_version]

    def policy_rule_add(self, rule: PolicyRule) -> None:
        self._op("policy_rule_add", rule.table)
        if rule not in self.rules:
            self.rules.append(rule)

    def policy_rule_delete(self, rule: PolicyRule) -> None:
        self._op("policy_rule_delete", rule.table)
        if rule in self.rules:
            self.rules.remove(rule)

    # routes
    def table_routes(self, ip_version: int, table: int) -> List[TableRoute]:
        self._op("table_routes", table)
        route = self.routes.get((ip_version, table))
        return [route] if route else []

    def route_replace(self, route: TableRoute) -> None:
        self._op("route_replace", route.table)
        self.routes[(route.ip_version, route.table)] = route

    def route_delete(self, route: TableRoute) -> None:
        self._op("route_delete", route.table)
        if self.routes.get((route.ip_version, route.table)) == route:
            del self.routes[(route.ip_version, route.table)]

    # links
    def interface_up(self, name: str) -> bool:
        return self.links.get(name, False)


READ_OPS = {"ipset_members", "mark_rule_exists", "table_routes"}


class FakeHostResolver(HostResolver):
    """Answers from a fixed table; unknown names resolve to nothing."""

    def __init__(self, answers: Optional[Dict[str, List[str]]] = None):
        self.answers = dict(answers or {})
        self.queries: List[Tuple[str, int, Optional[str]]] = []

    def resolve(self, hostname: str, ip_version: int, server: Optional[str] = None) -> List[str]:
        self.queries.append((hostname, ip_version, server))
        return list(self.answers.get(hostname, []))


# ============================================================================
# SAMPLE DOCUMENT
# ============================================================================

def make_config(lists_dir: str) -> dict:
    """Two ipsets over an inline list, a file list and a URL list."""
    return {
        "general": {
            "lists_output_dir": lists_dir,
            "use_keenetic_api": False,
            "use_keenetic_dns": False,
            "fallback_dns": "8.8.8.8",
        },
        "ipsets": [
            {
                "ipset_name": "vpn1",
                "lists": ["local"],
                "ip_version": 4,
                "flush_before_applying": True,
                "routing": {
                    "interfaces": ["wg0", "wg1"],
                    "kill_switch": True,
                    "fwmark": 1001,
                    "table": 1001,
                    "priority": 1001,
                },
            },
            {
                "ipset_name": "vpn2",
                "lists": ["remote"],
                "ip_version": 4,
                "flush_before_applying": False,
                "routing": {
                    "interfaces": ["wg1"],
                    "kill_switch": False,
                    "fwmark": 1002,
                    "table": 1002,
                    "priority": 1002,
                },
            },
        ],
        "lists": [
            {"list_name": "local", "hosts": ["1.2.3.4", "10.0.0.0/8", "example.com"]},
            {"list_name": "remote", "url": "https://lists.example.net/remote.lst"},
        ],
    }


@pytest.fixture
def lists_dir(tmp_path):
    return tmp_path / "lists"


@pytest.fixture
def sample_config(lists_dir) -> dict:
    return make_config(str(lists_dir))


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "keen-pbr.conf"


@pytest.fixture
def store(config_path, sample_config) -> ConfigStore:
    store = ConfigStore(config_path)
    store.replace(parse_document(sample_config))
    return store


@pytest.fixture
def backend() -> FakeKernelBackend:
    return FakeKernelBackend(links={"wg0": True, "wg1": True})


@pytest.fixture
def host_resolver() -> FakeHostResolver:
    return FakeHostResolver({
        "example.com": ["93.184.216.34"],
        "example.org": ["93.184.216.35", "2606:2800:220:1::35"],
    })
