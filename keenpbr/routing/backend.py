"""
Kernel backends.

KernelBackend is the query/mutation interface the applier reconciles
against. SystemBackend drives the real `ipset`, `iptables`/`ip6tables` and
`ip` (iproute2) commands. Every failed operation raises ApplyFailure naming
the ipset, rule or route it concerns.
"""

import hashlib
import ipaddress
import json
import logging
import shutil
import subprocess
from typing import Iterable, List, Optional, Set

from keenpbr import settings
from keenpbr.errors import ApplyFailure
from .models import ROUTE_BLACKHOLE, ROUTE_UNICAST, MarkRule, PolicyRule, TableRoute

logger = logging.getLogger(__name__)

IPSET_TYPE = "hash:net"
IPSET_FAMILIES = {4: "inet", 6: "inet6"}
IPTABLES = {4: "iptables", 6: "ip6tables"}
IP_FAMILY_FLAGS = {4: "-4", 6: "-6"}
MARK_CHAIN = "PREROUTING"
TMP_SUFFIX = "-tmp"
MAX_SET_NAME = 31
TMP_HASH_LENGTH = 6


class KernelBackend:
    """Interface to kernel ipset, firewall and policy-routing state."""

    # ipsets
    def ipset_members(self, name: str) -> Optional[Set[str]]:
        """Current members, or None if the ipset does not exist."""
        raise NotImplementedError

    def ipset_create(self, name: str, ip_version: int) -> None:
        raise NotImplementedError

    def ipset_add(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        raise NotImplementedError

    def ipset_replace(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        """Atomically replace the whole membership (creating the set if needed)."""
        raise NotImplementedError

    # firewall marks
    def mark_rule_exists(self, rule: MarkRule) -> bool:
        raise NotImplementedError

    def mark_rule_add(self, rule: MarkRule) -> None:
        raise NotImplementedError

    def mark_rule_delete(self, rule: MarkRule) -> None:
        raise NotImplementedError

    # policy rules
    def policy_rules(self, ip_version: int) -> List[PolicyRule]:
        raise NotImplementedError

    def policy_rule_add(self, rule: PolicyRule) -> None:
        raise NotImplementedError

    def policy_rule_delete(self, rule: PolicyRule) -> None:
        raise NotImplementedError

    # routes
    def table_routes(self, ip_version: int, table: int) -> List[TableRoute]:
        """Default routes of a table."""
        raise NotImplementedError

    def route_replace(self, route: TableRoute) -> None:
        """Install `route` as the table's default route, replacing any other."""
        raise NotImplementedError

    def route_delete(self, route: TableRoute) -> None:
        """Remove a default route; a route that is already gone is not an error."""
        raise NotImplementedError

    # links
    def interface_up(self, name: str) -> bool:
        raise NotImplementedError


def normalize_member(value: str) -> str:
    net = ipaddress.ip_network(value, strict=False)
    if net.prefixlen == net.max_prefixlen:
        return str(net.network_address)
    return str(net)


def tmp_set_name(name: str) -> str:
    """Staging set name, unique per set even when long names share a prefix."""
    digest = hashlib.sha256(name.encode()).hexdigest()[:TMP_HASH_LENGTH]
    prefix = name[:MAX_SET_NAME - len(TMP_SUFFIX) - TMP_HASH_LENGTH - 1]
    return f"{prefix}-{digest}{TMP_SUFFIX}"


class SystemBackend(KernelBackend):
    """KernelBackend running the system's ipset / iptables / ip commands."""

    def __init__(self, timeout: float = settings.COMMAND_TIMEOUT_SECONDS):
        self.timeout = timeout
        self.ipset_bin = shutil.which("ipset") or "ipset"
        self.ip_bin = shutil.which("ip") or "ip"

    def _run(self, cmd: List[str], target: str, input: Optional[str] = None,
             check: bool = True) -> subprocess.CompletedProcess:
        logger.debug(f"Running command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, input=input, timeout=self.timeout
            )
        except FileNotFoundError:
            raise ApplyFailure(target, f"command not found: {cmd[0]}")
        except subprocess.TimeoutExpired:
            raise ApplyFailure(target, f"command timed out: {' '.join(cmd)}")
        if check and result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            raise ApplyFailure(target, f"'{' '.join(cmd)}' failed: {stderr}")
        return result

    def _ip_json(self, args: List[str], target: str) -> list:
        result = self._run([self.ip_bin, "-j", *args], target)
        try:
            return json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ApplyFailure(target, f"unparsable output of 'ip {' '.join(args)}': {e}")

    # ========================================
    # IPSETS
    # ========================================

    def ipset_members(self, name: str) -> Optional[Set[str]]:
        target = f"ipset {name}"
        result = self._run([self.ipset_bin, "save", name], target, check=False)
        if result.returncode != 0:
            if "does not exist" in (result.stderr or ""):
                return None
            raise ApplyFailure(target, f"ipset save failed: {(result.stderr or '').strip()}")

        members = set()
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[0] == "add" and parts[1] == name:
                members.add(normalize_member(parts[2]))
        return members

    def _create_line(self, name: str, ip_version: int) -> str:
        return f"create {name} {IPSET_TYPE} family {IPSET_FAMILIES[ip_version]} -exist"

    def ipset_create(self, name: str, ip_version: int) -> None:
        self._run([self.ipset_bin, "restore"], f"ipset {name}",
                  input=self._create_line(name, ip_version) + "\n")

    def ipset_add(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        lines = [self._create_line(name, ip_version)]
        lines += [f"add {name} {m} -exist" for m in members]
        self._run([self.ipset_bin, "restore"], f"ipset {name}", input="\n".join(lines) + "\n")

    def ipset_replace(self, name: str, ip_version: int, members: Iterable[str]) -> None:
        tmp = tmp_set_name(name)
        lines = [self._create_line(tmp, ip_version), f"flush {tmp}"]
        lines += [f"add {tmp} {m} -exist" for m in members]
        lines += [
            self._create_line(name, ip_version),
            f"swap {tmp} {name}",
            f"destroy {tmp}",
        ]
        self._run([self.ipset_bin, "restore"], f"ipset {name}", input="\n".join(lines) + "\n")

    # ========================================
    # FIREWALL MARKS
    # ========================================

    def _mark_args(self, rule: MarkRule) -> List[str]:
        return [
            "-m", "set", "--match-set", rule.ipset_name, "dst",
            "-j", "MARK", "--set-mark", f"{rule.fwmark:#x}",
        ]

    def mark_rule_exists(self, rule: MarkRule) -> bool:
        cmd = [IPTABLES[rule.ip_version], "-t", "mangle", "-C", MARK_CHAIN, *self._mark_args(rule)]
        result = self._run(cmd, rule.describe(), check=False)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise ApplyFailure(rule.describe(), (result.stderr or "").strip())

    def mark_rule_add(self, rule: MarkRule) -> None:
        cmd = [IPTABLES[rule.ip_version], "-t", "mangle", "-A", MARK_CHAIN, *self._mark_args(rule)]
        self._run(cmd, rule.describe())

    def mark_rule_delete(self, rule: MarkRule) -> None:
        cmd = [IPTABLES[rule.ip_version], "-t", "mangle", "-D", MARK_CHAIN, *self._mark_args(rule)]
        self._run(cmd, rule.describe())

    # ========================================
    # POLICY RULES
    # ========================================

    def policy_rules(self, ip_version: int) -> List[PolicyRule]:
        entries = self._ip_json([IP_FAMILY_FLAGS[ip_version], "rule", "show"], "ip rule")
        rules = []
        for entry in entries:
            fwmark = entry.get("fwmark")
            table = str(entry.get("table", ""))
            if fwmark is None or not table.isdigit():
                continue
            rules.append(PolicyRule(
                ip_version=ip_version,
                fwmark=int(str(fwmark), 0),
                table=int(table),
                priority=int(entry.get("priority", 0)),
            ))
        return rules

    def _rule_args(self, rule: PolicyRule) -> List[str]:
        return [
            "fwmark", f"{rule.fwmark:#x}",
            "table", str(rule.table),
            "priority", str(rule.priority),
        ]

    def policy_rule_add(self, rule: PolicyRule) -> None:
        self._run([self.ip_bin, IP_FAMILY_FLAGS[rule.ip_version], "rule", "add", *self._rule_args(rule)],
                  rule.describe())

    def policy_rule_delete(self, rule: PolicyRule) -> None:
        self._run([self.ip_bin, IP_FAMILY_FLAGS[rule.ip_version], "rule", "del", *self._rule_args(rule)],
                  rule.describe())

    # ========================================
    # ROUTES
    # ========================================

    def table_routes(self, ip_version: int, table: int) -> List[TableRoute]:
        target = f"table {table}"
        result = self._run(
            [self.ip_bin, "-j", IP_FAMILY_FLAGS[ip_version], "route", "show", "table", str(table)],
            target, check=False,
        )
        if result.returncode != 0:
            if "does not exist" in (result.stderr or ""):
                return []
            raise ApplyFailure(target, (result.stderr or "").strip())
        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ApplyFailure(target, f"unparsable route output: {e}")

        routes = []
        for entry in entries:
            if entry.get("dst") != "default":
                continue
            kind = entry.get("type", ROUTE_UNICAST)
            if kind == ROUTE_BLACKHOLE:
                routes.append(TableRoute(ip_version, table, ROUTE_BLACKHOLE))
            elif kind == ROUTE_UNICAST:
                routes.append(TableRoute(ip_version, table, ROUTE_UNICAST, entry.get("dev")))
        return routes

    def _route_args(self, route: TableRoute) -> List[str]:
        if route.kind == ROUTE_BLACKHOLE:
            return ["blackhole", "default", "table", str(route.table)]
        return ["default", "dev", str(route.interface), "table", str(route.table)]

    def route_replace(self, route: TableRoute) -> None:
        self._run([self.ip_bin, IP_FAMILY_FLAGS[route.ip_version], "route", "replace",
                   *self._route_args(route)], route.describe())

    def route_delete(self, route: TableRoute) -> None:
        result = self._run([self.ip_bin, IP_FAMILY_FLAGS[route.ip_version], "route", "del",
                            *self._route_args(route)], route.describe(), check=False)
        if result.returncode != 0 and "No such process" not in (result.stderr or ""):
            raise ApplyFailure(route.describe(), (result.stderr or "").strip())

    # ========================================
    # LINKS
    # ========================================

    def interface_up(self, name: str) -> bool:
        result = self._run([self.ip_bin, "-j", "link", "show", "dev", name],
                           f"interface {name}", check=False)
        if result.returncode != 0:
            return False
        try:
            links = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            return False
        if not links:
            return False
        flags = links[0].get("flags", [])
        return "UP" in flags and "LOWER_UP" in flags
