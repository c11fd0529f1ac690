"""
System Backend Tests

Command lines and output parsing of the ipset / iptables / ip backend with
subprocess.run patched out.
"""

import json
import subprocess
from unittest.mock import patch

import pytest

from keenpbr.errors import ApplyFailure
from keenpbr.routing.backend import SystemBackend, tmp_set_name
from keenpbr.routing.models import ROUTE_BLACKHOLE, MarkRule, PolicyRule, TableRoute


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def backend():
    backend = SystemBackend(timeout=5)
    backend.ipset_bin = "ipset"
    backend.ip_bin = "ip"
    return backend


@pytest.fixture
def run():
    with patch("keenpbr.routing.backend.subprocess.run") as run:
        run.return_value = completed()
        yield run


class TestIpsets:
    """ipset save parsing and restore scripts."""

    def test_members_parsed_from_save(self, backend, run):
        run.return_value = completed(stdout=(
            "create vpn1 hash:net family inet hashsize 1024 maxelem 65536\n"
            "add vpn1 1.2.3.4\n"
            "add vpn1 10.0.0.0/8\n"
        ))
        assert backend.ipset_members("vpn1") == {"1.2.3.4", "10.0.0.0/8"}
        assert run.call_args[0][0] == ["ipset", "save", "vpn1"]

    def test_missing_set(self, backend, run):
        run.return_value = completed(1, stderr="ipset v7.1: The set with the given name does not exist")
        assert backend.ipset_members("vpn1") is None

    def test_replace_swaps_through_temporary_set(self, backend, run):
        backend.ipset_replace("vpn1", 4, ["1.2.3.4"])
        script = run.call_args.kwargs["input"].splitlines()
        tmp = tmp_set_name("vpn1")

        assert run.call_args[0][0] == ["ipset", "restore"]
        assert script == [
            f"create {tmp} hash:net family inet -exist",
            f"flush {tmp}",
            f"add {tmp} 1.2.3.4 -exist",
            "create vpn1 hash:net family inet -exist",
            f"swap {tmp} vpn1",
            f"destroy {tmp}",
        ]

    def test_temporary_name_fits_kernel_limit(self):
        assert len(tmp_set_name("x" * 31)) == 31

    def test_temporary_names_differ_for_shared_prefix(self):
        first = tmp_set_name("x" * 28 + "a")
        second = tmp_set_name("x" * 28 + "b")
        assert first != second
        assert len(first) <= 31 and len(second) <= 31
        assert tmp_set_name("vpn1").startswith("vpn1-")
        assert tmp_set_name("vpn1").endswith("-tmp")

    def test_restore_failure(self, backend, run):
        run.return_value = completed(1, stderr="ipset v7.1: Error in line 2")
        with pytest.raises(ApplyFailure, match="Error in line 2"):
            backend.ipset_add("vpn1", 4, ["1.2.3.4"])

    def test_missing_binary(self, backend, run):
        run.side_effect = FileNotFoundError()
        with pytest.raises(ApplyFailure, match="command not found"):
            backend.ipset_create("vpn1", 4)


class TestRulesAndRoutes:
    """iptables mark rules, ip rules and table routes."""

    def test_mark_rule_check(self, backend, run):
        rule = MarkRule("vpn1", 4, 1001)
        run.return_value = completed(1)
        assert backend.mark_rule_exists(rule) is False
        assert run.call_args[0][0] == [
            "iptables", "-t", "mangle", "-C", "PREROUTING",
            "-m", "set", "--match-set", "vpn1", "dst",
            "-j", "MARK", "--set-mark", "0x3e9",
        ]

    def test_policy_rules_parsed(self, backend, run):
        run.return_value = completed(stdout=json.dumps([
            {"priority": 0, "src": "all", "table": "local"},
            {"priority": 1001, "src": "all", "fwmark": "0x3e9", "table": "1001"},
            {"priority": 32766, "src": "all", "table": "main"},
        ]))
        assert backend.policy_rules(4) == [PolicyRule(4, 1001, 1001, 1001)]

    def test_table_routes_parsed(self, backend, run):
        run.return_value = completed(stdout=json.dumps([
            {"type": "blackhole", "dst": "default", "flags": []},
            {"dst": "10.0.0.0/8", "dev": "wg0", "flags": []},
        ]))
        assert backend.table_routes(4, 1001) == [TableRoute(4, 1001, ROUTE_BLACKHOLE)]

    def test_unicast_route(self, backend, run):
        run.return_value = completed(stdout=json.dumps([{"dst": "default", "dev": "wg0", "flags": []}]))
        assert backend.table_routes(4, 1001) == [TableRoute(4, 1001, interface="wg0")]

    def test_blackhole_route_command(self, backend, run):
        backend.route_replace(TableRoute(6, 1001, ROUTE_BLACKHOLE))
        assert run.call_args[0][0] == ["ip", "-6", "route", "replace", "blackhole", "default", "table", "1001"]

    def test_deleting_missing_route_is_ok(self, backend, run):
        run.return_value = completed(2, stderr="RTNETLINK answers: No such process")
        backend.route_delete(TableRoute(4, 1001, interface="wg0"))

    def test_interface_state(self, backend, run):
        run.return_value = completed(stdout=json.dumps([{"ifname": "wg0", "flags": ["POINTOPOINT", "UP", "LOWER_UP"]}]))
        assert backend.interface_up("wg0")

        run.return_value = completed(stdout=json.dumps([{"ifname": "wg0", "flags": ["POINTOPOINT", "NOARP"]}]))
        assert not backend.interface_up("wg0")

        run.return_value = completed(1, stderr='Device "wg9" does not exist.')
        assert not backend.interface_up("wg9")
