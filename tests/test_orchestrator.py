"""
Action Orchestrator Tests

- per-list isolation: one unavailable list never blocks the others
- per-ipset isolation of ApplyFailure
- single flight (Busy), cancellation and deadline
- output merged in configuration order
- self-check drift reporting
"""

import threading

import httpx
import pytest

from keenpbr.actions.orchestrator import ActionOrchestrator
from keenpbr.config.store import ConfigStore
from keenpbr.errors import Busy, NotFound

from conftest import FakeHostResolver, FakeKernelBackend


REMOTE_URL = "https://lists.example.net/remote.lst"
BROKEN_URL = "https://unreachable.example.net/broken.lst"


def list_server(status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "unreachable.example.net":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, text="5.6.7.8\nexample.com\n")
    return httpx.MockTransport(handler)


@pytest.fixture
def orchestrator(store, backend, host_resolver):
    return ActionOrchestrator(
        store, backend, host_resolver=host_resolver, workers=2, transport=list_server()
    )


class CrashingHostResolver(FakeHostResolver):
    """Fails every lookup with an error the resolver never documents."""

    def resolve(self, hostname, ip_version, server=None):
        raise RuntimeError("resolver exploded")


def add_broken_list(store):
    store.create_list("broken", BROKEN_URL)

    def use_broken(cfg):
        cfg.ipsets[0].lists.append("broken")

    store.mutate(use_broken)


# ============================================================================
# DOWNLOAD
# ============================================================================

class TestDownload:
    """download refreshes the URL list cache only."""

    def test_download_caches_lists(self, orchestrator, backend, lists_dir):
        result = orchestrator.run("download")

        assert result.success
        assert f"[list remote] downloaded 2 entries from {REMOTE_URL}" in result.output
        assert (lists_dir / "remote.lst").read_text() == "5.6.7.8\nexample.com\n"
        assert backend.mutations() == []

    def test_failed_download_fails_action(self, store, backend, host_resolver):
        orchestrator = ActionOrchestrator(
            store, backend, host_resolver=host_resolver, transport=list_server(status=404)
        )
        result = orchestrator.run("download")
        assert not result.success
        assert "[list remote] SourceUnavailable: HTTP 404" in result.output

    def test_one_unreachable_url_does_not_block_others(self, orchestrator, store, lists_dir):
        add_broken_list(store)
        result = orchestrator.run("download")

        assert not result.success
        assert "[list broken] SourceUnavailable" in result.output
        assert "[list remote] downloaded 2 entries" in result.output
        assert (lists_dir / "remote.lst").exists()

    def test_malformed_url_fails_only_that_list(self, orchestrator, store, lists_dir):
        store.create_list("typo", "http://[::1")
        result = orchestrator.run("download")

        assert not result.success
        assert "[list typo] SourceUnavailable: invalid URL" in result.output
        assert "[list remote] downloaded 2 entries" in result.output
        assert orchestrator.last_result.output == result.output

    def test_cache_dir_that_is_a_file(self, orchestrator, store, tmp_path):
        not_a_dir = tmp_path / "not-a-dir"
        not_a_dir.write_text("")

        def point_at_file(cfg):
            cfg.general.lists_output_dir = str(not_a_dir)

        store.mutate(point_at_file)
        result = orchestrator.run("download")

        assert not result.success
        assert "[list remote] SourceUnavailable: cannot store downloaded list" in result.output
        assert not orchestrator.busy


# ============================================================================
# APPLY
# ============================================================================

class TestApply:
    """apply compiles and reconciles every ipset."""

    def test_apply_without_download_warns(self, orchestrator, backend):
        result = orchestrator.run("apply")

        assert result.success
        assert "[list remote] SourceUnavailable: not downloaded yet" in result.output
        assert backend.sets["vpn1"] == {"1.2.3.4", "10.0.0.0/8", "93.184.216.34"}
        assert backend.sets["vpn2"] == set()

    def test_download_then_apply(self, orchestrator, backend):
        orchestrator.run("download")
        result = orchestrator.run("apply")

        assert result.success
        assert backend.sets["vpn2"] == {"5.6.7.8", "93.184.216.34"}

    def test_unavailable_list_isolated(self, orchestrator, store, backend):
        add_broken_list(store)
        result = orchestrator.run("apply")

        assert result.success
        unavailable = [line for line in result.output.splitlines() if "SourceUnavailable" in line]
        assert len(unavailable) == 2
        assert any(line.startswith("[list broken]") for line in unavailable)
        assert "1.2.3.4" in backend.sets["vpn1"]

    def test_sections_in_config_order(self, orchestrator):
        output = orchestrator.run("apply").output
        assert output.splitlines()[0] == "=== apply ==="
        assert output.index("[list local]") < output.index("[ipset vpn1]") < output.index("[ipset vpn2]")
        assert output.splitlines()[-1] == "=== apply completed successfully ==="

    def test_apply_failure_isolated_per_ipset(self, orchestrator, backend):
        backend.fail_on.add(("route_replace", "1001"))
        result = orchestrator.run("apply")

        assert not result.success
        assert "[ipset vpn1] ApplyFailure" in result.output
        assert "vpn2" in backend.sets
        assert any(rule.table == 1002 for rule in backend.rules)

    def test_unexpected_error_isolated_per_ipset(self, store, backend):
        orchestrator = ActionOrchestrator(store, backend, host_resolver=CrashingHostResolver())
        result = orchestrator.run("apply")

        assert not result.success
        assert "[ipset vpn1] unexpected error: RuntimeError: resolver exploded" in result.output
        assert "[ipset vpn2] applied" in result.output
        assert "vpn1" not in backend.sets
        assert backend.sets["vpn2"] == set()
        assert orchestrator.last_result.success is False
        assert not orchestrator.busy

    def test_apply_is_idempotent(self, orchestrator, backend):
        orchestrator.run("apply")
        before = len(backend.mutations())

        result = orchestrator.run("apply")
        assert result.success
        assert "[ipset vpn1] up to date" in result.output
        assert len(backend.mutations()) == before


# ============================================================================
# SELF-CHECK
# ============================================================================

class TestSelfCheck:
    """self-check diffs without changing anything."""

    def test_drift_before_apply(self, orchestrator, backend):
        result = orchestrator.run("self-check")
        assert not result.success
        assert "[ipset vpn1] DRIFT" in result.output
        assert backend.mutations() == []

    def test_no_drift_after_apply(self, orchestrator):
        orchestrator.run("apply")
        result = orchestrator.run("self-check")

        assert result.success
        assert "[ipset vpn1] OK, no drift" in result.output
        assert "[ipset vpn2] OK, no drift" in result.output

    def test_kill_switch_blocking_reported(self, store, host_resolver):
        backend = FakeKernelBackend(links={})
        orchestrator = ActionOrchestrator(store, backend, host_resolver=host_resolver)
        orchestrator.run("apply")

        result = orchestrator.run("self-check")
        assert result.success
        assert "[ipset vpn1] kill switch: blocking" in result.output


# ============================================================================
# OTHER ACTIONS
# ============================================================================

class TestOtherActions:
    """undo-routing, interfaces and print-dnsmasq-config."""

    def test_undo_routing(self, orchestrator, backend):
        orchestrator.run("apply")
        result = orchestrator.run("undo-routing")

        assert result.success
        assert backend.mark_rules == set()
        assert backend.rules == []
        assert backend.routes == {}

    def test_interfaces(self, orchestrator, backend):
        backend.links["wg0"] = False
        result = orchestrator.run("interfaces")

        assert result.success
        assert "[ipset vpn1] interface wg0: down" in result.output
        assert "[ipset vpn1] interface wg1: up (selected)" in result.output
        assert backend.mutations() == []

    def test_dnsmasq_config(self, orchestrator):
        result = orchestrator.run("print-dnsmasq-config")
        assert result.success
        assert "ipset=/example.com/vpn1" in result.output.splitlines()

    def test_unknown_action(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.run("reboot")

    def test_last_result_kept(self, orchestrator):
        assert orchestrator.last_result is None
        orchestrator.run("interfaces")
        assert orchestrator.last_result.action == "interfaces"
        assert orchestrator.last_result.success
        assert orchestrator.last_result.finished_at.tzinfo is not None

    def test_broken_config_fails_action(self, config_path, backend, host_resolver):
        config_path.write_text("[general\n")
        orchestrator = ActionOrchestrator(ConfigStore(config_path), backend, host_resolver=host_resolver)

        result = orchestrator.run("apply")
        assert not result.success
        assert "configuration error" in result.output


# ============================================================================
# CONCURRENCY
# ============================================================================

class BlockingHostResolver(FakeHostResolver):
    """Holds the first DNS query until released."""

    def __init__(self, answers):
        super().__init__(answers)
        self.entered = threading.Event()
        self.release = threading.Event()

    def resolve(self, hostname, ip_version, server=None):
        self.entered.set()
        self.release.wait(5)
        return super().resolve(hostname, ip_version, server)


class TestConcurrency:
    """Single flight, cancellation and deadline."""

    def test_second_action_is_busy(self, store, backend):
        resolver = BlockingHostResolver({"example.com": ["93.184.216.34"]})
        orchestrator = ActionOrchestrator(store, backend, host_resolver=resolver)
        results = []

        worker = threading.Thread(target=lambda: results.append(orchestrator.run("apply")))
        worker.start()
        try:
            assert resolver.entered.wait(5)
            assert orchestrator.busy
            with pytest.raises(Busy):
                orchestrator.run("self-check")
        finally:
            resolver.release.set()
            worker.join(5)

        assert results and results[0].success
        assert not orchestrator.busy

    def test_cancelled_action_skips_pending_units(self, orchestrator, backend):
        cancel = threading.Event()
        cancel.set()
        result = orchestrator.run("apply", cancel)

        assert not result.success
        assert "[ipset vpn1] skipped: action cancelled" in result.output
        assert "[ipset vpn2] skipped: action cancelled" in result.output
        assert backend.mutations() == []

    def test_deadline_skips_units(self, store, backend, host_resolver):
        orchestrator = ActionOrchestrator(
            store, backend, host_resolver=host_resolver, action_timeout=-1
        )
        result = orchestrator.run("apply")

        assert not result.success
        assert "[ipset vpn1] skipped: action deadline exceeded" in result.output
        assert not orchestrator.busy
