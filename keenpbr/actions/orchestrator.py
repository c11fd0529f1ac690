"""
Action Orchestrator

Drives the user-facing actions:

- download: fetch every URL list into the blob cache (kernel untouched)
- apply: resolve lists from cache, compile and reconcile every ipset
- self-check: compile and diff every ipset against the kernel, read-only
- undo-routing: remove mark rules, policy rules and table routes
- interfaces: report interface state per ipset
- print-dnsmasq-config: render dnsmasq ipset/server directives

Only one action runs at a time; a concurrent request fails with Busy.
Within an action, ipsets are independent units run on a thread pool; each
unit returns its own UnitOutcome and outcomes are merged in configuration
order. Cancellation and the action deadline skip units that have not started;
units already running finish.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from keenpbr import settings
from keenpbr.config.models import LIST_TYPE_URL, IPSet, PBRConfig
from keenpbr.config.store import ConfigStore
from keenpbr.errors import ApplyFailure, Busy, NotFound, PBRError, SourceUnavailable
from keenpbr.ipsets.compiler import CompiledIPSet, compile_ipset, dns_server_for
from keenpbr.ipsets.dns import DnsPythonResolver, HostResolver
from keenpbr.lists.blobstore import BlobStore, FileBlobStore
from keenpbr.lists.models import ResolvedList
from keenpbr.lists.resolver import ListResolver
from keenpbr.routing.apply import RoutingApplier, describe_routing
from keenpbr.routing.backend import KernelBackend
from keenpbr.routing.dnsmasq import render_dnsmasq_config
from keenpbr.routing.interfaces import InterfaceProbe
from .models import (
    ACTION_APPLY,
    ACTION_DNSMASQ_CONFIG,
    ACTION_DOWNLOAD,
    ACTION_INTERFACES,
    ACTION_SELF_CHECK,
    ACTION_UNDO_ROUTING,
    ActionResult,
    LastActionResult,
    UnitOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_LISTS_DIR = "lists"


class ActionContext:
    """Per-run state shared (read-only) by the units of one action."""

    def __init__(self, cfg: PBRConfig, resolver: ListResolver, applier: RoutingApplier,
                 deadline: float, cancel: threading.Event):
        self.cfg = cfg
        self.resolver = resolver
        self.applier = applier
        self.deadline = deadline
        self.cancel = cancel

    def stop_reason(self) -> Optional[str]:
        if self.cancel.is_set():
            return "action cancelled"
        if time.monotonic() > self.deadline:
            return "action deadline exceeded"
        return None


class ActionOrchestrator:
    """
    Runs actions against the configuration store and a kernel backend.

    Args:
        store: configuration store
        backend: kernel backend (SystemBackend in production)
        host_resolver: DNS resolver for hostname entries
        blob_store_factory: builds the list blob store for a document
        workers: per-ipset worker threads
        action_timeout: overall action deadline, seconds
        transport: httpx transport for list downloads (tests)
        rci_transport: httpx transport for the router API (tests)
    """

    def __init__(
        self,
        store: ConfigStore,
        backend: KernelBackend,
        host_resolver: Optional[HostResolver] = None,
        blob_store_factory: Optional[Callable[[PBRConfig], BlobStore]] = None,
        workers: int = settings.WORKERS,
        action_timeout: float = settings.ACTION_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
        rci_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.store = store
        self.backend = backend
        self.host_resolver = host_resolver or DnsPythonResolver()
        self.blob_store_factory = blob_store_factory or self._default_blob_store
        self.workers = max(1, workers)
        self.action_timeout = action_timeout
        self.transport = transport
        self.rci_transport = rci_transport
        self.last_result: Optional[LastActionResult] = None
        self._running = threading.Lock()
        self._handlers: Dict[str, Callable[[ActionContext], List[UnitOutcome]]] = {
            ACTION_DOWNLOAD: self._download,
            ACTION_APPLY: self._apply,
            ACTION_SELF_CHECK: self._self_check,
            ACTION_UNDO_ROUTING: self._undo_routing,
            ACTION_INTERFACES: self._interfaces,
            ACTION_DNSMASQ_CONFIG: self._dnsmasq_config,
        }

    def _default_blob_store(self, cfg: PBRConfig) -> BlobStore:
        return FileBlobStore.for_config(cfg, default_dir=str(self.store.path.parent / DEFAULT_LISTS_DIR))

    @property
    def busy(self) -> bool:
        return self._running.locked()

    # ========================================
    # ENTRY POINT
    # ========================================

    def run(self, action: str, cancel: Optional[threading.Event] = None) -> ActionResult:
        """
        Run one action to completion.

        Raises:
            NotFound: unknown action
            Busy: another action is running
        """
        handler = self._handlers.get(action)
        if handler is None:
            raise NotFound(f"unknown action '{action}'")
        if not self._running.acquire(blocking=False):
            raise Busy("another action is already running, retry later")

        try:
            logger.info(f"Action {action} started")
            result = self._run_locked(action, handler, cancel or threading.Event())
            self.last_result = LastActionResult(action=action, **result.model_dump())
            logger.info(f"Action {action} finished: {'success' if result.success else 'failed'}")
            return result
        finally:
            self._running.release()

    def _run_locked(self, action: str, handler, cancel: threading.Event) -> ActionResult:
        lines = [f"=== {action} ==="]
        try:
            cfg = self.store.get()
        except PBRError as e:
            lines.append(f"configuration error: {e.message}")
            return ActionResult(success=False, output="\n".join(lines))

        blobs = self.blob_store_factory(cfg)
        probe = InterfaceProbe(self.backend, use_router_api=cfg.general.use_keenetic_api,
                               transport=self.rci_transport)
        ctx = ActionContext(
            cfg=cfg,
            resolver=ListResolver(blobs, transport=self.transport),
            applier=RoutingApplier(self.backend, probe),
            deadline=time.monotonic() + self.action_timeout,
            cancel=cancel,
        )

        try:
            outcomes = handler(ctx)
        except Exception as e:
            logger.exception(f"Action {action} crashed")
            outcomes = [UnitOutcome(action)]
            outcomes[0].fail(f"unexpected error: {type(e).__name__}: {e}")
        success = not any(o.fatal for o in outcomes)
        for outcome in outcomes:
            lines.extend(outcome.lines)
        lines.extend(f"[router] {note}" for note in probe.notes)
        lines.append(f"=== {action} {'completed successfully' if success else 'failed'} ===")
        return ActionResult(success=success, output="\n".join(lines))

    def _run_units(self, ctx: ActionContext, units: List[Tuple[str, Callable[[UnitOutcome], None]]]) -> List[UnitOutcome]:
        """Run units on the worker pool; outcomes come back in submission order."""
        def run_unit(unit_id: str, work: Callable[[UnitOutcome], None]) -> UnitOutcome:
            outcome = UnitOutcome(unit_id)
            reason = ctx.stop_reason()
            if reason:
                outcome.skipped = True
                outcome.fail(f"skipped: {reason}")
                return outcome
            try:
                work(outcome)
            except ApplyFailure as e:
                outcome.fail(f"ApplyFailure: {e.message}")
            except PBRError as e:
                outcome.fail(str(e))
            except Exception as e:
                logger.exception(f"Unit {unit_id} crashed")
                outcome.fail(f"unexpected error: {type(e).__name__}: {e}")
            for line in outcome.lines:
                logger.info(line)
            return outcome

        if not units:
            return []
        with ThreadPoolExecutor(max_workers=min(self.workers, len(units)), thread_name_prefix="action") as pool:
            futures = [pool.submit(run_unit, unit_id, work) for unit_id, work in units]
            return [f.result() for f in futures]

    # ========================================
    # LIST RESOLUTION
    # ========================================

    def _resolve_lists(self, ctx: ActionContext) -> Tuple[Dict[str, ResolvedList], List[UnitOutcome]]:
        """Resolve every list referenced by an ipset from local sources only."""
        used = {name for ipset in ctx.cfg.ipsets for name in ipset.lists}
        resolved: Dict[str, ResolvedList] = {}
        outcomes = []

        for list_def in ctx.cfg.lists:
            if list_def.list_name not in used:
                continue
            outcome = UnitOutcome(f"list {list_def.list_name}")
            try:
                result = ctx.resolver.resolve(list_def, fetch=False)
            except SourceUnavailable as e:
                outcome.add(f"SourceUnavailable: {e.reason}")
                logger.warning(e.message)
            else:
                resolved[list_def.list_name] = result
                outcome.add(f"{len(result.entries)} entries ({list_def.type})")
                for warning in result.warnings:
                    outcome.add(f"WARNING: {warning}")
            outcomes.append(outcome)

        return resolved, outcomes

    def _compile(self, ctx: ActionContext, ipset: IPSet, resolved: Dict[str, ResolvedList],
                 outcome: UnitOutcome) -> CompiledIPSet:
        compiled = compile_ipset(ipset, resolved, self.host_resolver, dns_server_for(ipset, ctx.cfg))
        outcome.add(
            f"{len(compiled.members)} members (IPv{compiled.ip_version}), "
            f"{len(compiled.hostnames)} hostnames resolved"
        )
        if compiled.filtered_count:
            outcome.add(f"WARNING: {compiled.filtered_count} entries of the other IP version ignored")
        for name in compiled.unavailable_lists:
            outcome.add(f"WARNING: list '{name}' unavailable, its entries are missing")
        for warning in compiled.warnings:
            outcome.add(f"WARNING: {warning}")
        return compiled

    # ========================================
    # ACTIONS
    # ========================================

    def _download(self, ctx: ActionContext) -> List[UnitOutcome]:
        def download(list_def):
            def work(outcome: UnitOutcome) -> None:
                try:
                    result = ctx.resolver.resolve(list_def, fetch=True, deadline=ctx.deadline)
                except SourceUnavailable as e:
                    outcome.fail(f"SourceUnavailable: {e.reason}")
                    return
                outcome.add(f"downloaded {len(result.entries)} entries from {list_def.url}")
                for warning in result.warnings:
                    outcome.add(f"WARNING: {warning}")
            return work

        units = [
            (f"list {l.list_name}", download(l))
            for l in ctx.cfg.lists
            if l.type == LIST_TYPE_URL
        ]
        if not units:
            return [UnitOutcome("download", lines=["[download] no URL lists configured"])]
        return self._run_units(ctx, units)

    def _apply(self, ctx: ActionContext) -> List[UnitOutcome]:
        resolved, outcomes = self._resolve_lists(ctx)

        def apply(ipset: IPSet):
            def work(outcome: UnitOutcome) -> None:
                compiled = self._compile(ctx, ipset, resolved, outcome)
                report = ctx.applier.apply(ipset, compiled)
                for note in report.notes:
                    outcome.add(f"WARNING: {note}")
                for line in describe_routing(report.desired):
                    outcome.add(line.strip())
                for change in report.applied:
                    outcome.add(change.description)
                for failure in report.failures:
                    outcome.fail(f"ApplyFailure: {failure.message}")
                if report.ok:
                    outcome.add("up to date" if not report.changes else f"applied {len(report.applied)} changes")
            return work

        units = [(f"ipset {s.ipset_name}", apply(s)) for s in ctx.cfg.ipsets]
        return outcomes + self._run_units(ctx, units)

    def _self_check(self, ctx: ActionContext) -> List[UnitOutcome]:
        resolved, outcomes = self._resolve_lists(ctx)

        def check(ipset: IPSet):
            def work(outcome: UnitOutcome) -> None:
                compiled = self._compile(ctx, ipset, resolved, outcome)
                report = ctx.applier.check(ipset, compiled)
                for line in describe_routing(report.desired):
                    outcome.add(line.strip())
                for failure in report.failures:
                    outcome.fail(f"ApplyFailure: {failure.message}")
                for change in report.changes:
                    outcome.fail(f"DRIFT: {change.description}")
                if report.ok and not report.changes:
                    outcome.add("OK, no drift")
            return work

        units = [(f"ipset {s.ipset_name}", check(s)) for s in ctx.cfg.ipsets]
        return outcomes + self._run_units(ctx, units)

    def _undo_routing(self, ctx: ActionContext) -> List[UnitOutcome]:
        def undo(ipset: IPSet):
            def work(outcome: UnitOutcome) -> None:
                report = ctx.applier.undo(ipset)
                for change in report.applied:
                    outcome.add(change.description)
                for failure in report.failures:
                    outcome.fail(f"ApplyFailure: {failure.message}")
                if report.ok:
                    outcome.add("routing removed" if report.changes else "nothing to remove")
            return work

        return self._run_units(ctx, [(f"ipset {s.ipset_name}", undo(s)) for s in ctx.cfg.ipsets])

    def _interfaces(self, ctx: ActionContext) -> List[UnitOutcome]:
        def report(ipset: IPSet):
            def work(outcome: UnitOutcome) -> None:
                desired = ctx.applier.desired_state(ipset)
                if not desired.interface_states:
                    outcome.add("no interfaces configured")
                for line in describe_routing(desired):
                    outcome.add(line.strip())
            return work

        return self._run_units(ctx, [(f"ipset {s.ipset_name}", report(s)) for s in ctx.cfg.ipsets])

    def _dnsmasq_config(self, ctx: ActionContext) -> List[UnitOutcome]:
        resolved, outcomes = self._resolve_lists(ctx)
        config = UnitOutcome("dnsmasq")
        config.lines = render_dnsmasq_config(ctx.cfg, resolved)
        return outcomes + [config]
