# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from .phases import Phase, PhaseGroup, PhaseKind, StorageOptions
from .planner import plan
from ..errors import (
    BootstrapError,
    CredentialError,
    DestructiveActionNotConfirmed,
    HostUnreachable,
    PhaseActionFailed,
    PreconditionNotMet,
)
from ..executor.interface import ADMIN_KUBECONFIG_ACTION, ConfigExecutor, ExecutorResult
from ..secrets.credentials import SecretLifecycleManager
from ..secrets.transcript import render_join_transcript
from ..state.ledger import ExecutionLedger, Outcome, PhaseRun
from ..state.store import StateStore
from ..topology.models import Topology
from ..utils.execution import ExecutionContext

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    stamp,
    AdminBundleWritten,
    CredentialIssued,
    PhaseFailed,
    PhaseSkipped,
    PhaseStarted,
    PhaseSucceeded,
    ReachabilityChecked,
    RunSummary,
)

log = logging.getLogger("kubeboot")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunOptions:
    context: ExecutionContext = field(default_factory=ExecutionContext)
    only: Sequence[str] = ()                # phase ids
    groups: Sequence[PhaseGroup] = ()
    force: Sequence[str] = ()               # re-run even if already succeeded
    confirm_destructive: bool = False


@dataclass
class RunReport:
    mode: str
    runs: List[PhaseRun] = field(default_factory=list)
    halted_at: Optional[str] = None
    admin_bundle: Optional[Path] = None

    @property
    def error(self) -> Optional[str]:
        failed = [r for r in self.runs if r.outcome == Outcome.FAILED]
        return failed[-1].error if failed else None

    def add(self, run: PhaseRun) -> None:
        self.runs.append(run)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.runs if r.outcome == outcome)

    @property
    def ok(self) -> bool:
        return self.halted_at is None

    def summary(self) -> str:
        s = (
            f"SUCCEEDED={self.count(Outcome.SUCCEEDED)} "
            f"FAILED={self.count(Outcome.FAILED)} "
            f"SKIPPED={self.count(Outcome.SKIPPED)}"
        )
        if self.halted_at:
            s += f" HALTED_AT={self.halted_at}"
        return s


class Orchestrator:
    """
    Drives the phase plan against live hosts, one phase at a time.

    Phase-level errors are recorded in the ledger and the returned
    RunReport; the run halts at the first failed phase. Only lock and
    confirmation errors propagate.
    """

    def __init__(
        self,
        topology: Topology,
        executor: ConfigExecutor,
        store: StateStore,
        secrets: Optional[SecretLifecycleManager] = None,
        *,
        storage: Optional[StorageOptions] = None,
        cluster_name: str = "kubernetes",
        pod_network_cidr: str = "10.244.0.0/16",
        inventory_vars: Optional[Mapping[str, Any]] = None,
        ping_timeout: int = 30,
        action_timeout: Optional[int] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.topology = topology
        self.executor = executor
        self.store = store
        self.secrets = secrets or SecretLifecycleManager()
        self.storage = storage
        self.cluster_name = cluster_name
        self.pod_network_cidr = pod_network_cidr
        self.inventory_vars = dict(inventory_vars or {})
        self.ping_timeout = ping_timeout
        self.action_timeout = action_timeout
        self.bus = bus or EventBus([])
        self.clock = clock or _utcnow
        self.run_ctx = new_ctx(
            cluster=cluster_name,
            endpoint=topology.control_plane_endpoint(),
            run_id=run_id,
        )

    @property
    def run_id(self) -> str:
        return self.run_ctx["run_id"]

    def plan(self, *, emit: bool = True) -> List[Phase]:
        return plan(
            self.topology,
            self.storage,
            cluster_name=self.cluster_name,
            pod_network_cidr=self.pod_network_cidr,
            bus=self.bus if emit else None,
            run_ctx=self.run_ctx,
        )

    def hosts_for(self, phase: Phase) -> List[str]:
        if phase.node:
            return [phase.node]
        return [n.name for n in self.topology.hosts_for_roles(phase.roles)]

    # ------------------ selection ------------------

    def _select(self, phases: List[Phase], opts: RunOptions) -> List[Phase]:
        known = {p.id for p in phases}
        unknown = [i for i in list(opts.only) + list(opts.force) if i not in known]
        if unknown:
            raise ValueError(
                f"Unknown phase id(s): {', '.join(unknown)} (plan: {', '.join(p.id for p in phases)})"
            )

        selected = phases
        if opts.groups:
            wanted = {PhaseGroup(g) for g in opts.groups}
            selected = [p for p in selected if p.group in wanted]
        if opts.only:
            only = set(opts.only)
            selected = [p for p in selected if p.id in only]
        return selected

    def _check_forced(self, phases: List[Phase], opts: RunOptions) -> None:
        forced = set(opts.force)
        for p in phases:
            if p.id in forced and p.destructive and not opts.confirm_destructive:
                raise DestructiveActionNotConfirmed(
                    f"Re-running '{p.id}' is destructive ({p.description}); "
                    f"it invalidates every issued join credential and requires explicit confirmation"
                )
        if forced and not opts.context.mode.applies_changes:
            log.info("--force has no effect in %s mode", opts.context.mode.value)

    # ------------------ run ------------------

    def run(self, options: Optional[RunOptions] = None) -> RunReport:
        opts = options or RunOptions()
        ctx = opts.context
        report = RunReport(mode=ctx.mode.value)

        with self.store.lock():
            ledger = self.store.open_ledger(self.topology)
            self.store.save_topology(self.topology, self.inventory_vars)

            phases = self.plan()
            selected = self._select(phases, opts)
            self._check_forced(selected, opts)
            forced: Set[str] = set(opts.force)
            done_this_run: Set[str] = set()

            for phase in selected:
                if (
                    ctx.mode.applies_changes
                    and phase.id not in forced
                    and ledger.succeeded(phase.id)
                ):
                    self._record_skip(ledger, report, phase, ctx, "already succeeded")
                    done_this_run.add(phase.id)
                    continue

                run = self._run_phase(phase, ctx, ledger, done_this_run)
                report.add(run)
                if run.outcome == Outcome.SUCCEEDED:
                    done_this_run.add(phase.id)
                    continue

                report.halted_at = phase.id
                log.error("Halting plan at %s: %s", phase.id, run.error)
                break

            if report.ok and ctx.mode.applies_changes and all(
                p.id in done_this_run or ledger.succeeded(p.id) for p in phases
            ):
                report.admin_bundle = self._finalize()

        self.bus.emit(RunSummary(
            succeeded=report.count(Outcome.SUCCEEDED),
            failed=report.count(Outcome.FAILED),
            skipped=report.count(Outcome.SKIPPED),
            halted_at=report.halted_at,
            **stamp(self.run_ctx),
        ))
        return report

    def _record_skip(
        self, ledger: ExecutionLedger, report: RunReport, phase: Phase, ctx: ExecutionContext, reason: str
    ) -> None:
        now = self.clock()
        run = PhaseRun(
            phase_id=phase.id,
            hosts=(),
            started_at=now,
            ended_at=now,
            outcome=Outcome.SKIPPED,
            mode=ctx.mode,
            run_id=self.run_id,
        )
        ledger.append(run)
        report.add(run)
        self.bus.emit(PhaseSkipped(phase=phase.id, reason=reason, **stamp(self.run_ctx)))

    def _run_phase(
        self,
        phase: Phase,
        ctx: ExecutionContext,
        ledger: ExecutionLedger,
        done_this_run: Set[str],
    ) -> PhaseRun:
        hosts = self.hosts_for(phase)
        started = self.clock()
        self.bus.emit(PhaseStarted(phase=phase.id, hosts=list(hosts), mode=ctx.mode.value,
                                   **stamp(self.run_ctx)))

        try:
            missing = [
                d for d in phase.preconditions
                if d not in done_this_run and not ledger.succeeded(d)
            ]
            if missing:
                raise PreconditionNotMet(phase.id, missing)

            reachable = self._check_reachability(phase, hosts)

            extra_vars: Dict[str, Any] = {**self.inventory_vars, **phase.variables}
            if phase.kind.is_join and ctx.mode.applies_changes:
                extra_vars.update(self.secrets.join_variables(phase.id))

            tags = tuple(dict.fromkeys(phase.tags + ctx.executor_tags()))
            result = self.executor.run(
                phase.action,
                reachable,
                tags=tags,
                extra_vars=extra_vars,
                mode=ctx.mode,
                timeout=self.action_timeout,
            )
            failed_hosts = sorted(set(result.failed_hosts) | (set(hosts) - set(reachable)))
            if result.failed_hosts:
                all_failed = len(result.failed_hosts) >= len(reachable)
                if not phase.tolerate_partial_failure or all_failed:
                    raise PhaseActionFailed(phase.id, result.failed_hosts, result.detail)
            if failed_hosts:
                log.warning("%s tolerated failures on %s", phase.id, ", ".join(failed_hosts))

            if ctx.mode.applies_changes:
                self._after_success(phase, result)

        except BootstrapError as e:
            return self._record_failure(ledger, phase, hosts, started, ctx, e)
        except Exception as e:
            # executor crashed; the phase failed on every targeted host
            err = PhaseActionFailed(phase.id, hosts, f"{type(e).__name__}: {e}")
            return self._record_failure(ledger, phase, hosts, started, ctx, err)

        ended = self.clock()
        run = PhaseRun(
            phase_id=phase.id,
            hosts=tuple(hosts),
            started_at=started,
            ended_at=ended,
            outcome=Outcome.SUCCEEDED,
            mode=ctx.mode,
            failed_hosts=tuple(failed_hosts),
            run_id=self.run_id,
        )
        ledger.append(run)
        self.bus.emit(PhaseSucceeded(phase=phase.id, hosts=list(hosts), duration_ms=run.duration_ms,
                                     **stamp(self.run_ctx)))
        return run

    def _check_reachability(self, phase: Phase, hosts: List[str]) -> List[str]:
        status = self.executor.ping(hosts, self.ping_timeout)
        reachable = [h for h in hosts if status.get(h)]
        unreachable = [h for h in hosts if not status.get(h)]
        self.bus.emit(ReachabilityChecked(phase=phase.id, reachable=reachable, unreachable=unreachable,
                                          **stamp(self.run_ctx)))
        if unreachable and (not phase.tolerate_partial_failure or not reachable):
            raise HostUnreachable(phase.id, unreachable)
        return reachable

    def _after_success(self, phase: Phase, result: ExecutorResult) -> None:
        if phase.kind.is_join:
            self.secrets.mark_consumed(phase.id)
            return
        if phase.kind != PhaseKind.PRIMARY_INIT:
            return

        for cred in self.secrets.issue_from_init(result.outputs):
            self.bus.emit(CredentialIssued(kind=cred.kind.value, expires_at=cred.expires_at.isoformat(),
                                           **stamp(self.run_ctx)))
        path = self.store.write_transcript(
            render_join_transcript(self.topology, self.secrets, self.clock())
        )
        log.info("Join command transcript written to %s", path)

    def _record_failure(
        self,
        ledger: ExecutionLedger,
        phase: Phase,
        hosts: List[str],
        started: datetime,
        ctx: ExecutionContext,
        err: BootstrapError,
    ) -> PhaseRun:
        if isinstance(err, (HostUnreachable, PhaseActionFailed)):
            failed_hosts = tuple(err.hosts)
        elif isinstance(err, (PreconditionNotMet, CredentialError)):
            failed_hosts = ()
        else:
            failed_hosts = tuple(hosts)

        run = PhaseRun(
            phase_id=phase.id,
            hosts=tuple(hosts),
            started_at=started,
            ended_at=self.clock(),
            outcome=Outcome.FAILED,
            mode=ctx.mode,
            error_kind=type(err).__name__,
            error=str(err),
            failed_hosts=failed_hosts,
            run_id=self.run_id,
        )
        ledger.append(run)
        self.bus.emit(PhaseFailed(phase=phase.id, error_kind=run.error_kind, error=str(err),
                                  failed_hosts=list(failed_hosts), **stamp(self.run_ctx)))
        return run

    # ------------------ admin bundle ------------------

    def fetch_admin_material(self) -> bool:
        """Re-read admin.conf from the primary when this process never saw init run."""
        playbook, tags = ADMIN_KUBECONFIG_ACTION
        primary = self.topology.primary.name
        result = self.executor.run(playbook, [primary], tags=tags, timeout=self.action_timeout)
        conf = result.outputs.get("admin_conf") if result.ok else None
        if conf:
            self.secrets.set_admin_material(str(conf))
            return True
        log.warning("Could not retrieve admin kubeconfig from %s: %s", primary,
                    result.detail or "no admin_conf in outputs")
        return False

    def _finalize(self) -> Optional[Path]:
        if not self.secrets.has_admin_material:
            if self.store.admin_bundle_path.exists():
                return self.store.admin_bundle_path
            if not self.fetch_admin_material():
                return None

        bundle = self.secrets.finalize(self.topology.control_plane_endpoint())
        path = self.store.write_admin_bundle(bundle)
        self.bus.emit(AdminBundleWritten(path=str(path), **stamp(self.run_ctx)))
        return path
