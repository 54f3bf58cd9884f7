# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/reset.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import DestructiveActionNotConfirmed, PhaseActionFailed
from ..executor.interface import RESET_ACTION
from ..observers.events import ResetCompleted, ResetStarted, stamp
from ..topology.models import Role
from .executor import Orchestrator

log = logging.getLogger("kubeboot")

CONFIRM_WORD = "yes"


@dataclass
class ResetPlan:
    hosts: List[str]
    ledger: Optional[Path]
    artifacts: List[Path] = field(default_factory=list)

    def describe(self) -> str:
        lines = ["The following will be destroyed:"]
        lines.append("  kubeadm reset on: " + (", ".join(self.hosts) or "-"))
        lines.append(f"  execution ledger: {self.ledger or '(none)'} (archived)")
        if self.artifacts:
            for a in self.artifacts:
                lines.append(f"  artifact: {a}")
        else:
            lines.append("  artifacts: (none)")
        lines.append("  in-memory join credentials")
        return "\n".join(lines)


def describe_reset(orch: Orchestrator) -> ResetPlan:
    hosts = [
        n.name for n in orch.topology.hosts_for_roles((Role.CONTROL_PLANE, Role.WORKER))
    ]
    ledger = orch.store.ledger_path if orch.store.ledger_path.exists() else None
    return ResetPlan(hosts=hosts, ledger=ledger, artifacts=orch.store.artifact_files())


def reset(orch: Orchestrator, *, confirm: Optional[str]) -> ResetPlan:
    """
    Out-of-band destructive reset: tears down kubeadm state on every
    control-plane and worker node, archives the ledger, removes artifacts,
    and forgets all credentials.

    `confirm` must be exactly "yes"; anything else raises
    DestructiveActionNotConfirmed before any host is contacted.
    """
    if (confirm or "").strip().lower() != CONFIRM_WORD:
        raise DestructiveActionNotConfirmed(
            f"Reset requires typing '{CONFIRM_WORD}' to confirm"
        )

    store = orch.store
    with store.lock():
        target = describe_reset(orch)
        log.warning(target.describe())
        orch.bus.emit(ResetStarted(hosts=list(target.hosts), **stamp(orch.run_ctx)))

        playbook, tags = RESET_ACTION
        try:
            result = orch.executor.run(
                playbook, target.hosts, tags=tags, timeout=orch.action_timeout
            )
            if result.failed_hosts:
                raise PhaseActionFailed("reset", result.failed_hosts, result.detail)
        except Exception as e:
            orch.bus.emit(ResetCompleted(status="FAILED", error=str(e), **stamp(orch.run_ctx)))
            raise

        archived = store.archive_ledger()
        if archived:
            log.info("Ledger archived to %s", archived)
        store.remove_artifacts()
        orch.secrets.discard()

    orch.bus.emit(ResetCompleted(status="OK", **stamp(orch.run_ctx)))
    return target
