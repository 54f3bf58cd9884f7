# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/phases.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from kubeboot.topology.models import Role


class PhaseKind(str, Enum):
    NETWORK = "network"
    CONTAINER_RUNTIME = "container-runtime"
    CLUSTER_TOOLING = "cluster-tooling"
    LOAD_BALANCER = "load-balancer"
    PRIMARY_INIT = "primary-init"
    CONTROL_PLANE_JOIN = "control-plane-join"
    WORKER_JOIN = "worker-join"
    OVERLAY_NETWORK = "overlay-network"
    SHARED_STORAGE = "shared-storage"

    @property
    def is_join(self) -> bool:
        """Join phases run per node: one phase, one host."""
        return self in (PhaseKind.CONTROL_PLANE_JOIN, PhaseKind.WORKER_JOIN)


class Idempotency(str, Enum):
    SAFE_TO_REPEAT = "safe-to-repeat"
    DESTRUCTIVE = "destructive"


class PhaseGroup(str, Enum):
    """Entry points of the command surface; each covers one or more kinds."""
    NETWORK = "network"
    RUNTIME = "runtime"
    TOOLING = "tooling"
    LOADBALANCER = "loadbalancer"
    CLUSTER = "cluster"
    OVERLAY = "overlay"
    STORAGE = "storage"


GROUP_KINDS: Dict[PhaseGroup, Tuple[PhaseKind, ...]] = {
    PhaseGroup.NETWORK: (PhaseKind.NETWORK,),
    PhaseGroup.RUNTIME: (PhaseKind.CONTAINER_RUNTIME,),
    PhaseGroup.TOOLING: (PhaseKind.CLUSTER_TOOLING,),
    PhaseGroup.LOADBALANCER: (PhaseKind.LOAD_BALANCER,),
    PhaseGroup.CLUSTER: (
        PhaseKind.PRIMARY_INIT,
        PhaseKind.CONTROL_PLANE_JOIN,
        PhaseKind.WORKER_JOIN,
    ),
    PhaseGroup.OVERLAY: (PhaseKind.OVERLAY_NETWORK,),
    PhaseGroup.STORAGE: (PhaseKind.SHARED_STORAGE,),
}


def phase_id_for(kind: PhaseKind, node: Optional[str] = None) -> str:
    if kind.is_join:
        if not node:
            raise ValueError(f"{kind.value} phases are per node; node name required")
        return f"{kind.value}:{node}"
    return kind.value


@dataclass(frozen=True)
class Phase:
    """
    One role-targeted step of the bootstrap plan.

    `node` narrows the role set to a single host (primary init, joins,
    overlay deployment run on exactly one node).
    """
    id: str
    kind: PhaseKind
    roles: FrozenSet[Role]
    action: str                                     # executor action id (playbook)
    preconditions: Tuple[str, ...] = ()
    idempotency: Idempotency = Idempotency.SAFE_TO_REPEAT
    node: Optional[str] = None
    tags: Tuple[str, ...] = ()
    variables: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    tolerate_partial_failure: bool = False
    description: str = ""

    @property
    def destructive(self) -> bool:
        return self.idempotency == Idempotency.DESTRUCTIVE

    @property
    def group(self) -> PhaseGroup:
        for group, kinds in GROUP_KINDS.items():
            if self.kind in kinds:
                return group
        raise LookupError(self.kind)


@dataclass(frozen=True)
class StorageOptions:
    """Shared NFS storage: one server node exports share_dir, the rest mount it."""
    server: str
    share_dir: str = "/kubernetes"
