# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from ..errors import InvalidTopology
from ..topology.models import Role, Topology
from .phases import Idempotency, Phase, PhaseKind, StorageOptions, phase_id_for

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx

log = logging.getLogger("kubeboot")

INIT_PLAYBOOK = "initialize-cluster.yml"

_ALL_ROLES = frozenset(Role)
_K8S_ROLES = frozenset({Role.CONTROL_PLANE, Role.WORKER})


class UnknownDependencyError(ValueError):
    pass


def _validate_dependencies(phases: List[Phase]) -> None:
    """Every precondition must name a phase that comes earlier in the plan."""
    seen: Set[str] = set()
    for p in phases:
        for d in p.preconditions:
            if d not in seen:
                raise UnknownDependencyError(
                    f"Phase '{p.id}' depends on '{d}', which does not precede it"
                )
        seen.add(p.id)


def _storage_phase(topology: Topology, storage: StorageOptions) -> Phase:
    try:
        server = topology.node(storage.server)
    except KeyError:
        raise InvalidTopology(f"NFS server '{storage.server}' is not a node in this topology") from None
    if server.role == Role.LOAD_BALANCER:
        log.warning(
            "NFS server %s is the load balancer; this works but is not recommended",
            server.name,
        )
    return Phase(
        id=phase_id_for(PhaseKind.SHARED_STORAGE),
        kind=PhaseKind.SHARED_STORAGE,
        roles=_ALL_ROLES,
        action="nfs-setup.yml",
        preconditions=(PhaseKind.OVERLAY_NETWORK.value,),
        variables={
            "ansible_nfs_server": server.name,
            "ansible_nfs_share_dir": storage.share_dir,
        },
        description=f"NFS storage on {server.name}:{storage.share_dir}",
    )


def plan(
    topology: Topology,
    storage: Optional[StorageOptions] = None,
    *,
    cluster_name: str = "kubernetes",
    pod_network_cidr: str = "10.244.0.0/16",
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[Phase]:
    """
    Build the ordered phase list for a validated topology.

    Conditional segments (load balancer, secondary control-plane joins,
    worker joins, storage) depend only on topology facts, so the same
    inputs always yield the same plan.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    endpoint = topology.control_plane_endpoint()
    ctx = run_ctx or new_ctx(cluster=cluster_name, endpoint=endpoint)
    try:
        primary = topology.primary
        cluster_vars: Dict[str, str] = {
            "control_plane_endpoint": endpoint,
            "pod_network_cidr": pod_network_cidr,
            "cluster_name": cluster_name,
        }

        phases: List[Phase] = [
            Phase(
                id=PhaseKind.NETWORK.value,
                kind=PhaseKind.NETWORK,
                roles=_ALL_ROLES,
                action="configure-network.yml",
                description="Hosts file and network settings",
            ),
            Phase(
                id=PhaseKind.CONTAINER_RUNTIME.value,
                kind=PhaseKind.CONTAINER_RUNTIME,
                roles=_K8S_ROLES,
                action="install-docker.yml",
                preconditions=(PhaseKind.NETWORK.value,),
                description="Docker and containerd",
            ),
            Phase(
                id=PhaseKind.CLUSTER_TOOLING.value,
                kind=PhaseKind.CLUSTER_TOOLING,
                roles=_K8S_ROLES,
                action="install-kubernetes.yml",
                preconditions=(PhaseKind.CONTAINER_RUNTIME.value,),
                description="kubeadm, kubelet and kubectl",
            ),
        ]

        init_requires = [PhaseKind.CLUSTER_TOOLING.value]
        if topology.has_load_balancer:
            phases.append(
                Phase(
                    id=PhaseKind.LOAD_BALANCER.value,
                    kind=PhaseKind.LOAD_BALANCER,
                    roles=frozenset({Role.LOAD_BALANCER}),
                    action="install-haproxy.yml",
                    preconditions=(PhaseKind.NETWORK.value,),
                    variables={"control_plane_endpoint": endpoint},
                    description="HAProxy in front of the API servers",
                )
            )
            init_requires.append(PhaseKind.LOAD_BALANCER.value)

        init_id = PhaseKind.PRIMARY_INIT.value
        phases.append(
            Phase(
                id=init_id,
                kind=PhaseKind.PRIMARY_INIT,
                roles=frozenset({Role.CONTROL_PLANE}),
                node=primary.name,
                action=INIT_PLAYBOOK,
                tags=("init_master",),
                preconditions=tuple(init_requires),
                idempotency=Idempotency.DESTRUCTIVE,
                variables={**cluster_vars, "upload_certs": "true"},
                description=f"kubeadm init on {primary.name}",
            )
        )

        # Secondary control planes first, in declaration order.
        for node in topology.hosts_for_role(Role.CONTROL_PLANE)[1:]:
            phases.append(
                Phase(
                    id=phase_id_for(PhaseKind.CONTROL_PLANE_JOIN, node.name),
                    kind=PhaseKind.CONTROL_PLANE_JOIN,
                    roles=frozenset({Role.CONTROL_PLANE}),
                    node=node.name,
                    action=INIT_PLAYBOOK,
                    tags=("join_masters",),
                    preconditions=(init_id,),
                    variables=dict(cluster_vars),
                    description=f"join {node.name} as control plane",
                )
            )

        for node in topology.hosts_for_role(Role.WORKER):
            phases.append(
                Phase(
                    id=phase_id_for(PhaseKind.WORKER_JOIN, node.name),
                    kind=PhaseKind.WORKER_JOIN,
                    roles=frozenset({Role.WORKER}),
                    node=node.name,
                    action=INIT_PLAYBOOK,
                    tags=("join_workers",),
                    preconditions=(init_id,),
                    variables=dict(cluster_vars),
                    description=f"join {node.name} as worker",
                )
            )

        phases.append(
            Phase(
                id=PhaseKind.OVERLAY_NETWORK.value,
                kind=PhaseKind.OVERLAY_NETWORK,
                roles=frozenset({Role.CONTROL_PLANE}),
                node=primary.name,
                action="deploy-weave.yml",
                preconditions=(init_id,),
                variables=dict(cluster_vars),
                description="Weave Net CNI",
            )
        )

        if storage is not None:
            phases.append(_storage_phase(topology, storage))

        _validate_dependencies(phases)

        if bus:
            bus.emit(PlanComputed(order=[p.id for p in phases], **ctx))
        return phases

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise
