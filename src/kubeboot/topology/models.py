# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/topology/models.py
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple, Union

from kubeboot.errors import InvalidTopology

DEFAULT_API_PORT = 6443


class Role(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"
    LOAD_BALANCER = "load-balancer"


# Generated node names are <prefix><two digit ordinal within role>.
ROLE_PREFIX: Dict[Role, str] = {
    Role.CONTROL_PLANE: "controlplane",
    Role.WORKER: "worker",
    Role.LOAD_BALANCER: "loadbalancer",
}


@dataclass(frozen=True)
class Node:
    """
    A host the executor will log into.
    """
    name: str       # generated, e.g. 'controlplane01'
    address: str    # IP to connect to
    user: str       # login principal
    role: Role


@dataclass(frozen=True)
class Topology:
    """
    Ordered set of nodes plus the facts derived from it.

    Build with declare(); constructing directly skips validation.
    """
    nodes: Tuple[Node, ...]
    api_port: int = DEFAULT_API_PORT

    @property
    def control_plane_count(self) -> int:
        return len(self.hosts_for_role(Role.CONTROL_PLANE))

    @property
    def worker_count(self) -> int:
        return len(self.hosts_for_role(Role.WORKER))

    @property
    def has_load_balancer(self) -> bool:
        return bool(self.hosts_for_role(Role.LOAD_BALANCER))

    @property
    def primary(self) -> Node:
        """The control-plane node that initializes the cluster."""
        return self.hosts_for_role(Role.CONTROL_PLANE)[0]

    @property
    def load_balancer(self) -> Node | None:
        lbs = self.hosts_for_role(Role.LOAD_BALANCER)
        return lbs[0] if lbs else None

    def hosts_for_role(self, role: Union[Role, str]) -> List[Node]:
        role = Role(role)
        return [n for n in self.nodes if n.role == role]

    def hosts_for_roles(self, roles: Iterable[Union[Role, str]]) -> List[Node]:
        wanted = {Role(r) for r in roles}
        return [n for n in self.nodes if n.role in wanted]

    def by_name(self) -> Dict[str, Node]:
        return {n.name: n for n in self.nodes}

    def node(self, name: str) -> Node:
        try:
            return self.by_name()[name]
        except KeyError:
            raise KeyError(f"No node named '{name}' in topology") from None

    def control_plane_endpoint(self) -> str:
        """
        Load balancer address when present, otherwise the sole control-plane
        node. Every issued credential is bound to this value.
        """
        lb = self.load_balancer
        host = lb.address if lb is not None else self.primary.address
        return f"{_host_for_url(host)}:{self.api_port}"

    def summary(self) -> str:
        return (
            f"control-plane={self.control_plane_count} "
            f"workers={self.worker_count} "
            f"load-balancer={'yes' if self.has_load_balancer else 'no'} "
            f"endpoint={self.control_plane_endpoint()}"
        )


def _host_for_url(address: str) -> str:
    if ipaddress.ip_address(address).version == 6:
        return f"[{address}]"
    return address


NodeDecl = Tuple[str, str, Union[Role, str]]


def declare(nodes: Sequence[NodeDecl], *, api_port: int = DEFAULT_API_PORT) -> Topology:
    """
    Validate (address, principal, role) declarations and assign stable names.

    Names are assigned per role in declaration order, so the first declared
    control-plane node is always 'controlplane01' and is the primary.
    """
    counters: Dict[Role, int] = {r: 0 for r in Role}
    seen_addresses: Dict[str, str] = {}
    built: List[Node] = []

    for idx, decl in enumerate(nodes):
        try:
            address, user, role = decl
        except (TypeError, ValueError):
            raise InvalidTopology(
                f"Node #{idx + 1}: expected (address, user, role), got {decl!r}"
            ) from None

        try:
            role = Role(role)
        except ValueError:
            raise InvalidTopology(
                f"Node #{idx + 1}: unknown role '{role}' "
                f"(expected one of {', '.join(r.value for r in Role)})"
            ) from None

        address = str(address).strip()
        try:
            ipaddress.ip_address(address)
        except ValueError:
            raise InvalidTopology(f"Node #{idx + 1}: invalid IP address '{address}'") from None

        if not user or not str(user).strip():
            raise InvalidTopology(f"Node #{idx + 1} ({address}): username cannot be empty")

        counters[role] += 1
        name = f"{ROLE_PREFIX[role]}{counters[role]:02d}"

        if address in seen_addresses:
            raise InvalidTopology(
                f"Address {address} declared twice ({seen_addresses[address]} and {name})"
            )
        seen_addresses[address] = name

        built.append(Node(name=name, address=address, user=str(user).strip(), role=role))

    if not 0 < api_port < 65536:
        raise InvalidTopology(f"Invalid API port {api_port}")

    topo = Topology(nodes=tuple(built), api_port=api_port)
    _validate_cardinality(topo)
    return topo


def _validate_cardinality(topo: Topology) -> None:
    cp = topo.control_plane_count
    lbs = len(topo.hosts_for_role(Role.LOAD_BALANCER))

    if cp < 1:
        raise InvalidTopology("At least one control-plane node is required")
    if lbs > 1:
        raise InvalidTopology(f"At most one load balancer is supported, got {lbs}")
    if cp > 1 and lbs == 0:
        raise InvalidTopology(
            f"{cp} control-plane nodes need a load balancer as the stable API endpoint"
        )
