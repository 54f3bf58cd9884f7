# kubeboot/src/kubeboot/state/inventory.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from jinja2 import Environment, StrictUndefined

from kubeboot.topology.models import DEFAULT_API_PORT, Role, Topology, declare

# Inventory group per role; order here is the order groups are written.
ROLE_GROUP: Dict[Role, str] = {
    Role.CONTROL_PLANE: "control_plane",
    Role.WORKER: "workers",
    Role.LOAD_BALANCER: "loadbalancers",
}
GROUP_ROLE: Dict[str, Role] = {g: r for r, g in ROLE_GROUP.items()}

INVENTORY_TEMPLATE = """\
# Managed by kubeboot; rewritten whole on every run.
[all]
{% for n in nodes -%}
{{ n.name }} ansible_host={{ n.address }} ansible_user={{ n.user }}
{% endfor %}
{%- for group, members in groups %}
[{{ group }}]
{% for n in members -%}
{{ n.name }}
{% endfor %}
{%- endfor %}
[all:vars]
{% for key, value in variables -%}
{{ key }}={{ value }}
{% endfor %}"""

_env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)


def render_inventory(topology: Topology, extra_vars: Optional[Mapping[str, str]] = None) -> str:
    """
    Ansible INI inventory: [all] host lines in declaration order, one group
    per role, and an [all:vars] section carrying the derived endpoint.
    """
    groups = [
        (group, topology.hosts_for_role(role))
        for role, group in ROLE_GROUP.items()
        if topology.hosts_for_role(role)
    ]
    variables: List[Tuple[str, str]] = [
        ("control_plane_endpoint", topology.control_plane_endpoint()),
        ("api_port", str(topology.api_port)),
    ]
    for key, value in sorted((extra_vars or {}).items()):
        if key in ("control_plane_endpoint", "api_port"):
            continue
        variables.append((key, str(value)))

    tpl = _env.from_string(INVENTORY_TEMPLATE)
    return tpl.render(nodes=topology.nodes, groups=groups, variables=variables)


def _split_host_line(line: str) -> Tuple[str, Dict[str, str]]:
    parts = line.split()
    attrs: Dict[str, str] = {}
    for p in parts[1:]:
        if "=" in p:
            k, v = p.split("=", 1)
            attrs[k] = v
    return parts[0], attrs


def read_inventory(text: str) -> Tuple[List[Tuple[str, str, str]], Dict[str, List[str]], Dict[str, str]]:
    """
    Parse an INI inventory into ([(name, address, user)], {group: [names]}, vars).
    """
    hosts: List[Tuple[str, str, str]] = []
    groups: Dict[str, List[str]] = {}
    variables: Dict[str, str] = {}

    section: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(";"):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            if section not in ("all", "all:vars"):
                groups.setdefault(section, [])
            continue
        if section is None:
            continue

        if section == "all:vars":
            key, _, value = line.partition("=")
            variables[key.strip()] = value.strip()
        elif section == "all":
            name, attrs = _split_host_line(line)
            addr = attrs.get("ansible_host")
            user = attrs.get("ansible_user")
            if addr and user:
                hosts.append((name, addr, user))
        else:
            groups[section].append(line.split()[0])

    return hosts, groups, variables


def topology_from_inventory(text: str) -> Topology:
    """
    Rebuild a Topology from a rendered inventory.

    Re-declaring in [all] order reproduces the stored names; a file whose
    names do not match that order was edited by hand and is rejected.
    """
    hosts, groups, variables = read_inventory(text)
    role_of: Dict[str, Role] = {}
    for group, members in groups.items():
        role = GROUP_ROLE.get(group)
        if role is None:
            continue
        for name in members:
            role_of[name] = role

    decls = []
    for name, addr, user in hosts:
        if name not in role_of:
            raise ValueError(f"Inventory host '{name}' is not in any role group")
        decls.append((addr, user, role_of[name]))

    api_port = int(variables.get("api_port", DEFAULT_API_PORT))
    topo = declare(decls, api_port=api_port)

    stored_names = [h[0] for h in hosts]
    if [n.name for n in topo.nodes] != stored_names:
        raise ValueError(
            f"Inventory names {stored_names} do not match declaration order; "
            "regenerate the inventory instead of editing it"
        )
    return topo


def load_inventory(path: Path) -> Optional[Topology]:
    if not path.exists():
        return None
    return topology_from_inventory(path.read_text())


def stored_endpoint(path: Path) -> Optional[str]:
    """control_plane_endpoint as written, without re-validating the topology."""
    if not path.exists():
        return None
    _, _, variables = read_inventory(path.read_text())
    return variables.get("control_plane_endpoint")
