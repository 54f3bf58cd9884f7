import pytest

from kubeboot.errors import InvalidTopology
from kubeboot.topology.models import Role, declare


def _ha():
    return declare([
        ("10.0.0.10", "ubuntu", "load-balancer"),
        ("10.0.0.11", "ubuntu", "control-plane"),
        ("10.0.0.12", "ubuntu", "control-plane"),
        ("10.0.0.21", "ubuntu", "worker"),
        ("10.0.0.22", "ubuntu", "worker"),
    ])


def test_names_assigned_per_role_in_declaration_order():
    topo = _ha()
    assert [n.name for n in topo.nodes] == [
        "loadbalancer01", "controlplane01", "controlplane02", "worker01", "worker02",
    ]
    assert topo.primary.name == "controlplane01"
    assert topo.control_plane_count == 2
    assert topo.worker_count == 2
    assert topo.has_load_balancer


def test_hosts_for_role_keeps_declaration_order():
    topo = declare([
        ("10.0.0.11", "root", "control-plane"),
        ("10.0.0.23", "root", "worker"),
        ("10.0.0.21", "root", "worker"),
    ])
    assert [n.address for n in topo.hosts_for_role(Role.WORKER)] == ["10.0.0.23", "10.0.0.21"]
    assert [n.name for n in topo.hosts_for_roles(["worker", "control-plane"])] == [
        "controlplane01", "worker01", "worker02",
    ]


def test_endpoint_is_balancer_when_present():
    assert _ha().control_plane_endpoint() == "10.0.0.10:6443"


def test_endpoint_is_sole_control_plane_without_balancer():
    topo = declare([("192.168.1.5", "admin", "control-plane")], api_port=8443)
    assert topo.control_plane_endpoint() == "192.168.1.5:8443"
    assert not topo.has_load_balancer
    assert topo.load_balancer is None


def test_ipv6_endpoint_is_bracketed():
    topo = declare([("fd00::1", "admin", "control-plane")])
    assert topo.control_plane_endpoint() == "[fd00::1]:6443"


def test_single_control_plane_with_balancer_is_valid():
    topo = declare([
        ("10.0.0.10", "u", "load-balancer"),
        ("10.0.0.11", "u", "control-plane"),
    ])
    assert topo.control_plane_endpoint() == "10.0.0.10:6443"


@pytest.mark.parametrize("nodes, needle", [
    ([], "At least one control-plane"),
    ([("10.0.0.21", "u", "worker")], "At least one control-plane"),
    ([("10.0.0.11", "u", "control-plane"), ("10.0.0.12", "u", "control-plane")], "load balancer"),
    ([("10.0.0.11", "u", "control-plane"), ("10.0.0.10", "u", "load-balancer"),
      ("10.0.0.9", "u", "load-balancer")], "At most one load balancer"),
    ([("10.0.0.11", "u", "control-plane"), ("10.0.0.11", "u", "worker")], "declared twice"),
    ([("not-an-ip", "u", "control-plane")], "invalid IP"),
    ([("10.0.0.11", "  ", "control-plane")], "username"),
    ([("10.0.0.11", "u", "etcd")], "unknown role"),
    ([("10.0.0.11", "u")], "expected (address, user, role)"),
])
def test_invalid_declarations(nodes, needle):
    with pytest.raises(InvalidTopology) as ei:
        declare(nodes)
    assert needle in str(ei.value)


def test_invalid_topology_is_a_value_error():
    with pytest.raises(ValueError):
        declare([])


def test_node_lookup_by_name():
    topo = _ha()
    assert topo.node("worker02").address == "10.0.0.22"
    with pytest.raises(KeyError):
        topo.node("worker09")


def test_summary_mentions_endpoint():
    assert "endpoint=10.0.0.10:6443" in _ha().summary()
