import logging
import os

import pytest

from kubeboot.errors import StateLocked
from kubeboot.secrets.credentials import AdminCredentialBundle
from kubeboot.state.inventory import read_inventory, render_inventory, topology_from_inventory
from kubeboot.state.ledger import ExecutionLedger, Outcome, PhaseRun
from kubeboot.state.store import StateStore
from kubeboot.topology.models import Role, declare
from kubeboot.utils.execution import ExecutionMode

from datetime import datetime, timezone


def _ha(lb="10.0.0.10"):
    return declare([
        (lb, "ubuntu", "load-balancer"),
        ("10.0.0.11", "ubuntu", "control-plane"),
        ("10.0.0.12", "admin", "control-plane"),
        ("10.0.0.23", "ubuntu", "worker"),
        ("10.0.0.21", "ubuntu", "worker"),
    ])


def _run(phase_id, outcome=Outcome.SUCCEEDED, mode=ExecutionMode.FULL):
    t = datetime(2026, 2, 1, tzinfo=timezone.utc)
    return PhaseRun(phase_id=phase_id, hosts=("controlplane01",), started_at=t, ended_at=t,
                    outcome=outcome, mode=mode)


# ------------------ inventory ------------------

def test_inventory_layout():
    text = render_inventory(_ha(), {"gateway": "10.0.0.1"})
    hosts, groups, variables = read_inventory(text)
    assert hosts[0] == ("loadbalancer01", "10.0.0.10", "ubuntu")
    assert ("controlplane02", "10.0.0.12", "admin") in hosts
    assert groups["control_plane"] == ["controlplane01", "controlplane02"]
    assert groups["workers"] == ["worker01", "worker02"]
    assert groups["loadbalancers"] == ["loadbalancer01"]
    assert variables["control_plane_endpoint"] == "10.0.0.10:6443"
    assert variables["gateway"] == "10.0.0.1"


def test_inventory_round_trip_preserves_role_ordering():
    topo = _ha()
    back = topology_from_inventory(render_inventory(topo))
    assert back == topo
    for role in Role:
        assert back.hosts_for_role(role) == topo.hosts_for_role(role)


def test_inventory_without_balancer_omits_group():
    topo = declare([("10.0.0.11", "u", "control-plane")])
    text = render_inventory(topo)
    assert "[loadbalancers]" not in text
    assert "[workers]" not in text
    assert topology_from_inventory(text) == topo


def test_hand_edited_inventory_is_rejected():
    text = render_inventory(_ha()).replace("worker01 ", "worker07 ").replace("\nworker01\n", "\nworker07\n")
    with pytest.raises(ValueError):
        topology_from_inventory(text)


# ------------------ ledger ------------------

def test_ledger_appends_and_reloads(tmp_path):
    path = tmp_path / "ledger.jsonl"
    ledger = ExecutionLedger.load(path)
    ledger.append(_run("network"))
    ledger.append(_run("container-runtime", Outcome.FAILED))
    assert len(path.read_text().splitlines()) == 2

    again = ExecutionLedger.load(path)
    assert again.runs() == ledger.runs()
    assert again.succeeded("network")
    assert not again.succeeded("container-runtime")


def test_only_applying_modes_count_as_done():
    ledger = ExecutionLedger()
    ledger.append(_run("network", mode=ExecutionMode.DRY_RUN))
    ledger.append(_run("network", mode=ExecutionMode.VERIFY))
    assert not ledger.succeeded("network")
    ledger.append(_run("network", mode=ExecutionMode.VERBOSE))
    assert ledger.succeeded("network")


def test_latest_attempt_wins_and_skips_are_ignored():
    ledger = ExecutionLedger()
    ledger.append(_run("network"))
    ledger.append(_run("network", Outcome.SKIPPED))
    assert ledger.succeeded("network")
    ledger.append(_run("network", Outcome.FAILED))
    assert not ledger.succeeded("network")


def test_corrupt_ledger_line_is_reported(tmp_path):
    path = tmp_path / "ledger.jsonl"
    path.write_text('{"phase_id": "network"}\nnot json\n')
    with pytest.raises(ValueError) as ei:
        ExecutionLedger.load(path)
    assert "ledger.jsonl:1" in str(ei.value)


# ------------------ store ------------------

def test_topology_round_trip_through_store(tmp_path):
    store = StateStore(tmp_path)
    assert store.load_topology() is None
    store.save_topology(_ha())
    assert store.load_topology() == _ha()


def test_endpoint_change_archives_ledger(tmp_path, caplog):
    store = StateStore(tmp_path)
    topo = _ha()
    ledger = store.open_ledger(topo)
    store.save_topology(topo)
    ledger.append(_run("network"))

    assert store.open_ledger(topo).succeeded("network")

    moved = _ha(lb="10.0.0.99")
    with caplog.at_level(logging.WARNING, logger="kubeboot"):
        fresh = store.open_ledger(moved)
    assert len(fresh) == 0
    assert len(list(tmp_path.glob("ledger.*.jsonl"))) == 1
    assert "endpoint changed" in caplog.text


def test_lock_is_exclusive_and_released(tmp_path):
    store = StateStore(tmp_path)
    with store.lock():
        assert store.lock_path.read_text() == str(os.getpid())
        with pytest.raises(StateLocked):
            with store.lock():
                pass
    assert not store.lock_path.exists()


def test_lock_released_on_error(tmp_path):
    store = StateStore(tmp_path)
    with pytest.raises(RuntimeError):
        with store.lock():
            raise RuntimeError("phase blew up")
    assert not store.lock_path.exists()


def test_stale_lock_is_replaced(tmp_path, monkeypatch):
    store = StateStore(tmp_path)
    store.lock_path.write_text("424242")
    monkeypatch.setattr("kubeboot.state.store._pid_alive", lambda pid: False)
    with store.lock():
        assert store.lock_path.read_text() == str(os.getpid())


@pytest.mark.parametrize("contents", ["", "0", "not-a-pid"])
def test_lock_without_valid_pid_is_held(tmp_path, caplog, contents):
    store = StateStore(tmp_path)
    store.lock_path.write_text(contents)
    with caplog.at_level(logging.WARNING, logger="kubeboot"):
        with pytest.raises(StateLocked):
            with store.lock():
                pass
    assert store.lock_path.exists()
    assert "stale lock" not in caplog.text


def test_lock_leaves_no_scratch_files(tmp_path):
    store = StateStore(tmp_path)
    with store.lock():
        assert [p.name for p in tmp_path.iterdir()] == ["run.lock"]
    assert list(tmp_path.iterdir()) == []


def test_admin_bundle_is_private(tmp_path, caplog):
    store = StateStore(tmp_path)
    bundle = AdminCredentialBundle(endpoint="10.0.0.10:6443", kubeconfig="kind: Config\n",
                                   created_at=datetime.now(timezone.utc))
    with caplog.at_level(logging.WARNING, logger="kubeboot"):
        path = store.write_admin_bundle(bundle)
    assert oct(path.stat().st_mode & 0o777) == "0o600"
    assert path.read_text() == "kind: Config\n"
    assert "cluster-admin" in caplog.text

    assert store.remove_artifacts() == [path]
    assert not path.exists()
