from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from kubeboot.config.loader import load_config, _deep_merge
from kubeboot.config.settings import load_settings
from kubeboot.errors import InvalidTopology

CLUSTER = textwrap.dedent("""
    cluster_name: lab
    gateway: 10.0.0.1
    nodes:
      - {address: 10.0.0.10, user: ubuntu, role: load-balancer}
      - {address: 10.0.0.11, user: ubuntu, role: control-plane}
      - {address: 10.0.0.12, user: ubuntu, role: control-plane}
      - {address: 10.0.0.21, user: ubuntu, role: worker}
    storage:
      server: worker01
""")


def _write(tmp_path: Path, text: str, name="cluster.yaml") -> Path:
    f = tmp_path / name
    f.write_text(text)
    return f


def test_load_config_minimal_ok(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("KUBEBOOT_SECRETS_FILE", raising=False)
    cfg = load_config(_write(tmp_path, CLUSTER))
    assert cfg.cluster_name == "lab"
    assert cfg.api_port == 6443
    assert cfg.credentials.join_token_ttl_seconds == 86400
    assert cfg.credentials.certificate_key_ttl_seconds == 7200
    assert cfg.executor.forks == 10

    topo = cfg.to_topology()
    assert topo.control_plane_endpoint() == "10.0.0.10:6443"
    opts = cfg.storage_options(topo)
    assert opts.server == "worker01"
    assert opts.share_dir == "/kubernetes"
    assert cfg.inventory_variables() == {"gateway": "10.0.0.1"}


def test_env_placeholders_are_expanded(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("CP_USER", "deploy")
    text = CLUSTER.replace("10.0.0.11, user: ubuntu", "10.0.0.11, user: ${CP_USER}")
    cfg = load_config(_write(tmp_path, text))
    assert cfg.nodes[1].user == "deploy"


def test_secrets_file_is_merged(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("KUBEBOOT_SECRETS_FILE", raising=False)
    cfg_path = _write(tmp_path, CLUSTER)
    _write(tmp_path, "executor:\n  vault_password_file: /run/vault-pass\n", name="secrets.yaml")
    cfg = load_config(cfg_path)
    assert cfg.executor.vault_password_file == "/run/vault-pass"
    assert cfg.executor.forks == 10


def test_secrets_file_from_env(tmp_path: Path, monkeypatch):
    other = tmp_path / "elsewhere"
    other.mkdir()
    secrets = _write(other, "inventory_vars:\n  ansible_become_password: s3cret\n", name="s.yaml")
    monkeypatch.setenv("KUBEBOOT_SECRETS_FILE", str(secrets))
    cfg = load_config(_write(tmp_path, CLUSTER))
    assert cfg.inventory_vars == {"ansible_become_password": "s3cret"}


def test_deep_merge_ignores_empty_values():
    base = {"a": {"b": 1, "c": 2}, "d": "keep"}
    _deep_merge(base, {"a": {"c": 3}, "d": ""})
    assert base == {"a": {"b": 1, "c": 3}, "d": "keep"}


def test_too_many_control_planes_rejected(tmp_path: Path):
    nodes = "\n".join(
        f"  - {{address: 10.0.1.{i}, user: u, role: control-plane}}" for i in range(1, 12)
    )
    with pytest.raises(ValidationError) as ei:
        load_config(_write(tmp_path, "nodes:\n" + nodes + "\n"))
    assert "control-plane node count" in str(ei.value)


def test_invalid_address_rejected(tmp_path: Path):
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, "nodes:\n  - {address: 10.0.0.300, user: u, role: worker}\n"))


def test_multi_control_plane_without_balancer_is_invalid_topology(tmp_path: Path):
    text = textwrap.dedent("""
        nodes:
          - {address: 10.0.0.11, user: u, role: control-plane}
          - {address: 10.0.0.12, user: u, role: control-plane}
    """)
    cfg = load_config(_write(tmp_path, text))
    with pytest.raises(InvalidTopology):
        cfg.to_topology()


def test_unknown_storage_server(tmp_path: Path):
    cfg = load_config(_write(tmp_path, CLUSTER.replace("server: worker01", "server: worker05")))
    with pytest.raises(InvalidTopology):
        cfg.storage_options(cfg.to_topology())


def test_storage_disabled(tmp_path: Path):
    cfg = load_config(_write(tmp_path, CLUSTER + "  enabled: false\n"))
    assert cfg.storage_options(cfg.to_topology()) is None


def test_settings_from_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("KUBEBOOT_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.delenv("KUBEBOOT_PLAYBOOKS_DIR", raising=False)
    monkeypatch.setenv("KUBEBOOT_LOG_DIR", str(tmp_path / "logs"))
    s = load_settings()
    assert s.state_dir == tmp_path / "state"
    assert s.playbooks_dir is None
    assert s.log_dir == tmp_path / "logs"
