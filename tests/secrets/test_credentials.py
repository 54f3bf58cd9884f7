from datetime import datetime, timedelta, timezone

import pytest

from kubeboot.errors import CredentialConsumed, CredentialExpired, CredentialNotIssued
from kubeboot.secrets.credentials import CredentialKind, SecretLifecycleManager
from kubeboot.secrets.transcript import render_join_transcript
from kubeboot.topology.models import declare

TOKEN = "abcdef.0123456789abcdef"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


def test_init_without_token_issues_nothing():
    mgr = SecretLifecycleManager()
    with pytest.raises(CredentialNotIssued):
        mgr.issue_from_init({"ca_cert_hash": "sha256:x", "admin_conf": "kind: Config"})
    assert mgr.issued() == []
    with pytest.raises(CredentialNotIssued):
        mgr.present_for("worker-join:worker01")


def test_init_without_certificate_key_blocks_control_plane_joins_only():
    mgr = SecretLifecycleManager()
    mgr.issue_from_init({"join_token": TOKEN, "certificate_key": "f" * 64})
    mgr.issue_from_init({"join_token": TOKEN})
    assert mgr.present_for("worker-join:worker01")
    with pytest.raises(CredentialNotIssued):
        mgr.present_for("control-plane-join:controlplane02")


def test_issue_needs_a_value():
    with pytest.raises(CredentialNotIssued):
        SecretLifecycleManager().issue(CredentialKind.JOIN_TOKEN_WORKER, value="")


def test_default_validity_windows():
    clock = FakeClock()
    mgr = SecretLifecycleManager(clock=clock)
    tok = mgr.issue(CredentialKind.JOIN_TOKEN_CONTROL_PLANE, value=TOKEN)
    key = mgr.issue(CredentialKind.CERTIFICATE_UPLOAD_KEY, value="f" * 64)
    assert tok.expires_at == clock.now + timedelta(hours=24)
    assert key.expires_at == clock.now + timedelta(hours=2)


def test_present_for_before_issue_raises_not_issued():
    mgr = SecretLifecycleManager()
    with pytest.raises(CredentialNotIssued):
        mgr.present_for("worker-join:worker01")


def test_expired_credential_is_never_presented():
    clock = FakeClock()
    mgr = SecretLifecycleManager(clock=clock)
    mgr.issue(CredentialKind.JOIN_TOKEN_WORKER, timedelta(minutes=10), value=TOKEN)
    assert mgr.present_for("worker-join:worker01")[0].kind == CredentialKind.JOIN_TOKEN_WORKER

    clock.advance(minutes=10)
    with pytest.raises(CredentialExpired):
        mgr.present_for("worker-join:worker01")


def test_control_plane_join_needs_token_and_certificate_key():
    clock = FakeClock()
    mgr = SecretLifecycleManager(clock=clock)
    mgr.issue_from_init({"join_token": TOKEN, "certificate_key": "f" * 64, "ca_cert_hash": "sha256:x"})
    creds = mgr.present_for("control-plane-join:controlplane02")
    assert {c.kind for c in creds} == {
        CredentialKind.JOIN_TOKEN_CONTROL_PLANE, CredentialKind.CERTIFICATE_UPLOAD_KEY,
    }

    # the certificate key expires first (2h) and blocks control-plane joins only
    clock.advance(hours=3)
    with pytest.raises(CredentialExpired):
        mgr.present_for("control-plane-join:controlplane02")
    assert mgr.present_for("worker-join:worker01")


def test_join_variables_carry_values():
    mgr = SecretLifecycleManager()
    mgr.issue_from_init({
        "join_token": "abcdef.0123456789abcdef",
        "certificate_key": "f" * 64,
        "ca_cert_hash": "sha256:deadbeef",
    })
    v = mgr.join_variables("control-plane-join:controlplane02")
    assert v == {
        "kubeboot_join_token": "abcdef.0123456789abcdef",
        "kubeboot_certificate_key": "f" * 64,
        "kubeboot_ca_cert_hash": "sha256:deadbeef",
    }


def test_consumed_once_per_node_until_reissued():
    mgr = SecretLifecycleManager()
    mgr.issue(CredentialKind.JOIN_TOKEN_WORKER, value=TOKEN)
    mgr.mark_consumed("worker-join:worker01")
    with pytest.raises(CredentialConsumed):
        mgr.present_for("worker-join:worker01")
    assert mgr.present_for("worker-join:worker02")

    mgr.issue(CredentialKind.JOIN_TOKEN_WORKER, value=TOKEN)
    assert mgr.present_for("worker-join:worker01")


def test_non_join_phase_is_rejected():
    with pytest.raises(ValueError):
        SecretLifecycleManager().present_for("overlay-network")


def test_values_are_not_in_repr():
    mgr = SecretLifecycleManager()
    cred = mgr.issue(CredentialKind.JOIN_TOKEN_WORKER, value="abcdef.0123456789abcdef")
    assert "0123456789abcdef" not in repr(cred)
    assert cred.redacted() == "abcdef.<redacted>"


def test_finalize_requires_admin_material():
    mgr = SecretLifecycleManager()
    with pytest.raises(CredentialNotIssued):
        mgr.finalize("10.0.0.10:6443")
    mgr.issue_from_init({"join_token": TOKEN, "admin_conf": "apiVersion: v1\nkind: Config\n"})
    bundle = mgr.finalize("10.0.0.10:6443")
    assert bundle.endpoint == "10.0.0.10:6443"
    assert "kind: Config" in bundle.kubeconfig


def test_discard_forgets_everything():
    mgr = SecretLifecycleManager()
    mgr.issue_from_init({"join_token": TOKEN, "admin_conf": "x"})
    mgr.discard()
    assert mgr.issued() == []
    assert not mgr.has_admin_material
    with pytest.raises(CredentialNotIssued):
        mgr.present_for("worker-join:worker01")


def test_transcript_redacts_values():
    topo = declare([
        ("10.0.0.10", "u", "load-balancer"),
        ("10.0.0.11", "u", "control-plane"),
        ("10.0.0.12", "u", "control-plane"),
        ("10.0.0.21", "u", "worker"),
    ])
    clock = FakeClock()
    mgr = SecretLifecycleManager(clock=clock)
    mgr.issue_from_init({
        "join_token": "abcdef.0123456789abcdef",
        "certificate_key": "a" * 64,
        "ca_cert_hash": "sha256:cafe",
    })
    text = render_join_transcript(topo, mgr, clock.now)
    assert "0123456789abcdef" not in text
    assert "a" * 64 not in text
    assert "kubeadm join 10.0.0.10:6443 --token abcdef.<redacted>" in text
    assert "## controlplane02 (10.0.0.12) - control plane" in text
    assert "## worker01 (10.0.0.21) - worker" in text
    assert "sha256:cafe" in text
