# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/secrets/transcript.py
from __future__ import annotations

from datetime import datetime
from typing import List

from kubeboot.secrets.credentials import CredentialKind, SecretLifecycleManager
from kubeboot.topology.models import Role, Topology


def render_join_transcript(topology: Topology, secrets: SecretLifecycleManager, now: datetime) -> str:
    """
    Human-readable join commands for reference. Token and certificate key
    values are redacted; the file is safe to keep next to the inventory.
    """
    endpoint = topology.control_plane_endpoint()
    ca_hash = secrets.ca_cert_hash or "<ca-cert-hash>"
    by_kind = {c.kind: c for c in secrets.issued()}

    lines: List[str] = [
        f"# Join commands generated {now.isoformat(timespec='seconds')}",
        f"# Control plane endpoint: {endpoint}",
        "",
    ]
    for cred in by_kind.values():
        lines.append(f"# {cred.kind.value}: expires {cred.expires_at.isoformat(timespec='seconds')}")
    lines.append("")

    worker_tok = by_kind.get(CredentialKind.JOIN_TOKEN_WORKER)
    cp_tok = by_kind.get(CredentialKind.JOIN_TOKEN_CONTROL_PLANE)
    cert_key = by_kind.get(CredentialKind.CERTIFICATE_UPLOAD_KEY)

    for node in topology.hosts_for_role(Role.CONTROL_PLANE)[1:]:
        lines.append(f"## {node.name} ({node.address}) - control plane")
        lines.append(
            f"kubeadm join {endpoint} --token {cp_tok.redacted() if cp_tok else '<token>'} "
            f"--discovery-token-ca-cert-hash {ca_hash} --control-plane "
            f"--certificate-key {cert_key.redacted() if cert_key else '<certificate-key>'}"
        )
        lines.append("")

    for node in topology.hosts_for_role(Role.WORKER):
        lines.append(f"## {node.name} ({node.address}) - worker")
        lines.append(
            f"kubeadm join {endpoint} --token {worker_tok.redacted() if worker_tok else '<token>'} "
            f"--discovery-token-ca-cert-hash {ca_hash}"
        )
        lines.append("")

    return "\n".join(lines)
