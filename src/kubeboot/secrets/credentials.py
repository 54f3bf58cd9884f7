# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/secrets/credentials.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from kubeboot.deploy.phases import PhaseKind
from kubeboot.errors import CredentialConsumed, CredentialExpired, CredentialNotIssued

log = logging.getLogger("kubeboot")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialKind(str, Enum):
    JOIN_TOKEN_WORKER = "join-token-worker"
    JOIN_TOKEN_CONTROL_PLANE = "join-token-control-plane"
    CERTIFICATE_UPLOAD_KEY = "certificate-upload-key"


# Which phase kind consumes each credential.
CONSUMER: Dict[CredentialKind, PhaseKind] = {
    CredentialKind.JOIN_TOKEN_WORKER: PhaseKind.WORKER_JOIN,
    CredentialKind.JOIN_TOKEN_CONTROL_PLANE: PhaseKind.CONTROL_PLANE_JOIN,
    CredentialKind.CERTIFICATE_UPLOAD_KEY: PhaseKind.CONTROL_PLANE_JOIN,
}

REQUIRED: Dict[PhaseKind, Tuple[CredentialKind, ...]] = {
    PhaseKind.WORKER_JOIN: (CredentialKind.JOIN_TOKEN_WORKER,),
    PhaseKind.CONTROL_PLANE_JOIN: (
        CredentialKind.JOIN_TOKEN_CONTROL_PLANE,
        CredentialKind.CERTIFICATE_UPLOAD_KEY,
    ),
}

# Extra-var names the join tasks read.
EXTRA_VAR: Dict[CredentialKind, str] = {
    CredentialKind.JOIN_TOKEN_WORKER: "kubeboot_join_token",
    CredentialKind.JOIN_TOKEN_CONTROL_PLANE: "kubeboot_join_token",
    CredentialKind.CERTIFICATE_UPLOAD_KEY: "kubeboot_certificate_key",
}


def parse_phase_id(phase_id: str) -> Tuple[PhaseKind, Optional[str]]:
    kind, _, node = phase_id.partition(":")
    return PhaseKind(kind), (node or None)


@dataclass(frozen=True)
class BootstrapCredential:
    kind: CredentialKind
    value: str = field(repr=False)
    issued_at: datetime
    validity: timedelta
    consuming_phase: PhaseKind

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + self.validity

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def redacted(self) -> str:
        if self.kind == CredentialKind.CERTIFICATE_UPLOAD_KEY:
            return "<certificate-key redacted>"
        head = self.value.split(".", 1)[0]
        return f"{head}.<redacted>"


@dataclass(frozen=True)
class AdminCredentialBundle:
    """Long-lived cluster-admin kubeconfig. Sensitive, never expires."""
    endpoint: str
    kubeconfig: str = field(repr=False)
    created_at: datetime


class SecretLifecycleManager:
    """
    Holds short-lived join credentials in memory for the lifetime of one run.

    Nothing here touches disk; the only secret that is persisted is the
    admin bundle returned by finalize(), which the caller writes.
    """

    def __init__(
        self,
        *,
        join_token_ttl: timedelta = timedelta(hours=24),
        certificate_key_ttl: timedelta = timedelta(hours=2),
        clock: Optional[Clock] = None,
    ) -> None:
        self.clock: Clock = clock or _utcnow
        self._ttl: Dict[CredentialKind, timedelta] = {
            CredentialKind.JOIN_TOKEN_WORKER: join_token_ttl,
            CredentialKind.JOIN_TOKEN_CONTROL_PLANE: join_token_ttl,
            CredentialKind.CERTIFICATE_UPLOAD_KEY: certificate_key_ttl,
        }
        self._issued: Dict[CredentialKind, BootstrapCredential] = {}
        self._consumed: Set[Tuple[CredentialKind, str]] = set()
        self._admin_kubeconfig: Optional[str] = None
        self.ca_cert_hash: Optional[str] = None

    # ------------------ issuance ------------------

    def issue(
        self,
        kind: CredentialKind,
        validity: Optional[timedelta] = None,
        *,
        value: str,
    ) -> BootstrapCredential:
        if not value:
            raise CredentialNotIssued(f"No value for {CredentialKind(kind).value}")
        kind = CredentialKind(kind)
        cred = BootstrapCredential(
            kind=kind,
            value=value,
            issued_at=self.clock(),
            validity=validity if validity is not None else self._ttl[kind],
            consuming_phase=CONSUMER[kind],
        )
        self._issued[kind] = cred
        # a fresh credential may be presented to every node again
        self._consumed = {(k, n) for k, n in self._consumed if k != kind}
        log.debug("issued %s, expires %s", kind.value, cred.expires_at.isoformat())
        return cred

    def issue_from_init(self, outputs: Mapping[str, Any]) -> List[BootstrapCredential]:
        """
        Take the outputs of a successful primary initialization.

        kubeadm hands out a single bootstrap token for both join flavours;
        it is tracked as two credentials so each consumer has its own window.
        The certificate key only exists when init uploaded the certs; without
        it control-plane joins fail with CredentialNotIssued.
        """
        token = outputs.get("join_token")
        if not token:
            raise CredentialNotIssued(
                "Primary initialization reported no join token; "
                "the playbook must set kubeboot_outputs.join_token"
            )

        issued = [
            self.issue(CredentialKind.JOIN_TOKEN_WORKER, value=str(token)),
            self.issue(CredentialKind.JOIN_TOKEN_CONTROL_PLANE, value=str(token)),
        ]
        cert_key = outputs.get("certificate_key")
        if cert_key:
            issued.append(self.issue(CredentialKind.CERTIFICATE_UPLOAD_KEY, value=str(cert_key)))
        else:
            self._issued.pop(CredentialKind.CERTIFICATE_UPLOAD_KEY, None)
            log.info("Primary initialization reported no certificate key; control-plane joins will not run")
        self.ca_cert_hash = outputs.get("ca_cert_hash") or self.ca_cert_hash
        if outputs.get("admin_conf"):
            self.set_admin_material(str(outputs["admin_conf"]))
        return issued

    def issued(self) -> List[BootstrapCredential]:
        return list(self._issued.values())

    # ------------------ presentation ------------------

    def present_for(self, phase_id: str) -> List[BootstrapCredential]:
        """
        Credentials a join phase needs, checked for freshness.

        Raises CredentialNotIssued, CredentialExpired or CredentialConsumed;
        never returns stale material.
        """
        kind, node = parse_phase_id(phase_id)
        if kind not in REQUIRED:
            raise ValueError(f"Phase '{phase_id}' does not consume join credentials")

        now = self.clock()
        out: List[BootstrapCredential] = []
        for ck in REQUIRED[kind]:
            cred = self._issued.get(ck)
            if cred is None:
                raise CredentialNotIssued(
                    f"No {ck.value} issued for '{phase_id}'; primary initialization must run first"
                )
            if cred.is_expired(now):
                raise CredentialExpired(
                    f"{ck.value} expired at {cred.expires_at.isoformat()}; "
                    f"re-run primary initialization to issue a new one"
                )
            if node and (ck, node) in self._consumed:
                raise CredentialConsumed(f"{ck.value} was already used to join {node}")
            out.append(cred)
        return out

    def join_variables(self, phase_id: str) -> Dict[str, str]:
        """Executor extra-vars for a join phase."""
        out = {EXTRA_VAR[c.kind]: c.value for c in self.present_for(phase_id)}
        if self.ca_cert_hash:
            out["kubeboot_ca_cert_hash"] = self.ca_cert_hash
        return out

    def mark_consumed(self, phase_id: str) -> None:
        kind, node = parse_phase_id(phase_id)
        if node is None:
            return
        for ck in REQUIRED.get(kind, ()):
            self._consumed.add((ck, node))

    # ------------------ admin bundle ------------------

    def set_admin_material(self, kubeconfig: str) -> None:
        self._admin_kubeconfig = kubeconfig

    @property
    def has_admin_material(self) -> bool:
        return bool(self._admin_kubeconfig)

    def finalize(self, endpoint: str) -> AdminCredentialBundle:
        if not self._admin_kubeconfig:
            raise CredentialNotIssued("No admin kubeconfig has been retrieved from the primary")
        return AdminCredentialBundle(
            endpoint=endpoint,
            kubeconfig=self._admin_kubeconfig,
            created_at=self.clock(),
        )

    def discard(self) -> None:
        """Forget everything (after a reset)."""
        self._issued.clear()
        self._consumed.clear()
        self._admin_kubeconfig = None
        self.ca_cert_hash = None
