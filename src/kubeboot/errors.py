# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/errors.py
from __future__ import annotations

from typing import Iterable, Optional


class BootstrapError(RuntimeError):
    """Base class for cluster bootstrap failures."""


class InvalidTopology(BootstrapError, ValueError):
    """Raised at declaration time; never reaches execution."""


class PreconditionNotMet(BootstrapError):
    """A phase was attempted before the phases it depends on succeeded."""

    def __init__(self, phase_id: str, missing: Iterable[str]):
        self.phase_id = phase_id
        self.missing = list(missing)
        super().__init__(
            f"Phase '{phase_id}' requires {', '.join(self.missing)} to have succeeded"
        )


class HostUnreachable(BootstrapError):
    """Transient: safe to retry by re-invoking the run."""

    def __init__(self, phase_id: str, hosts: Iterable[str]):
        self.phase_id = phase_id
        self.hosts = list(hosts)
        super().__init__(
            f"Phase '{phase_id}': unreachable host(s): {', '.join(self.hosts)}"
        )


class CredentialError(BootstrapError):
    """Bootstrap-ordering violation around join credentials."""


class CredentialExpired(CredentialError):
    pass


class CredentialNotIssued(CredentialError):
    pass


class CredentialConsumed(CredentialError):
    pass


class PhaseActionFailed(BootstrapError):
    """The configuration executor reported failure for one or more hosts."""

    def __init__(self, phase_id: str, hosts: Iterable[str], detail: Optional[str] = None):
        self.phase_id = phase_id
        self.hosts = list(hosts)
        msg = f"Phase '{phase_id}' failed on: {', '.join(self.hosts) or '-'}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class DestructiveActionNotConfirmed(BootstrapError):
    pass


class StateLocked(BootstrapError):
    """Another orchestrator holds the advisory lock on the state directory."""
