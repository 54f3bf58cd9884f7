# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/executor/interface.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from kubeboot.utils.execution import ExecutionMode

# Out-of-band actions (not plan phases): (playbook, tags)
RESET_ACTION = ("initialize-cluster.yml", ("reset",))
ADMIN_KUBECONFIG_ACTION = ("deploy-weave.yml", ("kubeconfig",))


class HostStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    UNREACHABLE = "unreachable"


@dataclass
class ExecutorResult:
    """
    Per-host outcome of one action plus whatever the action reported back
    (join token, certificate key, CA hash, admin kubeconfig).
    """
    host_status: Dict[str, HostStatus] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    detail: Optional[str] = None

    @property
    def failed_hosts(self) -> List[str]:
        return [h for h, s in self.host_status.items() if s != HostStatus.OK]

    @property
    def ok(self) -> bool:
        return bool(self.host_status) and not self.failed_hosts


class ConfigExecutor(Protocol):
    def ping(self, hosts: Sequence[str], timeout: int) -> Dict[str, bool]: ...

    def run(
        self,
        action: str,
        hosts: Sequence[str],
        *,
        tags: Sequence[str] = (),
        extra_vars: Optional[Mapping[str, Any]] = None,
        mode: ExecutionMode = ExecutionMode.FULL,
        timeout: Optional[int] = None,
    ) -> ExecutorResult: ...
