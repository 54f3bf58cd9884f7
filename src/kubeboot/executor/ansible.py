# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/executor/ansible.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import ansible_runner

from kubeboot.executor.interface import ExecutorResult, HostStatus
from kubeboot.state.inventory import read_inventory
from kubeboot.utils.execution import ExecutionMode
from kubeboot.utils.ssh import SshTarget, probe_all

log = logging.getLogger("kubeboot")

# Cacheable fact the cluster playbooks set with the values kubeadm printed.
OUTPUTS_FACT = "kubeboot_outputs"

# Connection passwords the playbooks log in with; the probe offers the same one.
PASSWORD_VARS = ("ansible_ssh_pass", "ansible_password")


class AnsibleExecutor:
    """
    ConfigExecutor backed by ansible-runner.

    playbooks_dir is the private_data_dir (playbooks live in its project/
    subdirectory or alongside it); inventory is the rendered inventory.ini.
    """

    def __init__(
        self,
        playbooks_dir: Path | str,
        inventory: Path | str,
        *,
        forks: int = 10,
        vault_password_file: Optional[str] = None,
        ssh_key_file: Optional[str] = None,
        quiet: bool = True,
    ):
        self.playbooks_dir = Path(playbooks_dir)
        self.inventory = Path(inventory)
        self.forks = forks
        self.vault_password_file = vault_password_file
        self.ssh_key_file = ssh_key_file
        self.quiet = quiet

    def _envvars(self) -> Dict[str, str]:
        env = {"ANSIBLE_HOST_KEY_CHECKING": "False"}
        roles = self.playbooks_dir / "roles"
        if roles.is_dir():
            env["ANSIBLE_ROLES_PATH"] = str(roles)
        return env

    def _cmdline(self, mode: ExecutionMode) -> Optional[str]:
        parts = []
        if mode == ExecutionMode.DRY_RUN:
            parts.append("--check --diff")
        if self.vault_password_file:
            parts.append(f"--vault-password-file {self.vault_password_file}")
        return " ".join(parts) or None

    @staticmethod
    def _host_status(runner: Any, hosts: Sequence[str]) -> Dict[str, HostStatus]:
        stats = runner.stats or {}
        dark = stats.get("dark") or {}
        failures = stats.get("failures") or {}
        seen = set()
        for key in ("ok", "changed", "skipped", "processed"):
            seen.update((stats.get(key) or {}).keys())

        out: Dict[str, HostStatus] = {}
        for h in hosts:
            if h in dark:
                out[h] = HostStatus.UNREACHABLE
            elif h in failures:
                out[h] = HostStatus.FAILED
            elif runner.status == "timeout" or h not in seen:
                out[h] = HostStatus.FAILED
            else:
                out[h] = HostStatus.OK
        return out

    def _targets(self, hosts: Sequence[str]) -> List[SshTarget]:
        entries, _, variables = read_inventory(self.inventory.read_text())
        known = {name: (addr, user) for name, addr, user in entries}
        missing = [h for h in hosts if h not in known]
        if missing:
            raise KeyError(f"Host(s) not in {self.inventory}: {', '.join(missing)}")
        password = next((variables[k] for k in PASSWORD_VARS if variables.get(k)), None)
        return [
            SshTarget(name=h, address=known[h][0], username=known[h][1], password=password)
            for h in hosts
        ]

    def ping(self, hosts: Sequence[str], timeout: int) -> Dict[str, bool]:
        """SSH handshake per host; cheaper than spinning up ansible-runner."""
        return probe_all(
            self._targets(hosts),
            key_filename=self.ssh_key_file,
            timeout=timeout,
            workers=self.forks,
        )

    def run(
        self,
        action: str,
        hosts: Sequence[str],
        *,
        tags: Sequence[str] = (),
        extra_vars: Optional[Mapping[str, Any]] = None,
        mode: ExecutionMode = ExecutionMode.FULL,
        timeout: Optional[int] = None,
    ) -> ExecutorResult:
        log.info("Running %s on %s%s", action, ",".join(hosts),
                 f" tags={','.join(tags)}" if tags else "")

        runner = ansible_runner.run(
            private_data_dir=str(self.playbooks_dir),
            playbook=action,
            inventory=str(self.inventory),
            limit=",".join(hosts),
            extravars=dict(extra_vars or {}),
            envvars=self._envvars(),
            tags=",".join(tags) if tags else None,
            forks=self.forks,
            verbosity=2 if mode == ExecutionMode.VERBOSE else None,
            cmdline=self._cmdline(mode),
            timeout=timeout,
            quiet=self.quiet,
        )

        status = self._host_status(runner, hosts)
        outputs: Dict[str, Any] = {}
        for h in hosts:
            if status[h] != HostStatus.OK:
                continue
            facts = runner.get_fact_cache(h) or {}
            outputs.update(facts.get(OUTPUTS_FACT) or {})

        detail = None
        if runner.rc != 0:
            detail = f"ansible-runner status={runner.status} rc={runner.rc}"
            # rc != 0 with no per-host failure still means the action failed
            if all(s == HostStatus.OK for s in status.values()):
                status = {h: HostStatus.FAILED for h in status}
        return ExecutorResult(host_status=status, outputs=outputs, detail=detail)
