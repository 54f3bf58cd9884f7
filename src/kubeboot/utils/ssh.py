# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import paramiko

log = logging.getLogger("kubeboot")


@dataclass(frozen=True)
class SshTarget:
    name: str
    address: str
    username: str
    port: int = 22
    password: Optional[str] = field(default=None, repr=False)


def _load_pkey(path: str) -> Optional[paramiko.PKey]:
    for key_cls in (
        paramiko.RSAKey,
        paramiko.Ed25519Key,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    return None


def ssh_reachable(
    target: SshTarget,
    *,
    key_filename: Optional[str] = None,
    timeout: float = 30.0,
) -> bool:
    """
    True when an authenticated SSH session to target can be opened.

    A loadable key wins; otherwise the target's password is offered, the
    same way ansible_ssh_pass is used by the playbooks.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        pkey = _load_pkey(key_filename) if key_filename else None
        client.connect(
            hostname=target.address,
            port=target.port,
            username=target.username,
            password=target.password if not pkey else None,
            pkey=pkey,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=True,
            look_for_keys=True,
        )
        return True
    except OSError as e:
        # socket errors and a missing/unreadable key file
        log.warning("ssh %s@%s (%s): %s", target.username, target.address, target.name, e)
        return False
    except paramiko.SSHException as e:
        log.debug("ssh %s@%s (%s) failed: %s", target.username, target.address, target.name, e)
        return False
    finally:
        client.close()


def probe_all(
    targets: Sequence[SshTarget],
    *,
    key_filename: Optional[str] = None,
    timeout: float = 30.0,
    workers: int = 10,
) -> Dict[str, bool]:
    """Probe targets concurrently; keyed by target name."""
    if not targets:
        return {}
    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(targets)))) as pool:
        results = pool.map(
            lambda t: ssh_reachable(t, key_filename=key_filename, timeout=timeout),
            targets,
        )
        return {t.name: ok for t, ok in zip(targets, results)}
