# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/state/store.py
from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Mapping, Optional

from kubeboot.errors import StateLocked
from kubeboot.secrets.credentials import AdminCredentialBundle
from kubeboot.state.inventory import load_inventory, render_inventory, stored_endpoint
from kubeboot.state.ledger import ExecutionLedger
from kubeboot.topology.models import Topology

log = logging.getLogger("kubeboot")

INVENTORY_FILE = "inventory.ini"
LEDGER_FILE = "ledger.jsonl"
LOCK_FILE = "run.lock"
ARTIFACTS_DIR = "artifacts"
EVENTS_DIR = "events"
ADMIN_BUNDLE_FILE = "admin.conf"
TRANSCRIPT_FILE = "join-commands.txt"


def _parse_pid(text: str) -> Optional[int]:
    try:
        pid = int(text)
    except ValueError:
        return None
    return pid if pid > 0 else None


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class StateStore:
    """
    On-disk state for one cluster:

        <state_dir>/inventory.ini
        <state_dir>/ledger.jsonl
        <state_dir>/run.lock
        <state_dir>/artifacts/{admin.conf,join-commands.txt}
        <state_dir>/events/<run_id>.jsonl
    """

    def __init__(self, state_dir: Path | str):
        self.root = Path(state_dir).expanduser()

    # ------------------ paths ------------------

    @property
    def inventory_path(self) -> Path:
        return self.root / INVENTORY_FILE

    @property
    def ledger_path(self) -> Path:
        return self.root / LEDGER_FILE

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    @property
    def artifacts_dir(self) -> Path:
        return self.root / ARTIFACTS_DIR

    @property
    def admin_bundle_path(self) -> Path:
        return self.artifacts_dir / ADMIN_BUNDLE_FILE

    @property
    def transcript_path(self) -> Path:
        return self.artifacts_dir / TRANSCRIPT_FILE

    def events_path(self, run_id: str) -> Path:
        return self.root / EVENTS_DIR / f"{run_id}.jsonl"

    # ------------------ lock ------------------

    def _try_create_lock(self) -> bool:
        # the pid is written before the lock name appears, so a lock file
        # is never observed empty
        tmp = self.root / f".{LOCK_FILE}.{os.getpid()}"
        tmp.write_text(str(os.getpid()))
        try:
            os.link(tmp, self.lock_path)
        except FileExistsError:
            return False
        finally:
            tmp.unlink(missing_ok=True)
        return True

    def _lock_contents(self) -> Optional[str]:
        try:
            return self.lock_path.read_text().strip()
        except FileNotFoundError:
            return None

    @contextmanager
    def lock(self) -> Iterator[None]:
        """
        Advisory single-writer lock. A lock file whose pid is no longer
        alive is considered stale and replaced; one without a readable pid
        is treated as held.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        if not self._try_create_lock():
            contents = self._lock_contents()
            if contents is not None:
                holder = _parse_pid(contents)
                if holder is None:
                    raise StateLocked(
                        f"{self.lock_path} exists without a valid pid ({contents!r}); "
                        f"remove it if no kubeboot run is active"
                    )
                if _pid_alive(holder):
                    raise StateLocked(
                        f"{self.root} is locked by pid {holder}; "
                        f"remove {self.lock_path} if that process is gone"
                    )
                log.warning("Removing stale lock %s (pid %s not running)", self.lock_path, holder)
                self.lock_path.unlink(missing_ok=True)
            if not self._try_create_lock():
                raise StateLocked(f"{self.root} was locked by another process while recovering a stale lock")
        try:
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)

    # ------------------ topology ------------------

    def save_topology(self, topology: Topology, extra_vars: Optional[Mapping[str, str]] = None) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        self.inventory_path.write_text(render_inventory(topology, extra_vars))
        log.debug("Wrote inventory %s", self.inventory_path)
        return self.inventory_path

    def load_topology(self) -> Optional[Topology]:
        return load_inventory(self.inventory_path)

    # ------------------ ledger ------------------

    def open_ledger(self, topology: Topology) -> ExecutionLedger:
        """
        Ledger for this topology. When the stored control-plane endpoint
        differs, the old ledger describes another cluster: archive it and
        start empty.
        """
        previous = stored_endpoint(self.inventory_path)
        current = topology.control_plane_endpoint()
        if previous is not None and previous != current and self.ledger_path.exists():
            archived = self.archive_ledger()
            log.warning(
                "Control-plane endpoint changed (%s -> %s); previous ledger archived to %s",
                previous, current, archived,
            )
        return ExecutionLedger.load(self.ledger_path)

    def archive_ledger(self) -> Optional[Path]:
        if not self.ledger_path.exists():
            return None
        target = self.root / f"ledger.{_stamp()}.jsonl"
        n = 1
        while target.exists():
            target = self.root / f"ledger.{_stamp()}.{n}.jsonl"
            n += 1
        self.ledger_path.rename(target)
        return target

    # ------------------ artifacts ------------------

    def write_admin_bundle(self, bundle: AdminCredentialBundle) -> Path:
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        path = self.admin_bundle_path
        fd = os.open(path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(bundle.kubeconfig)
        os.chmod(path, 0o600)
        log.warning(
            "Admin kubeconfig written to %s. It grants full cluster-admin access; "
            "keep it private and out of version control.",
            path,
        )
        return path

    def write_transcript(self, text: str) -> Path:
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        self.transcript_path.write_text(text)
        return self.transcript_path

    def artifact_files(self) -> List[Path]:
        if not self.artifacts_dir.exists():
            return []
        return sorted(p for p in self.artifacts_dir.iterdir() if p.is_file())

    def remove_artifacts(self) -> List[Path]:
        removed = self.artifact_files()
        if self.artifacts_dir.exists():
            shutil.rmtree(self.artifacts_dir)
        return removed
