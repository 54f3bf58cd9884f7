# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/state/ledger.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from kubeboot.utils.execution import ExecutionMode
from kubeboot.utils.serialize import to_jsonable

log = logging.getLogger("kubeboot")


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PhaseRun:
    phase_id: str
    hosts: Tuple[str, ...]
    started_at: datetime
    ended_at: datetime
    outcome: Outcome
    mode: ExecutionMode = ExecutionMode.FULL
    error_kind: Optional[str] = None     # e.g. "HostUnreachable"
    error: Optional[str] = None
    failed_hosts: Tuple[str, ...] = ()
    run_id: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PhaseRun":
        return cls(
            phase_id=d["phase_id"],
            hosts=tuple(d.get("hosts") or ()),
            started_at=datetime.fromisoformat(d["started_at"]),
            ended_at=datetime.fromisoformat(d["ended_at"]),
            outcome=Outcome(d["outcome"]),
            mode=ExecutionMode(d.get("mode", ExecutionMode.FULL.value)),
            error_kind=d.get("error_kind"),
            error=d.get("error"),
            failed_hosts=tuple(d.get("failed_hosts") or ()),
            run_id=d.get("run_id"),
        )


class ExecutionLedger:
    """
    Append-only record of phase attempts. With a path, every append is
    flushed as one JSON line before returning.
    """

    def __init__(self, path: Optional[Path] = None, runs: Optional[List[PhaseRun]] = None):
        self.path = Path(path) if path else None
        self._runs: List[PhaseRun] = list(runs or [])

    @classmethod
    def load(cls, path: Path) -> "ExecutionLedger":
        path = Path(path)
        runs: List[PhaseRun] = []
        if path.exists():
            for lineno, raw in enumerate(path.read_text().splitlines(), start=1):
                if not raw.strip():
                    continue
                try:
                    runs.append(PhaseRun.from_dict(json.loads(raw)))
                except (ValueError, KeyError) as exc:
                    raise ValueError(f"{path}:{lineno}: corrupt ledger entry: {exc}") from exc
        return cls(path=path, runs=runs)

    def append(self, run: PhaseRun) -> None:
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as f:
                json.dump(run.to_dict(), f)
                f.write("\n")
        self._runs.append(run)

    def runs(self) -> List[PhaseRun]:
        return list(self._runs)

    def __iter__(self) -> Iterator[PhaseRun]:
        return iter(list(self._runs))

    def __len__(self) -> int:
        return len(self._runs)

    def last_attempt(self, phase_id: str) -> Optional[PhaseRun]:
        """Latest run of phase_id that actually applied changes (skips excluded)."""
        for run in reversed(self._runs):
            if (
                run.phase_id == phase_id
                and run.outcome != Outcome.SKIPPED
                and run.mode.applies_changes
            ):
                return run
        return None

    def succeeded(self, phase_id: str) -> bool:
        last = self.last_attempt(phase_id)
        return last is not None and last.outcome == Outcome.SUCCEEDED
