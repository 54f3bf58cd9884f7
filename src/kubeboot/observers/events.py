# src/kubeboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str                  # ISO timestamp
    run_id: str              # correlates all events in a single invocation
    cluster: str             # cluster name from config
    endpoint: Optional[str]  # control-plane endpoint

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(cluster: str, endpoint: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
        "endpoint": endpoint,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Phase lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    hosts: List[str]
    mode: str

@dataclass(frozen=True)
class PhaseSkipped(BaseEvent):
    phase: str
    reason: str

@dataclass(frozen=True)
class ReachabilityChecked(BaseEvent):
    phase: str
    reachable: List[str]
    unreachable: List[str]

@dataclass(frozen=True)
class PhaseSucceeded(BaseEvent):
    phase: str
    hosts: List[str]
    duration_ms: int

@dataclass(frozen=True)
class PhaseFailed(BaseEvent):
    phase: str
    error_kind: str
    error: str
    failed_hosts: List[str]


# ---------------------------------------------------------------------
# Credentials (never carries secret values)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class CredentialIssued(BaseEvent):
    kind: str
    expires_at: str

@dataclass(frozen=True)
class AdminBundleWritten(BaseEvent):
    path: str


# ---------------------------------------------------------------------
# Summary & reset
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunSummary(BaseEvent):
    succeeded: int
    failed: int
    skipped: int
    halted_at: Optional[str] = None

@dataclass(frozen=True)
class ResetStarted(BaseEvent):
    hosts: List[str]

@dataclass(frozen=True)
class ResetCompleted(BaseEvent):
    status: str          # "OK" | "FAILED"
    error: Optional[str] = None
