# src/kubeboot/cli/helper.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import typer

from kubeboot.config.models import BootstrapConfig
from kubeboot.config.settings import Settings
from kubeboot.deploy.phases import Phase, PhaseGroup
from kubeboot.executor.ansible import AnsibleExecutor
from kubeboot.state.ledger import ExecutionLedger, Outcome
from kubeboot.utils.execution import ExecutionContext, ExecutionMode


def _relative_to(config_path: Path, value: str) -> Path:
    p = Path(value).expanduser()
    return p if p.is_absolute() else config_path.resolve().parent / p


def state_dir(config_path: Path, cfg: BootstrapConfig, settings: Settings) -> Path:
    """KUBEBOOT_STATE_DIR wins; otherwise config.state_dir relative to the config file."""
    return settings.state_dir or _relative_to(config_path, cfg.state_dir)


def playbooks_dir(config_path: Path, cfg: BootstrapConfig, settings: Settings) -> Path:
    return settings.playbooks_dir or _relative_to(config_path, cfg.executor.playbooks_dir)


def make_executor(cfg: BootstrapConfig, playbooks: Path, inventory: Path) -> AnsibleExecutor:
    return AnsibleExecutor(
        playbooks,
        inventory,
        forks=cfg.executor.forks,
        vault_password_file=cfg.executor.vault_password_file,
        ssh_key_file=cfg.executor.ssh_key_file,
    )


def resolve_mode(mode: str, tags: Optional[str]) -> ExecutionContext:
    """
    Turn --mode/--tags into an ExecutionContext. Passing --tags with the
    default mode selects the tag-subset mode.
    """
    try:
        m = ExecutionMode(mode)
    except ValueError:
        raise typer.BadParameter(
            f"Unknown mode '{mode}'. Valid modes: {', '.join(x.value for x in ExecutionMode)}"
        ) from None

    tag_list = tuple(t.strip() for t in (tags or "").split(",") if t.strip())
    if tag_list and m == ExecutionMode.FULL:
        m = ExecutionMode.TAGS
    if m == ExecutionMode.TAGS and not tag_list:
        raise typer.BadParameter("--mode tags needs --tags")
    if tag_list and m != ExecutionMode.TAGS:
        raise typer.BadParameter(f"--tags cannot be combined with --mode {m.value}")
    return ExecutionContext(mode=m, tags=tag_list)


def resolve_group(group: str) -> PhaseGroup:
    try:
        return PhaseGroup(group)
    except ValueError:
        raise typer.BadParameter(
            f"Unknown phase group '{group}'. Valid groups: {', '.join(g.value for g in PhaseGroup)}"
        ) from None


def split_ids(values: Sequence[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        out.extend(x.strip() for x in v.split(",") if x.strip())
    return out


def format_plan(phases: Sequence[Phase], hosts_for) -> List[str]:
    lines = []
    width = max((len(p.id) for p in phases), default=0)
    for i, p in enumerate(phases, start=1):
        flag = " [destructive]" if p.destructive else ""
        lines.append(
            f"{i:>2}. {p.id:<{width}}  {p.action:<24} {','.join(hosts_for(p))}{flag}"
        )
    return lines


def phase_status(ledger: ExecutionLedger, phase_id: str) -> Tuple[str, Optional[str]]:
    """(state, detail) for the status table."""
    last = ledger.last_attempt(phase_id)
    if last is None:
        return "pending", None
    when = last.ended_at.isoformat(timespec="seconds")
    if last.outcome == Outcome.SUCCEEDED:
        return "done", when
    return "failed", f"{when} {last.error_kind or ''}: {last.error or ''}".strip()
