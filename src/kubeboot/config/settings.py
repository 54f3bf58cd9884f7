# src/kubeboot/config/settings.py

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os


@dataclass(frozen=True)
class Settings:
    state_dir: Optional[Path]       # overrides config.state_dir
    playbooks_dir: Optional[Path]   # overrides config.executor.playbooks_dir
    log_dir: Path


def _opt_path(name: str) -> Optional[Path]:
    v = os.getenv(name)
    return Path(v).expanduser() if v else None


def load_settings() -> Settings:
    return Settings(
        state_dir=_opt_path("KUBEBOOT_STATE_DIR"),
        playbooks_dir=_opt_path("KUBEBOOT_PLAYBOOKS_DIR"),
        log_dir=_opt_path("KUBEBOOT_LOG_DIR") or Path.home() / ".kubeboot" / "logs",
    )
