# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import BootstrapConfig

log = logging.getLogger("kubeboot")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Empty override values leave base untouched.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value not in (None, ""):
            base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    1. KUBEBOOT_SECRETS_FILE (explicit override)
    2. secrets.yaml next to the cluster config
    """
    env = os.environ.get("KUBEBOOT_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("KUBEBOOT_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_config(path: str | Path) -> BootstrapConfig:
    """
    Load and validate a cluster bootstrap YAML config.

    Sensitive values (vault password file, inventory vars such as
    become passwords) can live in a secrets.yaml with the same shape; it
    is deep-merged before validation. ``${ENV_VAR}`` placeholders are
    expanded in both files.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))

    return BootstrapConfig.model_validate(data)
