# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class ExecutionMode(str, Enum):
    FULL = "full"
    TAGS = "tags"           # single-tag subset
    VERIFY = "verify"       # verification tasks only
    DRY_RUN = "dry-run"     # --check --diff
    VERBOSE = "verbose"     # full run with -vv

    @property
    def applies_changes(self) -> bool:
        return self in (ExecutionMode.FULL, ExecutionMode.VERBOSE)


VERIFY_TAGS: Tuple[str, ...] = ("verify", "verification")


@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how phases are executed; resolved once at the command boundary
    """

    mode: ExecutionMode = ExecutionMode.FULL
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.mode == ExecutionMode.TAGS and not self.tags:
            raise ValueError("tags mode needs at least one tag")

    @property
    def verbosity(self) -> int:
        return 2 if self.mode == ExecutionMode.VERBOSE else 0

    def executor_tags(self) -> Tuple[str, ...]:
        if self.mode == ExecutionMode.VERIFY:
            return VERIFY_TAGS
        if self.mode == ExecutionMode.TAGS:
            return self.tags
        return ()
