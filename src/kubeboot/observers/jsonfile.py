# src/kubeboot/observers/jsonfile.py
from __future__ import annotations

import json
from pathlib import Path

from kubeboot.utils.serialize import to_jsonable

from .events import BaseEvent


class JsonFileObserver:
    """
    Appends one JSON object per event to events/<run_id>.jsonl.

    Each record is {"type": <event class>, **fields}; enums, datetimes and
    tuples are converted so any event dataclass is writable. The line is
    flushed before notify returns, so a crashed run still leaves every
    event emitted up to the crash.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = {"type": type(event).__name__, **to_jsonable(event.dict())}
        line = json.dumps(record) + "\n"
        with self.path.open("a") as f:
            f.write(line)
            f.flush()
