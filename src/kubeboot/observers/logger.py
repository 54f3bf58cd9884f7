from __future__ import annotations
import logging
from .events import BaseEvent, PhaseFailed, PlanFailed


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts",))

        level = logging.ERROR if isinstance(event, (PhaseFailed, PlanFailed)) else logging.INFO
        self.logger.log(level, "[EVENT] %s: %s", etype, msg)
