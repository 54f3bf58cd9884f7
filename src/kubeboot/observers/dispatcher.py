# src/kubeboot/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Optional, Protocol
from .events import BaseEvent

log = logging.getLogger("kubeboot")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers: List[Observer] = list(observers or [])

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as exc:
                # observers must not break a bootstrap run
                log.debug("observer %r failed on %s: %s", ob, type(event).__name__, exc)
