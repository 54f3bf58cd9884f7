# src/kubeboot/observers/console.py
import typer

from .events import BaseEvent

_CONTEXT_KEYS = ("ts", "run_id", "cluster", "endpoint")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        typer.echo(f"[{d['ts']}] {k} cluster={d['cluster']} data={{"
                   + ", ".join(f"{x}={y}" for x, y in d.items() if x not in _CONTEXT_KEYS) + "}")
