# src/harbormaster/observers/console.py
import typer

from .events import BaseEvent

_CTX_KEYS = ("ts", "run_id", "cluster", "profile")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        typer.echo(f"[{d['ts']}] {k} run={d['run_id']} cluster={d['cluster']}-{d['profile']} data={{"
                   + ", ".join(f"{x}={y}" for x, y in d.items() if x not in _CTX_KEYS) + "}")
