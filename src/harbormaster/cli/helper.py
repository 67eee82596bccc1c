# src/harbormaster/cli/helper.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Set

import typer

from ..config.loader import harbormaster_home
from ..observers.console import ConsoleObserver
from ..observers.dispatcher import EventBus
from ..observers.jsonfile import JsonFileObserver
from ..observers.logger import LoggerObserver

PROVISION_TIMEOUT = 30 * 60
UPGRADE_TIMEOUT = 10 * 60


def events_path(run_id: str) -> Path:
    return harbormaster_home() / "logs" / f"{run_id}.jsonl"


def build_bus(logger: logging.Logger, run_id: str, *, console: bool = False) -> EventBus:
    """Observers for one CLI invocation: structured log, JSONL event file, optional console echo."""
    observers: List = [LoggerObserver(logger), JsonFileObserver(events_path(run_id))]
    if console:
        observers.append(ConsoleObserver())
    return EventBus(observers=observers)


def parse_roles(roles: Optional[List[str]]) -> Set[str]:
    """--role may repeat or carry a comma list."""
    out: Set[str] = set()
    for item in roles or []:
        out.update(r.strip() for r in item.split(",") if r.strip())
    return out


def banner(title: str, run_id: str, log_path: Path) -> None:
    typer.echo("")
    typer.secho(title, bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")


def fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)
