from __future__ import annotations
import logging
from .events import BaseEvent

# events that signal a problem are logged at WARNING so they reach the console
_WARN_SUFFIXES = ("Failed", "Ignored")


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "run_id"))
        level = logging.WARNING if etype.endswith(_WARN_SUFFIXES) else logging.DEBUG
        self.logger.log(level, f"[EVENT] {etype}: {msg}")
