# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/deploy/saga.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .models import ServiceConfig, Task

log = logging.getLogger("harbormaster")


@dataclass(frozen=True)
class CompensationEntry:
    """A completed task and the bound action that undoes it."""

    task: Task
    host: str
    config: ServiceConfig
    undo: Callable[[], None]


@dataclass
class UnwindResult:
    entry: CompensationEntry
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CompensationLog:
    """
    Append-only record of completed tasks for the current run.

    unwind() undoes them newest first. A failing undo is logged and
    collected; it never stops the remaining undos.
    """

    def __init__(self):
        self._entries: List[CompensationEntry] = []
        self._lock = threading.Lock()

    def record(self, entry: CompensationEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[CompensationEntry]:
        return list(self._entries)

    def unwind(self, on_result: Optional[Callable[[UnwindResult], None]] = None) -> List[str]:
        """Run every undo in strict reverse order; return the failures as warnings."""
        with self._lock:
            entries = list(reversed(self._entries))
            self._entries.clear()

        warnings: List[str] = []
        for entry in entries:
            log.info("rolling back %s on %s", entry.task.name, entry.host)
            result = UnwindResult(entry)
            try:
                entry.undo()
            except Exception as e:
                result.error = e
                msg = f"failed to clean up {entry.task.name} on {entry.host}: {e}"
                log.warning(msg)
                warnings.append(msg)
            if on_result:
                on_result(result)
        return warnings
