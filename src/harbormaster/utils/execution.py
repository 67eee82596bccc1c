# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RunContext:
    """
    Cancellable deadline shared by everything running under one command.

    timeout=None means no deadline; cancel() aborts waits immediately.
    """

    timeout: Optional[float] = None
    dry_run: bool = False
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)
    _started: float = field(default_factory=time.monotonic, repr=False)

    @property
    def deadline(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return self._started + self.timeout

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        rem = self.remaining()
        return rem is not None and rem <= 0

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def cancel(self) -> None:
        self._cancel.set()

    def wait(self, seconds: float) -> bool:
        """
        Block up to `seconds`, bounded by the deadline.
        Returns True when the context finished (cancelled or expired) meanwhile.
        """
        rem = self.remaining()
        if rem is not None:
            seconds = min(seconds, rem)
        if seconds > 0:
            self._cancel.wait(seconds)
        return self.done

    def child(self, timeout: float) -> "RunContext":
        """Narrower deadline that still observes this context's cancellation."""
        rem = self.remaining()
        if rem is not None:
            timeout = min(timeout, rem)
        return RunContext(timeout=timeout, dry_run=self.dry_run, _cancel=self._cancel)
