# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/execution/pool.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .runner import LocalRunner, Runner
from .ssh import open_ssh
from ..config.models import Host

log = logging.getLogger("harbormaster")


@dataclass(frozen=True)
class ConnectionConfig:
    address: str
    port: int = 22
    user: str = "root"
    key_path: Optional[str] = None
    timeout: float = 20.0

    @property
    def key(self) -> Tuple[str, int, str, Optional[str]]:
        return (self.address, self.port, self.user, self.key_path)

    @classmethod
    def from_host(cls, host: Host, timeout: float = 20.0) -> "ConnectionConfig":
        return cls(
            address=host.address,
            port=host.port,
            user=host.user,
            key_path=host.ssh_key,
            timeout=timeout,
        )


Connector = Callable[..., Runner]


class SSHPool:
    """
    Caches one remote session per (address, port, user, key_path).

    A cached session that has gone dead is replaced on the next get().
    """

    def __init__(self, connect_timeout: float = 20.0, connector: Optional[Connector] = None):
        self.connect_timeout = connect_timeout
        self._connector = connector or open_ssh
        self._sessions: Dict[Tuple, Runner] = {}
        self._local = LocalRunner()
        self._lock = threading.Lock()

    def get(self, conn: ConnectionConfig) -> Runner:
        with self._lock:
            runner = self._sessions.get(conn.key)
            if runner is not None:
                alive = getattr(runner, "is_alive", None)
                if alive is None or alive():
                    return runner
                log.debug("session to %s went away, reconnecting", conn.address)
                self._close_quietly(runner)

            runner = self._connector(
                conn.address,
                port=conn.port,
                user=conn.user,
                key_path=conn.key_path,
                connect_timeout=conn.timeout or self.connect_timeout,
            )
            self._sessions[conn.key] = runner
            return runner

    def runner_for(self, host: Host) -> Runner:
        if host.is_local:
            return self._local
        return self.get(ConnectionConfig.from_host(host, timeout=self.connect_timeout))

    def __len__(self) -> int:
        return len(self._sessions)

    def close_all(self) -> None:
        with self._lock:
            for runner in self._sessions.values():
                self._close_quietly(runner)
            self._sessions.clear()

    @staticmethod
    def _close_quietly(runner: Runner) -> None:
        try:
            runner.close()
        except Exception as e:
            log.debug("error closing session: %s", e)

    def __enter__(self) -> "SSHPool":
        return self

    def __exit__(self, *exc) -> None:
        self.close_all()
