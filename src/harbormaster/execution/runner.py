# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/execution/runner.py

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..errors import HarbormasterError
from ..utils.execution import RunContext

log = logging.getLogger("harbormaster")

TIMEOUT_EXIT_CODE = 124


class TransportError(HarbormasterError):
    """Connection, authentication or channel failure. The command never ran (or never finished)."""


@dataclass
class CommandResult:
    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class UploadOptions:
    local_path: str
    remote_path: str
    mode: int = 0o644
    owner: Optional[str] = None


class Runner(Protocol):
    def run(self, command: str, ctx: Optional[RunContext] = None) -> CommandResult: ...
    def run_script(self, script: str, ctx: Optional[RunContext] = None) -> CommandResult: ...
    def upload(self, opts: UploadOptions, ctx: Optional[RunContext] = None) -> None: ...
    def close(self) -> None: ...


def _timeout_for(ctx: Optional[RunContext]) -> Optional[float]:
    if ctx is None:
        return None
    if ctx.cancelled:
        raise TransportError("run cancelled")
    return ctx.remaining()


class LocalRunner:
    """Runs commands on this machine through `bash -lc`."""

    address = "localhost"

    def run(self, command: str, ctx: Optional[RunContext] = None) -> CommandResult:
        timeout = _timeout_for(ctx)
        start = time.monotonic()
        log.debug("(local) $ %s", command)
        try:
            proc = subprocess.run(
                ["bash", "-lc", command],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=command,
                stderr=f"command timed out after {timeout:.0f}s",
                exit_code=TIMEOUT_EXIT_CODE,
                duration=time.monotonic() - start,
            )
        except OSError as e:
            raise TransportError(f"failed to start local shell: {e}") from e

        return CommandResult(
            command=command,
            stdout=proc.stdout.strip(),
            stderr=proc.stderr.strip(),
            exit_code=proc.returncode,
            duration=time.monotonic() - start,
        )

    def run_script(self, script: str, ctx: Optional[RunContext] = None) -> CommandResult:
        fd, path = tempfile.mkstemp(prefix="harbormaster-script-", suffix=".sh")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(script)
            os.chmod(path, 0o700)
            return self.run(path, ctx)
        finally:
            os.unlink(path)

    def upload(self, opts: UploadOptions, ctx: Optional[RunContext] = None) -> None:
        dest = Path(opts.remote_path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(opts.local_path, dest)
        os.chmod(dest, opts.mode)
        if opts.owner:
            user, _, group = opts.owner.partition(":")
            shutil.chown(dest, user=user, group=group or None)

    def is_alive(self) -> bool:
        return True

    def close(self) -> None:
        pass
