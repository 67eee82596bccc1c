# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/errors.py
from __future__ import annotations

from typing import List, Optional


class HarbormasterError(RuntimeError):
    """Base class for every failure surfaced by the orchestration engine."""


class ConfigurationError(HarbormasterError):
    """Manifest missing/malformed, unknown driver type, unresolvable host or port."""


class DetectionError(HarbormasterError):
    """The host could not be reached or interrogated (distinct from 'not found')."""


class ProvisioningError(HarbormasterError):
    """Driver-level failure while provisioning, initializing or cleaning up."""


class CommandError(ProvisioningError):
    """A command exited non-zero. Output is carried verbatim."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        host: Optional[str] = None,
    ):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.host = host
        where = f" on {host}" if host else ""
        super().__init__(
            f"command failed{where} (exit {exit_code}): {command}\nStderr: {stderr}"
        )


class ValidationError(HarbormasterError):
    """Health check failed. May be downgraded to a warning by explicit flag."""


class BootstrapError(HarbormasterError):
    """Cluster bootstrap failed. Always fatal, always rolls back."""


class RollbackError(HarbormasterError):
    """Rollback did not restore a healthy service. Manual intervention required."""


class UpgradeError(HarbormasterError):
    """Upgrade failed its health gate and the previous version was restored."""

    def __init__(self, message: str, rollback_version: Optional[str] = None):
        super().__init__(message)
        self.rollback_version = rollback_version


class FleetUpgradeError(HarbormasterError):
    """A fleet-wide upgrade stopped at its first failed service."""

    def __init__(
        self,
        message: str,
        succeeded: List[str],
        failed: List[str],
        remaining: List[str],
    ):
        super().__init__(message)
        self.succeeded = succeeded
        self.failed = failed
        self.remaining = remaining
