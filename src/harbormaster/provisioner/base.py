# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/base.py

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..detect.detector import Detector, ServiceState, inventory_path, INVENTORY_DIR
from ..errors import CommandError, ConfigurationError, DetectionError, ProvisioningError, ValidationError
from ..execution.pool import SSHPool
from ..execution.runner import CommandResult, Runner, TransportError, UploadOptions
from ..releases.fetcher import ReleaseFetcher, ReleaseFetchError, ServiceRelease, resolve_version
from ..utils.execution import RunContext
from ..utils.shell import shq
from .health import CheckResult, HTTPChecker, TCPChecker

log = logging.getLogger("harbormaster")

MODES = ("container", "native")


class Provisioner(ABC):
    """
    Driver contract for one service type.

    provision() must be idempotent: with an unchanged (host, config) and
    force=False a second call detects prior completion and does nothing.
    """

    type_name: str = ""

    @abstractmethod
    def provision(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None: ...

    @abstractmethod
    def validate(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None: ...

    def initialize(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        """Create databases/topics/schemas. Idempotent; no-op by default."""
        return None

    @abstractmethod
    def cleanup(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None: ...

    @abstractmethod
    def stop(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None: ...

    @abstractmethod
    def detect(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> ServiceState: ...


class BaseProvisioner(Provisioner):
    """Shared plumbing for drivers that act through the session pool."""

    health_path: Optional[str] = "/health"

    def __init__(self, pool: SSHPool, fetcher: Optional[ReleaseFetcher] = None):
        self.pool = pool
        self.fetcher = fetcher

    # ------------------------------------------------------------------
    # transport helpers
    # ------------------------------------------------------------------
    def runner(self, host: Host) -> Runner:
        try:
            return self.pool.runner_for(host)
        except TransportError as e:
            raise ProvisioningError(f"cannot reach {host.name or host.address}: {e}") from e

    def run_command(
        self,
        host: Host,
        cmd: str,
        ctx: Optional[RunContext] = None,
        *,
        check: bool = True,
    ) -> CommandResult:
        try:
            res = self.runner(host).run(cmd, ctx)
        except TransportError as e:
            raise ProvisioningError(f"{host.name or host.address}: {e}") from e
        if check and not res.ok:
            raise CommandError(cmd, res.exit_code, res.stdout, res.stderr, host=host.name or host.address)
        return res

    def run_script(self, host: Host, script: str, ctx: Optional[RunContext] = None) -> CommandResult:
        try:
            res = self.runner(host).run_script(script, ctx)
        except TransportError as e:
            raise ProvisioningError(f"{host.name or host.address}: {e}") from e
        if not res.ok:
            raise CommandError("<script>", res.exit_code, res.stdout, res.stderr, host=host.name or host.address)
        return res

    def upload_content(
        self,
        host: Host,
        content: str,
        remote_path: str,
        *,
        mode: int = 0o644,
        owner: Optional[str] = None,
        ctx: Optional[RunContext] = None,
    ) -> None:
        fd, tmp = tempfile.mkstemp(prefix="harbormaster-")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            opts = UploadOptions(local_path=tmp, remote_path=remote_path, mode=mode, owner=owner)
            try:
                self.runner(host).upload(opts, ctx)
            except TransportError as e:
                raise ProvisioningError(f"upload {remote_path} to {host.name or host.address}: {e}") from e
        finally:
            os.unlink(tmp)

    @staticmethod
    def health_address(host: Host) -> str:
        return "127.0.0.1" if host.is_local else host.address

    # ------------------------------------------------------------------
    # inventory record / detection
    # ------------------------------------------------------------------
    def write_inventory_record(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        record = {
            "service": config.service_id,
            "type": config.deploy_name,
            "mode": config.mode,
            "version": config.version,
            "port": config.port,
            "provisioned_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        self.run_command(host, f"mkdir -p {INVENTORY_DIR}", ctx)
        self.upload_content(host, json.dumps(record, indent=2) + "\n", inventory_path(config.service_id), ctx=ctx)

    def remove_inventory_record(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        self.run_command(host, f"rm -f {shq(inventory_path(config.service_id))}", ctx)

    def detect(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> ServiceState:
        try:
            runner = self.pool.runner_for(host)
        except TransportError as e:
            raise DetectionError(f"cannot reach {host.name or host.address}: {e}") from e
        return Detector(runner).detect(
            config.service_id,
            ctx,
            port=config.port or None,
            kind=self.type_name if self.type_name not in ("service", "") else None,
        )

    def already_provisioned(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> bool:
        if config.force:
            return False
        try:
            state = self.detect(host, config, ctx)
        except DetectionError as e:
            log.debug("detection for %s failed, provisioning anyway: %s", config.service_id, e)
            return False
        if state.exists and state.running:
            log.info("%s already running on %s (%s), skipping", config.service_id, host.name, state.detected_by)
            return True
        return False

    # ------------------------------------------------------------------
    # release resolution
    # ------------------------------------------------------------------
    def resolve_release(self, config: ServiceConfig, release_name: Optional[str] = None) -> ServiceRelease:
        """Image/binary for this task: manifest overrides first, then the release manifest."""
        name = release_name or config.service_id
        if config.mode == "container" and config.image:
            return ServiceRelease(name=name, version=config.version, image=config.image)
        if config.mode == "native" and config.binary_url:
            return ServiceRelease(name=name, version=config.version, binaries={"*": config.binary_url})
        if self.fetcher is None:
            raise ConfigurationError(f"{name}: no image/binary_url in manifest and no release source configured")
        channel, version = resolve_version(config.version)
        try:
            return self.fetcher.fetch(channel, version).service_info(name)
        except ReleaseFetchError as e:
            raise ProvisioningError(str(e)) from e

    # ------------------------------------------------------------------
    # mode-aware lifecycle
    # ------------------------------------------------------------------
    @staticmethod
    def check_mode(config: ServiceConfig) -> None:
        if config.mode not in MODES:
            raise ConfigurationError(f"unsupported mode: {config.mode} (must be container or native)")

    def unit_name(self, config: ServiceConfig) -> str:
        return f"frameworks-{config.service_id}"

    def compose_dir(self, config: ServiceConfig) -> str:
        return f"/opt/frameworks/{config.service_id}"

    def stop(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        self.check_mode(config)
        if config.mode == "container":
            self.run_command(host, f"cd {self.compose_dir(config)} && docker compose stop", ctx)
        else:
            self.run_command(host, f"systemctl stop {self.unit_name(config)}", ctx)

    def cleanup(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        self.check_mode(config)
        if config.mode == "container":
            self.run_command(host, f"cd {self.compose_dir(config)} && docker compose down", ctx)
        else:
            unit = self.unit_name(config)
            self.run_command(host, f"systemctl stop {unit} && systemctl disable {unit}", ctx)
        self.remove_inventory_record(host, config, ctx)

    # ------------------------------------------------------------------
    # health
    # ------------------------------------------------------------------
    def health_path_for(self, config: ServiceConfig) -> Optional[str]:
        return self.health_path

    def check_health(self, host: Host, config: ServiceConfig) -> CheckResult:
        path = self.health_path_for(config)
        if path:
            return HTTPChecker(path=path).check(self.health_address(host), config.port)
        return TCPChecker().check(self.health_address(host), config.port)

    def validate(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        if not config.port:
            # nothing to probe
            return
        result = self.check_health(host, config)
        if not result.ok:
            raise ValidationError(f"{config.service_id} health check failed: {result.error}")
