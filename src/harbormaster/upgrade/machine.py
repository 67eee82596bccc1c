# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/upgrade/machine.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .. import catalog
from ..config.loader import save_manifest
from ..config.models import Host, Manifest
from ..deploy.executor import build_task_config
from ..deploy.models import Phase, ProvisionOptions, ServiceConfig, Task, UpgradeOptions
from ..deploy.planner import Planner
from ..detect.detector import Detector, ServiceState
from ..errors import (
    ConfigurationError,
    FleetUpgradeError,
    HarbormasterError,
    RollbackError,
    UpgradeError,
    ValidationError,
)
from ..execution.pool import SSHPool
from ..provisioner.base import Provisioner
from ..provisioner.registry import ProvisionerRegistry
from ..releases.fetcher import CHANNELS, ReleaseFetcher, require_release, resolve_version
from ..utils.execution import RunContext

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import FleetUpgradeFinished, UpgradeFinished, UpgradeTransition, new_ctx

log = logging.getLogger("harbormaster")

Confirm = Callable[[str], bool]
DetectorFactory = Callable[[Host], Detector]


class UpgradeState(str, Enum):
    DETECT = "detect"
    FETCH = "fetch"
    CONFIRM = "confirm"
    STOP = "stop"
    DEPLOY = "deploy"
    INITIALIZE = "initialize"
    VALIDATE = "validate"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ROLLBACK_DEPLOY = "rollback_deploy"
    ROLLBACK_INITIALIZE = "rollback_initialize"
    ROLLBACK_VALIDATE = "rollback_validate"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NOOP = "noop"


def wait_for_health(
    check: Callable[[], None],
    interval: float,
    timeout: float,
    ctx: Optional[RunContext] = None,
) -> None:
    """
    Call `check` every `interval` seconds until it stops raising
    ValidationError. On deadline or cancellation the last validation error
    is re-raised as-is.
    """
    window = (ctx or RunContext()).child(timeout)
    while True:
        try:
            check()
            return
        except ValidationError as e:
            last = e
            log.debug("health check not passing yet: %s", e)
        if window.done or window.wait(interval):
            raise last


def _bare(version: Optional[str]) -> str:
    return (version or "").lstrip("v")


def resolve_upgrade_version(manifest: Manifest, version: str) -> Tuple[str, str]:
    """(channel, version) for an upgrade request; no version means the manifest's channel."""
    channel = manifest.resolved_channel()
    if not version or version == "latest":
        return channel, "latest"
    requested, resolved = resolve_version(version)
    if version in CHANNELS:
        if requested != channel:
            log.warning("requested channel %s differs from manifest channel %s", requested, channel)
        return requested, resolved
    return channel, resolved


@dataclass
class UpgradeResult:
    service: str
    previous_version: str
    target_version: str
    state: UpgradeState
    host: str = ""
    dry_run: bool = False


@dataclass
class FleetUpgradeReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)
    results: List[UpgradeResult] = field(default_factory=list)
    cancelled: bool = False


class ServiceUpgrader:
    """
    Upgrades one running service with a health gate.

    detect → fetch → confirm → stop → deploy → initialize → validate, then
    either healthy (manifest saved) or unhealthy. Unhealthy rolls back to the
    detected mode and version unless rollback is disabled.
    """

    def __init__(
        self,
        manifest: Manifest,
        manifest_path: Optional[Path],
        pool: SSHPool,
        registry: ProvisionerRegistry,
        fetcher: Optional[ReleaseFetcher],
        *,
        detector_factory: Optional[DetectorFactory] = None,
        confirm: Optional[Confirm] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.manifest = manifest
        self.manifest_path = manifest_path
        self.pool = pool
        self.registry = registry
        self.fetcher = fetcher
        self.detector_factory = detector_factory
        self.confirm = confirm
        self.bus = bus or EventBus()
        self.run_id = run_id

    # ------------------------------------------------------------------
    def _emit(self, event) -> None:
        self.bus.emit(event)

    def event_ctx(self):
        return new_ctx(self.manifest.type, self.manifest.profile, self.run_id)

    def _transition(self, service: str, state: UpgradeState, detail: Optional[str] = None) -> None:
        log.debug("upgrade %s: %s%s", service, state.value, f" ({detail})" if detail else "")
        self._emit(UpgradeTransition(service=service, state=state.value, detail=detail, **self.event_ctx()))

    def _finish(self, result: UpgradeResult) -> UpgradeResult:
        self._emit(UpgradeFinished(
            service=result.service,
            previous_version=result.previous_version,
            target_version=result.target_version,
            state=result.state.value,
            **self.event_ctx(),
        ))
        return result

    def task_for(self, service: str) -> Task:
        found = self.manifest.find_service(service)
        if found is None:
            raise ConfigurationError(f"service {service} not found in manifest")
        section, entry = found
        host = entry.primary_host()
        if not host:
            raise ConfigurationError(f"{service} has no host")
        if self.manifest.get_host(host) is None:
            raise ConfigurationError(f"host {host} not found in manifest")
        phase = Phase.APPLICATIONS if section == "services" else Phase.INTERFACES
        return Task(
            name=service,
            type=catalog.deploy_name(service, entry.deploy),
            host=host,
            phase=phase,
            service=service,
        )

    def detect(self, prov: Provisioner, host: Host, config: ServiceConfig, ctx: RunContext) -> ServiceState:
        if self.detector_factory is not None:
            return self.detector_factory(host).detect(config.service_id, ctx, port=config.port or None)
        return prov.detect(host, config, ctx)

    # ------------------------------------------------------------------
    def upgrade(
        self,
        service: str,
        options: Optional[UpgradeOptions] = None,
        ctx: Optional[RunContext] = None,
    ) -> UpgradeResult:
        options = options or UpgradeOptions()
        ctx = ctx or RunContext()

        # detect
        self._transition(service, UpgradeState.DETECT)
        task = self.task_for(service)
        host = self.manifest.get_host(task.host)
        prov = self.registry.get(task.type, self.pool, self.fetcher)
        current = build_task_config(task, self.manifest)
        state = self.detect(prov, host, current, ctx)
        if not state.exists:
            raise ConfigurationError(f"{service} is not installed on {task.host}; provision it first")
        previous_version = state.version or current.version
        previous_mode = state.mode or current.mode

        # fetch
        self._transition(service, UpgradeState.FETCH)
        channel, version = resolve_upgrade_version(self.manifest, options.version)
        release = require_release(self.fetcher).fetch(channel, version).service_info(service)
        target_version = release.version or version

        result = UpgradeResult(service, previous_version, target_version, UpgradeState.NOOP, host=task.host)
        if _bare(target_version) == _bare(previous_version):
            log.info("%s is already at %s", service, previous_version)
            return self._finish(result)

        if options.dry_run:
            log.info("dry run: would upgrade %s on %s from %s to %s", service, task.host, previous_version, target_version)
            result.state, result.dry_run = UpgradeState.FETCH, True
            return result

        # confirm
        self._transition(service, UpgradeState.CONFIRM)
        if not options.assume_yes and self.confirm is not None:
            if not self.confirm(f"Upgrade {service} on {task.host} from {previous_version} to {target_version}?"):
                result.state = UpgradeState.CANCELLED
                return self._finish(result)

        # the fetched release replaces any image/binary pin from the manifest
        target = replace(
            current,
            mode=previous_mode,
            version=target_version,
            force=True,
            image=(release.full_image or None) if previous_mode == "container" else None,
            binary_url=release.binary_url() if previous_mode == "native" and release.binaries else None,
        )

        # stop
        self._transition(service, UpgradeState.STOP)
        prov.stop(host, replace(current, mode=previous_mode), ctx)

        failure = self._deploy(service, prov, host, target, options, ctx, rollback=False)
        if failure is None:
            self._transition(service, UpgradeState.HEALTHY)
            self.manifest.set_service_version(
                service, target_version, image=target.image, binary_url=target.binary_url
            )
            if self.manifest_path is not None:
                save_manifest(self.manifest_path, self.manifest)
            log.info("✓ %s upgraded %s → %s", service, previous_version, target_version)
            result.state = UpgradeState.HEALTHY
            return self._finish(result)

        self._transition(service, UpgradeState.UNHEALTHY, str(failure))
        if not options.rollback:
            result.state = UpgradeState.FAILED
            self._finish(result)
            raise ValidationError(f"health validation failed for {service}: {failure}") from failure

        # rollback
        previous = replace(current, mode=previous_mode, version=previous_version, force=True)
        try:
            prov.cleanup(host, target, ctx)
        except HarbormasterError as e:
            log.warning("cleanup of %s %s before rollback failed: %s", service, target_version, e)

        rb_failure = self._deploy(service, prov, host, previous, options, ctx, rollback=True)
        if rb_failure is not None:
            result.state = UpgradeState.FAILED
            self._finish(result)
            raise RollbackError(
                f"rollback of {service} to {previous_version} failed: {rb_failure}; manual intervention required"
            ) from rb_failure

        self._transition(service, UpgradeState.ROLLED_BACK)
        result.state = UpgradeState.ROLLED_BACK
        self._finish(result)
        raise UpgradeError(
            f"upgrade of {service} failed, rolled back to {previous_version}: {failure}",
            rollback_version=previous_version,
        ) from failure

    def _deploy(
        self,
        service: str,
        prov: Provisioner,
        host: Host,
        config: ServiceConfig,
        options: UpgradeOptions,
        ctx: RunContext,
        *,
        rollback: bool,
    ) -> Optional[HarbormasterError]:
        """Deploy, initialize and health-gate `config`. Returns the failure instead of raising."""
        deploy, init, validate = (
            (UpgradeState.ROLLBACK_DEPLOY, UpgradeState.ROLLBACK_INITIALIZE, UpgradeState.ROLLBACK_VALIDATE)
            if rollback
            else (UpgradeState.DEPLOY, UpgradeState.INITIALIZE, UpgradeState.VALIDATE)
        )
        try:
            self._transition(service, deploy, config.version)
            prov.provision(host, config, ctx)
            self._transition(service, init)
            prov.initialize(host, config, ctx)
            if options.skip_validation and not rollback:
                log.warning("skipping health validation for %s", service)
                return None
            self._transition(service, validate)
            wait_for_health(
                lambda: prov.validate(host, config, ctx),
                options.health_interval,
                options.health_timeout,
                ctx,
            )
        except HarbormasterError as e:
            return e
        return None


def fleet_services(manifest: Manifest) -> List[str]:
    """Non-infrastructure services in dependency order, one entry per service."""
    plan = Planner(manifest).plan(ProvisionOptions())
    ordered: List[str] = []
    for task in plan.all_tasks:
        if task.phase is Phase.INFRASTRUCTURE or task.service in ordered:
            continue
        ordered.append(task.service)
    return ordered


def upgrade_all(
    upgrader: ServiceUpgrader,
    options: Optional[UpgradeOptions] = None,
    ctx: Optional[RunContext] = None,
    confirm: Optional[Confirm] = None,
) -> FleetUpgradeReport:
    """
    Upgrade every service one at a time in plan order. Stops at the first
    failure and raises FleetUpgradeError carrying the partition.
    """
    options = options or UpgradeOptions()
    services = fleet_services(upgrader.manifest)
    report = FleetUpgradeReport(remaining=list(services))

    if not options.dry_run and not options.assume_yes and confirm is not None:
        target = options.version or upgrader.manifest.resolved_channel()
        if not confirm(f"Upgrade {len(services)} service(s) to {target}?"):
            report.cancelled = True
            return report

    # one confirmation covers the fleet
    per_service = replace(options, assume_yes=True)
    for i, service in enumerate(services):
        try:
            result = upgrader.upgrade(service, per_service, ctx)
        except HarbormasterError as e:
            report.failed = [service]
            report.remaining = services[i + 1:]
            upgrader.bus.emit(FleetUpgradeFinished(
                succeeded=report.succeeded, failed=report.failed, remaining=report.remaining,
                **upgrader.event_ctx(),
            ))
            raise FleetUpgradeError(
                f"upgrade stopped at {service}: {e}",
                succeeded=list(report.succeeded),
                failed=list(report.failed),
                remaining=list(report.remaining),
            ) from e
        report.results.append(result)
        report.succeeded.append(service)
        report.remaining = services[i + 1:]

    upgrader.bus.emit(FleetUpgradeFinished(
        succeeded=report.succeeded, failed=report.failed, remaining=report.remaining, **upgrader.event_ctx()
    ))
    return report
