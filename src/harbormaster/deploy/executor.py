# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/deploy/executor.py

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, List, Optional

from .bootstrap import ClusterBootstrapper
from .models import (
    ExecutionPlan,
    Phase,
    ProvisionOptions,
    RuntimeData,
    RuntimeStore,
    ServiceConfig,
    Task,
)
from .planner import CONTROL_PLANE
from .saga import CompensationEntry, CompensationLog, UnwindResult
from .. import catalog
from ..config.models import Host, Manifest
from ..errors import ConfigurationError, ProvisioningError, ValidationError
from ..execution.pool import SSHPool
from ..provisioner.base import Provisioner
from ..provisioner.registry import ProvisionerRegistry
from ..releases.fetcher import ReleaseFetcher
from ..utils.execution import RunContext

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    ProvisionSummary,
    RollbackResult,
    RollbackStarted,
    TaskFailed,
    TaskStarted,
    TaskSucceeded,
    ValidationIgnored,
)

log = logging.getLogger("harbormaster")

ZK_PEER_PORTS = "2888:3888"


@dataclass
class TaskOutcome:
    name: str
    host: str
    status: str                 # "OK" | "WARNED" | "FAILED" | "ROLLED_BACK"
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class ExecutionReport:
    outcomes: List[TaskOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    runtime: RuntimeData = field(default_factory=RuntimeData)
    dry_run: bool = False

    def add(self, outcome: TaskOutcome) -> None:
        self.outcomes.append(outcome)

    def mark(self, name: str, status: str, error: Optional[str] = None) -> None:
        """Re-label a completed task's outcome (after it was rolled back)."""
        for outcome in reversed(self.outcomes):
            if outcome.name == name:
                outcome.status = status
                outcome.error = error
                return
        self.outcomes.append(TaskOutcome(name=name, host="", status=status, error=error))

    def get(self, name: str) -> Optional[TaskOutcome]:
        for outcome in reversed(self.outcomes):
            if outcome.name == name:
                return outcome
        return None

    def count(self, *statuses: str) -> int:
        return sum(1 for o in self.outcomes if o.status in statuses)

    @property
    def failed(self) -> bool:
        return self.count("FAILED") > 0

    def summary(self) -> str:
        ok = self.count("OK", "WARNED")
        failed = self.count("FAILED")
        rolled = self.count("ROLLED_BACK")
        return f"OK={ok} FAILED={failed} ROLLED_BACK={rolled}"


# ---------------------------------------------------------------------
# effective per-task configuration
# ---------------------------------------------------------------------
def _host_address(manifest: Manifest, name: str) -> str:
    host = manifest.get_host(name)
    return host.address if host is not None else name


def _database_url(manifest: Manifest, database: str) -> Optional[str]:
    """DSN for `database` on the manifest's postgres, its owner as user. None without postgres."""
    pg = manifest.infrastructure.postgres
    if pg is None or not pg.enabled or not pg.host:
        return None
    owner = next((d.owner for d in pg.databases if d.name == database and d.owner), database)
    return f"postgres://{owner}@{_host_address(manifest, pg.host)}:{pg.port}/{database}?sslmode=disable"


def _apply_infrastructure(cfg: ServiceConfig, task: Task, manifest: Manifest) -> None:
    infra = manifest.infrastructure

    def take(section) -> None:
        if section.mode:
            cfg.mode = section.mode
        if section.version:
            cfg.version = section.version

    if task.type == "postgres" and infra.postgres:
        take(infra.postgres)
        cfg.port = infra.postgres.port
        cfg.metadata["databases"] = [
            {"name": db.name, "owner": db.owner} for db in infra.postgres.databases
        ]

    elif task.type == "redis" and infra.redis:
        take(infra.redis)
        for inst in infra.redis.instances:
            if f"redis-{inst.name}" == task.service:
                cfg.port = inst.port
                if inst.password:
                    cfg.metadata["password"] = inst.password

    elif task.type == "zookeeper" and infra.zookeeper:
        take(infra.zookeeper)
        for node in infra.zookeeper.ensemble:
            if node.id == task.replica_index:
                cfg.port = node.port
        cfg.metadata["server_id"] = task.replica_index
        cfg.metadata["servers"] = [
            f"server.{n.id}={_host_address(manifest, n.host)}:{ZK_PEER_PORTS}"
            for n in infra.zookeeper.ensemble
        ]

    elif task.type == "kafka" and infra.kafka:
        take(infra.kafka)
        for broker in infra.kafka.brokers:
            if broker.id == task.replica_index:
                cfg.port = broker.port
        ensemble = infra.zookeeper.ensemble if infra.zookeeper else []
        cfg.metadata["broker_id"] = task.replica_index
        cfg.metadata["zookeeper_connect"] = ",".join(
            f"{_host_address(manifest, n.host)}:{n.port}" for n in ensemble
        )
        cfg.metadata["replication_factor"] = min(3, max(1, len(infra.kafka.brokers)))
        cfg.metadata["advertised_host"] = _host_address(manifest, task.host)
        cfg.metadata["topics"] = [t.model_dump() for t in infra.kafka.topics]

    elif task.type == "clickhouse" and infra.clickhouse:
        take(infra.clickhouse)
        cfg.port = infra.clickhouse.port
        cfg.metadata["http_port"] = infra.clickhouse.http_port
        cfg.metadata["databases"] = list(infra.clickhouse.databases)


def _local_routes(manifest: Manifest, host: str) -> Dict[str, int]:
    routes: Dict[str, int] = {}
    for section in ("services", "interfaces"):
        for name, entry in getattr(manifest, section).items():
            public = catalog.public_service_type(name)
            if entry.enabled and public and host in entry.target_hosts():
                routes[public] = entry.port or catalog.default_port(name)
    return routes


def build_task_config(
    task: Task,
    manifest: Manifest,
    runtime: Optional[RuntimeData] = None,
    force: bool = False,
) -> ServiceConfig:
    """
    Effective configuration for one task: catalog defaults, then manifest
    values, then phase defaults for anything still unset, then the current
    runtime snapshot.
    """
    entry = catalog.lookup(task.service) or catalog.lookup(task.type)
    cfg = ServiceConfig(
        deploy_name=task.type,
        name=task.service,
        port=entry.port if entry else 0,
        grpc_port=entry.grpc_port if entry else 0,
        force=force,
    )
    explicit_mode = explicit_version = False

    found = manifest.find_service(task.service)
    if found is not None:
        _, svc = found
        explicit_mode, explicit_version = svc.mode is not None, svc.version is not None
        cfg.mode = svc.mode or cfg.mode
        cfg.version = svc.version or cfg.version
        cfg.image = svc.image
        cfg.binary_url = svc.binary_url
        cfg.env_file = svc.env_file
        cfg.port = svc.port or cfg.port
        cfg.grpc_port = svc.grpc_port or cfg.grpc_port

    if task.phase is Phase.INFRASTRUCTURE:
        section = getattr(manifest.infrastructure, task.type, None)
        if section is not None:
            explicit_mode = explicit_mode or bool(section.mode)
            explicit_version = explicit_version or bool(section.version)
        _apply_infrastructure(cfg, task, manifest)

    if task.type == "caddy":
        cfg.metadata["routes"] = _local_routes(manifest, task.host)
    if task.type == "quartermaster":
        dsn = _database_url(manifest, task.service)
        if dsn:
            cfg.metadata["database_url"] = dsn

    # phase defaults
    if task.phase is Phase.INFRASTRUCTURE and task.type != "zookeeper":
        if not explicit_mode:
            cfg.mode = "native"
        if not explicit_version:
            cfg.version = "latest"
    if task.service == "privateer":
        cfg.mode = "native"

    if runtime is not None:
        cfg.runtime = runtime
    return cfg


# ---------------------------------------------------------------------
# engine
# ---------------------------------------------------------------------
@dataclass
class _Completed:
    host: Host
    provisioner: Provisioner
    duration_ms: int
    warned: bool = False


class Executor:
    """
    Walks an ExecutionPlan batch by batch.

    Each task is provisioned, initialized and validated. Completed tasks are
    recorded for compensation; the first failure unwinds everything done so
    far in reverse order and is then re-raised.
    """

    def __init__(
        self,
        manifest: Manifest,
        pool: SSHPool,
        registry: ProvisionerRegistry,
        options: Optional[ProvisionOptions] = None,
        *,
        bootstrapper: Optional[ClusterBootstrapper] = None,
        bus: Optional[EventBus] = None,
        fetcher: Optional[ReleaseFetcher] = None,
        run_id: Optional[str] = None,
        runtime: Optional[RuntimeData] = None,
    ):
        self.manifest = manifest
        self.pool = pool
        self.registry = registry
        self.options = options or ProvisionOptions()
        self.bootstrapper = bootstrapper
        self.bus = bus or EventBus()
        self.fetcher = fetcher
        self.run_ctx = new_ctx(manifest.type, manifest.profile, run_id)
        self.runtime = RuntimeStore(runtime)
        self.saga = CompensationLog()
        self.report = ExecutionReport(dry_run=self.options.dry_run)
        self._provisioners: Dict[str, Provisioner] = {}
        self._bootstrapped = False

    def provisioner(self, type_name: str) -> Provisioner:
        if type_name not in self._provisioners:
            self._provisioners[type_name] = self.registry.get(type_name, self.pool, self.fetcher)
        return self._provisioners[type_name]

    def _host(self, task: Task) -> Host:
        host = self.manifest.get_host(task.host)
        if host is None:
            raise ConfigurationError(f"host {task.host} not found in manifest")
        return host

    # ------------------------------------------------------------------
    def execute(self, plan: ExecutionPlan, ctx: Optional[RunContext] = None) -> ExecutionReport:
        ctx = ctx or RunContext()
        report = self.report

        if self.options.dry_run:
            log.info("dry run, nothing will be changed:\n%s", plan.describe())
            report.runtime = self.runtime.snapshot()
            return report

        try:
            # resolve every driver up front so an unknown type fails before any side effect
            for task in plan.all_tasks:
                self.provisioner(task.type)

            for index, batch in enumerate(plan.batches, start=1):
                if ctx.cancelled:
                    raise ProvisioningError("provisioning cancelled")
                if ctx.expired:
                    raise ProvisioningError("provisioning deadline exceeded")
                log.info("batch %d/%d: %s", index, len(plan.batches), ", ".join(t.name for t in batch))
                self._run_batch(index, batch, ctx)
        except Exception:
            self._rollback()
            report.runtime = self.runtime.snapshot()
            self._summary()
            raise

        report.runtime = self.runtime.snapshot()
        self._summary()
        return report

    def _run_batch(self, index: int, batch: List[Task], ctx: RunContext) -> None:
        # every config in a batch sees the same runtime snapshot
        snapshot = self.runtime.snapshot()
        jobs = [
            (task, build_task_config(task, self.manifest, snapshot, self.options.force))
            for task in batch
        ]

        if self.options.max_workers <= 1 or len(jobs) == 1:
            for task, cfg in jobs:
                self._complete(task, cfg, self._run_task(index, task, cfg, ctx))
            return

        with ThreadPoolExecutor(max_workers=self.options.max_workers) as workers:
            futures = [workers.submit(self._run_task, index, task, cfg, ctx) for task, cfg in jobs]
        first_error: Optional[BaseException] = None
        for (task, cfg), fut in zip(jobs, futures):
            err = fut.exception()
            if err is None:
                self._complete(task, cfg, fut.result())
            elif first_error is None:
                first_error = err
        if first_error is not None:
            raise first_error

    def _run_task(self, index: int, task: Task, cfg: ServiceConfig, ctx: RunContext) -> _Completed:
        self.bus.emit(TaskStarted(name=task.name, type=task.type, host=task.host, batch=index, **self.run_ctx))
        t0 = time.time()
        warned = False
        try:
            host = self._host(task)
            prov = self.provisioner(task.type)
            prov.provision(host, cfg, ctx)
            prov.initialize(host, cfg, ctx)
            try:
                prov.validate(host, cfg, ctx)
            except ValidationError as e:
                if not self.options.ignore_validation:
                    raise ValidationError(
                        f"validation failed for {task.name}: {e} (use --ignore-validation to continue anyway)"
                    ) from e
                warned = True
                msg = f"validation failed for {task.name}: {e}"
                log.warning("%s (ignored)", msg)
                self.report.warnings.append(msg)
                self.bus.emit(ValidationIgnored(name=task.name, error=str(e), **self.run_ctx))
        except Exception as e:
            self.report.add(TaskOutcome(name=task.name, host=task.host, status="FAILED", error=str(e)))
            self.bus.emit(TaskFailed(name=task.name, host=task.host, error=str(e), **self.run_ctx))
            log.error("✗ %s on %s: %s", task.name, task.host, e)
            raise
        return _Completed(host, prov, int((time.time() - t0) * 1000), warned)

    def _complete(self, task: Task, cfg: ServiceConfig, done: _Completed) -> None:
        self.saga.record(
            CompensationEntry(
                task=task, host=task.host, config=cfg, undo=partial(done.provisioner.cleanup, done.host, cfg)
            )
        )
        status = "WARNED" if done.warned else "OK"
        self.report.add(TaskOutcome(name=task.name, host=task.host, status=status, duration_ms=done.duration_ms))
        self.bus.emit(TaskSucceeded(name=task.name, host=task.host, duration_ms=done.duration_ms, **self.run_ctx))
        log.info("✓ %s on %s (%d ms)", task.name, task.host, done.duration_ms)

        if task.service == CONTROL_PLANE and not self._bootstrapped:
            self._bootstrap()

    def _bootstrap(self) -> None:
        if self.bootstrapper is None:
            log.warning("no bootstrapper configured; skipping cluster bootstrap")
            return
        values = self.bootstrapper.run()
        self.runtime.merge(**values)
        self._bootstrapped = True

    # ------------------------------------------------------------------
    def _rollback(self) -> None:
        count = len(self.saga)
        if not count:
            return
        log.warning("rolling back %d completed task(s)", count)
        self.bus.emit(RollbackStarted(count=count, **self.run_ctx))

        def on_result(res: UnwindResult) -> None:
            status = "ROLLED_BACK" if res.ok else "FAILED"
            error = str(res.error) if res.error else None
            self.report.mark(res.entry.task.name, status, error)
            self.bus.emit(RollbackResult(
                name=res.entry.task.name, host=res.entry.host, status=status, error=error, **self.run_ctx
            ))

        self.report.warnings.extend(self.saga.unwind(on_result))
        log.warning("Rollback complete. Cluster may be in inconsistent state.")

    def _summary(self) -> None:
        r = self.report
        self.bus.emit(ProvisionSummary(
            ok=r.count("OK", "WARNED"),
            failed=r.count("FAILED"),
            rolled_back=r.count("ROLLED_BACK"),
            **self.run_ctx,
        ))
