# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/deploy/planner.py

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Set

from .models import ExecutionPlan, Phase, PhaseSelector, ProvisionOptions, Task
from .. import catalog
from ..config.models import Manifest, ServiceEntry
from ..errors import ConfigurationError

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx

CONTROL_PLANE = "quartermaster"
MESH_AGENT = "privateer"


class UnknownDependencyError(ConfigurationError):
    pass


class CyclicDependencyError(ConfigurationError):
    pass


def _service_tasks(
    section: Dict[str, ServiceEntry],
    phase: Phase,
    depends_on: List[str],
) -> List[Task]:
    tasks: List[Task] = []
    for name in sorted(section):
        entry = section[name]
        if not entry.enabled:
            continue
        svc_type = catalog.deploy_name(name, entry.deploy)
        targets = entry.target_hosts()
        if not targets:
            raise ConfigurationError(f"{name} is enabled but has no host")
        replicated = len(targets) > 1
        for i, host in enumerate(targets):
            tasks.append(
                Task(
                    name=f"{name}@{host}" if replicated else name,
                    type=svc_type,
                    host=host,
                    phase=phase,
                    depends_on=tuple(depends_on),
                    service=name,
                    replica_index=i,
                )
            )
    return tasks


def _infrastructure_tasks(manifest: Manifest) -> List[Task]:
    infra = manifest.infrastructure
    tasks: List[Task] = []
    P = Phase.INFRASTRUCTURE

    def need_host(what: str, host: str) -> str:
        if not host:
            raise ConfigurationError(f"{what} is enabled but has no host")
        return host

    if infra.postgres and infra.postgres.enabled:
        tasks.append(Task("postgres", "postgres", need_host("postgres", infra.postgres.host), P))

    if infra.redis and infra.redis.enabled:
        for inst in infra.redis.instances:
            name = f"redis-{inst.name}"
            tasks.append(Task(name, "redis", need_host(name, inst.host), P, service=name))

    zk_names: List[str] = []
    if infra.zookeeper and infra.zookeeper.enabled:
        for node in infra.zookeeper.ensemble:
            name = f"zookeeper-{node.id}"
            zk_names.append(name)
            tasks.append(
                Task(name, "zookeeper", need_host(name, node.host), P,
                     service="zookeeper", replica_index=node.id)
            )

    if infra.kafka and infra.kafka.enabled:
        for broker in infra.kafka.brokers:
            name = f"kafka-broker-{broker.id}"
            tasks.append(
                Task(name, "kafka", need_host(name, broker.host), P,
                     depends_on=tuple(zk_names), service="kafka", replica_index=broker.id)
            )

    if infra.clickhouse and infra.clickhouse.enabled:
        tasks.append(Task("clickhouse", "clickhouse", need_host("clickhouse", infra.clickhouse.host), P))

    return tasks


def build_tasks(manifest: Manifest) -> List[Task]:
    """Every task the manifest asks for, across all phases, with dependencies."""
    infra_tasks = _infrastructure_tasks(manifest)
    infra_names = [t.name for t in infra_tasks]

    services = manifest.services
    cp_tasks = _service_tasks(
        {k: v for k, v in services.items() if k == CONTROL_PLANE},
        Phase.APPLICATIONS, infra_names,
    )
    cp_names = [t.name for t in cp_tasks]
    mesh_tasks = _service_tasks(
        {k: v for k, v in services.items() if k == MESH_AGENT},
        Phase.APPLICATIONS, infra_names + cp_names,
    )
    mesh_names = [t.name for t in mesh_tasks]
    app_tasks = _service_tasks(
        {k: v for k, v in services.items() if k not in (CONTROL_PLANE, MESH_AGENT)},
        Phase.APPLICATIONS, infra_names + cp_names + mesh_names,
    )
    all_apps = cp_tasks + mesh_tasks + app_tasks
    app_names = sorted(t.name for t in all_apps)

    iface_tasks = _service_tasks(manifest.interfaces, Phase.INTERFACES, app_names)
    obs_tasks = _service_tasks(manifest.observability, Phase.INTERFACES, app_names)

    return infra_tasks + all_apps + iface_tasks + obs_tasks


def _validate(manifest: Manifest, tasks: List[Task]) -> None:
    seen: Set[str] = set()
    for t in tasks:
        if t.name in seen:
            raise ConfigurationError(f"duplicate task name: {t.name}")
        seen.add(t.name)
        if manifest.get_host(t.host) is None:
            raise ConfigurationError(f"host {t.host} not found in manifest")
    for t in tasks:
        for d in t.depends_on:
            if d not in seen:
                raise UnknownDependencyError(f"task '{t.name}' depends on unknown task '{d}'")


def batch(tasks: List[Task]) -> List[List[Task]]:
    """
    Kahn-style level sort. Each level becomes one or more batches: a level
    is split by phase so no batch mixes phases. Names are sorted within a
    batch.
    """
    by_name: Dict[str, Task] = {t.name: t for t in tasks}
    pending: Dict[str, Set[str]] = {t.name: set(t.depends_on) for t in tasks}
    done: Set[str] = set()
    batches: List[List[Task]] = []

    while pending:
        level = sorted(n for n, deps in pending.items() if deps <= done)
        if not level:
            raise CyclicDependencyError(
                "cyclic dependency among tasks: " + ", ".join(sorted(pending))
            )
        for phase in sorted({by_name[n].phase for n in level}):
            batches.append([by_name[n] for n in level if by_name[n].phase == phase])
        for n in level:
            del pending[n]
            done.add(n)
    return batches


class Planner:
    """
    Turns a manifest into ordered batches of tasks.

    Planning is pure: the same manifest and options always produce the
    same plan. Emits PlanComputed / PlanFailed if an EventBus is provided.
    """

    def __init__(self, manifest: Manifest, bus: Optional[EventBus] = None, run_id: Optional[str] = None):
        self.manifest = manifest
        self.bus = bus
        self.run_id = run_id

    def plan(self, options: Optional[ProvisionOptions] = None) -> ExecutionPlan:
        options = options or ProvisionOptions()
        ctx = new_ctx(self.manifest.type, self.manifest.profile, self.run_id)
        try:
            tasks = build_tasks(self.manifest)
            _validate(self.manifest, tasks)

            selected = [t for t in tasks if options.phase.includes(t.phase)]
            if options.phase is not PhaseSelector.ALL:
                # earlier phases are assumed provisioned already
                names = {t.name for t in selected}
                selected = [
                    replace(t, depends_on=tuple(d for d in t.depends_on if d in names))
                    for t in selected
                ]

            result = ExecutionPlan(batches=batch(selected))
            if self.bus:
                self.bus.emit(PlanComputed(batches=result.names(), **ctx))
            return result

        except Exception as e:
            if self.bus:
                self.bus.emit(PlanFailed(error=str(e), **ctx))
            raise
