# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/deploy/models.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields, replace
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple


class Phase(IntEnum):
    INFRASTRUCTURE = 1
    APPLICATIONS = 2
    INTERFACES = 3


class PhaseSelector(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    APPLICATIONS = "applications"
    INTERFACES = "interfaces"
    ALL = "all"

    def includes(self, phase: Phase) -> bool:
        return self is PhaseSelector.ALL or self.value == phase.name.lower()


@dataclass(frozen=True)
class Task:
    name: str
    type: str                       # provisioner type
    host: str                       # manifest host name
    phase: Phase
    depends_on: Tuple[str, ...] = ()
    service: str = ""               # manifest service id (name without replica suffix)
    replica_index: int = 0

    def __post_init__(self):
        if not self.service:
            object.__setattr__(self, "service", self.name)

    @property
    def label(self) -> str:
        return f"{self.name}@{self.host}" if "@" not in self.name else self.name


@dataclass
class ExecutionPlan:
    batches: List[List[Task]] = field(default_factory=list)

    @property
    def all_tasks(self) -> List[Task]:
        return [t for batch in self.batches for t in batch]

    @property
    def empty(self) -> bool:
        return not self.batches

    def names(self) -> List[List[str]]:
        return [[t.name for t in batch] for batch in self.batches]

    def describe(self) -> str:
        lines = []
        for i, batch in enumerate(self.batches, start=1):
            phase = batch[0].phase.name.lower()
            lines.append(f"Batch {i} ({phase}):")
            for t in batch:
                lines.append(f"  - {t.name} [{t.type}] on {t.host}")
        return "\n".join(lines) if lines else "Nothing to provision."


@dataclass(frozen=True)
class ProvisionOptions:
    phase: PhaseSelector = PhaseSelector.ALL
    dry_run: bool = False
    force: bool = False
    ignore_validation: bool = False
    max_workers: int = 1


@dataclass(frozen=True)
class UpgradeOptions:
    version: str = ""
    dry_run: bool = False
    skip_validation: bool = False
    assume_yes: bool = False
    rollback: bool = True
    health_interval: float = 5.0
    health_timeout: float = 90.0


@dataclass(frozen=True)
class RuntimeData:
    """Values produced by earlier tasks in a run, read by later ones."""

    enrollment_token: Optional[str] = None
    service_token: Optional[str] = None
    control_plane_grpc_addr: Optional[str] = None
    tenant_id: Optional[str] = None
    cluster_id: Optional[str] = None
    node_ids: Tuple[str, ...] = ()

    def merge(self, **values) -> "RuntimeData":
        """New snapshot with `values` set. A set field may not change value."""
        names = {f.name for f in fields(self)}
        for key, value in values.items():
            if key not in names:
                raise ValueError(f"unknown runtime field: {key}")
            current = getattr(self, key)
            if current not in (None, ()) and current != value:
                raise ValueError(f"runtime field {key} already set")
        return replace(self, **values)


class RuntimeStore:
    """Engine-owned holder of the current RuntimeData snapshot."""

    def __init__(self, initial: Optional[RuntimeData] = None):
        self._data = initial or RuntimeData()
        self._lock = threading.Lock()

    def snapshot(self) -> RuntimeData:
        with self._lock:
            return self._data

    def merge(self, **values) -> RuntimeData:
        with self._lock:
            self._data = self._data.merge(**values)
            return self._data


@dataclass
class ServiceConfig:
    """Effective configuration handed to a provisioner for one task."""

    deploy_name: str
    name: str = ""                  # service id on the host (unit / container / inventory name)
    mode: str = "container"
    version: str = "stable"
    image: Optional[str] = None
    binary_url: Optional[str] = None
    env_file: Optional[str] = None
    port: int = 0
    grpc_port: int = 0
    force: bool = False
    metadata: Dict[str, object] = field(default_factory=dict)
    runtime: RuntimeData = field(default_factory=RuntimeData)

    @property
    def service_id(self) -> str:
        return self.name or self.deploy_name
