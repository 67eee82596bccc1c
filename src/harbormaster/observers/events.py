# src/harbormaster/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    cluster: str      # manifest type (central/edge/...)
    profile: str      # manifest profile

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(cluster: str, profile: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
        "profile": profile,
    }


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    batches: List[List[str]]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Task lifecycle (executor)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class TaskStarted(BaseEvent):
    name: str
    type: str
    host: str
    batch: int

@dataclass(frozen=True)
class TaskSucceeded(BaseEvent):
    name: str
    host: str
    duration_ms: int

@dataclass(frozen=True)
class TaskFailed(BaseEvent):
    name: str
    host: str
    error: str

@dataclass(frozen=True)
class ValidationIgnored(BaseEvent):
    name: str
    error: str


# ---------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapStarted(BaseEvent):
    cluster_id: str

@dataclass(frozen=True)
class NodeRegistered(BaseEvent):
    node_id: str
    node_type: str
    existed: bool = False

@dataclass(frozen=True)
class BootstrapSucceeded(BaseEvent):
    cluster_id: str
    tenant_id: str

@dataclass(frozen=True)
class BootstrapFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Rollback & Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RollbackStarted(BaseEvent):
    count: int

@dataclass(frozen=True)
class RollbackResult(BaseEvent):
    name: str
    host: str
    status: str       # "ROLLED_BACK" | "FAILED"
    error: Optional[str] = None

@dataclass(frozen=True)
class ProvisionSummary(BaseEvent):
    ok: int
    failed: int
    rolled_back: int


# ---------------------------------------------------------------------
# Upgrade lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class UpgradeTransition(BaseEvent):
    service: str
    state: str
    detail: Optional[str] = None

@dataclass(frozen=True)
class UpgradeFinished(BaseEvent):
    service: str
    previous_version: str
    target_version: str
    state: str

@dataclass(frozen=True)
class FleetUpgradeFinished(BaseEvent):
    succeeded: List[str]
    failed: List[str]
    remaining: List[str]
