# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/catalog.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class ServiceDef:
    id: str
    deploy: str                       # provisioner type name
    port: int = 0
    grpc_port: int = 0
    health_path: str = "/health"
    public_type: Optional[str] = None  # DNS node type for externally routable services
    infrastructure: bool = False


_DEFS = [
    # infrastructure
    ServiceDef("postgres", "postgres", port=5432, health_path="", infrastructure=True),
    ServiceDef("zookeeper", "zookeeper", port=2181, health_path="", infrastructure=True),
    ServiceDef("kafka", "kafka", port=9092, health_path="", infrastructure=True),
    ServiceDef("clickhouse", "clickhouse", port=9000, health_path="", infrastructure=True),
    ServiceDef("redis", "redis", port=6379, health_path="", infrastructure=True),
    # control plane and mesh
    ServiceDef("quartermaster", "quartermaster", port=18002, grpc_port=19002),
    ServiceDef("privateer", "privateer", port=18012),
    # applications
    ServiceDef("bridge", "service", port=18001, public_type="api"),
    ServiceDef("commodore", "service", port=18011, grpc_port=19001),
    ServiceDef("purser", "service", port=18003),
    ServiceDef("periscope-query", "service", port=18004),
    ServiceDef("periscope-ingest", "service", port=18005),
    ServiceDef("decklog", "service", port=18006),
    ServiceDef("helmsman", "service", port=18007),
    ServiceDef("foghorn", "service", port=18008),
    ServiceDef("signalman", "service", port=18009),
    ServiceDef("navigator", "service", port=18010),
    ServiceDef("skipper", "service", port=18018),
    ServiceDef("foghorn-control", "service", port=18019),
    # interfaces
    ServiceDef("chartroom", "service", port=3000, public_type="app"),
    ServiceDef("foredeck", "service", port=4321, public_type="website"),
    ServiceDef("logbook", "service", port=4322, public_type="docs"),
    ServiceDef("steward", "service", port=18032, public_type="forms"),
    ServiceDef("listmonk", "service", port=9001),
    ServiceDef("caddy", "caddy", port=18090, health_path=""),
    # observability
    ServiceDef("prometheus", "service", port=9090, health_path="/-/healthy"),
    ServiceDef("grafana", "service", port=3001, health_path="/api/health"),
    ServiceDef("vmagent", "service", port=8429),
]

CATALOG: Dict[str, ServiceDef] = {d.id: d for d in _DEFS}


def lookup(service_id: str) -> Optional[ServiceDef]:
    return CATALOG.get(service_id)


def deploy_name(service_id: str, override: Optional[str] = None) -> str:
    """Resolve the provisioner type for a manifest entry."""
    if override:
        return override
    entry = CATALOG.get(service_id)
    if entry is None:
        raise ConfigurationError(f"unknown service id: {service_id}")
    return entry.deploy


def default_port(type_or_id: str) -> int:
    entry = CATALOG.get(type_or_id)
    return entry.port if entry else 0


def public_service_type(service_id: str) -> Optional[str]:
    entry = CATALOG.get(service_id)
    return entry.public_type if entry else None


def is_infrastructure(type_or_id: str) -> bool:
    entry = CATALOG.get(type_or_id)
    return bool(entry and entry.infrastructure)
