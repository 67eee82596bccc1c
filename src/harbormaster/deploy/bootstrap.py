# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/deploy/bootstrap.py

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .. import catalog
from ..config.models import Host, Manifest
from ..controlplane.client import (
    AlreadyExistsError,
    ControlPlaneClient,
    ControlPlaneError,
    HttpControlPlaneClient,
    NotFoundError,
    resolve_service_token,
)
from ..errors import BootstrapError
from ..observers.dispatcher import EventBus
from ..observers.events import (
    BootstrapFailed,
    BootstrapStarted,
    BootstrapSucceeded,
    NodeRegistered,
    new_ctx,
)

log = logging.getLogger("harbormaster")

SYSTEM_TENANT = "FrameWorks"
TOKEN_KIND = "infrastructure_node"
TOKEN_TTL = "720h"
DEFAULT_HTTP_PORT = catalog.CATALOG["quartermaster"].port
DEFAULT_GRPC_PORT = catalog.CATALOG["quartermaster"].grpc_port

ClientFactory = Callable[[str, str], ControlPlaneClient]


def _default_client(base_url: str, token: str) -> ControlPlaneClient:
    return HttpControlPlaneClient(base_url, token)


class ClusterBootstrapper:
    """
    Registers a freshly provisioned cluster with its control plane.

    run() is idempotent against the control plane: existing tenant, cluster
    and nodes are reused. It returns the runtime values later tasks need
    (enrollment token, control-plane gRPC address, ids).
    """

    def __init__(
        self,
        manifest: Manifest,
        *,
        client_factory: Optional[ClientFactory] = None,
        service_token: Optional[str] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.manifest = manifest
        self.client_factory = client_factory or _default_client
        self._service_token = service_token
        self.bus = bus
        self.run_id = run_id

    def _emit(self, event_cls, **fields) -> None:
        if self.bus:
            self.bus.emit(event_cls(**fields, **new_ctx(self.manifest.type, self.manifest.profile, self.run_id)))

    # ------------------------------------------------------------------
    # addressing
    # ------------------------------------------------------------------
    def control_plane_host(self) -> Host:
        found = self.manifest.find_service("quartermaster")
        host_name = found[1].primary_host() if found else ""
        host = self.manifest.get_host(host_name) if host_name else None
        if host is None:
            if not self.manifest.hosts:
                raise BootstrapError("no hosts in manifest")
            host = next(iter(self.manifest.hosts.values()))
        return host

    def endpoints(self) -> Tuple[str, str]:
        """(HTTP base URL, gRPC address) of the control plane."""
        host = self.control_plane_host()
        found = self.manifest.find_service("quartermaster")
        entry = found[1] if found else None
        http_port = (entry.port if entry and entry.port else None) or DEFAULT_HTTP_PORT
        grpc_port = (entry.grpc_port if entry and entry.grpc_port else None) or DEFAULT_GRPC_PORT

        base_url = f"http://{host.address}:{http_port}"
        bridge = self.manifest.find_service("bridge")
        if bridge and bridge[1].enabled and bridge[1].port:
            bridge_host = self.manifest.get_host(bridge[1].primary_host())
            if bridge_host is not None:
                base_url = f"http://{bridge_host.address}:{bridge[1].port}"
        return base_url, f"{host.address}:{grpc_port}"

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------
    def ensure_tenant(self, client: ControlPlaneClient) -> str:
        for tenant in client.list_tenants():
            if tenant.name == SYSTEM_TENANT:
                return tenant.id
        tenant = client.create_tenant(SYSTEM_TENANT, deployment_tier="global")
        log.info("created system tenant %s (%s)", SYSTEM_TENANT, tenant.id)
        return tenant.id

    def ensure_cluster(self, client: ControlPlaneClient, base_url: str) -> str:
        cluster_id = self.manifest.cluster_id
        try:
            return client.get_cluster(cluster_id).id
        except NotFoundError:
            pass
        name = f"FrameWorks {self.manifest.type} {self.manifest.profile} Cluster"
        cluster = client.create_cluster(
            cluster_id, name=name, cluster_type=self.manifest.type, base_url=base_url
        )
        log.info("created cluster %s", cluster.id)
        return cluster.id

    def node_specs(self) -> List[Dict[str, Optional[str]]]:
        nodes: List[Dict[str, Optional[str]]] = []
        for name in sorted(self.manifest.hosts):
            host = self.manifest.hosts[name]
            nodes.append({
                "node_id": name,
                "node_type": "edge" if "edge" in host.roles else "core",
                "external_ip": host.public_ip,
                "hostname": name,
            })
        for section in ("services", "interfaces"):
            entries = getattr(self.manifest, section)
            for svc in sorted(entries):
                entry = entries[svc]
                public = catalog.public_service_type(svc)
                if not entry.enabled or not public:
                    continue
                for host_name in entry.target_hosts():
                    host = self.manifest.get_host(host_name)
                    nodes.append({
                        "node_id": f"{host_name}-{public}",
                        "node_type": public,
                        "external_ip": host.public_ip if host else None,
                        "hostname": host_name,
                    })
        return nodes

    def register_nodes(self, client: ControlPlaneClient, cluster_id: str) -> List[str]:
        registered: List[str] = []
        for spec in self.node_specs():
            existed = False
            try:
                client.create_node(
                    spec["node_id"],
                    cluster_id=cluster_id,
                    node_type=spec["node_type"],
                    external_ip=spec["external_ip"],
                    hostname=spec["hostname"],
                )
            except AlreadyExistsError:
                existed = True
                log.debug("node %s already registered", spec["node_id"])
            except ControlPlaneError as e:
                text = str(e).lower()
                if "duplicate" not in text and "already exists" not in text:
                    raise
                existed = True
            registered.append(spec["node_id"])
            self._emit(NodeRegistered, node_id=spec["node_id"], node_type=spec["node_type"], existed=existed)
        return registered

    # ------------------------------------------------------------------
    def run(self) -> Dict[str, object]:
        cluster_id = self.manifest.cluster_id
        self._emit(BootstrapStarted, cluster_id=cluster_id)
        try:
            token = self._service_token or resolve_service_token()
            if not token:
                raise BootstrapError(
                    "no service token: set SERVICE_TOKEN or log in to create a session file"
                )
            base_url, grpc_addr = self.endpoints()
            client = self.client_factory(base_url, token)
            try:
                tenant_id = self.ensure_tenant(client)
                cluster_id = self.ensure_cluster(client, base_url)
                node_ids = self.register_nodes(client, cluster_id)
                minted = client.create_bootstrap_token(
                    name=f"Infrastructure Enrollment Token for {cluster_id}",
                    kind=TOKEN_KIND,
                    ttl=TOKEN_TTL,
                    tenant_id=tenant_id,
                    cluster_id=cluster_id,
                )
            finally:
                client.close()
        except BootstrapError as e:
            self._emit(BootstrapFailed, error=str(e))
            raise
        except ControlPlaneError as e:
            self._emit(BootstrapFailed, error=str(e))
            raise BootstrapError(f"cluster bootstrap failed: {e}") from e

        log.info("bootstrap complete for %s (%d nodes)", cluster_id, len(node_ids))
        self._emit(BootstrapSucceeded, cluster_id=cluster_id, tenant_id=tenant_id)
        return {
            "enrollment_token": minted.token,
            "service_token": token,
            "control_plane_grpc_addr": grpc_addr,
            "tenant_id": tenant_id,
            "cluster_id": cluster_id,
            "node_ids": tuple(node_ids),
        }
