# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/controlplane/client.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests
import yaml

from ..config.loader import harbormaster_home
from ..errors import BootstrapError, HarbormasterError

log = logging.getLogger("harbormaster")


class ControlPlaneError(HarbormasterError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ControlPlaneError):
    pass


class AlreadyExistsError(ControlPlaneError):
    pass


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str


@dataclass(frozen=True)
class Cluster:
    id: str
    name: str
    type: str = ""
    base_url: str = ""


@dataclass(frozen=True)
class BootstrapToken:
    token: str
    name: str = ""
    expires_at: str = ""


class ControlPlaneClient(Protocol):
    def list_tenants(self) -> List[Tenant]: ...
    def create_tenant(self, name: str, *, deployment_tier: str = "global") -> Tenant: ...
    def get_cluster(self, cluster_id: str) -> Cluster: ...
    def create_cluster(self, cluster_id: str, *, name: str, cluster_type: str, base_url: str) -> Cluster: ...
    def create_node(
        self,
        node_id: str,
        *,
        cluster_id: str,
        node_type: str,
        external_ip: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> None: ...
    def create_bootstrap_token(
        self, *, name: str, kind: str, ttl: str, tenant_id: str, cluster_id: str
    ) -> BootstrapToken: ...
    def close(self) -> None: ...


def resolve_service_token(session_file: Optional[Path] = None) -> Optional[str]:
    """SERVICE_TOKEN from the environment, else the local session file."""
    token = os.environ.get("SERVICE_TOKEN")
    if token:
        return token
    path = session_file or (harbormaster_home() / "session.yaml")
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        log.warning("ignoring unreadable session file %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        return None
    return data.get("service_token") or None


class HttpControlPlaneClient:
    """
    JSON-over-HTTP client for the control plane's admin API.

    Every request carries the service token as a bearer credential.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ):
        if not token:
            raise BootstrapError("control plane client needs a service token")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

    def _request(self, method: str, path: str, *, ok=(200,), **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/api/v1{path}"
        try:
            r = self._session.request(method, url, timeout=self.timeout, verify=self.verify_tls, **kwargs)
        except requests.RequestException as e:
            raise ControlPlaneError(f"{method} {url}: {e}") from e

        if r.status_code == 404:
            raise NotFoundError(f"{path.strip('/').split('/')[0].rstrip('s')} not found", status=404)
        if r.status_code == 409:
            raise AlreadyExistsError(f"{path} already exists: {r.text}", status=409)
        if r.status_code not in ok:
            raise ControlPlaneError(f"{method} {path} failed: {r.status_code} {r.text}", status=r.status_code)
        if not r.content:
            return {}
        return r.json()

    # -----------------------
    # Tenants
    # -----------------------
    def list_tenants(self) -> List[Tenant]:
        body = self._request("GET", "/tenants")
        return [Tenant(id=t["id"], name=t["name"]) for t in body.get("tenants", [])]

    def create_tenant(self, name: str, *, deployment_tier: str = "global") -> Tenant:
        body = self._request(
            "POST", "/tenants", ok=(200, 201),
            json={"name": name, "deployment_tier": deployment_tier},
        )
        t = body.get("tenant", body)
        return Tenant(id=t["id"], name=t.get("name", name))

    # -----------------------
    # Clusters
    # -----------------------
    def get_cluster(self, cluster_id: str) -> Cluster:
        body = self._request("GET", f"/clusters/{cluster_id}")
        c = body.get("cluster", body)
        return Cluster(id=c["id"], name=c.get("name", ""), type=c.get("type", ""), base_url=c.get("base_url", ""))

    def create_cluster(self, cluster_id: str, *, name: str, cluster_type: str, base_url: str) -> Cluster:
        body = self._request(
            "POST", "/clusters", ok=(200, 201),
            json={"cluster_id": cluster_id, "name": name, "type": cluster_type, "base_url": base_url},
        )
        c = body.get("cluster", body)
        return Cluster(id=c.get("id", cluster_id), name=c.get("name", name), type=cluster_type, base_url=base_url)

    # -----------------------
    # Nodes / tokens
    # -----------------------
    def create_node(
        self,
        node_id: str,
        *,
        cluster_id: str,
        node_type: str,
        external_ip: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"node_id": node_id, "cluster_id": cluster_id, "node_type": node_type}
        if external_ip:
            payload["external_ip"] = external_ip
        if hostname:
            payload["hostname"] = hostname
        self._request("POST", "/nodes", ok=(200, 201), json=payload)

    def create_bootstrap_token(
        self, *, name: str, kind: str, ttl: str, tenant_id: str, cluster_id: str
    ) -> BootstrapToken:
        body = self._request(
            "POST", "/bootstrap-tokens", ok=(200, 201),
            json={"name": name, "kind": kind, "ttl": ttl, "tenant_id": tenant_id, "cluster_id": cluster_id},
        )
        t = body.get("token", body)
        if isinstance(t, str):
            return BootstrapToken(token=t, name=name)
        return BootstrapToken(token=t["token"], name=t.get("name", name), expires_at=t.get("expires_at", ""))

    def close(self) -> None:
        self._session.close()
