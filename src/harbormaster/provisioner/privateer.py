# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/privateer.py

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Optional

from .registry import register
from .service import ServiceProvisioner
from ..config.models import Host
from ..deploy.models import RuntimeData, ServiceConfig
from ..errors import ConfigurationError
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")

# env file key -> RuntimeData field
_RUNTIME_KEYS = {
    "ENROLLMENT_TOKEN": "enrollment_token",
    "QUARTERMASTER_GRPC_ADDR": "control_plane_grpc_addr",
    "CLUSTER_ID": "cluster_id",
    "SERVICE_TOKEN": "service_token",
}


def parse_env_file(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


@register("privateer")
class PrivateerProvisioner(ServiceProvisioner):
    """
    Mesh agent. Always native: it manages host networking, so it runs under
    systemd with the infrastructure enrollment token minted during bootstrap.

    A forced redeploy (upgrade, rollback) outside a bootstrap run keeps the
    enrollment values already written on the host.
    """

    def provision(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        if config.mode != "native":
            raise ConfigurationError("privateer only supports native mode")
        if not config.runtime.enrollment_token and config.force:
            config = replace(config, runtime=self.installed_runtime(host, config, ctx))
        if not config.runtime.enrollment_token:
            raise ConfigurationError(
                "privateer needs an enrollment token; provision quartermaster in the same run first"
            )
        super().provision(host, config, ctx)

    def installed_runtime(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> RuntimeData:
        """Runtime values from the env file of the agent already on `host`."""
        res = self.runner(host).run(f"cat {shq(self.env_file_path(config))}", ctx)
        if not res.ok:
            log.debug("no existing privateer env on %s: %s", host.name, res.stderr.strip())
            return config.runtime
        env = parse_env_file(res.stdout)
        kept = {field: env[key] for key, field in _RUNTIME_KEYS.items() if env.get(key)}
        if kept:
            log.info("reusing enrollment of the privateer already on %s", host.name)
        return replace(config.runtime, **kept)

    def environment(self, host: Host, config: ServiceConfig) -> Dict[str, str]:
        rt = config.runtime
        env = {
            "ENROLLMENT_TOKEN": rt.enrollment_token or "",
            "NODE_ID": host.name,
        }
        if rt.control_plane_grpc_addr:
            env["QUARTERMASTER_GRPC_ADDR"] = rt.control_plane_grpc_addr
        if rt.cluster_id:
            env["CLUSTER_ID"] = rt.cluster_id
        if rt.service_token:
            env["SERVICE_TOKEN"] = rt.service_token
        if config.port:
            env["PORT"] = str(config.port)
        return env

    def exec_start(self, config: ServiceConfig) -> str:
        return f"/opt/frameworks/{config.service_id}/{config.service_id} agent"
