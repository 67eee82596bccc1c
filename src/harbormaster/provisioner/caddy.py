# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/caddy.py

from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from .infra import InfrastructureProvisioner
from .registry import register
from .templates import ComposeSpec, caddyfile
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext

log = logging.getLogger("harbormaster")


@register("caddy")
class CaddyProvisioner(InfrastructureProvisioner):
    """
    Edge reverse proxy. Routes are ``<public type>.<root domain>`` to the
    local port of the matching service, supplied by the engine in
    ``metadata["routes"]``.
    """

    image = "caddy"
    default_tag = "2"
    native_unit = "caddy"

    @staticmethod
    def routes(config: ServiceConfig) -> Dict[str, int]:
        return {str(k): int(v) for k, v in (config.metadata.get("routes") or {}).items()}

    @staticmethod
    def root_domain(config: ServiceConfig) -> str:
        return str(
            config.metadata.get("root_domain")
            or os.environ.get("HARBORMASTER_ROOT_DOMAIN", "localhost")
        )

    def conf_path(self, config: ServiceConfig) -> str:
        if config.mode == "container":
            return "/etc/frameworks/caddy/Caddyfile"
        return "/etc/caddy/Caddyfile"

    def render_config(self, config: ServiceConfig) -> str:
        upstream = "host.docker.internal" if config.mode == "container" else "localhost"
        return caddyfile(
            root_domain=self.root_domain(config),
            routes=self.routes(config),
            email=str(config.metadata.get("email") or ""),
            listen_address=f":{config.port}",
            upstream_host=upstream,
        )

    def write_config(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext]) -> None:
        path = self.conf_path(config)
        self.run_command(host, f"mkdir -p {os.path.dirname(path)}", ctx)
        self.upload_content(host, self.render_config(config), path, ctx=ctx)
        log.debug("caddy routes on %s: %s", host.name, sorted(self.routes(config)))

    def provision_container(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        self.write_config(host, config, ctx)
        super().provision_container(host, config, release, ctx)

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        spec.ports = ["80:80", "443:443", f"{config.port}:{config.port}"]
        spec.extra_hosts = ["host.docker.internal:host-gateway"]
        spec.volumes = [
            f"{self.conf_path(config)}:/etc/caddy/Caddyfile:ro",
            "/var/lib/frameworks/caddy:/data",
        ]
        return spec

    def install_script(self, config: ServiceConfig) -> str:
        return self.apt_install(["caddy"], "caddy")

    def provision_native(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        self.run_script(host, self.install_script(config), ctx)
        self.write_config(host, config, ctx)
        self.run_command(host, "systemctl enable caddy && systemctl reload-or-restart caddy", ctx)
