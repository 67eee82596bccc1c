# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/service.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .base import BaseProvisioner
from .registry import register
from .templates import ComposeSpec, HealthCheck, docker_compose, systemd_unit
from .. import catalog
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ReleaseFetchError, ServiceRelease
from ..errors import ProvisioningError
from ..utils.execution import RunContext
from ..utils.shell import env_file as render_env_file

log = logging.getLogger("harbormaster")


@register("service")
class ServiceProvisioner(BaseProvisioner):
    """
    Generic application service: docker-compose in container mode, a
    downloaded binary under a systemd unit in native mode.
    """

    def health_path_for(self, config: ServiceConfig) -> Optional[str]:
        entry = catalog.lookup(config.service_id)
        if entry is not None:
            return entry.health_path or None
        return self.health_path

    def env_file_path(self, config: ServiceConfig) -> str:
        return config.env_file or f"/etc/frameworks/{config.service_id}.env"

    def environment(self, host: Host, config: ServiceConfig) -> Dict[str, str]:
        """Extra variables written to the env file before start. Empty by default."""
        return {}

    def provision(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        self.check_mode(config)
        if self.already_provisioned(host, config, ctx):
            return

        release = self.resolve_release(config)
        env = self.environment(host, config)
        if env:
            self.upload_content(
                host,
                render_env_file(config.service_id, env),
                self.env_file_path(config),
                mode=0o600,
                ctx=ctx,
            )

        if config.mode == "container":
            self.provision_container(host, config, release, ctx)
        else:
            self.provision_native(host, config, release, ctx)

        self.write_inventory_record(host, config, ctx)
        log.info("✓ %s provisioned on %s (%s)", config.service_id, host.name, config.mode)

    # ------------------------------------------------------------------
    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        svc = config.service_id
        health_path = self.health_path_for(config)
        healthcheck = None
        if health_path and config.port:
            healthcheck = HealthCheck(
                test=["CMD", "curl", "-f", f"http://localhost:{config.port}{health_path}"]
            )
        return ComposeSpec(
            service_name=svc,
            image=release.full_image,
            port=config.port,
            env_file=self.env_file_path(config),
            healthcheck=healthcheck,
            volumes=[
                f"/var/log/frameworks/{svc}:/var/log/frameworks",
                f"/var/lib/frameworks/{svc}:/var/lib/frameworks",
            ],
        )

    def provision_container(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        if not release.full_image:
            raise ProvisioningError(f"no container image for {config.service_id}")
        compose = docker_compose(self.compose_spec(config, release))
        directory = self.compose_dir(config)
        self.run_command(host, f"mkdir -p {directory}", ctx)
        self.upload_content(host, compose, f"{directory}/docker-compose.yml", ctx=ctx)
        for cmd in ("docker compose pull", "docker compose up -d"):
            self.run_command(host, f"cd {directory} && {cmd}", ctx)

    def install_binary_script(self, config: ServiceConfig, url: str) -> str:
        svc = config.service_id
        return (
            "#!/bin/bash\n"
            "set -e\n"
            f'wget -q -O /tmp/{svc}.tar.gz "{url}"\n'
            f"mkdir -p /opt/frameworks/{svc}\n"
            f"tar -xzf /tmp/{svc}.tar.gz -C /tmp/\n"
            f"mv /tmp/frameworks-{svc}-* /opt/frameworks/{svc}/{svc}\n"
            f"chmod +x /opt/frameworks/{svc}/{svc}\n"
            f"rm /tmp/{svc}.tar.gz\n"
        )

    def exec_start(self, config: ServiceConfig) -> str:
        return f"/opt/frameworks/{config.service_id}/{config.service_id}"

    def provision_native(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        try:
            url = release.binary_url()
        except ReleaseFetchError as e:
            raise ProvisioningError(str(e)) from e

        self.run_script(host, self.install_binary_script(config, url), ctx)

        unit = self.unit_name(config)
        content = systemd_unit(
            service_name=config.service_id,
            exec_start=self.exec_start(config),
            env_file=self.env_file_path(config),
            after=self.unit_after(config),
        )
        self.upload_content(host, content, f"/etc/systemd/system/{unit}.service", ctx=ctx)
        self.run_command(
            host,
            f"systemctl daemon-reload && systemctl enable {unit} && systemctl restart {unit}",
            ctx,
        )

    def unit_after(self, config: ServiceConfig) -> List[str]:
        return ["network-online"]
