# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/redis.py

from __future__ import annotations

from typing import Optional

from .infra import InfrastructureProvisioner
from .registry import register
from .templates import ComposeSpec, render, systemd_unit
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext


@register("redis")
class RedisProvisioner(InfrastructureProvisioner):
    """
    Named Redis instances. Each instance is its own service id
    (``redis-<name>``) with its own config file, unit and data directory, so
    several can share a host.
    """

    image = "redis"
    default_tag = "7-alpine"

    def conf_path(self, config: ServiceConfig) -> str:
        return f"/etc/frameworks/{config.service_id}/redis.conf"

    def render_config(self, config: ServiceConfig, port: int, data_dir: str) -> str:
        return render(
            "redis.conf.j2",
            port=port,
            data_dir=data_dir,
            password=config.metadata.get("password") or "",
            directives=dict(config.metadata.get("directives") or {}),
        )

    def provision_container(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        self.run_command(host, f"mkdir -p /etc/frameworks/{config.service_id}", ctx)
        self.upload_content(host, self.render_config(config, 6379, "/data"), self.conf_path(config), ctx=ctx)
        super().provision_container(host, config, release, ctx)

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        spec.command = "redis-server /usr/local/etc/redis/redis.conf"
        spec.ports = [f"{config.port}:6379"]
        spec.volumes = [
            f"{self.conf_path(config)}:/usr/local/etc/redis/redis.conf:ro",
            f"/var/lib/frameworks/{config.service_id}:/data",
        ]
        return spec

    def install_script(self, config: ServiceConfig) -> str:
        # the distro's default instance would squat on 6379
        return self.apt_install(["redis-server"], "redis-server") + (
            "systemctl disable --now redis-server >/dev/null 2>&1 || true\n"
        )

    def configure_native(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext]) -> None:
        svc = config.service_id
        data_dir = f"/var/lib/frameworks/{svc}"
        self.run_command(
            host,
            f"mkdir -p /etc/frameworks/{svc} {data_dir} {self.compose_dir(config)}"
            f" && chown redis:redis {data_dir}",
            ctx,
        )
        self.upload_content(
            host,
            self.render_config(config, config.port, data_dir),
            self.conf_path(config),
            mode=0o640,
            owner="redis:redis",
            ctx=ctx,
        )
        unit = systemd_unit(
            service_name=svc,
            exec_start=f"/usr/bin/redis-server {self.conf_path(config)}",
            description=f"Frameworks Redis ({svc})",
            user="redis",
        )
        self.upload_content(host, unit, f"/etc/systemd/system/{self.unit_name(config)}.service", ctx=ctx)
