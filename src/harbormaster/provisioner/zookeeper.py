# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/zookeeper.py

from __future__ import annotations

from typing import List, Optional

from .infra import InfrastructureProvisioner
from .registry import register
from .templates import ComposeSpec, render, systemd_unit
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..errors import ConfigurationError
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext

ZK_VERSION = "3.9.2"


@register("zookeeper")
class ZookeeperProvisioner(InfrastructureProvisioner):
    """One ensemble member per host: myid plus a zoo.cfg carrying the full server list."""

    image = "zookeeper"
    default_tag = "3.9"

    @staticmethod
    def server_id(config: ServiceConfig) -> int:
        sid = config.metadata.get("server_id")
        if sid is None:
            raise ConfigurationError(f"{config.service_id}: zookeeper server_id missing")
        return int(sid)

    @staticmethod
    def servers(config: ServiceConfig) -> List[str]:
        return list(config.metadata.get("servers") or [])

    def conf_dir(self, config: ServiceConfig) -> str:
        return f"/etc/frameworks/{config.service_id}"

    def data_dir(self, config: ServiceConfig) -> str:
        return f"/var/lib/frameworks/{config.service_id}"

    def render_config(self, config: ServiceConfig, data_dir: str) -> str:
        return render("zoo.cfg.j2", data_dir=data_dir, port=config.port, servers=self.servers(config))

    def write_config(self, host: Host, config: ServiceConfig, data_dir: str, ctx) -> None:
        conf_dir, host_data = self.conf_dir(config), self.data_dir(config)
        self.run_command(host, f"mkdir -p {conf_dir} {host_data} {self.compose_dir(config)}", ctx)
        self.upload_content(host, f"{self.server_id(config)}\n", f"{host_data}/myid", ctx=ctx)
        self.upload_content(host, self.render_config(config, data_dir), f"{conf_dir}/zoo.cfg", ctx=ctx)

    def provision_container(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        self.write_config(host, config, "/data", ctx)
        super().provision_container(host, config, release, ctx)

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        spec.ports = [f"{config.port}:{config.port}", "2888:2888", "3888:3888"]
        spec.volumes = [
            f"{self.conf_dir(config)}/zoo.cfg:/conf/zoo.cfg",
            f"{self.data_dir(config)}:/data",
        ]
        return spec

    def install_script(self, config: ServiceConfig) -> str:
        return (
            "#!/bin/bash\n"
            "set -e\n"
            "command -v java >/dev/null 2>&1 || "
            "(apt-get update -q && DEBIAN_FRONTEND=noninteractive apt-get install -y -q openjdk-17-jre-headless)\n"
            "if [ ! -x /opt/zookeeper/bin/zkServer.sh ]; then\n"
            f"  wget -q -O /tmp/zookeeper.tar.gz https://archive.apache.org/dist/zookeeper/zookeeper-{ZK_VERSION}/apache-zookeeper-{ZK_VERSION}-bin.tar.gz\n"
            "  mkdir -p /opt/zookeeper\n"
            "  tar -xzf /tmp/zookeeper.tar.gz -C /opt/zookeeper --strip-components=1\n"
            "  rm /tmp/zookeeper.tar.gz\n"
            "fi\n"
        )

    def configure_native(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext]) -> None:
        self.write_config(host, config, self.data_dir(config), ctx)
        unit = systemd_unit(
            service_name=config.service_id,
            exec_start=f"/opt/zookeeper/bin/zkServer.sh start-foreground {self.conf_dir(config)}/zoo.cfg",
            description="Frameworks ZooKeeper",
            user="root",
        )
        self.upload_content(host, unit, f"/etc/systemd/system/{self.unit_name(config)}.service", ctx=ctx)
