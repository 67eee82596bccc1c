# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/clickhouse.py

from __future__ import annotations

import logging
from typing import List, Optional

from .infra import InfrastructureProvisioner, sql_ident
from .registry import register
from .templates import ComposeSpec
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")


@register("clickhouse")
class ClickHouseProvisioner(InfrastructureProvisioner):
    image = "clickhouse/clickhouse-server"
    default_tag = "24.3"
    native_unit = "clickhouse-server"

    @staticmethod
    def http_port(config: ServiceConfig) -> int:
        return int(config.metadata.get("http_port") or 8123)

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        http = self.http_port(config)
        spec.ports = [f"{config.port}:9000", f"{http}:8123"]
        spec.volumes = [f"/var/lib/frameworks/{config.service_id}:/var/lib/clickhouse"]
        return spec

    def install_script(self, config: ServiceConfig) -> str:
        return (
            "#!/bin/bash\n"
            "set -e\n"
            "export DEBIAN_FRONTEND=noninteractive\n"
            "if ! command -v clickhouse-client >/dev/null 2>&1; then\n"
            "  apt-get update -q && apt-get install -y -q apt-transport-https ca-certificates curl gnupg\n"
            "  curl -fsSL https://packages.clickhouse.com/rpm/lts/repodata/repomd.xml.key"
            " | gpg --dearmor -o /usr/share/keyrings/clickhouse-keyring.gpg\n"
            "  echo 'deb [signed-by=/usr/share/keyrings/clickhouse-keyring.gpg] https://packages.clickhouse.com/deb stable main'"
            " > /etc/apt/sources.list.d/clickhouse.list\n"
            "  apt-get update -q && apt-get install -y -q clickhouse-server clickhouse-client\n"
            "fi\n"
        )

    @staticmethod
    def databases(config: ServiceConfig) -> List[str]:
        return [str(d) for d in (config.metadata.get("databases") or [])]

    def client(self, config: ServiceConfig, query: str) -> str:
        if config.mode == "container":
            return self.exec_in(config, f"clickhouse-client -q {shq(query)}")
        return f"clickhouse-client --port {config.port} -q {shq(query)}"

    def initialize(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        for name in self.databases(config):
            self.run_command(host, self.client(config, f"CREATE DATABASE IF NOT EXISTS {sql_ident(name)}"), ctx)
            log.info("database %s ensured on %s", name, host.name)
