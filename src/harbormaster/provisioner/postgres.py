# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/postgres.py

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

from .infra import InfrastructureProvisioner, sql_ident
from .registry import register
from .templates import ComposeSpec
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")


@register("postgres")
class PostgresProvisioner(InfrastructureProvisioner):
    image = "postgres"
    default_tag = "16"
    native_unit = "postgresql"

    def environment(self, host: Host, config: ServiceConfig) -> Dict[str, str]:
        if config.mode != "container":
            return {}
        return {"POSTGRES_PASSWORD": os.environ.get("POSTGRES_PASSWORD", "frameworks")}

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        spec.volumes = [f"/var/lib/frameworks/{config.service_id}:/var/lib/postgresql/data"]
        spec.ports = [f"{config.port}:5432"]
        return spec

    def install_script(self, config: ServiceConfig) -> str:
        return self.apt_install(["postgresql", "postgresql-contrib"], "psql") + (
            "conf=$(ls /etc/postgresql/*/main/postgresql.conf | head -n1)\n"
            "hba=$(dirname \"$conf\")/pg_hba.conf\n"
            "sed -i \"s/^#\\?listen_addresses.*/listen_addresses = '*'/\" \"$conf\"\n"
            f"sed -i \"s/^#\\?port = .*/port = {config.port}/\" \"$conf\"\n"
            "grep -q '^host all all 0.0.0.0/0' \"$hba\" || "
            "echo 'host all all 0.0.0.0/0 scram-sha-256' >> \"$hba\"\n"
        )

    # ------------------------------------------------------------------
    def psql(self, config: ServiceConfig, sql: str) -> str:
        if config.mode == "container":
            return self.exec_in(config, f"psql -U postgres -tAc {shq(sql)}")
        return f"sudo -u postgres psql -p {config.port} -tAc {shq(sql)}"

    def _exists(self, host: Host, config: ServiceConfig, sql: str, ctx) -> bool:
        return self.run_command(host, self.psql(config, sql), ctx).stdout.strip() == "1"

    @staticmethod
    def databases(config: ServiceConfig) -> List[Dict[str, str]]:
        return list(config.metadata.get("databases") or [])

    def initialize(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        for db in self.databases(config):
            name = sql_ident(db["name"])
            owner = sql_ident(db.get("owner") or "postgres")

            if not self._exists(host, config, f"SELECT 1 FROM pg_roles WHERE rolname='{owner}'", ctx):
                self.run_command(host, self.psql(config, f'CREATE ROLE "{owner}" LOGIN'), ctx)
                log.info("created role %s on %s", owner, host.name)

            if self._exists(host, config, f"SELECT 1 FROM pg_database WHERE datname='{name}'", ctx):
                log.debug("database %s already exists on %s", name, host.name)
                continue
            self.run_command(host, self.psql(config, f'CREATE DATABASE "{name}" OWNER "{owner}"'), ctx)
            log.info("created database %s (owner %s) on %s", name, owner, host.name)
