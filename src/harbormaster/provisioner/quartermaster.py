# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/quartermaster.py

from __future__ import annotations

from typing import Dict

from .registry import register
from .service import ServiceProvisioner
from .templates import ComposeSpec
from .. import catalog
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..releases.fetcher import ServiceRelease

DEFAULT_GRPC_PORT = catalog.CATALOG["quartermaster"].grpc_port


@register("quartermaster")
class QuartermasterProvisioner(ServiceProvisioner):
    """Control-plane registry. Serves HTTP health plus the gRPC API used for bootstrap."""

    @staticmethod
    def grpc_port(config: ServiceConfig) -> int:
        return config.grpc_port or DEFAULT_GRPC_PORT

    def environment(self, host: Host, config: ServiceConfig) -> Dict[str, str]:
        env = {
            "PORT": str(config.port),
            "GRPC_PORT": str(self.grpc_port(config)),
        }
        dsn = config.metadata.get("database_url")
        if dsn:
            env["DATABASE_URL"] = str(dsn)
        return env

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        grpc = self.grpc_port(config)
        spec.ports = [f"{config.port}:{config.port}", f"{grpc}:{grpc}"]
        return spec
