# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/infra.py

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .service import ServiceProvisioner
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..errors import ConfigurationError
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext

log = logging.getLogger("harbormaster")

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def sql_ident(name: str) -> str:
    """Reject anything that is not a plain SQL identifier."""
    if not _IDENT.match(name or ""):
        raise ConfigurationError(f"invalid identifier: {name!r}")
    return name


class InfrastructureProvisioner(ServiceProvisioner):
    """
    Stateful third-party backends. Container mode runs the upstream image,
    native mode installs the distro package and drives it with systemd.

    Subclasses set `image` / `default_tag` and implement `install_script`
    and `configure_native`.
    """

    health_path: Optional[str] = None
    image: str = ""
    default_tag: str = "latest"
    native_unit: Optional[str] = None

    def health_path_for(self, config: ServiceConfig) -> Optional[str]:
        return None

    def image_tag(self, config: ServiceConfig) -> str:
        version = (config.version or "").lstrip("v")
        if version in ("", "latest", "stable", "rc"):
            return self.default_tag
        return version

    def resolve_release(self, config: ServiceConfig, release_name: Optional[str] = None) -> ServiceRelease:
        image = config.image or f"{self.image}:{self.image_tag(config)}"
        return ServiceRelease(name=config.service_id, version=config.version, image=image)

    def unit_name(self, config: ServiceConfig) -> str:
        return self.native_unit or super().unit_name(config)

    def install_script(self, config: ServiceConfig) -> str:
        raise NotImplementedError

    def configure_native(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext]) -> None:
        """Write config files after the package is installed. No-op by default."""
        return None

    def provision_native(
        self, host: Host, config: ServiceConfig, release: ServiceRelease, ctx: Optional[RunContext]
    ) -> None:
        self.run_script(host, self.install_script(config), ctx)
        self.configure_native(host, config, ctx)
        unit = self.unit_name(config)
        self.run_command(
            host,
            f"systemctl daemon-reload && systemctl enable {unit} && systemctl restart {unit}",
            ctx,
        )

    def exec_in(self, config: ServiceConfig, command: str) -> str:
        """Prefix `command` so it runs where the service lives."""
        if config.mode == "container":
            return f"docker exec frameworks-{config.service_id} {command}"
        return command

    @staticmethod
    def apt_install(packages: List[str], probe: str) -> str:
        return (
            "#!/bin/bash\n"
            "set -e\n"
            "export DEBIAN_FRONTEND=noninteractive\n"
            f"if ! command -v {probe} >/dev/null 2>&1; then\n"
            "  apt-get update -q\n"
            f"  apt-get install -y -q {' '.join(packages)}\n"
            "fi\n"
        )
