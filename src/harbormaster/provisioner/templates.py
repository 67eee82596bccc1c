# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/templates.py

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATES_DIR = Path(__file__).parent / "assets"


@lru_cache(maxsize=1)
def _env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["tojson"] = lambda v: json.dumps(v)
    return env


def render(name: str, **values) -> str:
    return _env().get_template(name).render(**values)


@dataclass
class HealthCheck:
    test: List[str]
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3


@dataclass
class ComposeSpec:
    service_name: str
    image: str
    port: int = 0
    env_file: Optional[str] = None
    command: Optional[str] = None
    healthcheck: Optional[HealthCheck] = None
    networks: List[str] = field(default_factory=lambda: ["frameworks"])
    ports: List[str] = field(default_factory=list)
    volumes: List[str] = field(default_factory=list)
    extra_hosts: List[str] = field(default_factory=list)


def docker_compose(spec: ComposeSpec) -> str:
    ports = spec.ports or ([f"{spec.port}:{spec.port}"] if spec.port else [])
    return render(
        "docker-compose.yml.j2",
        service_name=spec.service_name,
        image=spec.image,
        command=spec.command,
        env_file=spec.env_file,
        ports=ports,
        volumes=spec.volumes,
        extra_hosts=spec.extra_hosts,
        healthcheck=spec.healthcheck,
        networks=spec.networks,
    )


def systemd_unit(
    *,
    service_name: str,
    exec_start: str,
    description: Optional[str] = None,
    user: str = "frameworks",
    env_file: Optional[str] = None,
    after: Optional[List[str]] = None,
) -> str:
    return render(
        "systemd.service.j2",
        description=description or f"Frameworks {service_name}",
        exec_start=exec_start,
        user=user,
        working_dir=f"/opt/frameworks/{service_name}",
        env_file=env_file,
        after=[f"{a}.target" for a in (after or ["network-online"])],
    )


def caddyfile(
    *,
    root_domain: str,
    routes: Dict[str, int],
    email: str = "",
    listen_address: str = ":80",
    upstream_host: str = "localhost",
) -> str:
    return render(
        "Caddyfile.j2",
        root_domain=root_domain,
        routes=routes,
        email=email,
        listen_address=listen_address,
        upstream_host=upstream_host,
    )
