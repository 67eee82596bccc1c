# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/detect/detector.py

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

from .. import catalog
from ..errors import DetectionError
from ..execution.runner import Runner, TransportError
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")

INVENTORY_DIR = "/var/lib/frameworks/inventory"


class Signal(IntEnum):
    """Detection signals, ranked. Higher outranks lower when they disagree."""

    PORT = 1
    CONTAINER = 2
    SUPERVISOR = 3
    INVENTORY = 4
    HEALTH = 5
    PROTOCOL = 6

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class ServiceState:
    exists: bool = False
    running: bool = False
    mode: Optional[str] = None
    version: Optional[str] = None
    detected_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Observation:
    """What one signal saw. None on a field means the signal says nothing about it."""

    signal: Signal
    exists: Optional[bool] = None
    running: Optional[bool] = None
    version: Optional[str] = None
    mode: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# distro packages install under their own unit names
_NATIVE_UNITS = {
    "postgres": "postgresql",
    "clickhouse": "clickhouse-server",
}


def inventory_path(service_id: str) -> str:
    return f"{INVENTORY_DIR}/{service_id}.json"


def combine(observations: List[Observation]) -> ServiceState:
    """
    Fold signal observations into one state.

    exists is true when any signal confirms presence; running, version and
    mode each come from the highest-ranked signal that reported them.
    """
    ranked = sorted(observations, key=lambda o: o.signal, reverse=True)
    confirming = [o for o in ranked if o.exists]
    if not confirming:
        return ServiceState(exists=False, running=False)

    def first(attr: str):
        for o in ranked:
            value = getattr(o, attr)
            if value is not None:
                return value
        return None

    metadata: Dict[str, Any] = {}
    for o in reversed(ranked):
        metadata.update(o.metadata)
    metadata["signals"] = [o.signal.label for o in confirming]

    return ServiceState(
        exists=True,
        running=bool(first("running")),
        mode=first("mode"),
        version=first("version"),
        detected_by=confirming[0].signal.label,
        metadata=metadata,
    )


def _image_version(image: str) -> Optional[str]:
    if "@" in image:
        return None
    name, _, tag = image.rpartition(":")
    if not name or "/" in tag or tag in ("", "latest"):
        return None
    return tag


class Detector:
    """
    Works out whether a service is present on the host behind `runner`.

    One pass per call, no retries, nothing cached. Raises DetectionError
    when the host cannot be interrogated; returns exists=False when every
    signal came back clean and negative.
    """

    def __init__(self, runner: Runner):
        self.runner = runner

    def detect(
        self,
        service_id: str,
        ctx: Optional[RunContext] = None,
        *,
        port: Optional[int] = None,
        kind: Optional[str] = None,
    ) -> ServiceState:
        kind = kind or self._kind_for(service_id)
        entry = catalog.lookup(kind) or catalog.lookup(service_id)
        if port is None and entry is not None:
            port = entry.port or None
        health_path = entry.health_path if entry is not None else "/health"

        probes: List[Callable[[], Optional[Observation]]] = [
            lambda: self._inventory(service_id, ctx),
            lambda: self._container(service_id, ctx),
            lambda: self._supervisor(service_id, kind, ctx),
        ]
        if port:
            probes.append(lambda: self._port(port, ctx))
            if health_path:
                probes.append(lambda: self._health(port, health_path, ctx))
        if catalog.is_infrastructure(kind):
            probes.append(lambda: self._protocol(kind, port, ctx))

        observations: List[Observation] = []
        for probe in probes:
            try:
                obs = probe()
            except TransportError as e:
                raise DetectionError(f"cannot interrogate host for {service_id}: {e}") from e
            if obs is not None:
                observations.append(obs)

        state = combine(observations)
        log.debug(
            "detect %s: exists=%s running=%s version=%s by=%s",
            service_id, state.exists, state.running, state.version, state.detected_by,
        )
        return state

    @staticmethod
    def _kind_for(service_id: str) -> str:
        if catalog.lookup(service_id) is not None:
            return service_id
        for prefix in ("redis-", "zookeeper-", "kafka-broker-"):
            if service_id.startswith(prefix):
                return prefix.split("-")[0]
        return service_id

    # ------------------------------------------------------------------
    # signals
    # ------------------------------------------------------------------
    def _inventory(self, service_id: str, ctx) -> Optional[Observation]:
        res = self.runner.run(f"cat {shq(inventory_path(service_id))} 2>/dev/null", ctx)
        if not res.ok or not res.stdout:
            return None
        try:
            record = json.loads(res.stdout)
        except ValueError:
            log.debug("ignoring unreadable inventory record for %s", service_id)
            return None
        return Observation(
            Signal.INVENTORY,
            exists=True,
            version=record.get("version") or None,
            mode=record.get("mode") or None,
            metadata={"inventory": record},
        )

    def _container(self, service_id: str, ctx) -> Optional[Observation]:
        name = f"frameworks-{service_id}"
        res = self.runner.run(
            f"docker ps -a --filter name=^{name}$ --format '{{{{.State}}}}|{{{{.Image}}}}'",
            ctx,
        )
        if not res.ok or not res.stdout:
            return None
        state, _, image = res.stdout.splitlines()[0].partition("|")
        return Observation(
            Signal.CONTAINER,
            exists=True,
            running=state.strip() == "running",
            mode="container",
            version=_image_version(image.strip()),
            metadata={"container": name, "image": image.strip()},
        )

    def _supervisor(self, service_id: str, kind: str, ctx) -> Optional[Observation]:
        unit = _NATIVE_UNITS.get(kind, f"frameworks-{service_id}")
        res = self.runner.run(f"systemctl show {shq(unit)} -p LoadState -p ActiveState", ctx)
        if not res.ok:
            return None
        props = dict(line.split("=", 1) for line in res.stdout.splitlines() if "=" in line)
        if props.get("LoadState") != "loaded":
            return None
        return Observation(
            Signal.SUPERVISOR,
            exists=True,
            running=props.get("ActiveState") == "active",
            mode="native",
            metadata={"unit": unit},
        )

    def _port(self, port: int, ctx) -> Optional[Observation]:
        res = self.runner.run(f"ss -ltnH 'sport = :{port}'", ctx)
        if not res.ok or not res.stdout.strip():
            return None
        return Observation(Signal.PORT, exists=True, running=True, metadata={"port": port})

    def _health(self, port: int, path: str, ctx) -> Optional[Observation]:
        res = self.runner.run(f"curl -fsS -m 3 http://127.0.0.1:{port}{path}", ctx)
        if not res.ok:
            # a failed probe says nothing; the process may still be starting
            return None
        version = None
        try:
            body = json.loads(res.stdout)
            if isinstance(body, dict):
                version = body.get("version") or None
        except ValueError:
            pass
        return Observation(Signal.HEALTH, exists=True, running=True, version=version)

    def _protocol(self, kind: str, port: Optional[int], ctx) -> Optional[Observation]:
        port = port or catalog.default_port(kind)
        if kind == "postgres":
            cmd = f"sudo -u postgres psql -p {port} -tAc 'SHOW server_version'"
        elif kind == "redis":
            cmd = f"redis-cli -p {port} INFO server"
        elif kind == "zookeeper":
            cmd = f"echo srvr | nc -w 2 127.0.0.1 {port}"
        elif kind == "kafka":
            cmd = f"/opt/kafka/bin/kafka-broker-api-versions.sh --bootstrap-server 127.0.0.1:{port}"
        elif kind == "clickhouse":
            cmd = f"clickhouse-client --port {port} -q 'SELECT version()'"
        else:
            return None

        res = self.runner.run(cmd, ctx)
        if not res.ok or not res.stdout.strip():
            return None
        return Observation(
            Signal.PROTOCOL,
            exists=True,
            running=True,
            version=_protocol_version(kind, res.stdout),
        )


def _protocol_version(kind: str, out: str) -> Optional[str]:
    if kind == "postgres":
        return out.split()[0]
    if kind == "clickhouse":
        return out.strip().splitlines()[0]
    if kind == "redis":
        m = re.search(r"^redis_version:(\S+)", out, re.M)
        return m.group(1) if m else None
    if kind == "zookeeper":
        m = re.search(r"Zookeeper version: ([0-9][^-,\s]*)", out)
        return m.group(1) if m else None
    return None
