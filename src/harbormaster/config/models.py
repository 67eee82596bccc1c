# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/config/models.py

from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

Mode = Literal["container", "native"]


def _normalize_mode(value: Optional[str]) -> Optional[str]:
    # older manifests say "docker"
    if value is None or value == "":
        return None
    if value == "docker":
        return "container"
    return value


class Host(BaseModel):
    """A machine the cluster runs on. Immutable for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    address: str
    user: str = "root"
    ssh_key: Optional[str] = None
    port: int = 22
    roles: Tuple[str, ...] = ()
    external_ip: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.address in ("", "localhost", "127.0.0.1")

    @property
    def public_ip(self) -> str:
        return self.external_ip or self.address


class DatabaseSpec(BaseModel):
    name: str
    owner: Optional[str] = None


class PostgresConfig(BaseModel):
    enabled: bool = False
    host: str = ""
    port: int = 5432
    mode: Optional[Mode] = None
    version: Optional[str] = None
    databases: List[DatabaseSpec] = Field(default_factory=list)

    _mode = field_validator("mode", mode="before")(_normalize_mode)


class BrokerSpec(BaseModel):
    id: int
    host: str
    port: int = 9092


class TopicSpec(BaseModel):
    name: str
    partitions: int = 1
    replication_factor: int = 1


class KafkaConfig(BaseModel):
    enabled: bool = False
    mode: Optional[Mode] = None
    version: Optional[str] = None
    brokers: List[BrokerSpec] = Field(default_factory=list)
    topics: List[TopicSpec] = Field(default_factory=list)

    _mode = field_validator("mode", mode="before")(_normalize_mode)


class ZookeeperNode(BaseModel):
    id: int
    host: str
    port: int = 2181


class ZookeeperConfig(BaseModel):
    enabled: bool = False
    mode: Optional[Mode] = None
    version: Optional[str] = None
    ensemble: List[ZookeeperNode] = Field(default_factory=list)

    _mode = field_validator("mode", mode="before")(_normalize_mode)


class ClickHouseConfig(BaseModel):
    enabled: bool = False
    host: str = ""
    port: int = 9000
    http_port: int = 8123
    mode: Optional[Mode] = None
    version: Optional[str] = None
    databases: List[str] = Field(default_factory=list)

    _mode = field_validator("mode", mode="before")(_normalize_mode)


class RedisInstance(BaseModel):
    name: str
    host: str
    port: int = 6379
    password: Optional[str] = None


class RedisConfig(BaseModel):
    enabled: bool = False
    mode: Optional[Mode] = None
    version: Optional[str] = None
    instances: List[RedisInstance] = Field(default_factory=list)

    _mode = field_validator("mode", mode="before")(_normalize_mode)


class InfrastructureConfig(BaseModel):
    postgres: Optional[PostgresConfig] = None
    kafka: Optional[KafkaConfig] = None
    zookeeper: Optional[ZookeeperConfig] = None
    clickhouse: Optional[ClickHouseConfig] = None
    redis: Optional[RedisConfig] = None


class ServiceEntry(BaseModel):
    """One entry of the services / interfaces / observability maps."""

    enabled: bool = False
    host: str = ""
    hosts: List[str] = Field(default_factory=list)
    mode: Optional[Mode] = None
    version: Optional[str] = None
    image: Optional[str] = None
    binary_url: Optional[str] = None
    env_file: Optional[str] = None
    port: Optional[int] = None
    grpc_port: Optional[int] = None
    deploy: Optional[str] = None          # overrides the driver type name

    _mode = field_validator("mode", mode="before")(_normalize_mode)

    def target_hosts(self) -> List[str]:
        if self.host:
            return [self.host]
        return list(self.hosts)

    def primary_host(self) -> str:
        targets = self.target_hosts()
        return targets[0] if targets else ""


SECTIONS = ("services", "interfaces", "observability")


class Manifest(BaseModel):
    type: str = "central"
    profile: str = "production"
    channel: Optional[str] = None
    hosts: Dict[str, Host] = Field(default_factory=dict)
    infrastructure: InfrastructureConfig = Field(default_factory=InfrastructureConfig)
    services: Dict[str, ServiceEntry] = Field(default_factory=dict)
    interfaces: Dict[str, ServiceEntry] = Field(default_factory=dict)
    observability: Dict[str, ServiceEntry] = Field(default_factory=dict)

    @field_validator("hosts", mode="before")
    @classmethod
    def _name_hosts(cls, value):
        # host name is the map key; mirror it onto the model
        if isinstance(value, dict):
            named = {}
            for key, raw in value.items():
                if isinstance(raw, dict):
                    raw = {**raw, "name": raw.get("name") or key}
                named[key] = raw
            return named
        return value

    @property
    def cluster_id(self) -> str:
        return f"{self.type}-{self.profile}"

    def get_host(self, name: str) -> Optional[Host]:
        return self.hosts.get(name)

    def resolved_channel(self) -> str:
        return self.channel or "stable"

    def find_service(self, name: str) -> Optional[Tuple[str, ServiceEntry]]:
        """Look a service up across services, interfaces and observability."""
        for section in SECTIONS:
            entries: Dict[str, ServiceEntry] = getattr(self, section)
            if name in entries:
                return section, entries[name]
        return None

    def set_service_version(
        self,
        name: str,
        version: str,
        *,
        image: Optional[str] = None,
        binary_url: Optional[str] = None,
    ) -> bool:
        """Record a new version for `name`. Image/binary pins already present follow it."""
        found = self.find_service(name)
        if found is None:
            return False
        section, entry = found
        update: Dict[str, object] = {"version": version}
        if entry.image and image:
            update["image"] = image
        if entry.binary_url and binary_url:
            update["binary_url"] = binary_url
        getattr(self, section)[name] = entry.model_copy(update=update)
        return True
