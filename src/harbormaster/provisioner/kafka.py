# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/kafka.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .infra import InfrastructureProvisioner
from .registry import register
from .templates import ComposeSpec, render, systemd_unit
from ..config.models import Host
from ..deploy.models import ServiceConfig
from ..errors import ConfigurationError
from ..releases.fetcher import ServiceRelease
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")

KAFKA_VERSION = "3.7.1"
SCALA_VERSION = "2.13"


@register("kafka")
class KafkaProvisioner(InfrastructureProvisioner):
    image = "confluentinc/cp-kafka"
    default_tag = "7.6.1"

    @staticmethod
    def broker_id(config: ServiceConfig) -> int:
        bid = config.metadata.get("broker_id")
        if bid is None:
            raise ConfigurationError(f"{config.service_id}: kafka broker_id missing")
        return int(bid)

    @staticmethod
    def zookeeper_connect(config: ServiceConfig) -> str:
        zk = config.metadata.get("zookeeper_connect")
        if not zk:
            raise ConfigurationError(f"{config.service_id}: no zookeeper ensemble to connect to")
        return str(zk)

    @staticmethod
    def replication_factor(config: ServiceConfig) -> int:
        return int(config.metadata.get("replication_factor") or 1)

    def advertised_host(self, host: Host, config: ServiceConfig) -> str:
        return str(config.metadata.get("advertised_host") or host.address or "localhost")

    # ------------------------------------------------------------------
    # container
    # ------------------------------------------------------------------
    def environment(self, host: Host, config: ServiceConfig) -> Dict[str, str]:
        if config.mode != "container":
            return {}
        rf = str(self.replication_factor(config))
        return {
            "KAFKA_BROKER_ID": str(self.broker_id(config)),
            "KAFKA_ZOOKEEPER_CONNECT": self.zookeeper_connect(config),
            "KAFKA_LISTENERS": f"PLAINTEXT://0.0.0.0:{config.port}",
            "KAFKA_ADVERTISED_LISTENERS": f"PLAINTEXT://{self.advertised_host(host, config)}:{config.port}",
            "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR": rf,
            "KAFKA_DEFAULT_REPLICATION_FACTOR": rf,
            "KAFKA_AUTO_CREATE_TOPICS_ENABLE": "false",
        }

    def compose_spec(self, config: ServiceConfig, release: ServiceRelease) -> ComposeSpec:
        spec = super().compose_spec(config, release)
        spec.healthcheck = None
        spec.volumes = [f"/var/lib/frameworks/{config.service_id}:/var/lib/kafka/data"]
        return spec

    # ------------------------------------------------------------------
    # native
    # ------------------------------------------------------------------
    def install_script(self, config: ServiceConfig) -> str:
        archive = f"kafka_{SCALA_VERSION}-{KAFKA_VERSION}"
        return (
            "#!/bin/bash\n"
            "set -e\n"
            "command -v java >/dev/null 2>&1 || "
            "(apt-get update -q && DEBIAN_FRONTEND=noninteractive apt-get install -y -q openjdk-17-jre-headless)\n"
            "if [ ! -x /opt/kafka/bin/kafka-server-start.sh ]; then\n"
            f"  wget -q -O /tmp/kafka.tgz https://archive.apache.org/dist/kafka/{KAFKA_VERSION}/{archive}.tgz\n"
            "  mkdir -p /opt/kafka\n"
            "  tar -xzf /tmp/kafka.tgz -C /opt/kafka --strip-components=1\n"
            "  rm /tmp/kafka.tgz\n"
            "fi\n"
        )

    def configure_native(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext]) -> None:
        svc = config.service_id
        conf_dir = f"/etc/frameworks/{svc}"
        data_dir = f"/var/lib/frameworks/{svc}"
        props = render(
            "server.properties.j2",
            broker_id=self.broker_id(config),
            port=config.port,
            advertised_host=self.advertised_host(host, config),
            data_dir=data_dir,
            zookeeper_connect=self.zookeeper_connect(config),
            replication_factor=self.replication_factor(config),
        )
        self.run_command(host, f"mkdir -p {conf_dir} {data_dir} {self.compose_dir(config)}", ctx)
        self.upload_content(host, props, f"{conf_dir}/server.properties", ctx=ctx)
        unit = systemd_unit(
            service_name=svc,
            exec_start=f"/opt/kafka/bin/kafka-server-start.sh {conf_dir}/server.properties",
            description="Frameworks Kafka broker",
            user="root",
        )
        self.upload_content(host, unit, f"/etc/systemd/system/{self.unit_name(config)}.service", ctx=ctx)

    # ------------------------------------------------------------------
    # topics
    # ------------------------------------------------------------------
    @staticmethod
    def topics(config: ServiceConfig) -> List[Dict[str, object]]:
        return list(config.metadata.get("topics") or [])

    def topics_command(self, config: ServiceConfig) -> str:
        if config.mode == "container":
            return self.exec_in(config, "kafka-topics")
        return "/opt/kafka/bin/kafka-topics.sh"

    def initialize(self, host: Host, config: ServiceConfig, ctx: Optional[RunContext] = None) -> None:
        tool = self.topics_command(config)
        for topic in self.topics(config):
            cmd = (
                f"{tool} --bootstrap-server 127.0.0.1:{config.port} --create --if-not-exists"
                f" --topic {shq(str(topic['name']))}"
                f" --partitions {int(topic.get('partitions') or 1)}"
                f" --replication-factor {int(topic.get('replication_factor') or 1)}"
            )
            self.run_command(host, cmd, ctx)
            log.info("topic %s ensured on %s", topic["name"], host.name)
