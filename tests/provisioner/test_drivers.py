from pathlib import Path

from harbormaster.config.models import Host
from harbormaster.deploy.models import RuntimeData, ServiceConfig
from harbormaster.errors import CommandError, ConfigurationError, ValidationError
from harbormaster.execution.runner import CommandResult
from harbormaster.provisioner import health as health_mod
from harbormaster.provisioner.health import CheckResult, HTTPChecker
from harbormaster.provisioner.registry import ProvisionerRegistry, default_registry
from harbormaster.provisioner.service import ServiceProvisioner


class FakeRunner:
    def __init__(self, answers=None):
        self.answers = answers or {}
        self.commands = []
        self.scripts = []
        self.uploads = {}

    def run(self, command, ctx=None):
        self.commands.append(command)
        for prefix, (out, rc) in self.answers.items():
            if command.startswith(prefix):
                return CommandResult(command=command, stdout=out, exit_code=rc)
        # probes find nothing, everything else succeeds
        probe = command.startswith(("cat ", "docker ps", "systemctl show", "ss ", "curl"))
        return CommandResult(command=command, exit_code=1 if probe else 0)

    def run_script(self, script, ctx=None):
        self.scripts.append(script)
        return CommandResult(command="<script>")

    def upload(self, opts, ctx=None):
        self.uploads[opts.remote_path] = (Path(opts.local_path).read_text(), opts.mode)

    def close(self): ...


class FakePool:
    def __init__(self, runner):
        self.runner = runner

    def runner_for(self, host):
        return self.runner


HOST = Host(name="core-1", address="10.0.0.1")


def _driver(type_name, runner, fetcher=None):
    return default_registry().get(type_name, FakePool(runner), fetcher)


def _bridge(**kw):
    values = dict(deploy_name="service", name="bridge", port=18001, image="frameworks/bridge:1.0.0", version="1.0.0")
    values.update(kw)
    return ServiceConfig(**values)


# ----------------- registry -----------------

def test_default_registry_knows_every_driver():
    assert default_registry().types() == [
        "caddy", "clickhouse", "kafka", "postgres", "privateer",
        "quartermaster", "redis", "service", "zookeeper",
    ]


def test_unknown_type_is_a_configuration_error():
    try:
        ProvisionerRegistry().get("nope", FakePool(FakeRunner()))
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "unknown provisioner type: nope" in str(e)


def test_registering_two_classes_under_one_name_fails():
    reg = ProvisionerRegistry()
    reg.add("x", type("A", (ServiceProvisioner,), {}))
    try:
        reg.add("x", type("B", (ServiceProvisioner,), {}))
        assert False, "expected ValueError"
    except ValueError:
        pass


# ----------------- service driver -----------------

def test_container_service_provision_writes_compose_and_inventory():
    runner = FakeRunner()
    _driver("service", runner).provision(HOST, _bridge())

    compose, _ = runner.uploads["/opt/frameworks/bridge/docker-compose.yml"]
    assert "image: frameworks/bridge:1.0.0" in compose
    assert "container_name: frameworks-bridge" in compose
    assert '- "18001:18001"' in compose
    assert "cd /opt/frameworks/bridge && docker compose up -d" in runner.commands
    record, _ = runner.uploads["/var/lib/frameworks/inventory/bridge.json"]
    assert '"version": "1.0.0"' in record
    assert '"mode": "container"' in record


def test_provision_skips_when_already_running():
    runner = FakeRunner({"docker ps": ("running|frameworks/bridge:1.0.0", 0)})
    _driver("service", runner).provision(HOST, _bridge())
    assert runner.uploads == {}
    assert not any("docker compose" in c for c in runner.commands)


def test_force_reprovisions_a_running_service():
    runner = FakeRunner({"docker ps": ("running|frameworks/bridge:1.0.0", 0)})
    _driver("service", runner).provision(HOST, _bridge(force=True))
    assert "/opt/frameworks/bridge/docker-compose.yml" in runner.uploads


def test_native_service_installs_binary_and_unit():
    runner = FakeRunner()
    cfg = _bridge(mode="native", image=None, binary_url="https://example.invalid/bridge.tgz")
    _driver("service", runner).provision(HOST, cfg)

    assert 'wget -q -O /tmp/bridge.tar.gz "https://example.invalid/bridge.tgz"' in runner.scripts[0]
    unit, _ = runner.uploads["/etc/systemd/system/frameworks-bridge.service"]
    assert "ExecStart=/opt/frameworks/bridge/bridge" in unit
    assert "systemctl daemon-reload && systemctl enable frameworks-bridge && systemctl restart frameworks-bridge" in runner.commands


def test_unsupported_mode_is_rejected():
    try:
        _driver("service", FakeRunner()).provision(HOST, _bridge(mode="vm"))
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "unsupported mode: vm" in str(e)


def test_missing_image_and_release_source_is_a_configuration_error():
    try:
        _driver("service", FakeRunner()).provision(HOST, _bridge(image=None))
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "no release source" in str(e)


def test_failed_command_raises_command_error_with_output():
    runner = FakeRunner({"cd /opt/frameworks/bridge && docker compose pull": ("", 1)})
    try:
        _driver("service", runner).provision(HOST, _bridge())
        assert False, "expected CommandError"
    except CommandError as e:
        assert e.exit_code == 1
        assert e.host == "core-1"


def test_cleanup_stops_and_forgets_the_service():
    runner = FakeRunner()
    _driver("service", runner).cleanup(HOST, _bridge())
    assert runner.commands == [
        "cd /opt/frameworks/bridge && docker compose down",
        "rm -f '/var/lib/frameworks/inventory/bridge.json'",
    ]


def test_validate_raises_on_unhealthy_endpoint(monkeypatch):
    driver = _driver("service", FakeRunner())
    monkeypatch.setattr(driver, "check_health", lambda host, cfg: CheckResult(ok=False, error="HTTP 503"))
    try:
        driver.validate(HOST, _bridge())
        assert False, "expected ValidationError"
    except ValidationError as e:
        assert "bridge health check failed: HTTP 503" in str(e)


# ----------------- control plane / mesh -----------------

def test_privateer_requires_an_enrollment_token():
    cfg = ServiceConfig(deploy_name="privateer", name="privateer", mode="native", binary_url="https://x/p.tgz")
    try:
        _driver("privateer", FakeRunner()).provision(HOST, cfg)
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "enrollment token" in str(e)


def test_privateer_env_carries_runtime_values():
    runner = FakeRunner()
    cfg = ServiceConfig(
        deploy_name="privateer", name="privateer", mode="native", port=18012,
        binary_url="https://x/p.tgz",
        runtime=RuntimeData(enrollment_token="enroll-1", control_plane_grpc_addr="10.0.0.1:19002", cluster_id="central-production"),
    )
    _driver("privateer", runner).provision(HOST, cfg)

    env, mode = runner.uploads["/etc/frameworks/privateer.env"]
    assert "ENROLLMENT_TOKEN=enroll-1" in env
    assert "QUARTERMASTER_GRPC_ADDR=10.0.0.1:19002" in env
    assert "NODE_ID=core-1" in env
    assert mode == 0o600


# ----------------- infrastructure -----------------

def test_postgres_initialize_creates_missing_roles_and_databases():
    runner = FakeRunner({
        "sudo -u postgres psql -p 5432 -tAc 'SELECT 1 FROM pg_roles WHERE rolname='\"'\"'qm'": ("1", 0),
        "sudo -u postgres psql -p 5432 -tAc 'SELECT 1 FROM pg_database WHERE datname='\"'\"'purser'": ("1", 0),
    })
    cfg = ServiceConfig(
        deploy_name="postgres", name="postgres", mode="native", port=5432,
        metadata={"databases": [{"name": "quartermaster", "owner": "qm"}, {"name": "purser", "owner": "qm"}]},
    )
    _driver("postgres", runner).initialize(HOST, cfg)

    creates = [c for c in runner.commands if "CREATE" in c]
    assert creates == [
        "sudo -u postgres psql -p 5432 -tAc 'CREATE DATABASE \"quartermaster\" OWNER \"qm\"'",
    ]


def test_postgres_rejects_unsafe_identifiers():
    cfg = ServiceConfig(
        deploy_name="postgres", name="postgres", mode="native", port=5432,
        metadata={"databases": [{"name": "x; DROP TABLE y"}]},
    )
    try:
        _driver("postgres", FakeRunner()).initialize(HOST, cfg)
        assert False, "expected ConfigurationError"
    except ConfigurationError:
        pass


def test_kafka_initialize_creates_topics_idempotently():
    runner = FakeRunner()
    cfg = ServiceConfig(
        deploy_name="kafka", name="kafka", mode="container", port=9092,
        metadata={"broker_id": 1, "zookeeper_connect": "10.0.0.1:2181",
                  "topics": [{"name": "analytics_events", "partitions": 3, "replication_factor": 1}]},
    )
    _driver("kafka", runner).initialize(HOST, cfg)
    topic_cmds = [c for c in runner.commands if "kafka-topics" in c]
    assert len(topic_cmds) == 1
    assert "--if-not-exists" in topic_cmds[0]
    assert "--topic 'analytics_events'" in topic_cmds[0]
    assert topic_cmds[0].startswith("docker exec frameworks-kafka ")


def test_clickhouse_initialize_creates_databases():
    runner = FakeRunner()
    cfg = ServiceConfig(deploy_name="clickhouse", name="clickhouse", mode="native", port=9000,
                        metadata={"databases": ["periscope"]})
    _driver("clickhouse", runner).initialize(HOST, cfg)
    assert any("CREATE DATABASE IF NOT EXISTS periscope" in c for c in runner.commands)


def test_zookeeper_writes_myid_and_servers():
    runner = FakeRunner()
    cfg = ServiceConfig(
        deploy_name="zookeeper", name="zookeeper", mode="container", port=2181,
        metadata={"server_id": 2, "servers": ["server.1=10.0.0.1:2888:3888", "server.2=10.0.0.2:2888:3888"]},
    )
    _driver("zookeeper", runner).provision(HOST, cfg)

    zoo = next(content for path, (content, _) in runner.uploads.items() if path.endswith("zoo.cfg"))
    assert "clientPort=2181" in zoo
    assert "server.2=10.0.0.2:2888:3888" in zoo
    myid = next(content for path, (content, _) in runner.uploads.items() if path.endswith("myid"))
    assert myid.strip() == "2"


def test_redis_instance_config_has_password():
    runner = FakeRunner()
    cfg = ServiceConfig(deploy_name="redis", name="redis-cache", mode="native", port=6380,
                        metadata={"password": "s3cret"})
    _driver("redis", runner).provision(HOST, cfg)
    conf, _ = runner.uploads["/etc/frameworks/redis-cache/redis.conf"]
    assert "port 6380" in conf
    assert "requirepass s3cret" in conf


def test_caddy_renders_local_routes():
    runner = FakeRunner()
    cfg = ServiceConfig(deploy_name="caddy", name="caddy", mode="native", port=18090,
                        metadata={"routes": {"api": 18001, "app": 3000}, "root_domain": "example.com"})
    _driver("caddy", runner).provision(HOST, cfg)
    caddyfile, _ = runner.uploads["/etc/caddy/Caddyfile"]
    assert "api.example.com {" in caddyfile
    assert "reverse_proxy localhost:18001" in caddyfile
    assert "app.example.com {" in caddyfile


class ComposeHost(FakeRunner):
    """Reports the container as running once `docker compose up -d` has run."""

    def __init__(self):
        super().__init__()
        self.up = False
        self.upload_count = 0

    def run(self, command, ctx=None):
        if self.up and command.startswith("docker ps"):
            self.commands.append(command)
            return CommandResult(command=command, stdout="running|frameworks/bridge:1.0.0")
        res = super().run(command, ctx)
        if command.endswith("docker compose up -d"):
            self.up = True
        return res

    def upload(self, opts, ctx=None):
        self.upload_count += 1
        super().upload(opts, ctx)


def test_provisioning_twice_has_one_side_effect():
    runner = ComposeHost()
    driver = _driver("service", runner)

    driver.provision(HOST, _bridge())
    uploads_after_first = runner.upload_count
    driver.provision(HOST, _bridge())

    assert [c for c in runner.commands if c.endswith("docker compose up -d")] == [
        "cd /opt/frameworks/bridge && docker compose up -d",
    ]
    assert runner.upload_count == uploads_after_first


def test_forced_privateer_reuses_installed_enrollment():
    runner = FakeRunner({
        "cat '/etc/frameworks/privateer.env'": (
            "# privateer environment (managed by harbormaster)\n"
            "ENROLLMENT_TOKEN=enroll-old\nCLUSTER_ID=central-production\nNODE_ID=core-1\n",
            0,
        ),
    })
    cfg = ServiceConfig(deploy_name="privateer", name="privateer", mode="native", port=18012,
                        binary_url="https://x/p.tgz", force=True)
    _driver("privateer", runner).provision(HOST, cfg)

    env, _ = runner.uploads["/etc/frameworks/privateer.env"]
    assert "ENROLLMENT_TOKEN=enroll-old" in env
    assert "CLUSTER_ID=central-production" in env


def test_unforced_privateer_does_not_look_for_old_enrollment():
    runner = FakeRunner()
    cfg = ServiceConfig(deploy_name="privateer", name="privateer", mode="native", binary_url="https://x/p.tgz")
    try:
        _driver("privateer", runner).provision(HOST, cfg)
        assert False, "expected ConfigurationError"
    except ConfigurationError:
        pass
    assert not any(c.startswith("cat ") for c in runner.commands)


def test_quartermaster_env_carries_database_url():
    runner = FakeRunner()
    cfg = ServiceConfig(deploy_name="quartermaster", name="quartermaster", port=18002, grpc_port=19002,
                        image="frameworks/quartermaster:1.0.0", version="1.0.0",
                        metadata={"database_url": "postgres://qm@10.0.0.1:5432/quartermaster?sslmode=disable"})
    _driver("quartermaster", runner).provision(HOST, cfg)

    env, _ = runner.uploads["/etc/frameworks/quartermaster.env"]
    assert "DATABASE_URL=postgres://qm@10.0.0.1:5432/quartermaster?sslmode=disable" in env
    assert "GRPC_PORT=19002" in env


def test_http_check_without_session_is_a_single_request(monkeypatch):
    seen = []

    class Resp:
        status_code = 200

    monkeypatch.setattr(health_mod.requests, "get", lambda url, timeout: seen.append(url) or Resp())
    monkeypatch.setattr(health_mod.requests, "Session", lambda: seen.append("session"))

    for _ in range(3):
        assert HTTPChecker(path="/health").check("10.0.0.1", 18001).ok

    assert seen == ["http://10.0.0.1:18001/health"] * 3
