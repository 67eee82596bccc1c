import yaml

from harbormaster.provisioner.templates import ComposeSpec, HealthCheck, caddyfile, docker_compose, systemd_unit


def test_compose_renders_valid_yaml():
    text = docker_compose(ComposeSpec(
        service_name="bridge",
        image="frameworks/bridge:1.0.0",
        port=18001,
        env_file="/etc/frameworks/bridge.env",
        healthcheck=HealthCheck(test=["CMD", "curl", "-f", "http://localhost:18001/health"]),
        volumes=["/var/log/frameworks/bridge:/var/log/frameworks"],
    ))
    doc = yaml.safe_load(text)
    svc = doc["services"]["bridge"]
    assert svc["image"] == "frameworks/bridge:1.0.0"
    assert svc["ports"] == ["18001:18001"]
    assert svc["env_file"] == ["/etc/frameworks/bridge.env"]
    assert svc["healthcheck"]["test"] == ["CMD", "curl", "-f", "http://localhost:18001/health"]
    assert doc["networks"]["frameworks"]["external"] is True


def test_compose_explicit_ports_and_command():
    text = docker_compose(ComposeSpec(
        service_name="redis-cache",
        image="redis:7-alpine",
        port=6380,
        command="redis-server /usr/local/etc/redis/redis.conf",
        ports=["6380:6379"],
        extra_hosts=["host.docker.internal:host-gateway"],
    ))
    svc = yaml.safe_load(text)["services"]["redis-cache"]
    assert svc["ports"] == ["6380:6379"]
    assert svc["command"] == "redis-server /usr/local/etc/redis/redis.conf"
    assert svc["extra_hosts"] == ["host.docker.internal:host-gateway"]
    assert "healthcheck" not in svc


def test_systemd_unit():
    unit = systemd_unit(
        service_name="bridge",
        exec_start="/opt/frameworks/bridge/bridge",
        env_file="/etc/frameworks/bridge.env",
    )
    assert "Description=Frameworks bridge" in unit
    assert "After=network-online.target" in unit
    assert "User=frameworks" in unit
    assert "WorkingDirectory=/opt/frameworks/bridge" in unit
    assert "EnvironmentFile=-/etc/frameworks/bridge.env" in unit
    assert "ExecStart=/opt/frameworks/bridge/bridge" in unit


def test_caddyfile_sorts_routes():
    text = caddyfile(root_domain="example.com", routes={"docs": 4322, "api": 18001}, email="ops@example.com")
    assert "email ops@example.com" in text
    assert text.index("api.example.com") < text.index("docs.example.com")
    assert "reverse_proxy localhost:4322" in text
