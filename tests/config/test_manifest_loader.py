from pathlib import Path
import textwrap

import yaml

from harbormaster.config.loader import load_manifest, save_manifest
from harbormaster.errors import ConfigurationError


MANIFEST = textwrap.dedent("""
    type: central
    profile: production
    channel: stable
    hosts:
      core-1:
        address: 10.0.0.1
        roles: [core]
      edge-1:
        address: 10.0.0.2
        user: ubuntu
        roles: [edge]
    infrastructure:
      postgres:
        enabled: true
        host: core-1
        mode: docker
        databases:
          - name: quartermaster
            owner: qm
    services:
      quartermaster:
        enabled: true
        host: core-1
        version: v1.0.0
      bridge:
        enabled: true
        hosts: [core-1, edge-1]
""")


def _write(tmp_path: Path, text: str) -> Path:
    f = tmp_path / "cluster.yaml"
    f.write_text(text)
    return f


def test_load_manifest_minimal_ok(tmp_path: Path):
    cfg = load_manifest(_write(tmp_path, MANIFEST))
    assert cfg.type == "central"
    assert cfg.cluster_id == "central-production"
    assert cfg.hosts["edge-1"].user == "ubuntu"
    assert cfg.services["bridge"].target_hosts() == ["core-1", "edge-1"]
    assert cfg.services["quartermaster"].primary_host() == "core-1"


def test_host_name_comes_from_map_key(tmp_path: Path):
    cfg = load_manifest(_write(tmp_path, MANIFEST))
    assert cfg.hosts["core-1"].name == "core-1"
    assert cfg.get_host("core-1").address == "10.0.0.1"
    assert cfg.get_host("nope") is None


def test_docker_mode_is_an_alias_for_container(tmp_path: Path):
    cfg = load_manifest(_write(tmp_path, MANIFEST))
    assert cfg.infrastructure.postgres.mode == "container"


def test_env_vars_are_expanded(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("CORE_ADDR", "192.168.1.10")
    text = MANIFEST.replace("10.0.0.1", "${CORE_ADDR}")
    cfg = load_manifest(_write(tmp_path, text))
    assert cfg.hosts["core-1"].address == "192.168.1.10"


def test_missing_manifest_raises(tmp_path: Path):
    try:
        load_manifest(tmp_path / "absent.yaml")
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "manifest not found" in str(e)


def test_unparsable_manifest_raises(tmp_path: Path):
    try:
        load_manifest(_write(tmp_path, "hosts: [unclosed\n"))
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "failed to parse" in str(e)


def test_schema_mismatch_raises(tmp_path: Path):
    try:
        load_manifest(_write(tmp_path, "hosts:\n  core-1:\n    port: not-a-number\n"))
        assert False, "expected ConfigurationError"
    except ConfigurationError as e:
        assert "invalid manifest" in str(e)


def test_save_manifest_round_trips_version_change(tmp_path: Path):
    path = _write(tmp_path, MANIFEST)
    cfg = load_manifest(path)
    assert cfg.set_service_version("quartermaster", "v1.1.0")
    assert not cfg.set_service_version("unknown", "v9")
    save_manifest(path, cfg)

    raw = yaml.safe_load(path.read_text())
    assert raw["services"]["quartermaster"]["version"] == "v1.1.0"
    # host names stay as keys only
    assert "name" not in raw["hosts"]["core-1"]
    assert load_manifest(path).services["quartermaster"].version == "v1.1.0"
    # no temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["cluster.yaml"]
