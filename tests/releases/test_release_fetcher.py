from pathlib import Path
import textwrap

from harbormaster.errors import ConfigurationError
from harbormaster.releases.fetcher import (
    ReleaseFetchError,
    RepositoryFetcher,
    normalize_version,
    require_release,
    resolve_version,
)

RELEASE = textwrap.dedent("""
    platform_version: v1.2.0
    services:
      - name: bridge
        service_version: 1.2.3
        image: frameworks/bridge
        digest: sha256:abc
      - name: commodore
        image: frameworks/commodore
    interfaces:
      - name: chartroom
        image: frameworks/chartroom
    native_binaries:
      - name: bridge
        artifacts:
          - arch: linux-amd64
            url: https://example.invalid/bridge-linux-amd64.tgz
""")


def _repo(tmp_path: Path) -> Path:
    root = tmp_path / "gitops"
    (root / "releases").mkdir(parents=True)
    (root / "channels").mkdir()
    (root / "releases" / "v1.2.0.yaml").write_text(RELEASE)
    (root / "releases" / "v1.1.0.yaml").write_text("platform_version: v1.1.0\n")
    (root / "channels" / "stable.yaml").write_text("manifest: releases/v1.2.0.yaml\n")
    return root


def _fetcher(tmp_path: Path) -> RepositoryFetcher:
    return RepositoryFetcher(str(_repo(tmp_path)), cache_dir=tmp_path / "cache")


def test_resolve_version():
    assert resolve_version("") == ("stable", "latest")
    assert resolve_version("rc") == ("rc", "latest")
    assert resolve_version("1.2.0") == ("stable", "v1.2.0")
    assert resolve_version("v1.2.0") == ("stable", "v1.2.0")
    assert normalize_version("latest") == "latest"


def test_latest_follows_channel_pointer(tmp_path: Path):
    manifest = _fetcher(tmp_path).fetch("stable", "latest")
    assert manifest.platform_version == "v1.2.0"

    bridge = manifest.service_info("bridge")
    assert bridge.version == "1.2.3"
    assert bridge.full_image == "frameworks/bridge@sha256:abc"
    assert bridge.binary_url("linux", "amd64") == "https://example.invalid/bridge-linux-amd64.tgz"

    # services without their own version inherit the platform version
    assert manifest.service_info("commodore").version == "v1.2.0"
    assert manifest.service_info("chartroom").image == "frameworks/chartroom"


def test_pinned_version(tmp_path: Path):
    assert _fetcher(tmp_path).fetch("stable", "1.1.0").platform_version == "v1.1.0"


def test_unknown_service_and_missing_release(tmp_path: Path):
    fetcher = _fetcher(tmp_path)
    try:
        fetcher.fetch("stable", "latest").service_info("nope")
        assert False, "expected ReleaseFetchError"
    except ReleaseFetchError as e:
        assert "nope" in str(e)
    try:
        fetcher.fetch("stable", "v9.9.9")
        assert False, "expected ReleaseFetchError"
    except ReleaseFetchError as e:
        assert "v9.9.9" in str(e)


def test_cached_manifest_is_used_when_repository_disappears(tmp_path: Path):
    root = _repo(tmp_path)
    cache = tmp_path / "cache"
    RepositoryFetcher(str(root), cache_dir=cache).fetch("stable", "v1.2.0")
    (root / "releases" / "v1.2.0.yaml").unlink()

    # expired cache is still better than nothing
    manifest = RepositoryFetcher(str(root), cache_dir=cache, pinned_ttl=0).fetch("stable", "v1.2.0")
    assert manifest.platform_version == "v1.2.0"


def test_require_release():
    try:
        require_release(None)
        assert False, "expected ConfigurationError"
    except ConfigurationError:
        pass
