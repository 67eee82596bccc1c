# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/releases/fetcher.py

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import requests
import yaml
from pydantic import BaseModel, Field

from ..config.loader import harbormaster_home
from ..errors import ConfigurationError, HarbormasterError

log = logging.getLogger("harbormaster")

DEFAULT_REPOSITORY = "https://raw.githubusercontent.com/Livepeer-FrameWorks/gitops/main"
CHANNELS = ("stable", "rc")

_SEMVER = re.compile(r"^\d+\.\d+\.\d+")


class ReleaseFetchError(HarbormasterError):
    pass


# ---------------------------------------------------------------------
# Release manifest document
# ---------------------------------------------------------------------
class ReleaseService(BaseModel):
    name: str
    service_version: str = ""
    image: str = ""
    digest: str = ""


class ReleaseInterface(BaseModel):
    name: str
    image: str = ""
    digest: str = ""


class Artifact(BaseModel):
    arch: str
    file: str = ""
    url: str = ""


class NativeBinary(BaseModel):
    name: str
    artifacts: List[Artifact] = Field(default_factory=list)


@dataclass
class ServiceRelease:
    name: str
    version: str = ""
    image: str = ""
    digest: str = ""
    binaries: Dict[str, str] = field(default_factory=dict)

    @property
    def full_image(self) -> str:
        if self.image and self.digest:
            return f"{self.image}@{self.digest}"
        return self.image

    def binary_url(self, os_name: str = "linux", arch: str = "amd64") -> str:
        if "*" in self.binaries:
            return self.binaries["*"]
        key = f"{os_name}-{arch}"
        if key not in self.binaries:
            raise ReleaseFetchError(f"binary for {self.name} not available for {key}")
        return self.binaries[key]


class ReleaseManifest(BaseModel):
    platform_version: str = ""
    services: List[ReleaseService] = Field(default_factory=list)
    interfaces: List[ReleaseInterface] = Field(default_factory=list)
    native_binaries: List[NativeBinary] = Field(default_factory=list)

    def _binaries(self, name: str) -> Dict[str, str]:
        for nb in self.native_binaries:
            if nb.name == name:
                # prefer URL, fall back to file name
                return {a.arch: (a.url or a.file) for a in nb.artifacts}
        return {}

    def service_info(self, name: str) -> ServiceRelease:
        for svc in self.services:
            if svc.name == name:
                return ServiceRelease(
                    name=svc.name,
                    version=svc.service_version or self.platform_version,
                    image=svc.image,
                    digest=svc.digest,
                    binaries=self._binaries(name),
                )
        for iface in self.interfaces:
            if iface.name == name:
                return ServiceRelease(
                    name=iface.name,
                    version=self.platform_version,
                    image=iface.image,
                    digest=iface.digest,
                )
        for nb in self.native_binaries:
            if nb.name == name:
                return ServiceRelease(
                    name=nb.name,
                    version=self.platform_version,
                    binaries=self._binaries(name),
                )
        raise ReleaseFetchError(f"service {name} not found in release manifest {self.platform_version}")


# ---------------------------------------------------------------------
# Version resolution
# ---------------------------------------------------------------------
def normalize_version(version: str) -> str:
    if version in ("", "latest"):
        return "latest"
    if version in CHANNELS or version.startswith("v"):
        return version
    if _SEMVER.match(version):
        return "v" + version
    return version


def resolve_version(version: str) -> Tuple[str, str]:
    """Map a user-supplied version/channel string to (channel, version)."""
    if not version or version == "latest":
        return "stable", "latest"
    if version.startswith("v"):
        return "stable", version
    if version in CHANNELS:
        return version, "latest"
    return "stable", normalize_version(version)


class ReleaseFetcher(Protocol):
    def fetch(self, channel: str, version: str) -> ReleaseManifest: ...


# ---------------------------------------------------------------------
# Repository-backed fetcher
# ---------------------------------------------------------------------
class RepositoryFetcher:
    """
    Reads release manifests from a gitops repository.

    Layout: `channels/<channel>.yaml` points at `releases/<version>.yaml`.
    The repository is an HTTP base URL or a local directory. Results are
    cached under <home>/cache/releases/<channel>/<version>.yaml.
    """

    def __init__(
        self,
        repository: Optional[str] = None,
        *,
        cache_dir: Optional[Path] = None,
        latest_ttl: float = 15 * 60,
        pinned_ttl: float = 24 * 3600,
        retries: int = 3,
        retry_delay: float = 0.25,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.repository = (repository or os.environ.get("HARBORMASTER_RELEASES") or DEFAULT_REPOSITORY).rstrip("/")
        self.cache_dir = cache_dir or (harbormaster_home() / "cache" / "releases")
        self.latest_ttl = latest_ttl
        self.pinned_ttl = pinned_ttl
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def is_local(self) -> bool:
        return self.repository.startswith(("/", ".", "~"))

    def fetch(self, channel: str, version: str) -> ReleaseManifest:
        channel = channel or "stable"
        version = normalize_version(version)
        ttl = self.latest_ttl if version == "latest" else self.pinned_ttl

        cached = self._load_cache(channel, version)
        if cached is not None and time.time() - cached[1] <= ttl:
            return cached[0]

        try:
            data = self._fetch_local(channel, version) if self.is_local else self._fetch_remote(channel, version)
            manifest = ReleaseManifest.model_validate(data)
        except (ReleaseFetchError, yaml.YAMLError, ValueError) as e:
            if cached is not None:
                log.warning("Using stale cached release manifest %s/%s: %s", channel, version, e)
                return cached[0]
            raise ReleaseFetchError(f"failed to fetch release manifest {channel}/{version}: {e}") from e

        self._save_cache(channel, version, manifest)
        return manifest

    # -- remote ---------------------------------------------------------
    def _get(self, url: str) -> str:
        last: Optional[str] = None
        for attempt in range(1, self.retries + 1):
            try:
                resp = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                last = f"failed to download {url}: {e}"
            else:
                if resp.status_code == 200:
                    return resp.text
                last = f"fetch failed: {url} (HTTP {resp.status_code})"
                if resp.status_code != 429 and resp.status_code < 500:
                    break
            if attempt < self.retries:
                time.sleep(self.retry_delay * attempt)
        raise ReleaseFetchError(last or f"failed to download {url}")

    def _fetch_remote(self, channel: str, version: str) -> dict:
        if version == "latest":
            pointer = yaml.safe_load(self._get(f"{self.repository}/channels/{channel}.yaml")) or {}
            path = pointer.get("manifest")
            if not path:
                raise ReleaseFetchError(f"channel pointer {channel} has no manifest path")
            return yaml.safe_load(self._get(f"{self.repository}/{path}")) or {}
        return yaml.safe_load(self._get(f"{self.repository}/releases/{version}.yaml")) or {}

    # -- local ----------------------------------------------------------
    def _fetch_local(self, channel: str, version: str) -> dict:
        root = Path(self.repository).expanduser()
        if version == "latest":
            target = None
            pointer_file = root / "channels" / f"{channel}.yaml"
            if pointer_file.is_file():
                pointer = yaml.safe_load(pointer_file.read_text()) or {}
                if pointer.get("manifest"):
                    target = root / pointer["manifest"]
            if target is None:
                releases = sorted((root / "releases").glob("*.yaml"))
                if not releases:
                    raise ReleaseFetchError(f"no release manifests found in {root / 'releases'}")
                target = releases[-1]
        else:
            target = root / "releases" / f"{version}.yaml"
        if not target.is_file():
            raise ReleaseFetchError(f"release manifest not found: {target}")
        return yaml.safe_load(target.read_text()) or {}

    # -- cache ----------------------------------------------------------
    def _cache_paths(self, channel: str, version: str) -> Tuple[Path, Path]:
        d = self.cache_dir / channel
        return d / f"{version}.yaml", d / f"{version}.meta.json"

    def _load_cache(self, channel: str, version: str) -> Optional[Tuple[ReleaseManifest, float]]:
        path, meta = self._cache_paths(channel, version)
        if not path.is_file():
            return None
        try:
            manifest = ReleaseManifest.model_validate(yaml.safe_load(path.read_text()) or {})
        except (yaml.YAMLError, ValueError):
            return None
        try:
            fetched_at = json.loads(meta.read_text())["fetched_at"]
        except (OSError, ValueError, KeyError):
            fetched_at = path.stat().st_mtime
        return manifest, fetched_at

    def _save_cache(self, channel: str, version: str, manifest: ReleaseManifest) -> None:
        path, meta = self._cache_paths(channel, version)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(manifest.model_dump(), sort_keys=False))
            meta.write_text(json.dumps({"fetched_at": time.time()}))
        except OSError as e:
            log.warning("Failed to cache release manifest: %s", e)


def require_release(fetcher: Optional[ReleaseFetcher]) -> ReleaseFetcher:
    if fetcher is None:
        raise ConfigurationError("no release manifest source configured")
    return fetcher
