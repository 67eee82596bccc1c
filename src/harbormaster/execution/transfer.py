# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/execution/transfer.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .pool import ConnectionConfig, SSHPool
from .runner import UploadOptions
from ..config.models import Manifest
from ..errors import ConfigurationError
from ..utils.execution import RunContext

log = logging.getLogger("harbormaster")


def upload(
    pool: SSHPool,
    conn: ConnectionConfig,
    opts: UploadOptions,
    ctx: Optional[RunContext] = None,
) -> None:
    """Move a single file to a remote host (remote directory is created first)."""
    if not Path(opts.local_path).is_file():
        raise ConfigurationError(f"local file not found: {opts.local_path}")
    pool.get(conn).upload(opts, ctx)


def distribute_file(
    manifest: Manifest,
    pool: SSHPool,
    local_path: str | Path,
    remote_path: str,
    roles: Iterable[str],
    *,
    mode: int = 0o644,
    ctx: Optional[RunContext] = None,
) -> List[str]:
    """
    Upload shared reference data (GeoIP database, certificates...) to every
    host carrying one of `roles`. Returns the names of hosts written, sorted.
    """
    if not Path(local_path).is_file():
        raise ConfigurationError(f"local file not found: {local_path}")

    wanted = set(roles)
    uploaded: List[str] = []
    for name in sorted(manifest.hosts):
        host = manifest.hosts[name]
        if wanted and not wanted.intersection(host.roles):
            continue
        opts = UploadOptions(local_path=str(local_path), remote_path=remote_path, mode=mode)
        log.info("Uploading %s to %s:%s", local_path, name, remote_path)
        pool.runner_for(host).upload(opts, ctx)
        uploaded.append(name)
    return uploaded
