# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/config/loader.py

import logging
import os
import tempfile
import yaml
from pathlib import Path
from pydantic import ValidationError as PydanticValidationError

from .models import Manifest
from ..errors import ConfigurationError

log = logging.getLogger("harbormaster")


def harbormaster_home() -> Path:
    """Root for session, cache and log files (HARBORMASTER_HOME or ~/.harbormaster)."""
    env = os.environ.get("HARBORMASTER_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".harbormaster"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def load_manifest(path: str | Path) -> Manifest:
    """
    Load and validate a cluster manifest.

    Any of: missing file, unparsable YAML, schema mismatch raises
    ConfigurationError naming the file.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"manifest not found: {path}")

    try:
        data = _load_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"manifest {path} must be a mapping")

    try:
        manifest = Manifest.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"invalid manifest {path}: {e}") from e

    log.debug("Loaded manifest %s (%d hosts)", path, len(manifest.hosts))
    return manifest


def save_manifest(path: str | Path, manifest: Manifest) -> None:
    """
    Write the manifest back to disk atomically.

    The document is written to a sibling temp file and moved into place, so a
    crash mid-write never leaves a truncated manifest behind.
    """
    path = Path(path)
    data = manifest.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    # host names are the map keys
    for host in data.get("hosts", {}).values():
        host.pop("name", None)

    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    log.debug("Saved manifest %s", path)
