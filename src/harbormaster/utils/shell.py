# src/harbormaster/utils/shell.py

from __future__ import annotations

from typing import Dict, Optional


def shq(v: str) -> str:
    """Single-quote a value for a POSIX shell."""
    return "'" + str(v).replace("'", "'\"'\"'") + "'"


def with_env(cmd: str, env: Optional[Dict[str, str]] = None) -> str:
    """Prefix a command with exported variables."""
    if not env:
        return cmd
    exports = " ".join(f"{k}={shq(str(v))}" for k, v in env.items())
    return f"{exports} {cmd}"


def env_file(service: str, values: Dict[str, str]) -> str:
    """Render a systemd/compose EnvironmentFile body."""
    lines = [f"# {service} environment (managed by harbormaster)"]
    for k in sorted(values):
        lines.append(f"{k}={values[k]}")
    return "\n".join(lines) + "\n"
