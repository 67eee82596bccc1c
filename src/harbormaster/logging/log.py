# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/harbormaster/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
import uuid

from ..config.loader import harbormaster_home

# transport libraries log every channel open at INFO
QUIET_LIBRARIES = ("paramiko", "urllib3")

FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(run)s | %(threadName)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


class RunFilter(logging.Filter):
    """Stamps every record with the short run id so interleaved batch workers can be told apart."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run = run_id[:8]

    def filter(self, record: logging.LogRecord) -> bool:
        record.run = self.run
        return True


def run_log_path(base_dir: Path, name: str, run_id: str) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return base_dir / f"{name}-{ts}-{run_id}.log"


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "harbormaster",
    verbose: bool = False,
    run_id: str | None = None,
) -> tuple[logging.Logger, str, Path]:
    """
    One logger per CLI invocation.

    The file under ``$HARBORMASTER_HOME/logs`` keeps the full DEBUG trace
    with run id and worker thread on every line; the console shows INFO, or
    DEBUG with ``--debug``. Returns the run id so the event observers and
    the JSON event log share it.
    """
    run_id = run_id or str(uuid.uuid4())
    base_dir = base_dir or harbormaster_home() / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_log_path(base_dir, name, run_id)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    datefmt = "%Y-%m-%d %H:%M:%S"
    stamp = RunFilter(run_id)

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.addFilter(stamp)
    fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=datefmt))

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=datefmt))

    logger.addHandler(fh)
    logger.addHandler(ch)

    for lib in QUIET_LIBRARIES:
        logging.getLogger(lib).setLevel(logging.DEBUG if verbose else logging.WARNING)

    logger.debug("run %s started, trace in %s", run_id, log_path)
    return logger, run_id, log_path
