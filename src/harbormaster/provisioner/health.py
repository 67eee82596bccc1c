# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/health.py

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Optional

import requests


@dataclass
class CheckResult:
    ok: bool
    error: Optional[str] = None
    status: Optional[int] = None


class HTTPChecker:
    """GET http://<address>:<port><path>; any 2xx is healthy."""

    def __init__(self, path: str = "/health", timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.path = path
        self.timeout = timeout
        # without a shared session each check is a one-shot request
        self.session = session

    def check(self, address: str, port: int) -> CheckResult:
        url = f"http://{address}:{port}{self.path}"
        get = self.session.get if self.session is not None else requests.get
        try:
            resp = get(url, timeout=self.timeout)
        except requests.RequestException as e:
            return CheckResult(ok=False, error=f"GET {url}: {e}")
        if 200 <= resp.status_code < 300:
            return CheckResult(ok=True, status=resp.status_code)
        return CheckResult(ok=False, status=resp.status_code, error=f"GET {url}: HTTP {resp.status_code}")


class TCPChecker:
    """Healthy when a TCP connection to <address>:<port> opens."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def check(self, address: str, port: int) -> CheckResult:
        try:
            with socket.create_connection((address, port), timeout=self.timeout):
                return CheckResult(ok=True)
        except OSError as e:
            return CheckResult(ok=False, error=f"tcp {address}:{port}: {e}")
