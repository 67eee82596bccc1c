# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/execution/ssh.py

from __future__ import annotations

import logging
import os
import socket
import time
from typing import Optional

import paramiko

from .runner import CommandResult, TransportError, UploadOptions, TIMEOUT_EXIT_CODE, _timeout_for
from ..utils.execution import RunContext
from ..utils.shell import shq

log = logging.getLogger("harbormaster")


class SSHRunner:
    """Runs commands on a remote host over an established paramiko session."""

    def __init__(self, client: paramiko.SSHClient, address: str = ""):
        self.client = client
        self.address = address

    def run(self, command: str, ctx: Optional[RunContext] = None) -> CommandResult:
        timeout = _timeout_for(ctx)
        start = time.monotonic()
        log.debug("(%s) $ %s", self.address, command)
        try:
            stdin, stdout, stderr = self.client.exec_command(command, timeout=timeout)
            out = stdout.read().decode("utf-8", "replace")
            err = stderr.read().decode("utf-8", "replace")
            rc = stdout.channel.recv_exit_status()
        except socket.timeout:
            return CommandResult(
                command=command,
                stderr=f"command timed out after {timeout:.0f}s" if timeout else "command timed out",
                exit_code=TIMEOUT_EXIT_CODE,
                duration=time.monotonic() - start,
            )
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"ssh channel to {self.address} failed: {e}") from e

        return CommandResult(
            command=command,
            stdout=out.strip(),
            stderr=err.strip(),
            exit_code=rc,
            duration=time.monotonic() - start,
        )

    def run_script(self, script: str, ctx: Optional[RunContext] = None) -> CommandResult:
        remote = f"/tmp/harbormaster-script-{time.time_ns()}.sh"
        self._put_text(script, remote, 0o700)
        try:
            return self.run(remote, ctx)
        finally:
            # best-effort cleanup
            try:
                self.run(f"rm -f {shq(remote)}")
            except TransportError as e:
                log.debug("could not remove %s on %s: %s", remote, self.address, e)

    def upload(self, opts: UploadOptions, ctx: Optional[RunContext] = None) -> None:
        remote_dir = os.path.dirname(opts.remote_path) or "/"
        res = self.run(f"mkdir -p {shq(remote_dir)}", ctx)
        if not res.ok:
            raise TransportError(f"failed to create {remote_dir} on {self.address}: {res.stderr}")

        try:
            sftp = self.client.open_sftp()
            try:
                sftp.put(str(opts.local_path), str(opts.remote_path))
                sftp.chmod(str(opts.remote_path), opts.mode)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"upload to {self.address}:{opts.remote_path} failed: {e}") from e

        if opts.owner:
            res = self.run(f"chown {shq(opts.owner)} {shq(opts.remote_path)}", ctx)
            if not res.ok:
                raise TransportError(f"chown {opts.remote_path} on {self.address} failed: {res.stderr}")

    def _put_text(self, content: str, remote_path: str, mode: int) -> None:
        try:
            sftp = self.client.open_sftp()
            try:
                with sftp.open(remote_path, "w") as f:
                    f.write(content)
                sftp.chmod(remote_path, mode)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"write {remote_path} on {self.address} failed: {e}") from e

    def is_alive(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        self.client.close()


def load_private_key(path: Optional[str]):
    """Try each supported key type in turn; None when no key file is configured."""
    if not path:
        return None
    path = os.path.expanduser(path)
    for key_cls in (
        paramiko.RSAKey,
        paramiko.Ed25519Key,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    raise TransportError(f"unsupported or unreadable private key: {path}")


def open_ssh(
    address: str,
    *,
    port: int = 22,
    user: str = "root",
    key_path: Optional[str] = None,
    connect_timeout: float = 20.0,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = load_private_key(key_path)
    try:
        client.connect(
            hostname=address,
            port=port,
            username=user,
            pkey=pkey,
            timeout=connect_timeout,
            allow_agent=True,
            look_for_keys=pkey is None,
        )
    except (paramiko.SSHException, OSError) as e:
        client.close()
        raise TransportError(f"ssh connect to {user}@{address}:{port} failed: {e}") from e

    return SSHRunner(client, address=address)
