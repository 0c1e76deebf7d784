"""Opening SSH connections to configured machines and running commands on them."""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path

import paramiko

__all__ = [
    "COMMAND_ERRORS",
    "CommandError",
    "KeyLoadError",
    "SshTarget",
    "connect",
    "load_private_key",
    "run_command",
]

CONNECT_TIMEOUT = 5.0

_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


class KeyLoadError(ValueError):
    """A private key file could not be parsed."""


class CommandError(RuntimeError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, exit_status: int) -> None:
        super().__init__(f"command {command!r} exited with status {exit_status}")
        self.command = command
        self.exit_status = exit_status


COMMAND_ERRORS = (CommandError, OSError, paramiko.SSHException)


@dataclass
class SshTarget:
    """Where and how to log in to a machine over SSH."""

    host: str
    port: int = 22
    user: str = ""
    password: str = ""
    key: str = "~/.ssh/id_rsa"
    auth_type: str = "password"
    name: str = ""

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def load_private_key(key_path: str) -> paramiko.PKey:
    """Read and parse a private key file; ``~`` is expanded."""
    path = Path(key_path).expanduser()
    raw = path.read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise KeyLoadError(f"ssh key signer failed: {path} is not a text key file") from None
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError):
            continue
    raise KeyLoadError(f"ssh key signer failed: cannot parse {path}")


def connect(target: SshTarget) -> paramiko.SSHClient:
    """Open an SSH connection, authenticating by password or by private key.

    Host keys are accepted without verification.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    credentials: dict[str, object]
    if target.auth_type == "password":
        credentials = {"password": target.password}
    else:
        credentials = {"pkey": load_private_key(target.key)}
    try:
        client.connect(
            hostname=target.host,
            port=target.port,
            username=target.user,
            timeout=CONNECT_TIMEOUT,
            look_for_keys=False,
            allow_agent=False,
            **credentials,
        )
    except Exception:
        client.close()
        raise
    return client


def run_command(client: paramiko.SSHClient, command: str) -> str:
    """Run a command in a new session and return its standard output."""
    _stdin, stdout, _stderr = client.exec_command(command)
    output = stdout.read().decode("utf-8", errors="replace")
    status = stdout.channel.recv_exit_status()
    if status != 0:
        raise CommandError(command, status)
    return output