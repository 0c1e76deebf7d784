"""Forwarding a local TCP port to an address reachable from an SSH server."""

from __future__ import annotations

import socket
import threading
from typing import Any

import paramiko

from .client import SshTarget, connect
from .socks import transfer

__all__ = ["PortForwarder", "run_proxy"]

Address = tuple[str, int]

_ACCEPT_POLL = 0.5


def _split_address(text: str) -> Address:
    host, sep, port = text.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {text!r}")
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {text!r}") from None
    if not 0 <= number <= 65535:
        raise ValueError(f"invalid port in address {text!r}")
    return host.strip("[]"), number


def _peer(conn: socket.socket) -> Address:
    try:
        addr = conn.getpeername()
    except OSError:
        return ("", 0)
    if isinstance(addr, tuple) and len(addr) >= 2:
        return (str(addr[0]), int(addr[1]))
    return ("", 0)


class PortForwarder:
    """Listen on ``local_addr`` and tunnel each connection to ``remote_addr``."""

    def __init__(self, client: Any, local_addr: str, remote_addr: str) -> None:
        self.client = client
        self.local_addr = _split_address(local_addr)
        self.remote_addr = _split_address(remote_addr)
        self.listening = threading.Event()
        self.address: Address | None = None
        self._listener: socket.socket | None = None
        self._closed = threading.Event()

    def start(self) -> None:
        """Accept connections until :meth:`close` is called."""
        listener = socket.create_server(self.local_addr)
        listener.settimeout(_ACCEPT_POLL)
        self._listener = listener
        host, port = listener.getsockname()[:2]
        self.address = (host, port)
        self.listening.set()
        with listener:
            while not self._closed.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._closed.is_set():
                        return
                    raise
                conn.settimeout(None)
                self.forward(conn)

    def forward(self, conn: socket.socket) -> None:
        """Open a tunnel for ``conn`` and relay it in the background."""
        try:
            transport = self.client.get_transport()
            if transport is None:
                raise ConnectionError("ssh connection has no transport")
            channel = transport.open_channel("direct-tcpip", self.remote_addr, _peer(conn))
        except (OSError, EOFError, paramiko.SSHException) as exc:
            print(f"Remote dial error: {exc}")
            conn.close()
            return
        threading.Thread(target=self._relay, args=(conn, channel), daemon=True).start()

    @staticmethod
    def _relay(conn: socket.socket, channel: Any) -> None:
        try:
            transfer(conn, channel)
        finally:
            conn.close()

    def close(self) -> None:
        """Stop accepting new connections."""
        self._closed.set()


def run_proxy(target: SshTarget, local_addr: str, remote_addr: str) -> None:
    """Forward ``local_addr`` to ``remote_addr`` as seen from ``target``."""
    client = connect(target)
    try:
        PortForwarder(client, local_addr, remote_addr).start()
    finally:
        client.close()