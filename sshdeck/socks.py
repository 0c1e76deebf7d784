"""A SOCKS4/SOCKS5 proxy whose outgoing connections are tunnelled over SSH."""

from __future__ import annotations

import logging
import socket
import struct
import threading
from typing import Callable, Protocol

import paramiko

from .client import SshTarget, connect

__all__ = [
    "BUFFER_SIZE",
    "Dialer",
    "SOCKS4_GRANTED",
    "SOCKS4_REJECTED",
    "SOCKS5_NO_ACCEPTABLE_AUTH",
    "SOCKS5_NO_AUTH",
    "Stream",
    "handle_connection",
    "run_socks_proxy",
    "transfer",
]

log = logging.getLogger(__name__)

BUFFER_SIZE = 256
_COPY_CHUNK = 32 * 1024

Address = tuple[str, int]

SOCKS4_GRANTED = b"\x00\x5a" + bytes(6)
SOCKS4_REJECTED = b"\x00\x5b" + bytes(6)
SOCKS5_NO_AUTH = b"\x05\x00"
SOCKS5_NO_ACCEPTABLE_AUTH = b"\x05\xff"

_REPLY_SUCCEEDED = 0x00
_REPLY_HOST_UNREACHABLE = 0x04
_REPLY_COMMAND_NOT_SUPPORTED = 0x07
_REPLY_ADDRESS_NOT_SUPPORTED = 0x08

_NETWORK_ERRORS = (OSError, EOFError, paramiko.SSHException)


class Stream(Protocol):
    """The part of a socket (or SSH channel) the proxy relies on."""

    def recv(self, size: int) -> bytes: ...

    def sendall(self, data: bytes) -> None: ...

    def close(self) -> None: ...


Dialer = Callable[[Address, Address], Stream]
"""Opens a stream to ``destination`` on behalf of a client at ``origin``."""


def _socks5_reply(code: int, ip: bytes = bytes(4), port: int = 0) -> bytes:
    return bytes([0x05, code, 0x00, 0x01]) + ip + struct.pack(">H", port)


def _peer(conn: object) -> Address:
    try:
        addr = conn.getpeername()  # type: ignore[attr-defined]
    except (OSError, AttributeError):
        return ("", 0)
    if isinstance(addr, tuple) and len(addr) >= 2:
        return (str(addr[0]), int(addr[1]))
    return ("", 0)


def _dial(dialer: Dialer, destination: Address, origin: Address) -> Stream | None:
    try:
        return dialer(destination, origin)
    except _NETWORK_ERRORS as exc:
        log.warning("[%s] unable to connect to remote host: %s", origin, exc)
        return None


def handle_connection(local: Stream, dialer: Dialer) -> None:
    """Serve one SOCKS client connection, then close it.

    Each request is assumed to arrive in a single read, since SOCKS headers
    carry no length.
    """
    try:
        _serve(local, dialer)
    finally:
        local.close()


def _serve(local: Stream, dialer: Dialer) -> None:
    origin = _peer(local)
    try:
        request = local.recv(BUFFER_SIZE)
    except OSError as exc:
        log.warning("[%s] unable to read SOCKS header: %s", origin, exc)
        return
    if len(request) < 2:
        log.warning("[%s] unable to read SOCKS header: short read", origin)
        return

    version = request[0]
    if version == 4:
        _serve_socks4(local, dialer, origin, request)
    elif version == 5:
        _serve_socks5(local, dialer, origin, request)
    else:
        log.warning("[%s] unknown SOCKS version: %d", origin, version)


def _serve_socks4(local: Stream, dialer: Dialer, origin: Address, request: bytes) -> None:
    if request[1] != 1:
        log.warning("[%s] unsupported command, closing connection", origin)
        return
    if len(request) < 8:
        log.warning("[%s] corrupt SOCKS4 request", origin)
        return
    (port,) = struct.unpack(">H", request[2:4])
    host = socket.inet_ntoa(request[4:8])
    rest = request[8:]
    end = rest.find(b"\x00")
    if end < 0:
        log.warning("[%s] unable to locate SOCKS4 user", origin)
        return
    user = rest[:end]
    log.info(
        "[%s] incoming SOCKS4 TCP/IP stream connection, user=%r, raddr=%s:%d",
        origin,
        user,
        host,
        port,
    )
    remote = _dial(dialer, (host, port), origin)
    if remote is None:
        local.sendall(SOCKS4_REJECTED)
        return
    local.sendall(SOCKS4_GRANTED)
    transfer(local, remote)


def _serve_socks5(local: Stream, dialer: Dialer, origin: Address, greeting: bytes) -> None:
    method_count = greeting[1]
    methods = greeting[2 : 2 + method_count]
    if 0 not in methods:
        log.warning("[%s] unsupported SOCKS5 authentication method", origin)
        local.sendall(SOCKS5_NO_ACCEPTABLE_AUTH)
        return
    local.sendall(SOCKS5_NO_AUTH)

    try:
        request = local.recv(BUFFER_SIZE)
    except OSError as exc:
        log.warning("[%s] unable to read SOCKS header: %s", origin, exc)
        return
    if not request:
        log.warning("[%s] client closed during SOCKS5 handshake", origin)
        return
    if request[0] != 5:
        log.warning("[%s] unknown version after SOCKS5 handshake: %d", origin, request[0])
        local.sendall(_socks5_reply(_REPLY_COMMAND_NOT_SUPPORTED))
        return
    if len(request) < 4:
        log.warning("[%s] corrupt SOCKS5 request", origin)
        local.sendall(_socks5_reply(_REPLY_COMMAND_NOT_SUPPORTED))
        return
    if request[1] != 1:
        log.warning("[%s] unknown SOCKS5 command: %d", origin, request[1])
        local.sendall(_socks5_reply(_REPLY_COMMAND_NOT_SUPPORTED))
        return

    body = request[3:]
    address_type = body[0]
    if address_type == 1:
        if len(body) < 7:
            log.warning("[%s] corrupt SOCKS5 TCP/IP stream connection request", origin)
            local.sendall(_socks5_reply(_REPLY_COMMAND_NOT_SUPPORTED))
            return
        ip = body[1:5]
        (port,) = struct.unpack(">H", body[5:7])
        host = socket.inet_ntoa(ip)
        log.info("[%s] incoming SOCKS5 TCP/IP stream connection, raddr=%s:%d", origin, host, port)
    elif address_type == 3:
        name_length = body[1] if len(body) > 1 else 0
        name = body[2 : 2 + name_length]
        port_bytes = body[2 + name_length : 4 + name_length]
        if len(body) < 2 or len(port_bytes) < 2:
            log.warning("[%s] corrupt SOCKS5 TCP/IP stream connection request", origin)
            local.sendall(_socks5_reply(_REPLY_COMMAND_NOT_SUPPORTED))
            return
        try:
            host = socket.gethostbyname(name.decode("ascii"))
        except (OSError, UnicodeError) as exc:
            log.warning("[%s] unable to resolve IP address: %r, %s", origin, name, exc)
            local.sendall(_socks5_reply(_REPLY_HOST_UNREACHABLE))
            return
        ip = socket.inet_aton(host)
        (port,) = struct.unpack(">H", port_bytes)
    else:
        log.warning("[%s] unsupported SOCKS5 address type: %d", origin, address_type)
        local.sendall(_socks5_reply(_REPLY_ADDRESS_NOT_SUPPORTED))
        return

    remote = _dial(dialer, (host, port), origin)
    if remote is None:
        local.sendall(_socks5_reply(_REPLY_HOST_UNREACHABLE))
        return
    local.sendall(_socks5_reply(_REPLY_SUCCEEDED, ip, port))
    transfer(local, remote)


def _shutdown_write(stream: object) -> None:
    try:
        stream.shutdown(socket.SHUT_WR)  # type: ignore[attr-defined]
    except (OSError, AttributeError, EOFError):
        pass


def _pump(source: Stream, destination: Stream) -> None:
    sent = 0
    error: BaseException | None = None
    try:
        while True:
            data = source.recv(_COPY_CHUNK)
            if not data:
                break
            destination.sendall(data)
            sent += len(data)
    except _NETWORK_ERRORS as exc:
        error = exc
    log.debug("xfer done: transferred=%d err=%s", sent, error)
    _shutdown_write(destination)


def transfer(local: Stream, remote: Stream) -> None:
    """Relay data both ways until each side has finished, then close ``remote``."""
    worker = threading.Thread(target=_pump, args=(remote, local), daemon=True)
    worker.start()
    _pump(local, remote)
    worker.join()
    remote.close()


def run_socks_proxy(target: SshTarget, port: int) -> None:
    """Serve SOCKS4/5 on ``127.0.0.1:port``, dialling out through ``target``."""
    client = connect(target)
    try:
        transport = client.get_transport()
        if transport is None:
            raise ConnectionError("ssh connection has no transport")

        def dialer(destination: Address, origin: Address) -> Stream:
            return transport.open_channel("direct-tcpip", destination, origin)

        address = f"127.0.0.1:{port}"
        try:
            listener = socket.create_server(("127.0.0.1", port))
        except OSError as exc:
            raise OSError(f"unable to listen on SOCKS port [{address}]: {exc}") from exc
        with listener:
            print(f"socks proxy is up on {address}")
            while True:
                try:
                    conn, _ = listener.accept()
                except OSError as exc:
                    raise OSError(f"failed to accept incoming SOCKS connection: {exc}") from exc
                threading.Thread(
                    target=handle_connection, args=(conn, dialer), daemon=True
                ).start()
    finally:
        client.close()