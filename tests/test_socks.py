import socket
import struct
import threading

import pytest

from sshdeck.socks import (
    SOCKS4_GRANTED,
    SOCKS4_REJECTED,
    SOCKS5_NO_ACCEPTABLE_AUTH,
    SOCKS5_NO_AUTH,
    handle_connection,
    transfer,
)


class RecordingDialer:
    def __init__(self, fail=False):
        self.calls = []
        self.peers = []
        self.fail = fail

    def __call__(self, destination, origin):
        self.calls.append(destination)
        if self.fail:
            raise OSError("connection refused")
        ours, theirs = socket.socketpair()
        theirs.settimeout(5)
        self.peers.append(theirs)
        return ours


def pair():
    client, server = socket.socketpair()
    client.settimeout(5)
    server.settimeout(10)
    return client, server


def converse(script):
    """Run the client side of a conversation in a thread."""
    client, server = pair()
    outcome = {}

    def target():
        try:
            script(client, outcome)
        except Exception as exc:
            outcome["error"] = repr(exc)
        finally:
            client.close()

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return server, thread, outcome


def settle(thread, outcome):
    thread.join(5)
    assert not thread.is_alive()
    assert "error" not in outcome, outcome.get("error")


def recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def socks4_request(host, port, user=b"user\x00"):
    return b"\x04\x01" + struct.pack(">H", port) + socket.inet_aton(host) + user


def test_socks4_connect_relays_data():
    dialer = RecordingDialer()

    def script(client, out):
        client.sendall(socks4_request("10.0.0.5", 8080))
        out["reply"] = recv_exact(client, 8)
        remote = dialer.peers[0]
        client.sendall(b"ping")
        out["forwarded"] = recv_exact(remote, 4)
        remote.sendall(b"pong")
        out["returned"] = recv_exact(client, 4)
        client.close()
        out["remote_eof"] = remote.recv(16)
        remote.close()

    server, thread, outcome = converse(script)
    handle_connection(server, dialer)
    settle(thread, outcome)
    assert outcome["reply"] == b"\x00\x5a\x00\x00\x00\x00\x00\x00"
    assert outcome["reply"] == SOCKS4_GRANTED
    assert dialer.calls == [("10.0.0.5", 8080)]
    assert outcome["forwarded"] == b"ping"
    assert outcome["returned"] == b"pong"
    assert outcome["remote_eof"] == b""


def test_socks4_dial_failure_is_rejected():
    dialer = RecordingDialer(fail=True)
    client, server = pair()
    client.sendall(socks4_request("10.0.0.5", 8080))
    handle_connection(server, dialer)
    reply = recv_exact(client, 8)
    assert reply == b"\x00\x5b\x00\x00\x00\x00\x00\x00"
    assert reply == SOCKS4_REJECTED
    assert client.recv(8) == b""
    assert dialer.calls == [("10.0.0.5", 8080)]
    client.close()


def test_socks4_without_user_terminator_closes():
    dialer = RecordingDialer()
    client, server = pair()
    client.sendall(socks4_request("10.0.0.5", 8080, user=b"user"))
    handle_connection(server, dialer)
    assert client.recv(8) == b""
    assert dialer.calls == []
    client.close()


def test_socks4_unsupported_command_closes():
    dialer = RecordingDialer()
    client, server = pair()
    client.sendall(b"\x04\x02" + struct.pack(">H", 80) + socket.inet_aton("10.0.0.5") + b"\x00")
    handle_connection(server, dialer)
    assert client.recv(8) == b""
    assert dialer.calls == []
    client.close()


@pytest.mark.parametrize("request_bytes", [b"\x04", b"\x06\x01\x00"])
def test_short_or_unknown_version_closes_silently(request_bytes):
    dialer = RecordingDialer()
    client, server = pair()
    client.sendall(request_bytes)
    handle_connection(server, dialer)
    assert client.recv(8) == b""
    assert dialer.calls == []
    client.close()


def test_socks5_rejects_when_no_auth_not_offered():
    dialer = RecordingDialer()
    client, server = pair()
    client.sendall(b"\x05\x01\x02")
    handle_connection(server, dialer)
    reply = recv_exact(client, 2)
    assert reply == b"\x05\xff"
    assert reply == SOCKS5_NO_ACCEPTABLE_AUTH
    assert client.recv(8) == b""
    assert dialer.calls == []
    client.close()


def test_socks5_ipv4_connect_relays_data():
    dialer = RecordingDialer()
    ip = socket.inet_aton("10.0.0.5")
    port = struct.pack(">H", 8080)

    def script(client, out):
        client.sendall(b"\x05\x01\x00")
        out["greeting"] = recv_exact(client, 2)
        client.sendall(b"\x05\x01\x00\x01" + ip + port)
        out["reply"] = recv_exact(client, 10)
        remote = dialer.peers[0]
        client.sendall(b"hello")
        out["forwarded"] = recv_exact(remote, 5)
        remote.sendall(b"world")
        out["returned"] = recv_exact(client, 5)
        client.close()
        out["remote_eof"] = remote.recv(16)
        remote.close()

    server, thread, outcome = converse(script)
    handle_connection(server, dialer)
    settle(thread, outcome)
    assert outcome["greeting"] == b"\x05\x00"
    assert outcome["greeting"] == SOCKS5_NO_AUTH
    assert outcome["reply"] == b"\x05\x00\x00\x01" + ip + port
    assert dialer.calls == [("10.0.0.5", 8080)]
    assert outcome["forwarded"] == b"hello"
    assert outcome["returned"] == b"world"
    assert outcome["remote_eof"] == b""


def test_socks5_domain_name_is_resolved_locally():
    dialer = RecordingDialer()
    name = b"localhost"
    port = struct.pack(">H", 2222)
    resolved = socket.gethostbyname("localhost")

    def script(client, out):
        client.sendall(b"\x05\x01\x00")
        out["greeting"] = recv_exact(client, 2)
        client.sendall(b"\x05\x01\x00\x03" + bytes([len(name)]) + name + port)
        out["reply"] = recv_exact(client, 10)
        remote = dialer.peers[0]
        client.close()
        out["remote_eof"] = remote.recv(16)
        remote.close()

    server, thread, outcome = converse(script)
    handle_connection(server, dialer)
    settle(thread, outcome)
    assert outcome["greeting"] == SOCKS5_NO_AUTH
    assert outcome["reply"] == b"\x05\x00\x00\x01" + socket.inet_aton(resolved) + port
    assert dialer.calls == [(resolved, 2222)]
    assert outcome["remote_eof"] == b""


def test_socks5_dial_failure_reports_host_unreachable():
    dialer = RecordingDialer(fail=True)

    def script(client, out):
        client.sendall(b"\x05\x01\x00")
        out["greeting"] = recv_exact(client, 2)
        client.sendall(b"\x05\x01\x00\x01" + socket.inet_aton("10.0.0.5") + struct.pack(">H", 80))
        out["reply"] = recv_exact(client, 10)

    server, thread, outcome = converse(script)
    handle_connection(server, dialer)
    settle(thread, outcome)
    assert outcome["greeting"] == SOCKS5_NO_AUTH
    assert outcome["reply"] == b"\x05\x04\x00\x01" + bytes(6)
    assert dialer.calls == [("10.0.0.5", 80)]


@pytest.mark.parametrize(
    "request_bytes, code",
    [
        (b"\x05\x02\x00\x01" + bytes(6), 0x07),
        (b"\x05\x01\x00\x04" + bytes(18), 0x08),
        (b"\x04\x01\x00\x01" + bytes(6), 0x07),
    ],
)
def test_socks5_error_replies(request_bytes, code):
    dialer = RecordingDialer()

    def script(client, out):
        client.sendall(b"\x05\x01\x00")
        out["greeting"] = recv_exact(client, 2)
        client.sendall(request_bytes)
        out["reply"] = recv_exact(client, 10)

    server, thread, outcome = converse(script)
    handle_connection(server, dialer)
    settle(thread, outcome)
    assert outcome["greeting"] == SOCKS5_NO_AUTH
    assert outcome["reply"] == bytes([0x05, code, 0x00, 0x01]) + bytes(6)
    assert dialer.calls == []


def test_transfer_relays_both_ways_and_closes_remote():
    local_user, local = socket.socketpair()
    remote, remote_peer = socket.socketpair()
    for sock in (local_user, remote_peer):
        sock.settimeout(5)
    outcome = {}

    def peers():
        try:
            local_user.sendall(b"up")
            outcome["up"] = recv_exact(remote_peer, 2)
            remote_peer.sendall(b"down")
            outcome["down"] = recv_exact(local_user, 4)
            local_user.shutdown(socket.SHUT_WR)
            outcome["eof"] = remote_peer.recv(4)
        except Exception as exc:
            outcome["error"] = repr(exc)
        finally:
            remote_peer.close()

    thread = threading.Thread(target=peers, daemon=True)
    thread.start()
    transfer(local, remote)
    settle(thread, outcome)

    assert outcome["up"] == b"up"
    assert outcome["down"] == b"down"
    assert outcome["eof"] == b""
    assert remote.fileno() == -1
    local.close()
    local_user.close()