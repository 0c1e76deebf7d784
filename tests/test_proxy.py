import socket
import threading

import pytest

from sshdeck.proxy import PortForwarder


class FakeTransport:
    def __init__(self, fail=False):
        self.fail = fail
        self.opened = []
        self.peers = []

    def open_channel(self, kind, dest_addr, src_addr):
        self.opened.append((kind, dest_addr))
        if self.fail:
            raise OSError("administratively prohibited")
        ours, theirs = socket.socketpair()
        theirs.settimeout(5)
        self.peers.append(theirs)
        return ours


class FakeClient:
    def __init__(self, transport):
        self.transport = transport

    def get_transport(self):
        return self.transport


def recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.mark.parametrize("address", ["no-port", "127.0.0.1:http", "127.0.0.1:70000"])
def test_invalid_addresses_are_rejected(address):
    with pytest.raises(ValueError):
        PortForwarder(FakeClient(FakeTransport()), address, "127.0.0.1:3306")


def test_addresses_are_split_into_host_and_port():
    forwarder = PortForwarder(FakeClient(FakeTransport()), ":2222", "[::1]:3306")
    assert forwarder.local_addr == ("", 2222)
    assert forwarder.remote_addr == ("::1", 3306)


def test_forward_relays_through_channel():
    transport = FakeTransport()
    forwarder = PortForwarder(FakeClient(transport), "127.0.0.1:0", "10.0.0.5:3306")
    user, conn = socket.socketpair()
    user.settimeout(5)
    forwarder.forward(conn)

    assert transport.opened == [("direct-tcpip", ("10.0.0.5", 3306))]
    remote = transport.peers[0]
    user.sendall(b"query")
    assert recv_exact(remote, 5) == b"query"
    remote.sendall(b"rows")
    assert recv_exact(user, 4) == b"rows"

    user.shutdown(socket.SHUT_WR)
    assert remote.recv(4) == b""
    remote.close()
    assert user.recv(4) == b""
    user.close()


def test_forward_dial_error_is_reported_and_connection_closed(capsys):
    forwarder = PortForwarder(FakeClient(FakeTransport(fail=True)), "127.0.0.1:0", "10.0.0.5:3306")
    user, conn = socket.socketpair()
    user.settimeout(5)
    forwarder.forward(conn)
    assert "Remote dial error" in capsys.readouterr().out
    assert user.recv(4) == b""
    user.close()


def test_start_accepts_until_closed():
    transport = FakeTransport()
    forwarder = PortForwarder(FakeClient(transport), "127.0.0.1:0", "10.0.0.5:3306")
    thread = threading.Thread(target=forwarder.start, daemon=True)
    thread.start()
    assert forwarder.listening.wait(5)

    with socket.create_connection(forwarder.address, timeout=5) as user:
        user.sendall(b"hi")
        for _ in range(100):
            if transport.peers:
                break
            threading.Event().wait(0.05)
        assert recv_exact(transport.peers[0], 2) == b"hi"

    forwarder.close()
    thread.join(5)
    assert not thread.is_alive()
    transport.peers[0].close()