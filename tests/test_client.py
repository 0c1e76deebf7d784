from unittest import mock

import paramiko
import pytest

from sshdeck.client import (
    CommandError,
    KeyLoadError,
    SshTarget,
    connect,
    load_private_key,
    run_command,
)


class _Channel:
    def __init__(self, status):
        self.status = status

    def recv_exit_status(self):
        return self.status


class _Stream:
    def __init__(self, data, status):
        self.data = data
        self.channel = _Channel(status)

    def read(self):
        return self.data


class _FakeClient:
    def __init__(self, data, status=0):
        self.data = data
        self.status = status
        self.commands = []

    def exec_command(self, command):
        self.commands.append(command)
        return None, _Stream(self.data, self.status), None


@pytest.fixture(scope="module")
def rsa_key():
    return paramiko.RSAKey.generate(1024)


def test_run_command_returns_stdout():
    client = _FakeClient(b"box.example.com\n")
    assert run_command(client, "/bin/hostname -f") == "box.example.com\n"
    assert client.commands == ["/bin/hostname -f"]


def test_run_command_nonzero_status_raises():
    client = _FakeClient(b"", status=2)
    with pytest.raises(CommandError) as info:
        run_command(client, "false")
    assert info.value.exit_status == 2
    assert info.value.command == "false"


def test_load_private_key_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_private_key(str(tmp_path / "absent_key"))


def test_load_private_key_garbage(tmp_path):
    path = tmp_path / "garbage"
    path.write_text("this is not a key\n")
    with pytest.raises(KeyLoadError):
        load_private_key(str(path))


def test_load_private_key_binary(tmp_path):
    path = tmp_path / "binary"
    path.write_bytes(b"\xff\xfe\x00\x81")
    with pytest.raises(KeyLoadError):
        load_private_key(str(path))


def test_load_private_key_round_trip(tmp_path, rsa_key):
    path = tmp_path / "id_rsa"
    rsa_key.write_private_key_file(str(path))
    loaded = load_private_key(str(path))
    assert loaded.get_fingerprint() == rsa_key.get_fingerprint()


def test_target_address():
    target = SshTarget(host="localhost", port=2200)
    assert target.address == "localhost:2200"


@mock.patch("sshdeck.client.paramiko.SSHClient")
def test_connect_with_password(ssh_client_cls):
    password = "password"
    target = SshTarget(host="localhost", port=2200, user="user", password=password)
    client = connect(target)
    assert client is ssh_client_cls.return_value
    kwargs = client.connect.call_args.kwargs
    assert kwargs["hostname"] == "localhost"
    assert kwargs["port"] == 2200
    assert kwargs["username"] == "user"
    assert kwargs["password"] == password
    assert "pkey" not in kwargs


@mock.patch("sshdeck.client.paramiko.SSHClient")
def test_connect_with_key(ssh_client_cls, tmp_path, rsa_key):
    path = tmp_path / "id_rsa"
    rsa_key.write_private_key_file(str(path))
    target = SshTarget(host="localhost", user="user", key=str(path), auth_type="key")
    client = connect(target)
    kwargs = client.connect.call_args.kwargs
    assert kwargs["pkey"].get_fingerprint() == rsa_key.get_fingerprint()
    assert "password" not in kwargs


@mock.patch("sshdeck.client.paramiko.SSHClient")
def test_connect_failure_closes_client(ssh_client_cls):
    instance = ssh_client_cls.return_value
    instance.connect.side_effect = paramiko.SSHException("refused")
    with pytest.raises(paramiko.SSHException):
        connect(SshTarget(host="localhost"))
    assert instance.close.called