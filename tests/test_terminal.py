import io
import os

import pytest

from sshdeck.terminal import SshTerminal, SudoResponder, TerminalError

PASSWORD = "password"


class FakeChannel:
    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.sent = []

    def recv(self, size):
        return self.chunks.pop(0) if self.chunks else b""

    def recv_stderr(self, size):
        return self.chunks.pop(0) if self.chunks else b""

    def sendall(self, data):
        self.sent.append(data)


def test_prompt_for_login_user_is_answered():
    responder = SudoResponder(PASSWORD, "alice")
    assert responder.feed(b"[sudo] password for alice: ") == b"password\n"


def test_prompt_split_across_reads():
    responder = SudoResponder(PASSWORD, "alice")
    assert responder.feed(b"[sudo] pass") == b""
    assert responder.feed(b"word for alice: ") == b"password\n"


def test_prompt_for_other_user_is_ignored():
    responder = SudoResponder(PASSWORD, "alice")
    assert responder.feed(b"[sudo] password for bob: ") == b""


def test_prompt_not_at_line_start_is_ignored():
    responder = SudoResponder(PASSWORD, "alice")
    assert responder.feed(b"$ [sudo] password for alice: ") == b""


def test_newline_resets_line():
    responder = SudoResponder(PASSWORD, "alice")
    assert responder.feed(b"[sudo] password for alice\n: ") == b""


def test_each_prompt_is_answered():
    responder = SudoResponder(PASSWORD, "alice")
    data = b"[sudo] password for alice: \r\n[sudo] password for alice: "
    assert responder.feed(data) == b"password\n" * 2


def test_session_requires_a_terminal(capsys):
    read_fd, write_fd = os.pipe()
    try:
        terminal = SshTerminal(FakeChannel([]), PASSWORD, "alice", True)
        terminal.stdin_fd = read_fd
        with pytest.raises(TerminalError, match="is not a terminal"):
            terminal.interactive_session()
    finally:
        os.close(read_fd)
        os.close(write_fd)
    assert "closed on the remote side" in capsys.readouterr().out


def test_custom_exit_message_is_printed(capsys):
    read_fd, write_fd = os.pipe()
    try:
        terminal = SshTerminal(FakeChannel([]), PASSWORD, "alice", False)
        terminal.stdin_fd = read_fd
        terminal.exit_msg = "bye"
        with pytest.raises(TerminalError):
            terminal.interactive_session()
    finally:
        os.close(read_fd)
        os.close(write_fd)
    assert capsys.readouterr().out == "bye\n"


def test_stdout_relay_answers_sudo():
    chunks = [b"hi\r\n", b"[sudo] password for alice: "]
    channel = FakeChannel(chunks)
    terminal = SshTerminal(channel, PASSWORD, "alice", True)
    out = io.BytesIO()
    terminal.stdout = out
    terminal._pump_stdout()
    assert channel.sent == [b"password\n"]
    assert out.getvalue().startswith(b"".join(chunks))


def test_stdout_relay_without_sudo_copies_verbatim():
    chunks = [b"hi\r\n", b"[sudo] password for alice: "]
    channel = FakeChannel(chunks)
    terminal = SshTerminal(channel, PASSWORD, "alice", False)
    out = io.BytesIO()
    terminal.stdout = out
    terminal._pump_stdout()
    assert channel.sent == []
    assert out.getvalue() == b"".join(chunks)