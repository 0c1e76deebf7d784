"""Interactive SSH shell sessions with optional automatic sudo password entry."""

from __future__ import annotations

import os
import signal
import sys
import threading
import time
from typing import Any, BinaryIO, Callable

import paramiko
from termcolor import colored

from .client import SshTarget, connect

__all__ = [
    "DEFAULT_TERM",
    "SUDO_PREFIX",
    "SUDO_SUFFIX",
    "SshTerminal",
    "SudoResponder",
    "TerminalError",
    "run_ssh_terminal",
]

SUDO_PREFIX = b"[sudo] password for "
SUDO_SUFFIX = b": "
DEFAULT_TERM = "xterm-256color"

_CHUNK = 32 * 1024
_STDIN_CHUNK = 1024
_DRAIN_TIMEOUT = 1.0
_STREAM_ERRORS = (OSError, EOFError, paramiko.SSHException)


class TerminalError(RuntimeError):
    """The local side cannot host an interactive session."""


class SudoResponder:
    """Watches remote output and answers sudo password prompts for one user."""

    def __init__(self, password: str, login_user: str) -> None:
        self.password = password
        self.login_user = login_user
        self._line = bytearray()

    def feed(self, data: bytes) -> bytes:
        """Consume output bytes; return what should be typed back (may be empty)."""
        user = self.login_user.encode("utf-8")
        answer = (self.password + "\n").encode("utf-8")
        reply = bytearray()
        for byte in data:
            self._line.append(byte)
            if byte == 0x0A:
                self._line.clear()
                continue
            if (
                self._line.endswith(SUDO_SUFFIX)
                and self._line.startswith(SUDO_PREFIX)
                and user in self._line
            ):
                reply += answer
        return bytes(reply)


class SshTerminal:
    """Connects the local terminal to a remote shell on an SSH channel."""

    def __init__(
        self,
        channel: Any,
        password: str,
        login_user: str,
        enable_sudo_password: bool,
    ) -> None:
        self.channel = channel
        self.password = password
        self.login_user = login_user
        self.enable_sudo_password = enable_sudo_password
        self.exit_msg = ""
        self.stdin_fd: int | None = None
        self.stdout: BinaryIO | None = None
        self.stderr: BinaryIO | None = None

    def interactive_session(self) -> int:
        """Run a remote shell until it exits; return its exit status."""
        try:
            return self._session()
        finally:
            if self.exit_msg:
                print(self.exit_msg)
            else:
                stamp = time.strftime("%d %b %y %H:%M %Z")
                print(f"the connection was closed on the remote side on {stamp}")

    def _input_fd(self) -> int | None:
        if self.stdin_fd is not None:
            return self.stdin_fd
        try:
            return sys.stdin.fileno()
        except (AttributeError, ValueError, OSError):
            return None

    def _session(self) -> int:
        fd = self._input_fd()
        if fd is None or not os.isatty(fd):
            raise TerminalError(
                f"{sys.platform} fd {fd} is not a terminal,can't create pty of ssh"
            )
        import termios
        import tty

        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
        try:
            width, height = os.get_terminal_size(fd)
            term_type = os.environ.get("TERM") or DEFAULT_TERM
            self.channel.get_pty(term=term_type, width=width, height=height)
            stop_watching = self._watch_window_size(fd, width, height)
            try:
                self.channel.invoke_shell()
                outputs = [
                    threading.Thread(target=self._pump_stdout, daemon=True),
                    threading.Thread(target=self._pump_stderr, daemon=True),
                ]
                for thread in outputs:
                    thread.start()
                threading.Thread(target=self._pump_stdin, args=(fd,), daemon=True).start()
                status = self.channel.recv_exit_status()
                for thread in outputs:
                    thread.join(_DRAIN_TIMEOUT)
                return status
            finally:
                stop_watching()
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def _watch_window_size(self, fd: int, width: int, height: int) -> Callable[[], None]:
        if not hasattr(signal, "SIGWINCH"):
            return lambda: None
        if threading.current_thread() is not threading.main_thread():
            return lambda: None
        current = (width, height)

        def on_resize(_signum: int, _frame: Any) -> None:
            nonlocal current
            try:
                size = tuple(os.get_terminal_size(fd))
            except OSError:
                return
            if size == current:
                return
            try:
                self.channel.resize_pty(width=size[0], height=size[1])
            except _STREAM_ERRORS as exc:
                sys.stderr.write(f"Unable to send window-change request: {exc}.\r\n")
                return
            current = size

        previous = signal.signal(signal.SIGWINCH, on_resize)
        return lambda: signal.signal(signal.SIGWINCH, previous)

    @staticmethod
    def _binary(stream: BinaryIO | None, fallback: Any) -> BinaryIO:
        return stream if stream is not None else fallback.buffer

    def _pump_stdout(self) -> None:
        out = self._binary(self.stdout, sys.stdout)
        responder = (
            SudoResponder(self.password, self.login_user) if self.enable_sudo_password else None
        )
        while True:
            try:
                data = self.channel.recv(_CHUNK)
            except _STREAM_ERRORS:
                break
            if not data:
                break
            out.write(data)
            out.flush()
            if responder is None:
                continue
            reply = responder.feed(data)
            if not reply:
                continue
            try:
                self.channel.sendall(reply)
            except _STREAM_ERRORS:
                break
            notice = "automatically input password for " + colored(self.login_user, "blue")
            out.write(("\r\n" + colored(notice, "green") + "\r\n").encode("utf-8"))
            out.flush()

    def _pump_stderr(self) -> None:
        err = self._binary(self.stderr, sys.stderr)
        while True:
            try:
                data = self.channel.recv_stderr(_CHUNK)
            except _STREAM_ERRORS:
                break
            if not data:
                break
            err.write(data)
            err.flush()

    def _pump_stdin(self, fd: int) -> None:
        while True:
            try:
                data = os.read(fd, _STDIN_CHUNK)
            except OSError:
                break
            if not data:
                break
            try:
                self.channel.sendall(data)
            except _STREAM_ERRORS:
                break


def run_ssh_terminal(target: SshTarget, sudo_mode: bool = True) -> int:
    """Open an interactive shell on ``target``; return the shell's exit status.

    Sudo prompts are answered automatically only when a password is known.
    """
    client = connect(target)
    try:
        transport = client.get_transport()
        if transport is None:
            raise ConnectionError("ssh connection has no transport")
        channel = transport.open_session()
        try:
            if not target.password:
                sudo_mode = False
            terminal = SshTerminal(channel, target.password, target.user, sudo_mode)
            return terminal.interactive_session()
        finally:
            channel.close()
    finally:
        client.close()