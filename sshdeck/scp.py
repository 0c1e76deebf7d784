"""Copying files and directory trees to and from a machine over SFTP."""

from __future__ import annotations

import os
import posixpath
import shutil
import stat
from contextlib import contextmanager
from typing import Any, Iterator

import paramiko

from .client import SshTarget, connect

__all__ = [
    "MAX_PACKET",
    "TransferError",
    "copy_local_to_remote",
    "copy_remote_to_local",
    "download",
    "open_sftp",
    "to_unix_path",
    "upload",
]

MAX_PACKET = 1 << 15

_SFTP_ERRORS = (OSError, EOFError, paramiko.SSHException)


class TransferError(OSError):
    """A copy between the local and the remote side failed."""


def to_unix_path(path: str) -> str:
    """Normalise a path into a clean, slash-separated form."""
    cleaned = posixpath.normpath(path.replace("\\", "/"))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


@contextmanager
def open_sftp(target: SshTarget) -> Iterator[paramiko.SFTPClient]:
    """Connect to ``target`` and yield an SFTP client; both are closed afterwards."""
    client = connect(target)
    try:
        sftp = client.open_sftp()
        try:
            yield sftp
        finally:
            sftp.close()
    finally:
        client.close()


def _remote_makedirs(sftp: Any, path: str) -> None:
    if path in ("", ".", "/"):
        return
    try:
        sftp.stat(path)
        return
    except FileNotFoundError:
        pass
    _remote_makedirs(sftp, posixpath.dirname(path))
    sftp.mkdir(path)


def copy_local_to_remote(sftp: Any, local: str, remote: str) -> None:
    """Copy a local file, directory tree or symlink target to ``remote``."""
    info = os.lstat(local)
    if stat.S_ISLNK(info.st_mode):
        real = os.readlink(local)
        if not os.path.isabs(real):
            real = os.path.join(os.path.dirname(local), real)
        copy_local_to_remote(sftp, real, remote)
    elif stat.S_ISDIR(info.st_mode):
        _upload_dir(sftp, local, remote)
    else:
        _upload_file(sftp, local, remote, info)


def _upload_dir(sftp: Any, local: str, remote: str) -> None:
    try:
        names = sorted(os.listdir(local))
    except OSError as exc:
        raise TransferError(f"read local dir failed {exc}") from exc
    for name in names:
        source = os.path.join(local, name)
        destination = posixpath.join(to_unix_path(remote), name)
        try:
            copy_local_to_remote(sftp, source, destination)
        except _SFTP_ERRORS as exc:
            raise TransferError(f"{exc} {source} {destination}") from exc


def _upload_file(sftp: Any, local: str, remote: str, info: os.stat_result) -> None:
    remote_path = to_unix_path(remote)
    try:
        source = open(local, "rb")
    except OSError as exc:
        raise TransferError(f"open local file failed {exc}") from exc
    with source:
        try:
            _remote_makedirs(sftp, posixpath.dirname(remote_path))
        except _SFTP_ERRORS as exc:
            raise TransferError(f"scp mkdir all failed {exc}") from exc
        try:
            target = sftp.open(remote_path, "wb")
        except _SFTP_ERRORS as exc:
            raise TransferError(f"create remote file failed {remote}:{exc}") from exc
        with target:
            try:
                sftp.chmod(remote_path, stat.S_IMODE(info.st_mode))
            except _SFTP_ERRORS as exc:
                raise TransferError(f"scp chmod failed {exc}") from exc
            try:
                shutil.copyfileobj(source, target, MAX_PACKET)
            except _SFTP_ERRORS as exc:
                raise TransferError(f"io copy failed {exc}") from exc


def copy_remote_to_local(sftp: Any, remote: str, local: str) -> None:
    """Copy a remote file, directory tree or symlink target to ``local``."""
    remote_path = to_unix_path(remote)
    info = sftp.lstat(remote_path)
    if stat.S_ISLNK(info.st_mode):
        real = sftp.readlink(remote_path)
        if not posixpath.isabs(real):
            real = posixpath.join(posixpath.dirname(remote_path), real)
        copy_remote_to_local(sftp, real, local)
    elif stat.S_ISDIR(info.st_mode):
        _download_dir(sftp, remote_path, local)
    else:
        _download_file(sftp, remote_path, local, info)


def _download_dir(sftp: Any, remote_path: str, local: str) -> None:
    try:
        entries = sorted(sftp.listdir_attr(remote_path), key=lambda entry: entry.filename)
    except _SFTP_ERRORS as exc:
        raise TransferError(f"read scp remote dir failed {exc}") from exc
    for entry in entries:
        local_child = os.path.join(local, entry.filename)
        remote_child = to_unix_path(posixpath.join(remote_path, entry.filename))
        try:
            os.makedirs(os.path.dirname(local_child) or ".", exist_ok=True)
        except OSError as exc:
            raise TransferError(f"os local sub mkdir all failed,{exc}") from exc
        try:
            copy_remote_to_local(sftp, remote_child, local_child)
        except _SFTP_ERRORS as exc:
            raise TransferError(
                f"dir walk remote:{remote_child}, local:{local_child}, {exc}"
            ) from exc


def _download_file(sftp: Any, remote_path: str, local: str, info: Any) -> None:
    try:
        source = sftp.open(remote_path, "rb")
    except _SFTP_ERRORS as exc:
        raise TransferError(f"open scp remote file failed {exc}") from exc
    with source:
        try:
            target = open(local, "wb")
        except OSError as exc:
            raise TransferError(f"os create local file failed:{local} {exc}") from exc
        with target:
            try:
                shutil.copyfileobj(source, target, MAX_PACKET)
            except _SFTP_ERRORS as exc:
                raise TransferError(f"io copy remote to local failed. {exc}") from exc
    try:
        os.chmod(local, stat.S_IMODE(info.st_mode))
    except OSError as exc:
        raise TransferError(f"os local chmod failed {exc}") from exc


def upload(target: SshTarget, local_path: str, remote_path: str) -> None:
    """Copy a local file or directory to a machine."""
    with open_sftp(target) as sftp:
        copy_local_to_remote(sftp, local_path, remote_path)


def download(target: SshTarget, remote_path: str, local_path: str) -> None:
    """Copy a file or directory from a machine to the local disk."""
    with open_sftp(target) as sftp:
        copy_remote_to_local(sftp, remote_path, local_path)