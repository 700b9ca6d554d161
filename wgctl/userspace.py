"""Client for userspace WireGuard devices reached over UNIX sockets."""

from __future__ import annotations

import os
import socket
import stat
from typing import Callable, Iterable, Optional

from wgctl.types import Config, Device, DeviceType
from wgctl.userspace_configure import write_config
from wgctl.userspace_parse import parse_device

__all__ = ["Client", "device_name", "dial", "find", "find_unix_sockets"]

_SOCKET_DIRS = ["/var/run/wireguard"]


def device_name(sock: str) -> str:
    """Infer a device name from a socket path by dropping directory and extension."""
    stripped = sock.rstrip("/")
    if not sock:
        base = "."
    elif not stripped:
        base = "/"
    else:
        base = stripped.rsplit("/", 1)[-1]
    last = sock.rsplit("/", 1)[-1]
    dot = last.rfind(".")
    ext = last[dot:] if dot >= 0 else ""
    if ext and base.endswith(ext):
        return base[: -len(ext)]
    return base


def dial(device: str) -> socket.socket:
    """Connect to the UNIX socket of a userspace device."""
    conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        conn.connect(device)
    except OSError:
        conn.close()
        raise
    return conn


def find_unix_sockets(dirs: Iterable[str]) -> list[str]:
    """List the UNIX socket files in dirs, skipping directories that do not exist."""
    sockets: list[str] = []
    for directory in dirs:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except FileNotFoundError:
            continue
        for entry in entries:
            if stat.S_ISSOCK(entry.stat(follow_symlinks=False).st_mode):
                sockets.append(os.path.join(directory, entry.name))
    return sockets


def find() -> list[str]:
    """List the sockets of userspace devices in the standard location."""
    return find_unix_sockets(_SOCKET_DIRS)


_default_dial = dial
_default_find = find


class Client:
    """Access to userspace WireGuard devices.

    ``dial`` connects to a device path and returns a socket; ``find`` lists
    device paths. Both default to the UNIX socket implementations.
    """

    def __init__(
        self,
        dial: Optional[Callable[[str], socket.socket]] = None,
        find: Optional[Callable[[], list[str]]] = None,
    ) -> None:
        self._dial = dial if dial is not None else _default_dial
        self._find = find if find is not None else _default_find
        self.closed = False

    def close(self) -> None:
        """Mark the client closed; connections are opened per request."""
        self.closed = True

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def devices(self) -> list[Device]:
        """Return every userspace device that can be found."""
        return [self._get_device(path) for path in self._find()]

    def device(self, name: str) -> Device:
        """Return the device called name, or raise FileNotFoundError."""
        return self._get_device(self._locate(name))

    def configure_device(self, name: str, cfg: Config) -> None:
        """Apply cfg to the device called name, or raise FileNotFoundError."""
        self._configure(self._locate(name), cfg)

    def _locate(self, name: str) -> str:
        for path in self._find():
            if device_name(path) == name:
                return path
        raise FileNotFoundError(f"no such WireGuard device: {name}")

    def _get_device(self, path: str) -> Device:
        with self._dial(path) as conn:
            conn.sendall(b"get=1\n\n")
            with conn.makefile("rb") as stream:
                device = parse_device(stream)
        device.name = device_name(path)
        device.type = DeviceType.USERSPACE
        return device

    def _configure(self, path: str, cfg: Config) -> None:
        request = "set=1\n" + write_config(cfg) + "\n"
        with self._dial(path) as conn:
            conn.sendall(request.encode())
            response = conn.recv(32)
        if not response:
            raise EOFError("wguser: connection closed before a response was read")
        text = response.decode("utf-8", errors="replace").strip()
        if text != "errno=0":
            raise OSError(f"wguser: {text}")