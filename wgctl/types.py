"""Shared types describing WireGuard devices, peers and configurations."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import secrets
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

__all__ = [
    "KEY_LEN",
    "DeviceType",
    "UpdateOnlyNotSupportedError",
    "Key",
    "Endpoint",
    "Device",
    "Peer",
    "Config",
    "PeerConfig",
    "generate_key",
    "generate_private_key",
    "new_key",
    "parse_key",
    "resolve_endpoint",
]

KEY_LEN = 32

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class DeviceType(IntEnum):
    """The underlying implementation of a WireGuard device."""

    UNKNOWN = 0
    LINUX_KERNEL = 1
    OPENBSD_KERNEL = 2
    FREEBSD_KERNEL = 3
    WINDOWS_KERNEL = 4
    USERSPACE = 5

    def __str__(self) -> str:
        return _DEVICE_TYPE_NAMES.get(self, "unknown")


_DEVICE_TYPE_NAMES = {
    DeviceType.LINUX_KERNEL: "Linux kernel",
    DeviceType.OPENBSD_KERNEL: "OpenBSD kernel",
    DeviceType.FREEBSD_KERNEL: "FreeBSD kernel",
    DeviceType.WINDOWS_KERNEL: "Windows kernel",
    DeviceType.USERSPACE: "userspace",
}


class UpdateOnlyNotSupportedError(Exception):
    """The platform does not support the PeerConfig update_only flag."""

    def __init__(self, message: str = "the UpdateOnly flag is not supported by this platform"):
        super().__init__(message)


class Key(bytes):
    """A 32-byte public, private or pre-shared WireGuard key.

    ``Key()`` is the all-zero key.
    """

    def __new__(cls, data: bytes = bytes(KEY_LEN)) -> "Key":
        if isinstance(data, int):
            raise TypeError("wgtypes: key must be built from bytes, not an integer")
        raw = bytes(data)
        if len(raw) != KEY_LEN:
            raise ValueError(f"wgtypes: incorrect key size: {len(raw)}")
        return super().__new__(cls, raw)

    def public_key(self) -> "Key":
        """Compute the public key for this key, which must be a private key."""
        private = X25519PrivateKey.from_private_bytes(bytes(self))
        return Key(private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw))

    def is_zero(self) -> bool:
        """Report whether every byte of the key is zero."""
        return not any(self)

    def __str__(self) -> str:
        return base64.b64encode(bytes(self)).decode("ascii")

    def __repr__(self) -> str:
        return f"Key({str(self)!r})"


def generate_key() -> Key:
    """Generate a random key suitable as a pre-shared key."""
    return new_key(secrets.token_bytes(KEY_LEN))


def generate_private_key() -> Key:
    """Generate a random, clamped key suitable as a private key."""
    raw = bytearray(generate_key())
    raw[0] &= 248
    raw[31] &= 127
    raw[31] |= 64
    return Key(raw)


def new_key(b: bytes) -> Key:
    """Create a Key from exactly 32 bytes."""
    return Key(b)


def parse_key(s: str) -> Key:
    """Parse a Key from its standard base64 form, as produced by ``str(key)``."""
    try:
        raw = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"wgtypes: failed to parse base64-encoded key: {err}") from err
    return new_key(raw)


@dataclass(frozen=True)
class Endpoint:
    """A UDP address: an IP address (or None for any), a port and an IPv6 zone."""

    ip: Optional[IPAddress]
    port: int
    zone: str = ""

    def __str__(self) -> str:
        if self.ip is None:
            return f":{self.port}"
        host = str(self.ip)
        if self.zone:
            host = f"{host}%{self.zone}"
        if ":" in host:
            return f"[{host}]:{self.port}"
        return f"{host}:{self.port}"


def _split_host_port(s: str) -> tuple[str, str]:
    if s.startswith("["):
        end = s.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {s!r}")
        host, rest = s[1:end], s[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {s!r}")
        port = rest[1:]
        if "[" in port or "]" in port:
            raise ValueError(f"unexpected bracket in address {s!r}")
        return host, port
    host, sep, port = s.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {s!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address {s!r}")
    return host, port


def _resolve_port(port: str) -> int:
    if port == "":
        return 0
    if port.isdigit():
        value = int(port)
        if value > 65535:
            raise ValueError(f"invalid port {port!r}")
        return value
    try:
        return socket.getservbyname(port, "udp")
    except OSError as err:
        raise ValueError(f"unknown port {port!r}") from err


def _resolve_host(host: str) -> IPAddress:
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_UDP)
    except (OSError, UnicodeError) as err:
        raise ValueError(f"failed to resolve host {host!r}: {err}") from err
    addresses = [ipaddress.ip_address(info[4][0].split("%", 1)[0]) for info in infos]
    if not addresses:
        raise ValueError(f"no addresses found for host {host!r}")
    for address in addresses:
        if address.version == 4:
            return address
    return addresses[0]


def resolve_endpoint(s: str) -> Endpoint:
    """Resolve a ``host:port`` string into an Endpoint."""
    host, port_text = _split_host_port(s)
    port = _resolve_port(port_text)
    if host == "":
        return Endpoint(None, port)
    zone = ""
    if "%" in host:
        host, zone = host.split("%", 1)
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if zone:
            raise ValueError(f"invalid address {s!r}") from None
        ip = _resolve_host(host)
    if zone and ip.version != 6:
        raise ValueError(f"zone not allowed for IPv4 address {s!r}")
    return Endpoint(ip, port, zone)


@dataclass
class Peer:
    """A WireGuard peer of a Device."""

    public_key: Key = field(default_factory=Key)
    preshared_key: Key = field(default_factory=Key)
    endpoint: Optional[Endpoint] = None
    persistent_keepalive_interval: timedelta = timedelta(0)
    last_handshake_time: Optional[datetime] = None
    receive_bytes: int = 0
    transmit_bytes: int = 0
    allowed_ips: list[IPNetwork] = field(default_factory=list)
    protocol_version: int = 0


@dataclass
class Device:
    """A WireGuard device."""

    name: str = ""
    type: DeviceType = DeviceType.UNKNOWN
    private_key: Key = field(default_factory=Key)
    public_key: Key = field(default_factory=Key)
    listen_port: int = 0
    firewall_mark: int = 0
    peers: list[Peer] = field(default_factory=list)


@dataclass
class PeerConfig:
    """Configuration for one peer; fields left as None are not applied."""

    public_key: Key = field(default_factory=Key)
    remove: bool = False
    update_only: bool = False
    preshared_key: Optional[Key] = None
    endpoint: Optional[Endpoint] = None
    persistent_keepalive_interval: Optional[timedelta] = None
    replace_allowed_ips: bool = False
    allowed_ips: list[IPNetwork] = field(default_factory=list)


@dataclass
class Config:
    """Configuration for a device; fields left as None are not applied."""

    private_key: Optional[Key] = None
    listen_port: Optional[int] = None
    firewall_mark: Optional[int] = None
    replace_peers: bool = False
    peers: list[PeerConfig] = field(default_factory=list)