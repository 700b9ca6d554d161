"""Memory layouts used to read and write WireGuard configuration on Windows."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Optional, Union

__all__ = [
    "IOCTL_GET",
    "IOCTL_SET",
    "AddressFamily",
    "PeerFlag",
    "InterfaceFlag",
    "RawSockaddrInet",
    "AllowedIP",
    "Peer",
    "Interface",
    "ConfigBuilder",
    "parse_config",
]

IOCTL_GET = 0xB098C506
IOCTL_SET = 0xB098C509

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_SOCKADDR = struct.Struct("<H26s")
_ALLOWED_IP = struct.Struct("<16sHB5x")
_PEER = struct.Struct("<II32s32sH2x28sQQQI4x")
_INTERFACE = struct.Struct("<IH32s32s2xI4x")

_SOCKADDR_DATA_LEN = 26


class AddressFamily(IntEnum):
    """Protocol families as numbered by Windows."""

    AF_UNSPEC = 0
    AF_INET = 2
    AF_INET6 = 23


class PeerFlag(IntFlag):
    """Which fields of a Peer are meaningful, and what to do with the peer."""

    HAS_PUBLIC_KEY = 1 << 0
    HAS_PRESHARED_KEY = 1 << 1
    HAS_PERSISTENT_KEEPALIVE = 1 << 2
    HAS_ENDPOINT = 1 << 3
    HAS_PROTOCOL_VERSION = 1 << 4
    REPLACE_ALLOWED_IPS = 1 << 5
    REMOVE = 1 << 6
    UPDATE_ONLY = 1 << 7


class InterfaceFlag(IntFlag):
    """Which fields of an Interface are meaningful."""

    HAS_PUBLIC_KEY = 1 << 0
    HAS_PRIVATE_KEY = 1 << 1
    HAS_LISTEN_PORT = 1 << 2
    REPLACE_PEERS = 1 << 3


def _fixed(value: bytes, size: int, what: str) -> bytes:
    raw = bytes(value)
    if len(raw) != size:
        raise ValueError(f"ioctl: {what} must be {size} bytes, got {len(raw)}")
    return raw


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    try:
        return layout.unpack_from(data)
    except struct.error as err:
        raise ValueError(f"ioctl: truncated {what}: {err}") from err


def _pack(layout: struct.Struct, what: str, *values: object) -> bytes:
    try:
        return layout.pack(*values)
    except struct.error as err:
        raise ValueError(f"ioctl: invalid {what}: {err}") from err


@dataclass
class RawSockaddrInet:
    """A socket address holding an IPv4 or IPv6 address, or only a family."""

    family: int = AddressFamily.AF_UNSPEC
    data: bytes = bytes(_SOCKADDR_DATA_LEN)

    def set_ip(self, ip: Union[str, bytes, IPAddress], port: int) -> None:
        """Set family, address and port; every other member becomes zero."""
        address = ipaddress.ip_address(ip)
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"ioctl: invalid port {port}")
        if address.version == 6 and address.ipv4_mapped is not None:
            address = address.ipv4_mapped
        port_bytes = struct.pack(">H", port)
        if address.version == 4:
            self.family = AddressFamily.AF_INET
            body = port_bytes + address.packed
        else:
            self.family = AddressFamily.AF_INET6
            body = port_bytes + bytes(4) + address.packed
        self.data = body.ljust(_SOCKADDR_DATA_LEN, b"\x00")

    def ip(self) -> Optional[IPAddress]:
        """Return the IPv4 or IPv6 address, or None for any other family."""
        if self.family == AddressFamily.AF_INET:
            return ipaddress.IPv4Address(bytes(self.data[2:6]))
        if self.family == AddressFamily.AF_INET6:
            return ipaddress.IPv6Address(bytes(self.data[6:22]))
        return None

    def port(self) -> int:
        """Return the port for IPv4 or IPv6 addresses, otherwise 0."""
        if self.family in (AddressFamily.AF_INET, AddressFamily.AF_INET6):
            return struct.unpack_from(">H", self.data, 0)[0]
        return 0

    def pack(self) -> bytes:
        """Encode the address in its in-memory layout."""
        return _pack(
            _SOCKADDR, "socket address",
            int(self.family), _fixed(self.data, _SOCKADDR_DATA_LEN, "address data"),
        )

    @classmethod
    def unpack(cls, data: bytes) -> "RawSockaddrInet":
        """Decode an address from the start of data."""
        family, body = _unpack(_SOCKADDR, data, "socket address")
        return cls(family, body)


@dataclass
class AllowedIP:
    """An allowed IP range of a peer."""

    address: bytes = bytes(16)
    address_family: int = AddressFamily.AF_UNSPEC
    cidr: int = 0

    def pack(self) -> bytes:
        """Encode the allowed IP in its in-memory layout."""
        return _pack(
            _ALLOWED_IP, "allowed IP",
            _fixed(self.address, 16, "address"), int(self.address_family), self.cidr,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "AllowedIP":
        """Decode an allowed IP from the start of data."""
        address, family, cidr = _unpack(_ALLOWED_IP, data, "allowed IP")
        return cls(address, family, cidr)


@dataclass
class Peer:
    """A peer record; its allowed IPs follow it in memory."""

    flags: PeerFlag = PeerFlag(0)
    protocol_version: int = 0
    public_key: bytes = bytes(32)
    preshared_key: bytes = bytes(32)
    persistent_keepalive: int = 0
    endpoint: RawSockaddrInet = field(default_factory=RawSockaddrInet)
    tx_bytes: int = 0
    rx_bytes: int = 0
    last_handshake: int = 0
    allowed_ips_count: int = 0

    def pack(self) -> bytes:
        """Encode the peer in its in-memory layout."""
        return _pack(
            _PEER, "peer",
            int(self.flags), self.protocol_version,
            _fixed(self.public_key, 32, "public key"),
            _fixed(self.preshared_key, 32, "preshared key"),
            self.persistent_keepalive, self.endpoint.pack(),
            self.tx_bytes, self.rx_bytes, self.last_handshake, self.allowed_ips_count,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Peer":
        """Decode a peer from the start of data."""
        (flags, version, public, psk, keepalive, endpoint,
         tx, rx, handshake, count) = _unpack(_PEER, data, "peer")
        return cls(
            PeerFlag(flags), version, public, psk, keepalive,
            RawSockaddrInet.unpack(endpoint), tx, rx, handshake, count,
        )


@dataclass
class Interface:
    """The interface header; its peers follow it in memory."""

    flags: InterfaceFlag = InterfaceFlag(0)
    listen_port: int = 0
    private_key: bytes = bytes(32)
    public_key: bytes = bytes(32)
    peer_count: int = 0

    def pack(self) -> bytes:
        """Encode the interface in its in-memory layout."""
        return _pack(
            _INTERFACE, "interface",
            int(self.flags), self.listen_port,
            _fixed(self.private_key, 32, "private key"),
            _fixed(self.public_key, 32, "public key"),
            self.peer_count,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Interface":
        """Decode an interface from the start of data."""
        flags, port, private, public, count = _unpack(_INTERFACE, data, "interface")
        return cls(InterfaceFlag(flags), port, private, public, count)


class ConfigBuilder:
    """Accumulates an interface, its peers and their allowed IPs into one buffer."""

    def __init__(self) -> None:
        self._buffer: Optional[bytearray] = None

    def preallocate(self, size: int) -> None:
        """Start an empty buffer sized for size bytes, unless one exists already."""
        if size < 0:
            raise ValueError(f"ioctl: invalid size {size}")
        if self._buffer is None:
            self._buffer = bytearray()

    def _append(self, raw: bytes) -> None:
        if self._buffer is None:
            self._buffer = bytearray()
        self._buffer += raw

    def append_interface(self, interface: Interface) -> None:
        """Append an interface header."""
        self._append(interface.pack())

    def append_peer(self, peer: Peer) -> None:
        """Append a peer record."""
        self._append(peer.pack())

    def append_allowed_ip(self, allowed_ip: AllowedIP) -> None:
        """Append an allowed IP record."""
        self._append(allowed_ip.pack())

    def interface(self) -> tuple[Optional[bytes], int]:
        """Return the buffer starting with the interface and its size, or (None, 0)."""
        if not self._buffer:
            return None, 0
        return bytes(self._buffer), len(self._buffer)


def parse_config(data: bytes) -> tuple[Interface, list[tuple[Peer, list[AllowedIP]]]]:
    """Decode an interface followed by its peers and each peer's allowed IPs."""
    view = memoryview(bytes(data))
    interface = Interface.unpack(view)
    offset = _INTERFACE.size
    peers: list[tuple[Peer, list[AllowedIP]]] = []
    for _ in range(interface.peer_count):
        peer = Peer.unpack(view[offset:])
        offset += _PEER.size
        allowed: list[AllowedIP] = []
        for _ in range(peer.allowed_ips_count):
            allowed.append(AllowedIP.unpack(view[offset:]))
            offset += _ALLOWED_IP.size
        peers.append((peer, allowed))
    return interface, peers