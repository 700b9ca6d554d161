"""Read-only access to WireGuard devices through the OpenBSD ioctl interface."""

from __future__ import annotations

import array
import errno
import ipaddress
import socket
import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

from wgctl.types import Config, Device, DeviceType, Endpoint, IPNetwork, Key, Peer

__all__ = [
    "IFNAMSIZ",
    "IF_GROUP_WG",
    "SIOCGWG",
    "SIOCGIFGMEMB",
    "SIZEOF_IFGREQ",
    "SIZEOF_WG_AIP_IO",
    "SIZEOF_WG_INTERFACE_IO",
    "SIZEOF_WG_PEER_IO",
    "WG_INTERFACE_HAS_PUBLIC",
    "WG_INTERFACE_HAS_PRIVATE",
    "WG_INTERFACE_HAS_PORT",
    "WG_INTERFACE_HAS_RTABLE",
    "WG_INTERFACE_REPLACE_PEERS",
    "WG_PEER_HAS_PUBLIC",
    "WG_PEER_HAS_PSK",
    "WG_PEER_HAS_PKA",
    "WG_PEER_HAS_ENDPOINT",
    "AF_INET",
    "AF_INET6",
    "ReadOnlyError",
    "IfGroupRequest",
    "DataIO",
    "InterfaceIO",
    "PeerIO",
    "AllowedIPIO",
    "Client",
    "device_name",
    "parse_device",
    "parse_endpoint",
    "pack_sockaddr",
]

IFNAMSIZ = 16

# Address families as numbered by the OpenBSD kernel.
AF_INET = 2
AF_INET6 = 24

SIOCGWG = 0xC02069D3
SIOCGIFGMEMB = 0xC028698A

WG_INTERFACE_HAS_PUBLIC = 0x1
WG_INTERFACE_HAS_PRIVATE = 0x2
WG_INTERFACE_HAS_PORT = 0x4
WG_INTERFACE_HAS_RTABLE = 0x8
WG_INTERFACE_REPLACE_PEERS = 0x10

WG_PEER_HAS_PUBLIC = 0x1
WG_PEER_HAS_PSK = 0x2
WG_PEER_HAS_PKA = 0x4
WG_PEER_HAS_ENDPOINT = 0x8

_IFGREQ = struct.Struct("<16s")
_IFGROUPREQ = struct.Struct("<16sI4xQ8x")
_DATA_IO = struct.Struct("<16sQQ")
_INTERFACE_IO = struct.Struct("<BxHi32s32sQ")
_PEER_IO = struct.Struct("<ii32s32sH2x28sQQqqQ")
_AIP_IO = struct.Struct("<B3xi16s")

SIZEOF_IFGREQ = _IFGREQ.size
SIZEOF_WG_INTERFACE_IO = _INTERFACE_IO.size
SIZEOF_WG_PEER_IO = _PEER_IO.size
SIZEOF_WG_AIP_IO = _AIP_IO.size

_SOCKADDR_LEN = 28
_SOCKADDR_IN4_LEN = 16

# The WireGuard interface group name passed to the kernel.
IF_GROUP_WG = b"wg".ljust(IFNAMSIZ, b"\x00")


class ReadOnlyError(Exception):
    """The device is managed by a driver that cannot be configured."""

    def __init__(self, message: str = "wginternal: device is read-only"):
        super().__init__(message)


@dataclass
class IfGroupRequest:
    """A request for the members of an interface group.

    ``length`` is the size in bytes of the member list; ``groups`` holds one
    16-byte name field per member once allocated.
    """

    name: bytes = IF_GROUP_WG
    length: int = 0
    groups: Optional[list[bytes]] = None


@dataclass
class DataIO:
    """A WireGuard data request: device name, buffer size and buffer."""

    name: bytes = bytes(IFNAMSIZ)
    size: int = 0
    interface: Optional[bytes] = None


@dataclass
class InterfaceIO:
    """The interface header written by the kernel."""

    flags: int = 0
    port: int = 0
    rtable: int = 0
    public: bytes = bytes(32)
    private: bytes = bytes(32)
    peers_count: int = 0

    def pack(self) -> bytes:
        """Encode the structure in the kernel's memory layout."""
        return _INTERFACE_IO.pack(
            self.flags, self.port, self.rtable, bytes(self.public),
            bytes(self.private), self.peers_count,
        )

    @classmethod
    def _unpack(cls, data: bytes, offset: int = 0) -> "InterfaceIO":
        return cls(*_INTERFACE_IO.unpack_from(data, offset))


@dataclass
class PeerIO:
    """A peer record following the interface header."""

    flags: int = 0
    protocol_version: int = 0
    public: bytes = bytes(32)
    psk: bytes = bytes(32)
    pka: int = 0
    endpoint: bytes = bytes(_SOCKADDR_LEN)
    txbytes: int = 0
    rxbytes: int = 0
    last_handshake_sec: int = 0
    last_handshake_nsec: int = 0
    aips_count: int = 0

    def pack(self) -> bytes:
        """Encode the structure in the kernel's memory layout."""
        return _PEER_IO.pack(
            self.flags, self.protocol_version, bytes(self.public), bytes(self.psk),
            self.pka, bytes(self.endpoint), self.txbytes, self.rxbytes,
            self.last_handshake_sec, self.last_handshake_nsec, self.aips_count,
        )

    @classmethod
    def _unpack(cls, data: bytes, offset: int = 0) -> "PeerIO":
        return cls(*_PEER_IO.unpack_from(data, offset))


@dataclass
class AllowedIPIO:
    """An allowed IP record following its peer."""

    af: int = 0
    cidr: int = 0
    addr: bytes = bytes(16)

    def pack(self) -> bytes:
        """Encode the structure in the kernel's memory layout."""
        return _AIP_IO.pack(self.af, self.cidr, bytes(self.addr))

    @classmethod
    def _unpack(cls, data: bytes, offset: int = 0) -> "AllowedIPIO":
        return cls(*_AIP_IO.unpack_from(data, offset))


def device_name(name: str) -> bytes:
    """Encode an interface name into the fixed-size field the kernel expects."""
    raw = name.encode()
    if len(raw) > IFNAMSIZ:
        raise ValueError(f"wgopenbsd: interface name {name!r} too long")
    return raw.ljust(IFNAMSIZ, b"\x00")


def pack_sockaddr(ip, port: int) -> bytes:
    """Encode an IP address and port as a 28-byte BSD socket address."""
    address = ipaddress.ip_address(ip)
    if address.version == 4:
        raw = struct.pack("<BB", _SOCKADDR_IN4_LEN, AF_INET) + struct.pack(">H", port)
        raw += address.packed + bytes(8)
    else:
        raw = struct.pack("<BB", _SOCKADDR_LEN, AF_INET6) + struct.pack(">H", port)
        raw += bytes(4) + address.packed + bytes(4)
    return raw.ljust(_SOCKADDR_LEN, b"\x00")


def parse_endpoint(ep: bytes) -> Optional[Endpoint]:
    """Decode a peer endpoint from a socket address, or None if none is set."""
    if len(ep) < _SOCKADDR_LEN:
        raise ValueError(f"wgopenbsd: endpoint too short: {len(ep)} bytes")
    family = ep[1]
    (port,) = struct.unpack_from(">H", ep, 2)
    if family == AF_INET:
        return Endpoint(ipaddress.IPv4Address(bytes(ep[4:8])), port)
    if family == AF_INET6:
        return Endpoint(ipaddress.IPv6Address(bytes(ep[8:24])), port)
    return None


def _parse_allowed_ip(aip: AllowedIPIO) -> IPNetwork:
    if aip.af == AF_INET:
        return ipaddress.ip_network(
            (ipaddress.IPv4Address(bytes(aip.addr[:4])), aip.cidr), strict=False
        )
    if aip.af == AF_INET6:
        return ipaddress.ip_network(
            (ipaddress.IPv6Address(bytes(aip.addr)), aip.cidr), strict=False
        )
    raise ValueError(f"wgopenbsd: invalid address family for allowed IP: {aip!r}")


def _parse_peer(pio: PeerIO) -> Peer:
    peer = Peer(
        receive_bytes=pio.rxbytes,
        transmit_bytes=pio.txbytes,
        protocol_version=pio.protocol_version,
    )
    # Only a fully non-zero timestamp counts as a handshake.
    if pio.last_handshake_sec > 0 and pio.last_handshake_nsec > 0:
        peer.last_handshake_time = datetime.fromtimestamp(
            pio.last_handshake_sec, tz=timezone.utc
        ) + timedelta(microseconds=pio.last_handshake_nsec // 1000)
    if pio.flags & WG_PEER_HAS_PUBLIC:
        peer.public_key = Key(pio.public)
    if pio.flags & WG_PEER_HAS_PSK:
        peer.preshared_key = Key(pio.psk)
    if pio.flags & WG_PEER_HAS_PKA:
        peer.persistent_keepalive_interval = timedelta(seconds=pio.pka)
    if pio.flags & WG_PEER_HAS_ENDPOINT:
        peer.endpoint = parse_endpoint(pio.endpoint)
    return peer


def parse_device(name: str, data: bytes) -> Device:
    """Decode a device with its peers and allowed IPs from a kernel buffer."""
    data = bytes(data)
    try:
        ifio = InterfaceIO._unpack(data)
        device = Device(name=name, type=DeviceType.OPENBSD_KERNEL)
        if ifio.flags & WG_INTERFACE_HAS_PRIVATE:
            device.private_key = Key(ifio.private)
        if ifio.flags & WG_INTERFACE_HAS_PUBLIC:
            device.public_key = Key(ifio.public)
        if ifio.flags & WG_INTERFACE_HAS_PORT:
            device.listen_port = ifio.port
        if ifio.flags & WG_INTERFACE_HAS_RTABLE:
            device.firewall_mark = ifio.rtable

        offset = SIZEOF_WG_INTERFACE_IO
        for _ in range(ifio.peers_count):
            pio = PeerIO._unpack(data, offset)
            offset += SIZEOF_WG_PEER_IO
            peer = _parse_peer(pio)
            for _ in range(pio.aips_count):
                peer.allowed_ips.append(_parse_allowed_ip(AllowedIPIO._unpack(data, offset)))
                offset += SIZEOF_WG_AIP_IO
            device.peers.append(peer)
    except struct.error as err:
        raise ValueError(f"wgopenbsd: truncated device data: {err}") from err
    return device


def _chunks(raw: bytes, size: int) -> Iterator[bytes]:
    view = memoryview(raw)
    while view:
        yield bytes(view[:size])
        view = view[size:]


def _default_ifgroupreq(fd: int) -> Callable[[IfGroupRequest], None]:
    def call(ifg: IfGroupRequest) -> None:
        import fcntl

        buf = None
        address = 0
        if ifg.groups is not None:
            buf = array.array("B", b"".join(ifg.groups))
            address = buf.buffer_info()[0]
        request = bytearray(_IFGROUPREQ.pack(ifg.name, ifg.length, address))
        fcntl.ioctl(fd, SIOCGIFGMEMB, request, True)
        _, ifg.length, _ = _IFGROUPREQ.unpack(request)
        if buf is not None:
            ifg.groups = list(_chunks(buf.tobytes(), SIZEOF_IFGREQ))

    return call


def _default_wg_data_io(fd: int) -> Callable[[DataIO], None]:
    def call(data: DataIO) -> None:
        import fcntl

        buf = None
        address = 0
        if data.interface is not None:
            buf = array.array("B", bytes(data.interface))
            address = buf.buffer_info()[0]
        request = bytearray(_DATA_IO.pack(data.name, data.size, address))
        fcntl.ioctl(fd, SIOCGWG, request, True)
        _, data.size, _ = _DATA_IO.unpack(request)
        if buf is not None:
            data.interface = buf.tobytes()

    return call


class Client:
    """Access to OpenBSD kernel WireGuard devices.

    The ioctl hooks receive a mutable request and fill it in, raising OSError
    on failure. Missing hooks are backed by ioctls on an AF_INET socket.
    """

    def __init__(
        self,
        ioctl_ifgroupreq: Optional[Callable[[IfGroupRequest], None]] = None,
        ioctl_wg_data_io: Optional[Callable[[DataIO], None]] = None,
        close: Optional[Callable[[], None]] = None,
    ) -> None:
        self._sock: Optional[socket.socket] = None
        if ioctl_ifgroupreq is None or ioctl_wg_data_io is None:
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            fd = self._sock.fileno()
            if ioctl_ifgroupreq is None:
                ioctl_ifgroupreq = _default_ifgroupreq(fd)
            if ioctl_wg_data_io is None:
                ioctl_wg_data_io = _default_wg_data_io(fd)
        self._ioctl_ifgroupreq = ioctl_ifgroupreq
        self._ioctl_wg_data_io = ioctl_wg_data_io
        self._close = close

    def close(self) -> None:
        """Release the control socket and run the close hook, if any."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if self._close is not None:
            self._close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def devices(self) -> list[Device]:
        """Return every device in the WireGuard interface group."""
        ifg = IfGroupRequest(name=IF_GROUP_WG)
        self._ioctl_ifgroupreq(ifg)
        count = ifg.length // SIZEOF_IFGREQ
        if count == 0:
            return []
        ifg.groups = [bytes(SIZEOF_IFGREQ)] * count
        self._ioctl_ifgroupreq(ifg)
        names = [group.rstrip(b"\x00").decode() for group in ifg.groups]
        return [self.device(name) for name in names]

    def device(self, name: str) -> Device:
        """Return the device called name, or raise FileNotFoundError."""
        data = DataIO(name=device_name(name))
        allocated = 0
        while True:
            try:
                self._ioctl_wg_data_io(data)
            except OSError as err:
                if err.errno in (errno.ENXIO, errno.ENOTTY):
                    raise FileNotFoundError(
                        errno.ENOENT, f"no such WireGuard device: {name}"
                    ) from err
                raise
            if allocated >= data.size:
                break
            if data.size < SIZEOF_WG_INTERFACE_IO:
                raise ValueError(
                    "wgopenbsd: kernel returned unexpected number of bytes "
                    f"for WGInterfaceIO: {data.size}"
                )
            allocated = data.size
            data.interface = bytes(allocated)
        return parse_device(name, data.interface or b"")

    def configure_device(self, name: str, cfg: Config) -> None:
        """Refuse configuration: raise ReadOnlyError if the device exists."""
        self.device(name)
        raise ReadOnlyError()