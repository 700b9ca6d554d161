"""Parsing of device information sent by userspace WireGuard implementations."""

from __future__ import annotations

import binascii
import ipaddress
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Union

from wgctl.types import (
    Device,
    IPNetwork,
    Key,
    Peer,
    new_key,
    resolve_endpoint,
)

__all__ = ["parse_device"]

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _parse_int(s: str) -> int:
    if not _INT_RE.fullmatch(s):
        raise ValueError(f"wguser: invalid integer {s!r}")
    value = int(s)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"wguser: integer out of range {s!r}")
    return value


def _parse_key(s: str) -> Key:
    try:
        raw = binascii.unhexlify(s)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"wguser: invalid hex key: {err}") from err
    return new_key(raw)


def _parse_cidr(s: str) -> IPNetwork:
    _, sep, prefix = s.partition("/")
    if not sep or not prefix or not (prefix.isascii() and prefix.isdigit()):
        raise ValueError(f"wguser: invalid CIDR address: {s}")
    try:
        return ipaddress.ip_network(s, strict=False)
    except ValueError as err:
        raise ValueError(f"wguser: invalid CIDR address: {s}") from err


def _handshake_time(sec: int, nsec: int) -> datetime:
    try:
        return datetime.fromtimestamp(sec, tz=timezone.utc) + timedelta(
            microseconds=nsec // 1000
        )
    except (OverflowError, OSError, ValueError) as err:
        raise ValueError(f"wguser: invalid handshake time {sec}.{nsec}") from err


class _DeviceParser:
    """Accumulates a Device and its peers from key/value pairs."""

    def __init__(self) -> None:
        self.device = Device()
        self._in_peers = False
        self._hs_sec = 0
        self._hs_nsec = 0

    def feed(self, key: str, value: str) -> None:
        if key == "errno":
            errno = _parse_int(value)
            if errno != 0:
                raise OSError(errno, f"wguser: errno={errno}")
        elif key == "public_key":
            # The first or next peer begins here.
            self._in_peers = True
            self.device.peers.append(Peer(public_key=_parse_key(value)))
            return

        if self._in_peers:
            self._feed_peer(self.device.peers[-1], key, value)
            return

        if key == "private_key":
            self.device.private_key = _parse_key(value)
        elif key == "listen_port":
            self.device.listen_port = _parse_int(value)
        elif key == "fwmark":
            self.device.firewall_mark = _parse_int(value)

    def _feed_peer(self, peer: Peer, key: str, value: str) -> None:
        if key == "preshared_key":
            peer.preshared_key = _parse_key(value)
        elif key == "endpoint":
            peer.endpoint = resolve_endpoint(value)
        elif key == "last_handshake_time_sec":
            self._hs_sec = _parse_int(value)
        elif key == "last_handshake_time_nsec":
            self._hs_nsec = _parse_int(value)
            # Both zero means no handshake has ever taken place.
            if self._hs_sec > 0 and self._hs_nsec > 0:
                peer.last_handshake_time = _handshake_time(self._hs_sec, self._hs_nsec)
        elif key == "tx_bytes":
            peer.transmit_bytes = _parse_int(value)
        elif key == "rx_bytes":
            peer.receive_bytes = _parse_int(value)
        elif key == "persistent_keepalive_interval":
            peer.persistent_keepalive_interval = timedelta(seconds=_parse_int(value))
        elif key == "allowed_ip":
            peer.allowed_ips.append(_parse_cidr(value))
        elif key == "protocol_version":
            peer.protocol_version = _parse_int(value)

    def finish(self) -> Device:
        self.device.public_key = self.device.private_key.public_key()
        return self.device


def _strip_line(raw: Union[str, bytes]) -> str:
    line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def parse_device(reader: Iterable[Union[str, bytes]]) -> Device:
    """Parse a Device and its peers from a stream of ``key=value`` lines.

    Parsing stops at the first empty line or at the end of the stream.
    """
    parser = _DeviceParser()
    for raw in reader:
        line = _strip_line(raw)
        if not line:
            break
        parts = line.split("=")
        if len(parts) != 2:
            raise ValueError(f"wguser: invalid key=value pair: {line!r}")
        parser.feed(parts[0], parts[1])
    return parser.finish()