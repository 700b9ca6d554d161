"""Helpers that build test values, raising ValueError when input is invalid."""

from __future__ import annotations

import binascii
import ipaddress

from wgctl.types import (
    Endpoint,
    IPNetwork,
    Key,
    generate_key,
    generate_private_key,
    new_key,
    resolve_endpoint,
)

__all__ = [
    "must_cidr",
    "must_hex_key",
    "must_preshared_key",
    "must_private_key",
    "must_public_key",
    "must_udp_addr",
]


def must_cidr(s: str) -> IPNetwork:
    """Parse a CIDR string into a network, masking off host bits."""
    try:
        return ipaddress.ip_network(s, strict=False)
    except ValueError as err:
        raise ValueError(f"wgtest: failed to parse CIDR: {err}") from err


def must_hex_key(s: str) -> Key:
    """Decode a hex string as a key."""
    try:
        raw = binascii.unhexlify(s)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"wgtest: failed to decode hex key: {err}") from err
    try:
        return new_key(raw)
    except ValueError as err:
        raise ValueError(f"wgtest: failed to create key: {err}") from err


def must_preshared_key() -> Key:
    """Generate a preshared key."""
    return generate_key()


def must_private_key() -> Key:
    """Generate a private key."""
    return generate_private_key()


def must_public_key() -> Key:
    """Generate the public key of a fresh private key."""
    return must_private_key().public_key()


def must_udp_addr(s: str) -> Endpoint:
    """Parse s as a UDP address."""
    try:
        return resolve_endpoint(s)
    except ValueError as err:
        raise ValueError(f"wgtest: failed to resolve UDP address: {err}") from err