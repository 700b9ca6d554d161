"""Textual configuration for the userspace WireGuard protocol."""

from __future__ import annotations

from wgctl.types import Config, Key

__all__ = ["write_config", "hex_key"]


def hex_key(key: Key) -> str:
    """Encode a key as a lower-case hexadecimal string."""
    return bytes(key).hex()


def write_config(cfg: Config) -> str:
    """Render the ``key=value`` lines that apply cfg to a device."""
    lines: list[str] = []

    if cfg.private_key is not None:
        lines.append(f"private_key={hex_key(cfg.private_key)}")
    if cfg.listen_port is not None:
        lines.append(f"listen_port={cfg.listen_port}")
    if cfg.firewall_mark is not None:
        lines.append(f"fwmark={cfg.firewall_mark}")
    if cfg.replace_peers:
        lines.append("replace_peers=true")

    for peer in cfg.peers:
        lines.append(f"public_key={hex_key(peer.public_key)}")
        if peer.remove:
            lines.append("remove=true")
        if peer.update_only:
            lines.append("update_only=true")
        if peer.preshared_key is not None:
            lines.append(f"preshared_key={hex_key(peer.preshared_key)}")
        if peer.endpoint is not None:
            lines.append(f"endpoint={peer.endpoint}")
        if peer.persistent_keepalive_interval is not None:
            seconds = int(peer.persistent_keepalive_interval.total_seconds())
            lines.append(f"persistent_keepalive_interval={seconds}")
        if peer.replace_allowed_ips:
            lines.append("replace_allowed_ips=true")
        lines.extend(f"allowed_ip={network}" for network in peer.allowed_ips)

    return "".join(f"{line}\n" for line in lines)