"""Inspect and configure WireGuard devices: key types, userspace protocol, kernel structures."""

__version__ = "0.1.0"
__all__ = ["types", "wgtest", "userspace", "userspace_parse", "userspace_configure", "openbsd", "winioctl"]