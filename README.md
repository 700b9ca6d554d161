# wgctl

`wgctl` reads and changes the configuration of WireGuard devices from Python.

The package has these modules:

- **`wgctl.types`** holds the key and configuration types. These are `Key`, `Device`, `Peer`, `Config`, `PeerConfig`, `Endpoint` and `DeviceType`, along with `UpdateOnlyNotSupportedError`.
  - Keys are made with `generate_key()`, `generate_private_key()`, `new_key()` and `parse_key()`.
  - `Key.public_key()` computes the Curve25519 public key.
  - `resolve_endpoint()` turns a `host:port` string into an `Endpoint`.
- **`wgctl.userspace`** is a client for userspace devices. It speaks the WireGuard cross-platform configuration protocol over the UNIX sockets in `/var/run/wireguard`.
- **`wgctl.userspace_parse`** and **`wgctl.userspace_configure`** read and write the protocol's `key=value` text.
- **`wgctl.openbsd`** gives read-only access to OpenBSD kernel devices. It decodes the kernel's `wg_data_io` layout into `Device` values.
- **`wgctl.winioctl`** packs and unpacks the interface, peer and allowed-IP records used by the Windows driver.
- **`wgctl.wgtest`** has small helpers that build values for tests.

## Installation

```
pip install wgctl
```

Python 3.10 or later is required. The only dependency is `cryptography`.

## Keys

```python
from wgctl.types import generate_private_key, parse_key

private = generate_private_key()
print(private)               # standard base64
print(private.public_key())  # base64 of the matching public key

key = parse_key(str(private))
assert key == private
```

`parse_key` raises `ValueError` on invalid base64. `new_key` and `Key(...)` raise `ValueError` for anything other than exactly 32 bytes. `Key()` is the all-zero key, and `key.is_zero()` tests for it.

## Userspace devices

```python
from wgctl.userspace import Client
from wgctl.types import Config, PeerConfig, resolve_endpoint
from wgctl.wgtest import must_cidr, must_public_key

with Client() as client:
    for device in client.devices():
        print(device.name, device.type, device.listen_port, len(device.peers))

    client.configure_device(
        "wg0",
        Config(
            listen_port=51820,
            peers=[
                PeerConfig(
                    public_key=must_public_key(),
                    endpoint=resolve_endpoint("192.0.2.1:51820"),
                    allowed_ips=[must_cidr("10.0.0.0/24")],
                )
            ],
        ),
    )
```

`Client(dial, find)` accepts two replacement callables:

- `dial(path)` returns a connected socket.
- `find()` returns a list of socket paths.

Both default to `wgctl.userspace.dial` and `wgctl.userspace.find`. `find_unix_sockets(dirs)` lists the socket files in the given directories. `device_name(path)` gives the device name for a socket path.

Errors:

- `Client.device` and `Client.configure_device` raise `FileNotFoundError` when no device has the given name.
- A non-zero `errno` from the device raises `OSError`.

You can build the configuration text without opening a socket:

```python
from wgctl.types import Config
from wgctl.userspace_configure import write_config

print(write_config(Config(listen_port=51820)))
```

A stream of `key=value` lines can be parsed directly. Parsing stops at the first empty line:

```python
import io
from wgctl.userspace_parse import parse_device

device = parse_device(io.StringIO("listen_port=51820\nerrno=0\n\n"))
```

## Kernel structures

`wgctl.openbsd.Client(ioctl_ifgroupreq, ioctl_wg_data_io, close)` lists devices and reads them. Each ioctl hook receives a mutable `IfGroupRequest` or `DataIO` and fills it in. If you leave a hook out, the client opens an `AF_INET` socket and issues the ioctl itself.

- `Client.device` raises `FileNotFoundError` when the kernel reports `ENXIO` or `ENOTTY`.
- `Client.configure_device` raises `ReadOnlyError` for a device that exists.
- `parse_device(name, data)` decodes a kernel buffer. To build test buffers, use `InterfaceIO`, `PeerIO` and `AllowedIPIO`, each of which has a `pack()` method, together with `pack_sockaddr()`.

In `wgctl.winioctl`, `parse_config(data)` decodes a buffer laid out by the Windows driver into an `Interface` and its peers. `ConfigBuilder` puts such a buffer together from `Interface`, `Peer` and `AllowedIP` records.

## Testing helpers

`wgctl.wgtest` provides these helpers:

- `must_cidr`
- `must_hex_key`
- `must_private_key`
- `must_public_key`
- `must_preshared_key`
- `must_udp_addr`

The parsing helpers raise `ValueError` on invalid input.

## What it does not do

- The package does not talk to the Linux or FreeBSD kernel implementations.
- It does not reach Windows devices over named pipes or through the driver. `wgctl.winioctl` only handles the record layouts.
- It does not pick a backend for you: choose the client you need.
- OpenBSD devices can be read but not configured.
- There is no command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```