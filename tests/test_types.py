import ipaddress

import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from wgctl.types import (
    KEY_LEN,
    Config,
    Device,
    DeviceType,
    Endpoint,
    Key,
    Peer,
    PeerConfig,
    UpdateOnlyNotSupportedError,
    generate_key,
    generate_private_key,
    new_key,
    parse_key,
    resolve_endpoint,
)


def test_prepared_keys():
    private = "GHuMwljFfqd2a7cs6BaUOmHflK23zME8VNvC5B37S3k="
    public = "aPxGwq8zERHQ3Q1cOZFdJ+cvJX5Ka4mLN38AyYKYF10="

    priv = parse_key(private)
    assert str(priv) == private
    assert str(priv.public_key()) == public


def _key_pair():
    priv = generate_private_key()
    return priv, priv.public_key()


def test_key_exchange():
    priv_a, pub_a = _key_pair()
    priv_b, pub_b = _key_pair()

    shared_a = X25519PrivateKey.from_private_bytes(bytes(priv_a)).exchange(
        X25519PublicKey.from_public_bytes(bytes(pub_b))
    )
    shared_b = X25519PrivateKey.from_private_bytes(bytes(priv_b)).exchange(
        X25519PublicKey.from_public_bytes(bytes(pub_a))
    )
    assert shared_a == shared_b


@pytest.mark.parametrize(
    "fn, arg",
    [
        (parse_key, "xxx"),
        (parse_key, "aGVsbG8="),
        (new_key, b"xxx"),
        (parse_key, "ZGVhZGJlZWZkZWFkYmVlZmRlYWRiZWVmZGVhZGJlZWZkZWFkYmVlZg=="),
        (new_key, b"\xff" * 40),
    ],
    ids=["bad base64", "short base64", "short key", "long base64", "long bytes"],
)
def test_bad_keys(fn, arg):
    with pytest.raises(ValueError):
        fn(arg)


def test_key_string_round_trip():
    key = generate_key()
    assert parse_key(str(key)) == key
    assert len(key) == KEY_LEN


def test_zero_key():
    assert Key().is_zero()
    assert Key() == bytes(KEY_LEN)
    assert not new_key(b"\x01" + bytes(31)).is_zero()


def test_private_key_is_clamped():
    for _ in range(8):
        key = generate_private_key()
        assert key[0] & 7 == 0
        assert key[31] & 128 == 0
        assert key[31] & 64 == 64


def test_public_key_is_deterministic():
    priv = generate_private_key()
    assert priv.public_key() == priv.public_key()
    assert priv.public_key() != priv


def test_key_from_int_rejected():
    with pytest.raises(TypeError):
        Key(32)


@pytest.mark.parametrize(
    "dt, text",
    [
        (DeviceType.LINUX_KERNEL, "Linux kernel"),
        (DeviceType.OPENBSD_KERNEL, "OpenBSD kernel"),
        (DeviceType.FREEBSD_KERNEL, "FreeBSD kernel"),
        (DeviceType.WINDOWS_KERNEL, "Windows kernel"),
        (DeviceType.USERSPACE, "userspace"),
        (DeviceType.UNKNOWN, "unknown"),
    ],
)
def test_device_type_str(dt, text):
    assert str(dt) == text


def test_update_only_error_message():
    err = UpdateOnlyNotSupportedError()
    assert str(err) == "the UpdateOnly flag is not supported by this platform"


@pytest.mark.parametrize(
    "text", ["192.0.2.0:1024", "[::1]:2048", "[fe80::1%eth0]:51820"]
)
def test_endpoint_round_trip(text):
    assert str(resolve_endpoint(text)) == text


def test_endpoint_fields():
    ep = resolve_endpoint("[2001:db8::1]:51820")
    assert ep.ip == ipaddress.ip_address("2001:db8::1")
    assert ep.port == 51820
    assert ep == Endpoint(ipaddress.ip_address("2001:db8::1"), 51820)


@pytest.mark.parametrize(
    "text", ["192.0.2.0", "1:2:3", "192.0.2.0:70000", "[::1]2048", "[::1:2048"]
)
def test_endpoint_errors(text):
    with pytest.raises(ValueError):
        resolve_endpoint(text)


def test_dataclass_defaults():
    d = Device()
    assert d.type is DeviceType.UNKNOWN
    assert d.private_key.is_zero()
    assert d.peers == []

    p = Peer()
    assert p.endpoint is None
    assert p.last_handshake_time is None
    assert p.allowed_ips == []

    cfg = Config()
    assert cfg.private_key is None and cfg.listen_port is None
    assert cfg.replace_peers is False

    pc = PeerConfig()
    assert pc.preshared_key is None
    assert pc.persistent_keepalive_interval is None
    assert pc.allowed_ips == []
    assert PeerConfig().allowed_ips is not pc.allowed_ips