import io
import ipaddress
from datetime import timedelta

from wgctl.types import Config, Endpoint, Key, PeerConfig, generate_key, generate_private_key
from wgctl.userspace_configure import hex_key, write_config
from wgctl.userspace_parse import parse_device


def test_hex_key():
    assert hex_key(Key(b"\x01" * 32)) == "01" * 32


def test_empty_config_writes_nothing():
    assert write_config(Config()) == ""


def test_full_config():
    priv = generate_private_key()
    peer_key = generate_key()
    psk = Key()
    cfg = Config(
        private_key=priv,
        listen_port=51820,
        firewall_mark=0,
        replace_peers=True,
        peers=[
            PeerConfig(
                public_key=peer_key,
                remove=True,
                update_only=True,
                preshared_key=psk,
                endpoint=Endpoint(ipaddress.ip_address("2001:db8::1"), 51820),
                persistent_keepalive_interval=timedelta(seconds=25.9),
                replace_allowed_ips=True,
                allowed_ips=[
                    ipaddress.ip_network("192.168.1.0/24"),
                    ipaddress.ip_network("fd00::/64"),
                ],
            )
        ],
    )
    assert write_config(cfg).splitlines() == [
        f"private_key={hex_key(priv)}",
        "listen_port=51820",
        "fwmark=0",
        "replace_peers=true",
        f"public_key={hex_key(peer_key)}",
        "remove=true",
        "update_only=true",
        f"preshared_key={hex_key(psk)}",
        "endpoint=[2001:db8::1]:51820",
        "persistent_keepalive_interval=25",
        "replace_allowed_ips=true",
        "allowed_ip=192.168.1.0/24",
        "allowed_ip=fd00::/64",
    ]


def test_output_lines_end_with_newline():
    text = write_config(Config(listen_port=1, firewall_mark=2))
    assert text.endswith("\n")
    assert all("=" in line for line in text.splitlines())


def test_round_trip_through_parser():
    priv = generate_private_key()
    peers = [
        PeerConfig(
            public_key=generate_key(),
            preshared_key=generate_key(),
            endpoint=Endpoint(ipaddress.ip_address("192.0.2.1"), 51820),
            persistent_keepalive_interval=timedelta(seconds=25),
            allowed_ips=[ipaddress.ip_network("10.0.0.0/8")],
        ),
        PeerConfig(public_key=generate_key()),
    ]
    cfg = Config(private_key=priv, listen_port=4242, firewall_mark=3, peers=peers)
    device = parse_device(io.StringIO(write_config(cfg) + "\n"))
    assert device.private_key == priv
    assert device.public_key == priv.public_key()
    assert device.listen_port == 4242
    assert device.firewall_mark == 3
    assert [p.public_key for p in device.peers] == [p.public_key for p in peers]
    first = device.peers[0]
    assert first.preshared_key == peers[0].preshared_key
    assert first.endpoint == peers[0].endpoint
    assert first.persistent_keepalive_interval == timedelta(seconds=25)
    assert first.allowed_ips == peers[0].allowed_ips
    assert device.peers[1].allowed_ips == []