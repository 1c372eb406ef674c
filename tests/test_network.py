import ipaddress
import socket
from collections import namedtuple

import pytest
from mock import patch

from p2plocate import network
from p2plocate.network import (
    compute_broadcast_address,
    get_ipv4_addresses,
    get_local_ipv4_addresses,
    broadcast_address_for,
    get_local_broadcast_address,
)

InterfaceAddress = namedtuple(
    "InterfaceAddress", ["family", "address", "netmask", "broadcast", "ptp"]
)
InterfaceStats = namedtuple("InterfaceStats", ["isup", "duplex", "speed", "mtu"])


def make_addr(address, netmask):
    return InterfaceAddress(
        family=socket.AF_INET,
        address=address,
        netmask=netmask,
        broadcast=None,
        ptp=None,
    )


def make_stats(isup):
    return InterfaceStats(isup=isup, duplex=0, speed=0, mtu=1500)


@pytest.fixture
def interfaces():
    addrs = {
        "lo": [make_addr("127.0.0.1", "255.0.0.0")],
        "eth0": [make_addr("192.168.1.20", "255.255.255.0")],
        "eth1": [make_addr("10.1.2.3", "255.255.0.0")],
        "down0": [make_addr("172.16.0.5", "255.255.0.0")],
    }
    stats = {
        "lo": make_stats(True),
        "eth0": make_stats(True),
        "eth1": make_stats(True),
        "down0": make_stats(False),
    }
    with patch.object(network.psutil, "net_if_addrs", return_value=addrs), patch.object(
        network.psutil, "net_if_stats", return_value=stats
    ):
        yield


@pytest.mark.parametrize(
    "address, netmask, expected",
    [
        ("192.168.1.1", "255.255.255.0", "192.168.1.255"),
        ("192.168.1.2", "255.255.0.0", "192.168.255.255"),
        ("10.0.3.7", "255.0.0.0", "10.255.255.255"),
        ("172.16.5.4", "255.255.255.252", "172.16.5.7"),
        ("127.0.0.1", "255.0.0.0", "127.255.255.255"),
        ("192.168.1.1", "255.255.255.255", "192.168.1.1"),
    ],
)
def test_compute_broadcast_address(address, netmask, expected):
    assert compute_broadcast_address(address, netmask) == expected


@pytest.mark.parametrize(
    "address, netmask",
    [("192.168.1.x", "255.255.255.0"), ("192.168.1.1", "255.255.x")],
)
def test_compute_broadcast_address_invalid(address, netmask):
    with pytest.raises(ValueError):
        _ = compute_broadcast_address(address, netmask)


def test_get_local_ipv4_addresses(interfaces):
    assert get_local_ipv4_addresses() == ["192.168.1.20", "10.1.2.3"]


def test_broadcast_address_for(interfaces):
    assert broadcast_address_for("10.1.2.3") == "10.1.255.255"


def test_broadcast_address_for_unknown_address(interfaces):
    assert broadcast_address_for("8.8.8.8") == ""


def test_get_local_broadcast_address(interfaces):
    assert get_local_broadcast_address() == "192.168.1.255"


def test_get_local_broadcast_address_loopback_only():
    addrs = {"lo": [make_addr("127.0.0.1", "255.0.0.0")]}
    stats = {"lo": make_stats(True)}
    with patch.object(network.psutil, "net_if_addrs", return_value=addrs), patch.object(
        network.psutil, "net_if_stats", return_value=stats
    ):
        assert get_local_broadcast_address() == ""


def test_get_ipv4_addresses():
    ipv4_addresses = get_ipv4_addresses()
    assert len(ipv4_addresses) > 0


def test_local_ipv4_addresses_not_loopback():
    for address in get_local_ipv4_addresses():
        assert not ipaddress.IPv4Address(address).is_loopback
