"""
Helpers for finding the local IPv4 addresses of this machine and the broadcast
addresses of their networks.
"""

import ipaddress
import socket

import psutil

IP_ADDRESS_BROADCAST = "255.255.255.255"


def get_ipv4_addresses() -> list:
    """
    Gets all the IPV4 addresses currently available on all interfaces that are
    up.

    :return: A list of address entries, as returned by :func:`psutil.net_if_addrs`,
        each with `family`, `address` and `netmask` fields.
    """
    active_ifs = {name for name, stats in psutil.net_if_stats().items() if stats.isup}
    return [
        addr
        for name, addrs in psutil.net_if_addrs().items()
        if name in active_ifs
        for addr in addrs
        if addr.family == socket.AddressFamily.AF_INET
    ]


def compute_broadcast_address(address: str, netmask: str) -> str:
    """
    Compute the broadcast address of the network the given address belongs to,
    by setting all of the host bits of the address.

    >>> compute_broadcast_address("192.168.1.20", "255.255.255.0")
    '192.168.1.255'

    :raises ValueError: if either argument is not a valid IPv4 address.
    """
    ip = int(ipaddress.IPv4Address(address))
    mask = int(ipaddress.IPv4Address(netmask))
    return str(ipaddress.IPv4Address(ip | (~mask & 0xFFFFFFFF)))


def _is_loopback(address: str) -> bool:
    try:
        return ipaddress.IPv4Address(address).is_loopback
    except ValueError:
        return False


def get_local_ipv4_addresses() -> list[str]:
    """
    Get the non-loopback IPv4 addresses of this machine.
    """
    return [
        entry.address
        for entry in get_ipv4_addresses()
        if not _is_loopback(entry.address)
    ]


def broadcast_address_for(address: str) -> str:
    """
    Get the broadcast address of the local network the given local address is
    on, or an empty string if the address does not belong to this machine or
    its netmask is unknown.
    """
    entry = next(
        (item for item in get_ipv4_addresses() if item.address == address), None
    )
    if entry is None or entry.netmask is None:
        return ""
    try:
        return compute_broadcast_address(entry.address, entry.netmask)
    except ValueError:
        return ""


def get_local_broadcast_address() -> str:
    """
    Get the broadcast address of the first non-loopback network this machine
    is on, or an empty string if there is none.
    """
    for address in get_local_ipv4_addresses():
        broadcast = broadcast_address_for(address)
        if broadcast:
            return broadcast
    return ""


class NetworkInfoProvider:
    """
    Source of the broadcast address used by a discovery server. Can be replaced
    by any object with a `get_broadcast_address` method.
    """

    def get_local_ipv4_addresses(self) -> list[str]:
        return get_local_ipv4_addresses()

    def broadcast_address_for(self, address: str) -> str:
        return broadcast_address_for(address)

    def get_broadcast_address(self) -> str:
        return get_local_broadcast_address()
