"""Utilities for enumerating the host's network addresses."""

import ipaddress
import socket
from typing import Callable, List

import psutil  # type: ignore[import-untyped]

from lanpeers.peer.peer_address import PeerAddress


def get_all_address_strings(include_ipv6: bool = False) -> list[str]:
    """Retrieves the IP address strings of all network interfaces.

    Scoped IPv6 addresses (link-local addresses carrying a "%iface" zone)
    are skipped since they cannot be dialed without the zone.

    Args:
        include_ipv6: Also return IPv6 addresses.

    Returns:
        Address strings, IPv4 first per interface. Empty if none found.
    """
    families = {socket.AF_INET}
    if include_ipv6:
        families.add(socket.AF_INET6)

    addresses: list[str] = []
    for _, interface_addresses in psutil.net_if_addrs().items():
        for address in interface_addresses:
            if address.family not in families:
                continue
            if "%" in address.address:
                continue
            addresses.append(address.address)
    return addresses


def host_address_provider(
    port: int,
    transport: str = "tcp",
    *,
    include_ipv6: bool = False,
    include_loopback: bool = True,
) -> Callable[[], List[PeerAddress]]:
    """Builds an address provider announcing `port` on every local interface.

    The returned callable re-reads the interfaces on every call, so an
    announcement always reflects the addresses currently assigned.

    Args:
        port: Port the host listens on.
        transport: "tcp" or "udp".
        include_ipv6: Announce IPv6 addresses too.
        include_loopback: Announce loopback addresses.
    """

    def provide() -> List[PeerAddress]:
        result: List[PeerAddress] = []
        for address in get_all_address_strings(include_ipv6):
            if not include_loopback and ipaddress.ip_address(address).is_loopback:
                continue
            result.append(PeerAddress(transport, address, port))
        return result

    # Fail early on a bad transport or port.
    PeerAddress(transport, "127.0.0.1", port)
    return provide
