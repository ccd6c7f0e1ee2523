"""Defines PeerAddress, a transport/IP/port tuple with multiaddr support."""

import dataclasses
import ipaddress
from typing import Optional, Union

import multiaddr
import multiaddr.exceptions

SUPPORTED_TRANSPORTS = ("tcp", "udp")


@dataclasses.dataclass(frozen=True, order=True)
class PeerAddress:
    """A network address at which a peer can be reached.

    Instances are immutable and hashable so address sets can be compared as
    sets regardless of order. The wire form is a multiaddr string such as
    `/ip4/192.168.1.5/tcp/4001`.
    """

    transport: str
    ip: str
    port: int

    def __post_init__(self) -> None:
        if self.transport not in SUPPORTED_TRANSPORTS:
            raise ValueError(
                f"transport must be one of {SUPPORTED_TRANSPORTS}, "
                f"got '{self.transport}'."
            )
        # Canonical text form, so equal addresses compare equal.
        object.__setattr__(self, "ip", str(ipaddress.ip_address(self.ip)))
        if not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise ValueError(f"port must be in [0, 65535], got {self.port!r}.")

    @property
    def ip_version(self) -> int:
        """Returns 4 or 6."""
        return ipaddress.ip_address(self.ip).version

    def to_multiaddr(self) -> multiaddr.Multiaddr:
        """Returns this address as a `multiaddr.Multiaddr`."""
        return multiaddr.Multiaddr(
            f"/ip{self.ip_version}/{self.ip}/{self.transport}/{self.port}"
        )

    @classmethod
    def from_multiaddr(cls, value: Union[str, multiaddr.Multiaddr]) -> "PeerAddress":
        """Builds a PeerAddress from a multiaddr or its string form.

        Only addresses made of exactly one IP component followed by one
        transport component are accepted.

        Raises:
            ValueError: If `value` is not a parsable multiaddr of that shape.
        """
        try:
            parsed = (
                value
                if isinstance(value, multiaddr.Multiaddr)
                else multiaddr.Multiaddr(value)
            )
            components = [(proto.name, val) for proto, val in parsed.items()]
        except (multiaddr.exceptions.Error, ValueError, LookupError, TypeError) as e:
            raise ValueError(f"Invalid multiaddr '{value}': {e}") from e

        if len(components) != 2:
            raise ValueError(
                f"Expected /ipX/<ip>/<transport>/<port>, got '{value}'."
            )

        (ip_proto, ip_value), (transport, port_value) = components
        if ip_proto not in ("ip4", "ip6"):
            raise ValueError(f"Unsupported address protocol '{ip_proto}'.")
        if port_value is None:
            raise ValueError(f"Missing port in '{value}'.")
        return cls(transport, str(ip_value), int(port_value))

    @classmethod
    def try_parse(cls, value: str) -> Optional["PeerAddress"]:
        """Like `from_multiaddr`, but returns None on failure."""
        try:
            return cls.from_multiaddr(value)
        except ValueError:
            return None

    def __str__(self) -> str:
        return str(self.to_multiaddr())
