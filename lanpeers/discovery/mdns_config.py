"""Configuration parameters for the mDNS discovery service.

`MdnsConfig` groups the timing, wire and socket settings of one
`MdnsService`. All values are validated on construction so that a bad
setting fails at configuration time rather than inside a background worker.
"""

import dataclasses
import ipaddress
from typing import Any, Optional

MDNS_MULTICAST_GROUP = "224.0.0.251"
MDNS_PORT = 5353
DEFAULT_SERVICE_TAG = "_p2p._udp"


@dataclasses.dataclass(frozen=True)
class MdnsConfig:
    """Holds configuration for an `MdnsService`.

    Attributes:
        service_tag: Scopes the mDNS service type, e.g. "_p2p._udp". Services
            with different tags sharing a link never discover each other.
            A tag without a "._udp"/"._tcp" suffix gets "._udp" appended.
        query_interval: Seconds between service queries. The first query is
            sent immediately on start.
        announce_interval: Seconds between unsolicited announcements.
        record_ttl: TTL, in seconds, put on announced records.
        multicast_group: IPv4 multicast group to join.
        multicast_port: UDP port of the multicast group.
        interface: IPv4 address of the interface to join the group on, or
            None for the system default.
        multicast_ttl: IP TTL of outgoing multicast datagrams.
        max_packet_size: Datagrams larger than this are dropped unread.
        max_queued_events: Per-watcher bound on undelivered events.
    """

    service_tag: str = DEFAULT_SERVICE_TAG
    query_interval: float = 5.0
    announce_interval: float = 10.0
    record_ttl: int = 120
    multicast_group: str = MDNS_MULTICAST_GROUP
    multicast_port: int = MDNS_PORT
    interface: Optional[str] = None
    multicast_ttl: int = 255
    max_packet_size: int = 9000
    max_queued_events: int = 64

    def __post_init__(self) -> None:
        tag = self.service_tag or DEFAULT_SERVICE_TAG
        if not isinstance(tag, str):
            raise TypeError(
                f"service_tag must be str, got {type(tag).__name__}."
            )
        tag = tag.rstrip(".")
        if tag.endswith(".local"):
            tag = tag[: -len(".local")]
        if not tag.startswith("_"):
            raise ValueError(
                f"service_tag must start with an underscore (e.g., '_p2p._udp'), "
                f"got '{self.service_tag}'."
            )
        if not (tag.endswith("._udp") or tag.endswith("._tcp")):
            tag = f"{tag}._udp"
        object.__setattr__(self, "service_tag", tag)

        if self.query_interval <= 0:
            raise ValueError(
                f"query_interval must be positive, got {self.query_interval}."
            )
        if self.announce_interval <= 0:
            raise ValueError(
                f"announce_interval must be positive, got {self.announce_interval}."
            )
        if self.record_ttl <= 0:
            raise ValueError(f"record_ttl must be positive, got {self.record_ttl}.")

        group = ipaddress.ip_address(self.multicast_group)
        if group.version != 4 or not group.is_multicast:
            raise ValueError(
                f"multicast_group must be an IPv4 multicast address, "
                f"got '{self.multicast_group}'."
            )
        if not 0 < self.multicast_port <= 65535:
            raise ValueError(
                f"multicast_port must be in [1, 65535], got {self.multicast_port}."
            )
        if self.interface is not None:
            if ipaddress.ip_address(self.interface).version != 4:
                raise ValueError(
                    f"interface must be an IPv4 address, got '{self.interface}'."
                )
        if not 1 <= self.multicast_ttl <= 255:
            raise ValueError(
                f"multicast_ttl must be in [1, 255], got {self.multicast_ttl}."
            )
        if self.max_packet_size < 512:
            raise ValueError(
                f"max_packet_size must be at least 512, got {self.max_packet_size}."
            )
        if self.max_queued_events <= 0:
            raise ValueError(
                f"max_queued_events must be positive, got {self.max_queued_events}."
            )

    def with_overrides(self, **kwargs: Any) -> "MdnsConfig":
        """Returns a copy of this config with the given fields replaced."""
        return dataclasses.replace(self, **kwargs)
