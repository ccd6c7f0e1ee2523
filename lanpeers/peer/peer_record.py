"""Defines PeerRecord and DiscoveryEvent, the records exchanged over mDNS."""

import dataclasses
from typing import FrozenSet

from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId

DEFAULT_RECORD_TTL = 120


@dataclasses.dataclass(frozen=True)
class PeerRecord:
    """A peer's identity and reachable addresses as announced on the wire.

    Address order is irrelevant: `addresses` is a frozenset, so two records
    announcing the same addresses in a different order compare equal. A `ttl`
    of 0 marks a goodbye announcement.
    """

    peer_id: PeerId
    addresses: FrozenSet[PeerAddress] = frozenset()
    ttl: int = DEFAULT_RECORD_TTL

    def __post_init__(self) -> None:
        if not isinstance(self.peer_id, PeerId):
            raise TypeError(
                f"peer_id must be PeerId, got {type(self.peer_id).__name__}."
            )
        if not isinstance(self.addresses, frozenset):
            object.__setattr__(self, "addresses", frozenset(self.addresses))
        if self.ttl < 0:
            raise ValueError(f"ttl cannot be negative, got {self.ttl}.")

    @property
    def is_goodbye(self) -> bool:
        """True if this record announces the peer is leaving."""
        return self.ttl == 0

    def to_event(self) -> "DiscoveryEvent":
        """Returns the watcher-facing view of this record."""
        return DiscoveryEvent(self.peer_id, self.addresses)


@dataclasses.dataclass(frozen=True)
class DiscoveryEvent:
    """Delivered to watchers each time a peer is found or its addresses change."""

    peer_id: PeerId
    addresses: FrozenSet[PeerAddress]
