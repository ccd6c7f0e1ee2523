"""Peer identity and address types shared by the discovery engine."""

from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DiscoveryEvent, PeerRecord

__all__ = ["DiscoveryEvent", "PeerAddress", "PeerId", "PeerRecord"]
