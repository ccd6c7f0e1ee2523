"""Initializes the lanpeers.discovery.mdns package.

This package holds the mDNS wire codec, the shared multicast transport and
the three background workers of the discovery engine: the advertiser, the
query loop and the response listener.
"""

from lanpeers.discovery.mdns.advertiser import Advertiser
from lanpeers.discovery.mdns.multicast_transport import (
    MulticastTransport,
    UdpMulticastTransport,
)
from lanpeers.discovery.mdns.query_loop import QueryLoop
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns.response_listener import ResponseListener

__all__ = [
    "Advertiser",
    "MulticastTransport",
    "QueryLoop",
    "RecordCodec",
    "ResponseListener",
    "UdpMulticastTransport",
]
