"""Initializes the lanpeers.discovery package and exposes its key components.

This package contains the mDNS peer-discovery service, its configuration,
the watcher interface through which discoveries are reported, and the
errors the service can raise.
"""

from lanpeers.discovery.errors import (
    BindError,
    DecodeError,
    DiscoveryError,
    ShutdownError,
    StartupError,
    TransientSendError,
)
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.discovery.mdns_service import MdnsService, ServiceState
from lanpeers.discovery.peer_registry import PeerRegistry
from lanpeers.discovery.peer_watcher import CallbackWatcher, PeerWatcher

__all__ = [
    "BindError",
    "CallbackWatcher",
    "DecodeError",
    "DiscoveryError",
    "MdnsConfig",
    "MdnsService",
    "PeerRegistry",
    "PeerWatcher",
    "ServiceState",
    "ShutdownError",
    "StartupError",
    "TransientSendError",
]
