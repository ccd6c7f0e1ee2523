"""MdnsService: owns the discovery workers and their shared socket."""

import asyncio
import logging
from enum import Enum
from types import TracebackType
from typing import Dict, FrozenSet, List, Optional, Type, Union

from lanpeers.discovery.errors import ShutdownError, StartupError
from lanpeers.discovery.mdns.advertiser import AddressProvider, Advertiser
from lanpeers.discovery.mdns.multicast_transport import (
    MulticastTransport,
    TransportFactory,
    default_transport_factory,
)
from lanpeers.discovery.mdns.query_loop import QueryLoop
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns.response_listener import ResponseListener
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.discovery.peer_registry import PeerRegistry
from lanpeers.discovery.peer_watcher import PeerWatcher, WatcherCallback
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.util.stopable import TaskWorker

_logger = logging.getLogger(__name__)


class ServiceState(Enum):
    """Lifecycle states of an `MdnsService`. `CLOSED` is terminal."""

    CREATED = "created"
    RUNNING = "running"
    CLOSED = "closed"


class MdnsService:
    """Discovers peers of the same service on the local multicast domain.

    `start()` joins the multicast group and launches three workers on the
    running event loop: the response listener, the advertiser and the query
    loop. Watchers registered at any time receive a `DiscoveryEvent` for every
    newly seen peer and every address change, including one for the local
    peer itself once its own announcement loops back.

    Usage:
        service = MdnsService(peer_id, host_address_provider(4001))
        service.register_watcher(on_peer_found)
        await service.start()
        ...
        await service.close()
    """

    def __init__(
        self,
        peer_id: PeerId,
        address_provider: AddressProvider,
        *,
        config: Optional[MdnsConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """Initializes the MdnsService. No network activity happens here.

        Args:
            peer_id: Stable identity of the local peer.
            address_provider: Returns the host's currently reachable
                addresses; called at every announcement.
            config: Service settings. Defaults to `MdnsConfig()`.
            transport_factory: Creates the multicast transport. Defaults to a
                UDP socket on the configured group.

        Raises:
            TypeError: If `peer_id` or `address_provider` has the wrong type.
        """
        if not isinstance(peer_id, PeerId):
            raise TypeError(f"peer_id must be PeerId, got {type(peer_id).__name__}.")
        if not callable(address_provider):
            raise TypeError("address_provider must be callable.")

        self.__peer_id = peer_id
        self.__address_provider = address_provider
        self.__config = config if config is not None else MdnsConfig()
        self.__transport_factory = transport_factory or default_transport_factory

        self.__codec = RecordCodec(self.__config.service_tag)
        self.__registry = PeerRegistry(self.__config.max_queued_events)
        self.__state = ServiceState.CREATED
        self.__lifecycle_lock = asyncio.Lock()

        self.__transport: Optional[MulticastTransport] = None
        self.__advertiser: Optional[Advertiser] = None
        self.__query_loop: Optional[QueryLoop] = None
        self.__listener: Optional[ResponseListener] = None

    @property
    def peer_id(self) -> PeerId:
        return self.__peer_id

    @property
    def config(self) -> MdnsConfig:
        return self.__config

    @property
    def state(self) -> ServiceState:
        return self.__state

    @property
    def advertiser(self) -> Optional[Advertiser]:
        return self.__advertiser

    @property
    def query_loop(self) -> Optional[QueryLoop]:
        return self.__query_loop

    @property
    def listener(self) -> Optional[ResponseListener]:
        return self.__listener

    def register_watcher(self, watcher: Union[PeerWatcher, WatcherCallback]) -> None:
        """Registers a watcher; see `PeerRegistry.register_watcher`.

        Raises:
            RuntimeError: If the service is closed.
        """
        self.__registry.register_watcher(watcher)

    def unregister_watcher(self, watcher: Union[PeerWatcher, WatcherCallback]) -> bool:
        """Unregisters a watcher. Returns True if it was registered."""
        return self.__registry.unregister_watcher(watcher)

    def known_peers(self) -> Dict[PeerId, FrozenSet[PeerAddress]]:
        """Returns every peer discovered so far and its last address set."""
        return self.__registry.known_peers()

    async def wait_until_idle(self) -> None:
        """Waits until all queued events have reached their watchers."""
        await self.__registry.wait_until_idle()

    async def start(self) -> None:
        """Joins the multicast group and starts all workers.

        If anything fails, every worker started so far is stopped and the
        socket is released before the error is raised; the service is then
        closed.

        Raises:
            StartupError: If the transport cannot be created or the
                multicast group cannot be joined.
            RuntimeError: If the service was already started or closed.
        """
        async with self.__lifecycle_lock:
            if self.__state is ServiceState.RUNNING:
                raise RuntimeError("MdnsService has already been started.")
            if self.__state is ServiceState.CLOSED:
                raise RuntimeError("MdnsService is closed and cannot be restarted.")

            config = self.__config
            try:
                transport = self.__transport_factory(config)
            except Exception as e:
                self.__state = ServiceState.CLOSED
                await self.__registry.close()
                raise StartupError(
                    "Failed to create multicast transport", {"error": str(e)}
                ) from e

            try:
                await transport.open()
            except OSError as e:
                await self.__abort_start(transport, [])
                raise StartupError(
                    "Failed to join multicast group",
                    {
                        "group": config.multicast_group,
                        "port": config.multicast_port,
                        "error": str(e),
                    },
                ) from e

            advertiser = Advertiser(
                self.__codec,
                transport,
                self.__peer_id,
                self.__address_provider,
                announce_interval=config.announce_interval,
                record_ttl=config.record_ttl,
                multicast_port=config.multicast_port,
            )
            listener = ResponseListener(
                self.__codec,
                transport,
                self.__registry,
                max_packet_size=config.max_packet_size,
                query_handler=advertiser.handle_query,
            )
            query_loop = QueryLoop(self.__codec, transport, config.query_interval)

            started: List[TaskWorker] = []
            try:
                for worker in (listener, advertiser, query_loop):
                    worker.start()
                    started.append(worker)
            except Exception as e:
                await self.__abort_start(transport, started)
                raise StartupError(
                    "Failed to start discovery workers", {"error": str(e)}
                ) from e

            self.__transport = transport
            self.__advertiser = advertiser
            self.__listener = listener
            self.__query_loop = query_loop
            self.__state = ServiceState.RUNNING
            _logger.info(
                "mDNS discovery started for %s as %s.",
                self.__peer_id,
                self.__codec.instance_name,
            )

    async def close(self) -> None:
        """Stops all workers and releases the socket, then returns.

        Safe to call repeatedly; calls after the first are no-ops.

        Raises:
            ShutdownError: If the socket could not be released. The service
                is closed regardless.
        """
        async with self.__lifecycle_lock:
            if self.__state is ServiceState.CLOSED:
                return
            previous_state = self.__state
            self.__state = ServiceState.CLOSED

            if previous_state is ServiceState.CREATED:
                await self.__registry.close()
                return

            transport = self.__transport
            advertiser = self.__advertiser
            assert transport is not None and advertiser is not None

            for worker in (self.__query_loop, advertiser, self.__listener):
                if worker is not None:
                    await worker.stop()

            await advertiser.send_goodbye()
            await self.__registry.close()

            self.__transport = None
            try:
                await transport.close()
            except OSError as e:
                raise ShutdownError(
                    "Failed to release multicast socket", {"error": str(e)}
                ) from e
            finally:
                _logger.info("mDNS discovery stopped for %s.", self.__peer_id)

    async def __abort_start(
        self, transport: MulticastTransport, started: List[TaskWorker]
    ) -> None:
        for worker in reversed(started):
            await worker.stop()
        try:
            await transport.close()
        except OSError as e:
            _logger.error("Error releasing socket after failed start: %s", e)
        self.__state = ServiceState.CLOSED
        await self.__registry.close()

    async def __aenter__(self) -> "MdnsService":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.close()
