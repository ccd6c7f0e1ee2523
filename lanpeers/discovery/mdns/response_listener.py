"""ResponseListener: reads the multicast socket and routes mDNS packets."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import dns.flags
import dns.message

from lanpeers.discovery.errors import DecodeError
from lanpeers.discovery.mdns.multicast_transport import (
    MulticastTransport,
    SocketAddress,
)
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.peer_registry import PeerRegistry
from lanpeers.util.stopable import TaskWorker

_logger = logging.getLogger(__name__)

QueryHandler = Callable[[dns.message.Message, SocketAddress], Awaitable[None]]

# Pause after a socket error so a persistently failing socket cannot spin.
_RECEIVE_ERROR_BACKOFF = 0.1


class ResponseListener(TaskWorker):
    """Processes incoming datagrams one at a time.

    Service queries go to `query_handler` (the advertiser). Responses are
    decoded and every peer record is handed to the registry. Anything else,
    including malformed packets, is counted and dropped; no packet can stop
    the loop. Nothing is buffered beyond the socket's own receive buffer.
    """

    def __init__(
        self,
        codec: RecordCodec,
        transport: MulticastTransport,
        registry: PeerRegistry,
        *,
        max_packet_size: int,
        query_handler: Optional[QueryHandler] = None,
    ) -> None:
        super().__init__("mdns-response-listener")
        self.__codec = codec
        self.__transport = transport
        self.__registry = registry
        self.__max_packet_size = max_packet_size
        self.__query_handler = query_handler

        self.packets_received = 0
        self.packets_discarded = 0
        self.decode_errors = 0

    async def handle_packet(self, packet: bytes, source: SocketAddress) -> None:
        """Processes one datagram received from `source`."""
        self.packets_received += 1
        if len(packet) > self.__max_packet_size:
            self.packets_discarded += 1
            _logger.debug(
                "Dropping %d byte datagram from %s: too large.", len(packet), source
            )
            return

        try:
            message = self.__codec.parse(packet)
        except DecodeError as e:
            self.decode_errors += 1
            self.packets_discarded += 1
            _logger.debug("Dropping packet from %s: %s", source, e)
            return

        if not message.flags & dns.flags.QR:
            if self.__query_handler is not None and self.__codec.is_service_query(
                message
            ):
                await self.__query_handler(message, source)
            else:
                self.packets_discarded += 1
            return

        records = self.__codec.decode_records(message)
        if not records:
            self.packets_discarded += 1
            return

        for record in records:
            await self.__registry.deliver(record)

    async def _run(self) -> None:
        while True:
            try:
                packet, source = await self.__transport.receive()
            except OSError as e:
                if self.is_stopping:
                    return
                _logger.warning("Error reading from multicast socket: %s", e)
                if await self.wait_or_stopped(_RECEIVE_ERROR_BACKOFF):
                    return
                continue

            await self.handle_packet(packet, source)
            # Yield so a flood of datagrams cannot starve the other workers.
            await asyncio.sleep(0)
