"""Advertiser: announces the local peer and answers service queries."""

import logging
from typing import Callable, Iterable, Optional

import dns.message

from lanpeers.discovery.errors import TransientSendError
from lanpeers.discovery.mdns.multicast_transport import (
    MulticastTransport,
    SocketAddress,
)
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import PeerRecord
from lanpeers.util.stopable import TaskWorker

_logger = logging.getLogger(__name__)

AddressProvider = Callable[[], Iterable[PeerAddress]]


class Advertiser(TaskWorker):
    """Publishes the local peer's record on the multicast group.

    Announces unsolicited every `announce_interval` seconds, starting
    immediately, and answers service queries handed to `handle_query`.
    Every announcement is built fresh from the host identity and the
    addresses the provider reports at that moment. Send failures are logged
    and retried on the next interval.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        codec: RecordCodec,
        transport: MulticastTransport,
        peer_id: PeerId,
        address_provider: AddressProvider,
        *,
        announce_interval: float,
        record_ttl: int,
        multicast_port: int,
    ) -> None:
        super().__init__("mdns-advertiser")
        self.__codec = codec
        self.__transport = transport
        self.__peer_id = peer_id
        self.__address_provider = address_provider
        self.__announce_interval = announce_interval
        self.__record_ttl = record_ttl
        self.__multicast_port = multicast_port
        self.__announcements_sent = 0

    @property
    def announcements_sent(self) -> int:
        return self.__announcements_sent

    def build_record(self, ttl: Optional[int] = None) -> PeerRecord:
        """Builds a record from the host's current identity and addresses.

        Raises:
            TransientSendError: If the address provider fails.
        """
        try:
            addresses = frozenset(self.__address_provider())
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise TransientSendError(
                "Address provider failed", {"error": repr(e)}
            ) from e

        if not addresses:
            _logger.debug("No reachable addresses, announcing identity only.")
        return PeerRecord(
            self.__peer_id,
            addresses,
            self.__record_ttl if ttl is None else ttl,
        )

    async def announce(
        self,
        destination: Optional[SocketAddress] = None,
        *,
        query: Optional[dns.message.Message] = None,
        ttl: Optional[int] = None,
    ) -> bool:
        """Sends one announcement.

        Args:
            destination: Unicast target, or None for the multicast group.
            query: The legacy unicast query being answered, if any.
            ttl: Overrides the record TTL; 0 sends a goodbye.

        Returns:
            True if the announcement was sent.
        """
        try:
            record = self.build_record(ttl)
            if query is not None:
                packet = self.__codec.encode(record, query_id=query.id, question=query)
            else:
                packet = self.__codec.encode(record)
            await self.__send(packet, destination)
        except TransientSendError as e:
            _logger.warning("Announcement not sent: %s", e)
            return False

        self.__announcements_sent += 1
        return True

    async def handle_query(
        self, message: dns.message.Message, source: SocketAddress
    ) -> None:
        """Answers `message` if it asks for this service.

        Legacy resolvers (querying from a port other than the mDNS port) and
        queriers that set the unicast-response bit are answered directly;
        everyone else is answered on the multicast group.
        """
        if not self.__codec.is_service_query(message):
            return

        if source[1] != self.__multicast_port:
            await self.announce(source, query=message)
        elif self.__codec.wants_unicast_response(message):
            await self.announce(source)
        else:
            await self.announce()

    async def send_goodbye(self) -> None:
        """Announces TTL 0 so listeners forget this peer. Best effort."""
        if await self.announce(ttl=0):
            _logger.debug("Sent goodbye for %s.", self.__peer_id)

    async def _run(self) -> None:
        while True:
            await self.announce()
            if await self.wait_or_stopped(self.__announce_interval):
                return

    async def __send(
        self, packet: bytes, destination: Optional[SocketAddress]
    ) -> None:
        try:
            await self.__transport.send(packet, destination)
        except OSError as e:
            raise TransientSendError(
                "Failed to send announcement",
                {"destination": destination, "error": str(e)},
            ) from e
