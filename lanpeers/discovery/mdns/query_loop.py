"""QueryLoop: periodically asks the multicast group for the service."""

import logging

from lanpeers.discovery.mdns.multicast_transport import MulticastTransport
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.util.stopable import TaskWorker

_logger = logging.getLogger(__name__)


class QueryLoop(TaskWorker):
    """Sends a service query immediately, then every `query_interval` seconds.

    Fire-and-forget: answers arrive through the response listener, and a
    query lost to the network is simply repeated on the next interval.
    """

    def __init__(
        self,
        codec: RecordCodec,
        transport: MulticastTransport,
        query_interval: float,
    ) -> None:
        super().__init__("mdns-query-loop")
        self.__transport = transport
        self.__query_interval = query_interval
        self.__packet = codec.encode_query()
        self.__queries_sent = 0

    @property
    def queries_sent(self) -> int:
        return self.__queries_sent

    async def send_query(self) -> bool:
        """Sends one query. Returns False if the send failed."""
        try:
            await self.__transport.send(self.__packet)
        except OSError as e:
            _logger.warning("Failed to send mDNS query: %s", e)
            return False
        self.__queries_sent += 1
        return True

    async def _run(self) -> None:
        while True:
            await self.send_query()
            if await self.wait_or_stopped(self.__query_interval):
                return
