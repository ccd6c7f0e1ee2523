"""In-memory multicast network for exercising discovery without sockets."""

import asyncio
from typing import List, Optional, Tuple

from lanpeers.discovery.mdns.multicast_transport import (
    MulticastTransport,
    SocketAddress,
)
from lanpeers.discovery.mdns_config import MdnsConfig


class FakeMulticastNetwork:
    """A broadcast domain: every datagram sent reaches every open transport.

    Like a socket with multicast loopback enabled, the sender receives its
    own datagrams too.
    """

    __test__ = False

    def __init__(self) -> None:
        self.transports: List["FakeMulticastTransport"] = []
        self.sent: List[Tuple[SocketAddress, bytes, Optional[SocketAddress]]] = []
        self.__next_host = 1

    def create_transport(self, config: MdnsConfig) -> "FakeMulticastTransport":
        """Transport factory suitable for `MdnsService(transport_factory=...)`."""
        transport = FakeMulticastTransport(
            self, (f"10.0.0.{self.__next_host}", config.multicast_port)
        )
        self.__next_host += 1
        self.transports.append(transport)
        return transport

    def broadcast(
        self,
        packet: bytes,
        source: SocketAddress,
        destination: Optional[SocketAddress] = None,
    ) -> None:
        self.sent.append((source, packet, destination))
        for transport in self.transports:
            if not transport.is_open:
                continue
            if destination is not None and transport.address != destination:
                continue
            transport.enqueue(packet, source)

    def inject(
        self, packet: bytes, source: SocketAddress = ("10.9.9.9", 5353)
    ) -> None:
        """Delivers `packet` as if an outside host had sent it."""
        self.broadcast(packet, source)


class FakeMulticastTransport(MulticastTransport):
    """One endpoint on a `FakeMulticastNetwork`."""

    __test__ = False

    def __init__(self, network: FakeMulticastNetwork, address: SocketAddress) -> None:
        self.network = network
        self.address = address
        self.is_open = False
        self.open_calls = 0
        self.close_calls = 0
        self.fail_open: Optional[OSError] = None
        self.fail_send: Optional[OSError] = None
        self.fail_close: Optional[OSError] = None
        self.__inbox: Optional[asyncio.Queue[Tuple[bytes, SocketAddress]]] = None

    def enqueue(self, packet: bytes, source: SocketAddress) -> None:
        assert self.__inbox is not None
        self.__inbox.put_nowait((packet, source))

    async def open(self) -> None:
        self.open_calls += 1
        if self.fail_open is not None:
            raise self.fail_open
        self.__inbox = asyncio.Queue()
        self.is_open = True

    async def send(
        self, packet: bytes, destination: Optional[SocketAddress] = None
    ) -> None:
        if not self.is_open:
            raise OSError("transport is closed")
        if self.fail_send is not None:
            raise self.fail_send
        self.network.broadcast(packet, self.address, destination)

    async def receive(self) -> Tuple[bytes, SocketAddress]:
        if self.__inbox is None:
            raise OSError("transport is closed")
        return await self.__inbox.get()

    async def close(self) -> None:
        self.close_calls += 1
        self.is_open = False
        if self.fail_close is not None:
            raise self.fail_close
