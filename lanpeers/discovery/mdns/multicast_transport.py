"""MulticastTransport ABC and the UDP socket implementation used for mDNS."""

import asyncio
import logging
import socket
import struct
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from lanpeers.discovery.mdns_config import MdnsConfig

_logger = logging.getLogger(__name__)

SocketAddress = Tuple[str, int]


class MulticastTransport(ABC):
    """A datagram endpoint joined to one multicast group.

    A single transport is shared by every worker of an `MdnsService`:
    the query loop and advertiser send on it, the response listener reads
    from it. Implementations must make concurrent `send` calls safe.
    """

    @abstractmethod
    async def open(self) -> None:
        """Binds the endpoint and joins the multicast group.

        Raises:
            OSError: If binding or joining fails.
        """

    @abstractmethod
    async def send(
        self, packet: bytes, destination: Optional[SocketAddress] = None
    ) -> None:
        """Sends `packet` to `destination`, or to the multicast group if None.

        Raises:
            OSError: If the datagram could not be sent.
        """

    @abstractmethod
    async def receive(self) -> Tuple[bytes, SocketAddress]:
        """Waits for the next datagram and returns it with its source."""

    @abstractmethod
    async def close(self) -> None:
        """Leaves the group and releases the endpoint. Idempotent.

        Raises:
            OSError: If the endpoint could not be released.
        """


TransportFactory = Callable[[MdnsConfig], MulticastTransport]


class UdpMulticastTransport(MulticastTransport):
    """IPv4 UDP multicast socket driven by the running asyncio loop.

    The socket is bound with address reuse so several services (and the
    host's own mDNS responder) can share the mDNS port, and multicast
    loopback is enabled so a peer hears its own announcements.
    """

    def __init__(self, config: MdnsConfig) -> None:
        self.__group = config.multicast_group
        self.__port = config.multicast_port
        self.__interface = config.interface or "0.0.0.0"
        self.__multicast_ttl = config.multicast_ttl
        self.__max_packet_size = config.max_packet_size
        self.__socket: Optional[socket.socket] = None
        self.__send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.__socket is not None

    async def open(self) -> None:
        if self.__socket is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError as e:
                    # Some kernels expose the constant without supporting it.
                    _logger.debug("SO_REUSEPORT unavailable: %s", e)

            sock.bind(("", self.__port))

            membership = struct.pack(
                "4s4s",
                socket.inet_aton(self.__group),
                socket.inet_aton(self.__interface),
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.setsockopt(
                socket.IPPROTO_IP,
                socket.IP_MULTICAST_IF,
                socket.inet_aton(self.__interface),
            )
            sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.__multicast_ttl
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        self.__socket = sock
        _logger.info(
            "Joined multicast group %s:%d on interface %s.",
            self.__group,
            self.__port,
            self.__interface,
        )

    async def send(
        self, packet: bytes, destination: Optional[SocketAddress] = None
    ) -> None:
        sock = self.__socket
        if sock is None:
            raise OSError("Multicast socket is not open.")
        if destination is None:
            destination = (self.__group, self.__port)

        loop = asyncio.get_running_loop()
        async with self.__send_lock:
            await loop.sock_sendto(sock, packet, destination)

    async def receive(self) -> Tuple[bytes, SocketAddress]:
        sock = self.__socket
        if sock is None:
            raise OSError("Multicast socket is not open.")

        loop = asyncio.get_running_loop()
        # Read one byte past the limit so oversized datagrams are detectable.
        data, source = await loop.sock_recvfrom(sock, self.__max_packet_size + 1)
        return data, (source[0], source[1])

    async def close(self) -> None:
        sock = self.__socket
        if sock is None:
            return
        self.__socket = None

        try:
            membership = struct.pack(
                "4s4s",
                socket.inet_aton(self.__group),
                socket.inet_aton(self.__interface),
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, membership)
        except OSError as e:
            # The kernel drops membership on close anyway.
            _logger.debug("Error leaving multicast group: %s", e)
        finally:
            sock.close()
        _logger.info("Left multicast group %s:%d.", self.__group, self.__port)


def default_transport_factory(config: MdnsConfig) -> MulticastTransport:
    """Creates the UDP transport used when no factory is supplied."""
    return UdpMulticastTransport(config)
