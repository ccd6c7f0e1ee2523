import asyncio
import socket

import pytest
import pytest_asyncio

from lanpeers.discovery.mdns.multicast_transport import (
    UdpMulticastTransport,
    default_transport_factory,
)
from lanpeers.discovery.mdns_config import MdnsConfig


@pytest_asyncio.fixture
async def mock_socket(mocker):
    sock = mocker.MagicMock(spec=socket.socket)
    mocker.patch(
        "lanpeers.discovery.mdns.multicast_transport.socket.socket",
        return_value=sock,
    )
    return sock


def _option_names(sock):
    return [call.args[1] for call in sock.setsockopt.call_args_list]


def test_default_factory():
    assert isinstance(default_transport_factory(MdnsConfig()), UdpMulticastTransport)


@pytest.mark.asyncio
async def test_open_joins_group(mock_socket):
    transport = UdpMulticastTransport(
        MdnsConfig(multicast_port=5454, interface="127.0.0.1", multicast_ttl=1)
    )
    await transport.open()

    assert transport.is_open
    mock_socket.bind.assert_called_once_with(("", 5454))
    options = _option_names(mock_socket)
    assert socket.SO_REUSEADDR in options
    assert socket.IP_ADD_MEMBERSHIP in options
    assert socket.IP_MULTICAST_IF in options
    assert socket.IP_MULTICAST_LOOP in options
    mock_socket.setsockopt.assert_any_call(
        socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1
    )
    mock_socket.setsockopt.assert_any_call(
        socket.IPPROTO_IP,
        socket.IP_ADD_MEMBERSHIP,
        socket.inet_aton("224.0.0.251") + socket.inet_aton("127.0.0.1"),
    )
    mock_socket.setblocking.assert_called_once_with(False)


@pytest.mark.asyncio
async def test_open_twice_is_noop(mock_socket):
    transport = UdpMulticastTransport(MdnsConfig())
    await transport.open()
    await transport.open()
    mock_socket.bind.assert_called_once()


@pytest.mark.asyncio
async def test_bind_failure_closes_socket(mock_socket):
    mock_socket.bind.side_effect = OSError("address in use")
    transport = UdpMulticastTransport(MdnsConfig())

    with pytest.raises(OSError):
        await transport.open()

    mock_socket.close.assert_called_once()
    assert not transport.is_open


@pytest.mark.asyncio
async def test_send_defaults_to_group(mock_socket, mocker):
    transport = UdpMulticastTransport(MdnsConfig(multicast_port=5454))
    await transport.open()
    sendto = mocker.patch.object(
        asyncio.get_running_loop(), "sock_sendto", new_callable=mocker.AsyncMock
    )

    await transport.send(b"packet")
    await transport.send(b"reply", ("10.0.0.2", 40000))

    assert sendto.await_args_list[0].args == (mock_socket, b"packet", ("224.0.0.251", 5454))
    assert sendto.await_args_list[1].args == (mock_socket, b"reply", ("10.0.0.2", 40000))


@pytest.mark.asyncio
async def test_receive_reads_past_limit(mock_socket, mocker):
    transport = UdpMulticastTransport(MdnsConfig(max_packet_size=1000))
    await transport.open()
    recvfrom = mocker.patch.object(
        asyncio.get_running_loop(),
        "sock_recvfrom",
        new_callable=mocker.AsyncMock,
        return_value=(b"data", ("10.0.0.3", 5353)),
    )

    assert await transport.receive() == (b"data", ("10.0.0.3", 5353))
    recvfrom.assert_awaited_once_with(mock_socket, 1001)


@pytest.mark.asyncio
async def test_send_and_receive_require_open():
    transport = UdpMulticastTransport(MdnsConfig())
    with pytest.raises(OSError):
        await transport.send(b"x")
    with pytest.raises(OSError):
        await transport.receive()


@pytest.mark.asyncio
async def test_close_is_idempotent(mock_socket):
    transport = UdpMulticastTransport(MdnsConfig())
    await transport.open()
    await transport.close()
    await transport.close()

    assert not transport.is_open
    mock_socket.close.assert_called_once()
    assert socket.IP_DROP_MEMBERSHIP in _option_names(mock_socket)


@pytest.mark.asyncio
async def test_close_when_leaving_group_fails(mock_socket):
    transport = UdpMulticastTransport(MdnsConfig())
    await transport.open()

    def setsockopt(level, option, value):
        if option == socket.IP_DROP_MEMBERSHIP:
            raise OSError("not a member")

    mock_socket.setsockopt.side_effect = setsockopt
    await transport.close()
    mock_socket.close.assert_called_once()
