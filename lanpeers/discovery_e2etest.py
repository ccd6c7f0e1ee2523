import asyncio
import random
import uuid

import pytest
import pytest_asyncio

from lanpeers.discovery.mdns.multicast_transport import UdpMulticastTransport
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.discovery.mdns_service import MdnsService, ServiceState
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.test.discovery_fixtures import RecordingWatcher


def _loopback_config() -> MdnsConfig:
    # A private port and tag keep concurrent runs and the host's own mDNS
    # responder out of the test.
    return MdnsConfig(
        service_tag=f"_e2e{uuid.uuid4().hex[:8]}",
        multicast_port=random.randint(20000, 60000),
        interface="127.0.0.1",
        multicast_ttl=1,
        query_interval=0.2,
        announce_interval=0.5,
    )


@pytest_asyncio.fixture
async def config():
    """Yields a loopback config, skipping if multicast loopback is unusable."""
    config = _loopback_config()
    probe = UdpMulticastTransport(config)
    try:
        await probe.open()
    except OSError as e:
        pytest.skip(f"Cannot join multicast group on loopback: {e}")

    try:
        await probe.send(b"probe")
        packet, _ = await asyncio.wait_for(probe.receive(), 1.0)
        assert packet == b"probe"
    except (OSError, asyncio.TimeoutError):
        pytest.skip("Multicast loopback is not delivering datagrams.")
    finally:
        await probe.close()

    yield config


@pytest.mark.asyncio
async def test_two_peers_discover_each_other(config):
    first = MdnsService(
        PeerId.random(),
        lambda: [PeerAddress("tcp", "127.0.0.1", 4001)],
        config=config,
    )
    second = MdnsService(
        PeerId.random(),
        lambda: [PeerAddress("tcp", "127.0.0.1", 4002)],
        config=config,
    )
    first_watcher = RecordingWatcher()
    second_watcher = RecordingWatcher()
    first.register_watcher(first_watcher)
    second.register_watcher(second_watcher)

    try:
        await first.start()
        await second.start()

        peer_ids = [first.peer_id, second.peer_id]
        await first_watcher.wait_for_peers(peer_ids, timeout=10.0)
        await second_watcher.wait_for_peers(peer_ids, timeout=10.0)
    finally:
        await first.close()
        await second.close()

    [event] = first_watcher.events_for(second.peer_id)
    assert event.addresses == frozenset([PeerAddress("tcp", "127.0.0.1", 4002)])
    assert first.state is ServiceState.CLOSED
    assert second.state is ServiceState.CLOSED


@pytest.mark.asyncio
async def test_socket_released_on_close(config):
    service = MdnsService(PeerId.random(), lambda: [], config=config)
    watcher = RecordingWatcher()
    service.register_watcher(watcher)

    async with service:
        await watcher.wait_for_peers([service.peer_id], timeout=10.0)

    # The port can be joined again once the service is closed.
    again = MdnsService(PeerId.random(), lambda: [], config=config)
    await again.start()
    await again.close()
