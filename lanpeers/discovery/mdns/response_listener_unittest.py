import asyncio

import pytest
import pytest_asyncio

from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns.response_listener import ResponseListener
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.discovery.peer_registry import PeerRegistry
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import PeerRecord
from lanpeers.test.discovery_fixtures import RecordingWatcher
from lanpeers.test.fake_network import FakeMulticastNetwork

SOURCE = ("10.0.0.50", 5353)


@pytest_asyncio.fixture
async def registry():
    registry = PeerRegistry()
    yield registry
    await registry.close()


@pytest.fixture
def codec():
    return RecordCodec()


def _record():
    address = PeerAddress("tcp", "10.0.0.50", 4001)
    return PeerRecord(PeerId.random(), frozenset([address]))


def _listener(codec, registry, transport=None, query_handler=None, max_size=9000):
    return ResponseListener(
        codec,
        transport,
        registry,
        max_packet_size=max_size,
        query_handler=query_handler,
    )


@pytest.mark.asyncio
async def test_response_delivered(codec, registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    listener = _listener(codec, registry)
    record = _record()

    await listener.handle_packet(RecordCodec().encode(record), SOURCE)
    await registry.wait_until_idle()

    assert watcher.peer_ids() == [record.peer_id]
    assert listener.packets_received == 1
    assert listener.packets_discarded == 0


@pytest.mark.asyncio
async def test_malformed_packet_counted(codec, registry):
    listener = _listener(codec, registry)
    await listener.handle_packet(b"\x00\x01garbage", SOURCE)
    assert listener.decode_errors == 1
    assert listener.packets_discarded == 1


@pytest.mark.asyncio
async def test_oversized_packet_dropped(codec, registry, mocker):
    parse = mocker.spy(codec, "parse")
    listener = _listener(codec, registry, max_size=512)
    await listener.handle_packet(b"\x00" * 513, SOURCE)
    assert listener.packets_discarded == 1
    assert listener.decode_errors == 0
    parse.assert_not_called()


@pytest.mark.asyncio
async def test_foreign_response_discarded(codec, registry):
    listener = _listener(codec, registry)
    await listener.handle_packet(RecordCodec("_other._udp").encode(_record()), SOURCE)
    assert listener.packets_discarded == 1
    assert registry.known_peers() == {}


@pytest.mark.asyncio
async def test_service_query_routed_to_handler(codec, registry, mocker):
    handler = mocker.AsyncMock()
    listener = _listener(codec, registry, query_handler=handler)

    await listener.handle_packet(codec.encode_query(), SOURCE)

    handler.assert_awaited_once()
    message, source = handler.await_args.args
    assert codec.is_service_query(message)
    assert source == SOURCE


@pytest.mark.asyncio
async def test_other_query_discarded(codec, registry, mocker):
    handler = mocker.AsyncMock()
    listener = _listener(codec, registry, query_handler=handler)

    await listener.handle_packet(RecordCodec("_other._udp").encode_query(), SOURCE)

    handler.assert_not_awaited()
    assert listener.packets_discarded == 1


@pytest.mark.asyncio
async def test_query_without_handler_discarded(codec, registry):
    listener = _listener(codec, registry)
    await listener.handle_packet(codec.encode_query(), SOURCE)
    assert listener.packets_discarded == 1


@pytest.mark.asyncio
async def test_run_reads_until_stopped(codec, registry):
    network = FakeMulticastNetwork()
    transport = network.create_transport(MdnsConfig())
    await transport.open()
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    listener = _listener(codec, registry, transport)
    listener.start()
    try:
        network.inject(b"junk")
        record = _record()
        network.inject(RecordCodec().encode(record))
        await watcher.wait_for_peers([record.peer_id], timeout=2.0)
        assert listener.decode_errors == 1
    finally:
        await listener.stop()
        await transport.close()
    assert not listener.is_running


@pytest.mark.asyncio
async def test_run_survives_receive_errors(codec, registry, mocker):
    record = _record()
    pending = [OSError("transient"), (RecordCodec().encode(record), SOURCE)]

    async def receive():
        if not pending:
            await asyncio.Event().wait()
        item = pending.pop(0)
        if isinstance(item, OSError):
            raise item
        return item

    transport = mocker.MagicMock()
    transport.receive = receive
    listener = _listener(codec, registry, transport)
    listener.start()
    try:
        for _ in range(100):
            if record.peer_id in registry.known_peers():
                break
            await asyncio.sleep(0.01)
        assert record.peer_id in registry.known_peers()
    finally:
        await listener.stop()
