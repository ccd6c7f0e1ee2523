import asyncio

import pytest
import pytest_asyncio

from lanpeers.discovery.mdns.query_loop import QueryLoop
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.test.fake_network import FakeMulticastNetwork


@pytest_asyncio.fixture
async def network():
    network = FakeMulticastNetwork()
    yield network
    for transport in network.transports:
        await transport.close()


@pytest_asyncio.fixture
async def transport(network):
    transport = network.create_transport(MdnsConfig())
    await transport.open()
    return transport


@pytest.mark.asyncio
async def test_send_query(network, transport):
    codec = RecordCodec()
    loop = QueryLoop(codec, transport, query_interval=5.0)

    assert await loop.send_query()

    [(_, packet, destination)] = network.sent
    assert destination is None
    assert packet == codec.encode_query()
    assert loop.queries_sent == 1


@pytest.mark.asyncio
async def test_send_failure_reported(network, transport):
    loop = QueryLoop(RecordCodec(), transport, query_interval=5.0)
    transport.fail_send = OSError("unreachable")
    assert not await loop.send_query()
    assert loop.queries_sent == 0


@pytest.mark.asyncio
async def test_first_query_is_immediate(network, transport):
    loop = QueryLoop(RecordCodec(), transport, query_interval=60.0)
    loop.start()
    try:
        await asyncio.sleep(0.01)
        assert loop.queries_sent == 1
    finally:
        await loop.stop()


@pytest.mark.asyncio
async def test_queries_repeat(network, transport):
    loop = QueryLoop(RecordCodec(), transport, query_interval=0.02)
    loop.start()
    try:
        await asyncio.sleep(0.15)
    finally:
        await loop.stop()
    assert loop.queries_sent >= 3


@pytest.mark.asyncio
async def test_stop_interrupts_long_interval(network, transport):
    loop = QueryLoop(RecordCodec(), transport, query_interval=3600.0)
    loop.start()
    await asyncio.sleep(0.01)
    await asyncio.wait_for(loop.stop(), 1.0)
    assert not loop.is_running
    sent = loop.queries_sent
    await asyncio.sleep(0.02)
    assert loop.queries_sent == sent


@pytest.mark.asyncio
async def test_keeps_running_after_send_failure(network, transport):
    transport.fail_send = OSError("unreachable")
    loop = QueryLoop(RecordCodec(), transport, query_interval=0.01)
    loop.start()
    try:
        await asyncio.sleep(0.05)
        assert loop.is_running
        transport.fail_send = None
        await asyncio.sleep(0.05)
        assert loop.queries_sent >= 1
    finally:
        await loop.stop()
