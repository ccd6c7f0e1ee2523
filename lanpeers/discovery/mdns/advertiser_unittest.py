import asyncio

import dns.message
import dns.rdatatype
import pytest
import pytest_asyncio

from lanpeers.discovery.errors import TransientSendError
from lanpeers.discovery.mdns.advertiser import Advertiser
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.test.fake_network import FakeMulticastNetwork

ADDRESS = PeerAddress("tcp", "10.0.0.1", 4001)


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


@pytest.fixture
def codec():
    return RecordCodec()


def _advertiser(codec, transport, peer_id=None, provider=None, interval=10.0):
    return Advertiser(
        codec,
        transport,
        peer_id or PeerId.random(),
        provider or (lambda: [ADDRESS]),
        announce_interval=interval,
        record_ttl=120,
        multicast_port=5353,
    )


def _decoded(codec, network):
    return [codec.decode(packet) for _, packet, _ in network.sent]


@pytest.mark.asyncio
async def test_announce_multicasts_record(codec, network, transport):
    peer_id = PeerId.random()
    advertiser = _advertiser(codec, transport, peer_id)

    assert await advertiser.announce()

    [(source, packet, destination)] = network.sent
    assert source == transport.address
    assert destination is None
    record = codec.decode(packet)
    assert record.peer_id == peer_id
    assert record.addresses == frozenset([ADDRESS])
    assert record.ttl == 120
    assert advertiser.announcements_sent == 1


@pytest.mark.asyncio
async def test_addresses_read_fresh_each_time(codec, network, transport):
    addresses = [ADDRESS]
    advertiser = _advertiser(codec, transport, provider=lambda: list(addresses))

    await advertiser.announce()
    addresses.append(PeerAddress("udp", "10.0.0.1", 4001))
    await advertiser.announce()

    first, second = _decoded(codec, network)
    assert len(first.addresses) == 1
    assert len(second.addresses) == 2


@pytest.mark.asyncio
async def test_empty_address_set_announces_identity(codec, network, transport):
    advertiser = _advertiser(codec, transport, provider=lambda: [])
    assert await advertiser.announce()
    assert _decoded(codec, network)[0].addresses == frozenset()


@pytest.mark.asyncio
async def test_provider_failure_skips_announcement(codec, network, transport, mocker):
    provider = mocker.MagicMock(side_effect=RuntimeError("no interfaces"))
    advertiser = _advertiser(codec, transport, provider=provider)

    with pytest.raises(TransientSendError):
        advertiser.build_record()
    assert not await advertiser.announce()
    assert network.sent == []
    assert advertiser.announcements_sent == 0


@pytest.mark.asyncio
async def test_send_failure_is_transient(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    transport.fail_send = OSError("network unreachable")
    assert not await advertiser.announce()

    transport.fail_send = None
    assert await advertiser.announce()
    assert advertiser.announcements_sent == 1


@pytest.mark.asyncio
async def test_goodbye_has_zero_ttl(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    await advertiser.send_goodbye()
    assert _decoded(codec, network)[0].is_goodbye


@pytest.mark.asyncio
async def test_query_answered_on_group(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    query = codec.parse(codec.encode_query())

    await advertiser.handle_query(query, ("10.0.0.9", 5353))

    [(_, packet, destination)] = network.sent
    assert destination is None
    assert codec.parse(packet).id == 0


@pytest.mark.asyncio
async def test_unicast_bit_answered_directly(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    packet = bytearray(codec.encode_query())
    packet[-2] |= 0x80

    await advertiser.handle_query(codec.parse(bytes(packet)), ("10.0.0.9", 5353))

    [(_, _, destination)] = network.sent
    assert destination == ("10.0.0.9", 5353)


@pytest.mark.asyncio
async def test_legacy_query_answered_with_echo(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    query = dns.message.make_query(codec.service_name, dns.rdatatype.PTR)
    query.id = 777

    await advertiser.handle_query(query, ("10.0.0.9", 40000))

    [(_, packet, destination)] = network.sent
    assert destination == ("10.0.0.9", 40000)
    reply = codec.parse(packet)
    assert reply.id == 777
    assert reply.question[0].name == codec.service_name


@pytest.mark.asyncio
async def test_other_queries_ignored(codec, network, transport):
    advertiser = _advertiser(codec, transport)
    other = RecordCodec("_other._udp")
    await advertiser.handle_query(
        codec.parse(other.encode_query()), ("10.0.0.9", 5353)
    )
    assert network.sent == []


@pytest.mark.asyncio
async def test_run_announces_immediately_and_periodically(codec, network, transport):
    advertiser = _advertiser(codec, transport, interval=0.05)
    advertiser.start()
    try:
        await asyncio.sleep(0.01)
        assert advertiser.announcements_sent == 1
        await asyncio.sleep(0.15)
        assert advertiser.announcements_sent >= 2
    finally:
        await advertiser.stop()
    assert not advertiser.is_running


@pytest.mark.asyncio
async def test_run_survives_send_failures(codec, network, transport):
    transport.fail_send = OSError("down")
    advertiser = _advertiser(codec, transport, interval=0.02)
    advertiser.start()
    try:
        await asyncio.sleep(0.05)
        assert advertiser.is_running
        transport.fail_send = None
        await asyncio.sleep(0.05)
        assert advertiser.announcements_sent >= 1
    finally:
        await advertiser.stop()
