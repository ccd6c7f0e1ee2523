import pytest

from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DEFAULT_RECORD_TTL, DiscoveryEvent, PeerRecord


def test_addresses_coerced_to_frozenset():
    record = PeerRecord(PeerId.random(), {PeerAddress("tcp", "10.0.0.1", 1)})  # type: ignore[arg-type]
    assert isinstance(record.addresses, frozenset)


def test_identity_only_record():
    record = PeerRecord(PeerId.random())
    assert record.addresses == frozenset()
    assert record.ttl == DEFAULT_RECORD_TTL


def test_rejects_bad_peer_id():
    with pytest.raises(TypeError):
        PeerRecord(b"raw")  # type: ignore[arg-type]


def test_rejects_negative_ttl():
    with pytest.raises(ValueError):
        PeerRecord(PeerId.random(), ttl=-1)


def test_goodbye():
    assert PeerRecord(PeerId.random(), ttl=0).is_goodbye
    assert not PeerRecord(PeerId.random(), ttl=1).is_goodbye


def test_to_event():
    peer_id = PeerId.random()
    addresses = frozenset([PeerAddress("udp", "::1", 5)])
    assert PeerRecord(peer_id, addresses).to_event() == DiscoveryEvent(
        peer_id, addresses
    )
