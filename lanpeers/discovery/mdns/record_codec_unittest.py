import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rrset
import pytest

from lanpeers.discovery.errors import DecodeError
from lanpeers.discovery.mdns.record_codec import (
    RecordCodec,
    random_instance_label,
)
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import PeerRecord

SERVICE = "_p2p._udp.local."


def _single_address_record(ip):
    return PeerRecord(PeerId.random(), frozenset([PeerAddress("tcp", ip, 1)]))


def _txt_response(strings, service=SERVICE, instance="inst", rdclass=1, ttl=120):
    """Builds a response whose only instance carries `strings` in its TXT."""
    service_name = dns.name.from_text(service)
    instance_name = dns.name.from_text(instance, origin=service_name)
    message = dns.message.Message(id=0)
    message.flags = dns.flags.QR | dns.flags.AA
    ptr = dns.rdtypes.ANY.PTR.PTR(rdclass, dns.rdatatype.PTR, instance_name)
    message.answer.append(dns.rrset.from_rdata(service_name, ttl, ptr))
    txt = dns.rdtypes.ANY.TXT.TXT(rdclass, dns.rdatatype.TXT, strings)
    message.additional.append(dns.rrset.from_rdata(instance_name, ttl, txt))
    return message.to_wire()


@pytest.fixture
def codec():
    return RecordCodec()


@pytest.fixture
def record():
    addresses = [
        PeerAddress("tcp", "192.168.1.10", 4001),
        PeerAddress("udp", "192.168.1.10", 4001),
        PeerAddress("tcp", "fe80::1", 4001),
    ]
    return PeerRecord(PeerId.random(), frozenset(addresses))


class TestInstanceLabel:

    def test_length_and_alphabet(self):
        for _ in range(50):
            label = random_instance_label()
            assert 32 <= len(label) <= 63
            assert label.isalnum()

    def test_labels_differ(self):
        assert random_instance_label() != random_instance_label()


class TestRecordCodec:

    def test_names(self):
        codec = RecordCodec("_test._udp", instance_label="abc")
        assert codec.service_name.to_text() == "_test._udp.local."
        assert codec.instance_name.to_text() == "abc._test._udp.local."

    def test_rejects_bad_tag(self):
        with pytest.raises(ValueError):
            RecordCodec("test._udp")

    def test_query_layout(self, codec):
        message = dns.message.from_wire(codec.encode_query())
        assert message.id == 0
        assert message.flags == 0
        assert len(message.question) == 1
        question = message.question[0]
        assert question.name.to_text() == SERVICE
        assert question.rdtype == dns.rdatatype.PTR
        assert question.rdclass == dns.rdataclass.IN
        assert codec.is_service_query(message)
        assert not codec.wants_unicast_response(message)

    def test_response_layout(self, codec, record):
        message = dns.message.from_wire(codec.encode(record))
        assert message.flags & dns.flags.QR
        assert message.flags & dns.flags.AA
        assert message.id == 0

        [ptr] = message.answer
        assert ptr.rdtype == dns.rdatatype.PTR
        assert ptr.name == codec.service_name
        assert ptr[0].target == codec.instance_name
        assert ptr.ttl == record.ttl

        types = {rrset.rdtype for rrset in message.additional}
        assert types == {dns.rdatatype.TXT, dns.rdatatype.A, dns.rdatatype.AAAA}
        txt = next(r for r in message.additional if r.rdtype == dns.rdatatype.TXT)
        strings = [s.decode() for s in txt[0].strings]
        assert strings[0] == f"peer={record.peer_id.to_base58()}"
        assert "dnsaddr=/ip4/192.168.1.10/tcp/4001" in strings
        assert "dnsaddr=/ip6/fe80::1/tcp/4001" in strings

    def test_round_trip(self, codec, record):
        decoded = codec.decode(codec.encode(record))
        assert decoded == record

    def test_round_trip_between_instances(self, record):
        sender = RecordCodec("_demo._udp")
        receiver = RecordCodec("_demo._udp")
        assert receiver.decode(sender.encode(record)) == record

    def test_identity_only_record(self, codec):
        record = PeerRecord(PeerId.random())
        assert codec.decode(codec.encode(record)) == record

    def test_goodbye_ttl_preserved(self, codec, record):
        goodbye = PeerRecord(record.peer_id, record.addresses, 0)
        assert codec.decode(codec.encode(goodbye)).is_goodbye

    def test_legacy_reply_echoes_query(self, codec, record):
        query = dns.message.make_query(codec.service_name, dns.rdatatype.PTR)
        query.id = 4242
        message = dns.message.from_wire(
            codec.encode(record, query_id=query.id, question=query)
        )
        assert message.id == 4242
        assert message.question[0].name == codec.service_name
        assert codec.decode_records(message)[0] == record

    def test_other_service_ignored(self, record):
        ours = RecordCodec("_ours._udp")
        theirs = RecordCodec("_theirs._udp")
        packet = theirs.encode(record)
        assert ours.decode_records(ours.parse(packet)) == []
        with pytest.raises(DecodeError):
            ours.decode(packet)

    def test_query_for_other_service(self):
        ours = RecordCodec("_ours._udp")
        theirs = RecordCodec("_theirs._udp")
        assert not ours.is_service_query(ours.parse(theirs.encode_query()))

    def test_response_is_not_a_query(self, codec, record):
        assert not codec.is_service_query(codec.parse(codec.encode(record)))

    def test_query_has_no_records(self, codec):
        assert codec.decode_records(codec.parse(codec.encode_query())) == []

    def test_unicast_response_bit(self, codec):
        packet = bytearray(codec.encode_query())
        packet[-2] |= 0x80
        message = codec.parse(bytes(packet))
        assert codec.is_service_query(message)
        assert codec.wants_unicast_response(message)

    @pytest.mark.parametrize(
        "packet",
        [b"", b"\x00", b"\xff" * 11, b"\x00" * 12 + b"\x05abc"],
    )
    def test_malformed_packet(self, codec, packet):
        with pytest.raises(DecodeError):
            codec.parse(packet)
        with pytest.raises(DecodeError):
            codec.decode(packet)

    def test_truncated_valid_packet(self, codec, record):
        packet = codec.encode(record)
        with pytest.raises(DecodeError):
            codec.decode(packet[: len(packet) // 2])

    def test_missing_peer_id(self, codec):
        packet = _txt_response([b"dnsaddr=/ip4/10.0.0.1/tcp/1"])
        assert codec.decode_records(codec.parse(packet)) == []

    def test_unparsable_peer_id(self, codec):
        packet = _txt_response([b"peer=0OIl"])
        assert codec.decode_records(codec.parse(packet)) == []

    def test_conflicting_peer_ids(self, codec):
        a = PeerId.random().to_base58().encode()
        b = PeerId.random().to_base58().encode()
        packet = _txt_response([b"peer=" + a, b"peer=" + b])
        assert codec.decode_records(codec.parse(packet)) == []

    def test_bad_addresses_skipped(self, codec):
        peer_id = PeerId.random()
        packet = _txt_response(
            [
                f"peer={peer_id}".encode(),
                b"dnsaddr=/ip4/10.0.0.1/tcp/4001",
                b"dnsaddr=not-a-multiaddr",
                b"dnsaddr=/dns4/example.com/tcp/1",
                b"unrelated=value",
                b"novalue",
            ]
        )
        [decoded] = codec.decode_records(codec.parse(packet))
        assert decoded.peer_id == peer_id
        assert decoded.addresses == frozenset([PeerAddress("tcp", "10.0.0.1", 4001)])

    def test_cache_flush_class_accepted(self, codec):
        peer_id = PeerId.random()
        packet = _txt_response([f"peer={peer_id}".encode()], rdclass=0x8001)
        [decoded] = codec.decode_records(codec.parse(packet))
        assert decoded.peer_id == peer_id

    def test_ttl_is_minimum_of_ptr_and_txt(self, codec):
        service_name = codec.service_name
        instance_name = dns.name.from_text("x", origin=service_name)
        message = dns.message.Message(id=0)
        message.flags = dns.flags.QR
        ptr = dns.rdtypes.ANY.PTR.PTR(1, dns.rdatatype.PTR, instance_name)
        message.answer.append(dns.rrset.from_rdata(service_name, 300, ptr))
        peer_id = PeerId.random()
        txt = dns.rdtypes.ANY.TXT.TXT(1, dns.rdatatype.TXT, [f"peer={peer_id}"])
        message.additional.append(dns.rrset.from_rdata(instance_name, 30, txt))

        [decoded] = codec.decode_records(codec.parse(message.to_wire()))
        assert decoded.ttl == 30

    def test_multiple_instances_in_one_packet(self, codec):
        first = _single_address_record("10.0.0.1")
        second = _single_address_record("10.0.0.2")
        merged = codec.parse(RecordCodec().encode(first))
        other = codec.parse(RecordCodec().encode(second))
        merged.answer[0].union_update(other.answer[0])
        merged.additional.extend(other.additional)

        decoded = codec.decode_records(codec.parse(merged.to_wire()))
        assert sorted(decoded, key=lambda r: r.peer_id.to_bytes()) == sorted(
            [first, second], key=lambda r: r.peer_id.to_bytes()
        )

    def test_bad_instance_does_not_hide_good_one(self, codec):
        good = PeerRecord(PeerId.random())
        merged = codec.parse(RecordCodec().encode(good))
        bad = codec.parse(_txt_response([b"peer=0OIl"], instance="bad"))
        merged.answer[0].union_update(bad.answer[0])
        merged.additional.extend(bad.additional)

        assert codec.decode_records(codec.parse(merged.to_wire())) == [good]

    def test_overlong_address_not_announced(self, codec, mocker):
        record = _single_address_record("10.0.0.1")
        mocker.patch(
            "lanpeers.discovery.mdns.record_codec.MAX_TXT_STRING_LENGTH", 10
        )
        decoded = codec.decode(codec.encode(record))
        assert decoded.peer_id == record.peer_id
        assert decoded.addresses == frozenset()

    def test_names_match_case_insensitively(self, codec):
        peer_id = PeerId.random()
        packet = _txt_response(
            [f"peer={peer_id}".encode()], service="_P2P._UDP.LOCAL.", instance="Inst"
        )
        [decoded] = codec.decode_records(codec.parse(packet))
        assert decoded.peer_id == peer_id
