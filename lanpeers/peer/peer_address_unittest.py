import pytest

from lanpeers.peer.peer_address import PeerAddress


class TestPeerAddress:

    def test_ipv4_multiaddr_round_trip(self):
        address = PeerAddress("tcp", "192.168.1.5", 4001)
        assert str(address) == "/ip4/192.168.1.5/tcp/4001"
        assert PeerAddress.from_multiaddr(str(address)) == address

    def test_ipv6_multiaddr_round_trip(self):
        address = PeerAddress("udp", "fe80::1", 9000)
        assert str(address) == "/ip6/fe80::1/udp/9000"
        assert PeerAddress.from_multiaddr(str(address)) == address

    def test_from_multiaddr_object(self):
        address = PeerAddress("tcp", "10.0.0.1", 1)
        assert PeerAddress.from_multiaddr(address.to_multiaddr()) == address

    def test_ip_is_canonicalized(self):
        assert PeerAddress("tcp", "FE80:0:0::1", 1) == PeerAddress("tcp", "fe80::1", 1)

    def test_ip_version(self):
        assert PeerAddress("tcp", "127.0.0.1", 1).ip_version == 4
        assert PeerAddress("tcp", "::1", 1).ip_version == 6

    @pytest.mark.parametrize(
        "transport,ip,port",
        [
            ("sctp", "10.0.0.1", 1),
            ("tcp", "not-an-ip", 1),
            ("tcp", "10.0.0.1", -1),
            ("tcp", "10.0.0.1", 70000),
        ],
    )
    def test_invalid_fields(self, transport, ip, port):
        with pytest.raises(ValueError):
            PeerAddress(transport, ip, port)

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "garbage",
            "/ip4/10.0.0.1",
            "/ip4/10.0.0.1/tcp/1/ws",
            "/dns4/example.com/tcp/1",
            "/ip4/999.0.0.1/tcp/1",
            "/ip4/10.0.0.1/tcp/notaport",
        ],
    )
    def test_try_parse_invalid(self, value):
        assert PeerAddress.try_parse(value) is None

    def test_sets_ignore_order(self):
        a = PeerAddress("tcp", "10.0.0.1", 1)
        b = PeerAddress("udp", "10.0.0.2", 2)
        assert frozenset([a, b]) == frozenset([b, a])
