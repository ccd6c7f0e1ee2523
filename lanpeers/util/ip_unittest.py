import socket

import pytest

from lanpeers.peer.peer_address import PeerAddress
from lanpeers.util import ip as ip_util


# Helper to create a mock psutil address entry
def create_mock_address(mocker, family, address):
    mock_addr = mocker.MagicMock()
    mock_addr.family = family
    mock_addr.address = address
    return mock_addr


class TestIpUtils:

    # --- get_all_address_strings ---

    def test_get_all_address_strings_no_interfaces(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {}

        assert ip_util.get_all_address_strings() == []
        mock_net_if_addrs.assert_called_once()

    def test_get_all_address_strings_ipv4_only_by_default(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "eth0": [
                create_mock_address(mocker, socket.AF_INET, "192.168.1.100"),
                create_mock_address(mocker, socket.AF_INET6, "2001:db8::1"),
                create_mock_address(mocker, socket.AF_PACKET, "00:11:22:33:44:55"),  # type: ignore
            ]
        }

        assert ip_util.get_all_address_strings() == ["192.168.1.100"]

    def test_get_all_address_strings_multiple_interfaces(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "lo": [create_mock_address(mocker, socket.AF_INET, "127.0.0.1")],
            "eth0": [create_mock_address(mocker, socket.AF_INET, "10.0.0.5")],
            "eth1": [
                create_mock_address(mocker, socket.AF_INET, "10.0.1.5"),
                create_mock_address(mocker, socket.AF_INET, "10.0.1.6"),
            ],
        }

        result = ip_util.get_all_address_strings()
        assert sorted(result) == sorted(
            ["127.0.0.1", "10.0.0.5", "10.0.1.5", "10.0.1.6"]
        )

    def test_get_all_address_strings_with_ipv6_skips_scoped(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "eth0": [
                create_mock_address(mocker, socket.AF_INET, "192.168.1.100"),
                create_mock_address(mocker, socket.AF_INET6, "2001:db8::1"),
                create_mock_address(mocker, socket.AF_INET6, "fe80::1%eth0"),
            ]
        }

        result = ip_util.get_all_address_strings(include_ipv6=True)
        assert result == ["192.168.1.100", "2001:db8::1"]

    # --- host_address_provider ---

    def test_host_address_provider(self, mocker):
        mocker.patch(
            "lanpeers.util.ip.get_all_address_strings",
            return_value=["127.0.0.1", "10.0.0.5"],
        )

        provide = ip_util.host_address_provider(4001)

        assert provide() == [
            PeerAddress("tcp", "127.0.0.1", 4001),
            PeerAddress("tcp", "10.0.0.5", 4001),
        ]

    def test_host_address_provider_excludes_loopback(self, mocker):
        mocker.patch(
            "lanpeers.util.ip.get_all_address_strings",
            return_value=["127.0.0.1", "10.0.0.5", "::1"],
        )

        provide = ip_util.host_address_provider(
            9000, "udp", include_ipv6=True, include_loopback=False
        )

        assert provide() == [PeerAddress("udp", "10.0.0.5", 9000)]

    def test_host_address_provider_rereads_interfaces(self, mocker):
        mock_get_strings = mocker.patch(
            "lanpeers.util.ip.get_all_address_strings",
            side_effect=[["10.0.0.5"], ["10.0.0.6"]],
        )

        provide = ip_util.host_address_provider(4001)

        assert provide()[0].ip == "10.0.0.5"
        assert provide()[0].ip == "10.0.0.6"
        assert mock_get_strings.call_count == 2

    @pytest.mark.parametrize("transport,port", [("sctp", 1), ("tcp", 70000)])
    def test_host_address_provider_rejects_bad_arguments(self, transport, port):
        with pytest.raises(ValueError):
            ip_util.host_address_provider(port, transport)
