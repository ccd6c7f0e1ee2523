import pytest

from lanpeers.discovery.mdns_config import (
    DEFAULT_SERVICE_TAG,
    MDNS_MULTICAST_GROUP,
    MDNS_PORT,
    MdnsConfig,
)


def test_defaults():
    config = MdnsConfig()
    assert config.service_tag == DEFAULT_SERVICE_TAG
    assert config.multicast_group == MDNS_MULTICAST_GROUP
    assert config.multicast_port == MDNS_PORT
    assert config.interface is None


@pytest.mark.parametrize(
    "tag,expected",
    [
        ("", "_p2p._udp"),
        ("_p2p._udp", "_p2p._udp"),
        ("_myapp", "_myapp._udp"),
        ("_myapp._tcp", "_myapp._tcp"),
        ("_myapp._udp.local.", "_myapp._udp"),
        ("_myapp._udp.", "_myapp._udp"),
    ],
)
def test_service_tag_normalization(tag, expected):
    assert MdnsConfig(service_tag=tag).service_tag == expected


def test_service_tag_requires_underscore():
    with pytest.raises(ValueError):
        MdnsConfig(service_tag="p2p._udp")


def test_service_tag_wrong_type():
    with pytest.raises(TypeError):
        MdnsConfig(service_tag=5)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "overrides",
    [
        {"query_interval": 0},
        {"announce_interval": -1.0},
        {"record_ttl": 0},
        {"multicast_group": "10.0.0.1"},
        {"multicast_group": "ff02::fb"},
        {"multicast_port": 0},
        {"multicast_port": 70000},
        {"interface": "::1"},
        {"multicast_ttl": 0},
        {"multicast_ttl": 256},
        {"max_packet_size": 100},
        {"max_queued_events": 0},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ValueError):
        MdnsConfig(**overrides)


def test_with_overrides_revalidates():
    config = MdnsConfig()
    changed = config.with_overrides(query_interval=0.5, service_tag="_test")
    assert changed.query_interval == 0.5
    assert changed.service_tag == "_test._udp"
    assert config.query_interval == 5.0

    with pytest.raises(ValueError):
        config.with_overrides(record_ttl=-5)
