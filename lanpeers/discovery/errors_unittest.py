import pytest

from lanpeers.discovery.errors import (
    BindError,
    DecodeError,
    DiscoveryError,
    ShutdownError,
    StartupError,
    TransientSendError,
)


@pytest.mark.parametrize(
    "error_type", [StartupError, DecodeError, TransientSendError, ShutdownError]
)
def test_hierarchy(error_type):
    assert issubclass(error_type, DiscoveryError)


def test_bind_error_is_startup_error():
    assert BindError is StartupError


def test_str_without_details():
    error = DecodeError("bad packet")
    assert str(error) == "bad packet"
    assert error.message == "bad packet"
    assert error.details == {}


def test_str_with_details():
    error = StartupError("bind failed", {"port": 5353})
    assert str(error) == "bind failed (Details: {'port': 5353})"
    assert error.details["port"] == 5353
