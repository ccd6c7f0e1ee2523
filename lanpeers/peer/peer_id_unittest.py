import pytest

from lanpeers.peer.peer_id import PeerId


def test_random():
    identifier = PeerId.random()
    assert isinstance(identifier, PeerId)
    assert len(identifier.to_bytes()) == 16


def test_random_ids_differ():
    assert PeerId.random() != PeerId.random()


def test_init_rejects_non_bytes():
    with pytest.raises(TypeError):
        PeerId("not-bytes")  # type: ignore[arg-type]


def test_init_rejects_empty_bytes():
    with pytest.raises(ValueError):
        PeerId(b"")


def test_try_parse_round_trip():
    original = PeerId(b"\x01\x02\x03peer")
    parsed = PeerId.try_parse(original.to_base58())
    assert parsed == original
    assert parsed.to_bytes() == b"\x01\x02\x03peer"


def test_try_parse_preserves_leading_zero_bytes():
    original = PeerId(b"\x00\x00abc")
    assert PeerId.try_parse(original.to_base58()) == original


def test_try_parse_accepts_ascii_bytes():
    original = PeerId.random()
    assert PeerId.try_parse(original.to_base58().encode("ascii")) == original


@pytest.mark.parametrize("value", ["", "0OIl", "not base58!", "été"])
def test_try_parse_invalid(value):
    assert PeerId.try_parse(value) is None


def test_try_parse_wrong_type():
    assert PeerId.try_parse(12345) is None  # type: ignore[arg-type]


def test_equality_and_hash():
    a = PeerId(b"same")
    b = PeerId(b"same")
    c = PeerId(b"other")
    assert a == b
    assert hash(a) == hash(b)
    assert a != c
    assert {a, b, c} == {a, c}


def test_eq_different_type():
    assert PeerId(b"x").__eq__("x") is NotImplemented
    assert PeerId(b"x") != "x"


def test_str_and_repr():
    identifier = PeerId(b"hello")
    assert str(identifier) == identifier.to_base58()
    assert repr(identifier) == f"PeerId('{identifier.to_base58()}')"
