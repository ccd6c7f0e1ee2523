"""Defines the PeerId class for uniquely identifying peers."""

import uuid
from typing import Optional, Union

import base58


class PeerId:
    """An opaque, globally unique peer identity.

    Wraps the raw identity bytes supplied by the host. Two instances are equal
    when their bytes are equal. The textual form is base58, the encoding
    peer-to-peer stacks conventionally print peer IDs in.
    """

    def __init__(self, id_bytes: bytes) -> None:
        """Initializes a new PeerId instance.

        Args:
            id_bytes: The raw identity. Must be non-empty `bytes`.

        Raises:
            TypeError: If `id_bytes` is not `bytes`.
            ValueError: If `id_bytes` is empty.
        """
        if not isinstance(id_bytes, bytes):
            raise TypeError(f"id_bytes must be bytes, got {type(id_bytes)}")
        if not id_bytes:
            raise ValueError("id_bytes cannot be empty.")
        self.__id: bytes = id_bytes

    @staticmethod
    def random() -> "PeerId":
        """Creates a new PeerId from randomly generated bytes.

        Returns:
            A new `PeerId` instance.
        """
        return PeerId(uuid.uuid4().bytes)

    @classmethod
    def try_parse(cls, value: Union[str, bytes]) -> Optional["PeerId"]:
        """Tries to parse a base58 string (or its ASCII bytes) into a PeerId.

        Args:
            value: The base58 text to parse.

        Returns:
            A `PeerId` if parsing is successful, otherwise `None`.
        """
        if not isinstance(value, (str, bytes)) or not value:
            return None

        try:
            raw = base58.b58decode(value)
        except ValueError:
            return None

        if not raw:
            return None
        return PeerId(raw)

    def to_bytes(self) -> bytes:
        """Returns the raw identity bytes."""
        return self.__id

    def to_base58(self) -> str:
        """Returns the base58 text form of this identity."""
        return base58.b58encode(self.__id).decode("ascii")

    def __hash__(self) -> int:
        return hash(self.__id)

    def __eq__(self, other: object) -> bool:
        """Checks equality with another PeerId.

        Returns:
            True if `other` is a `PeerId` with the same bytes.
            NotImplemented if `other` is not a `PeerId`.
        """
        if not isinstance(other, PeerId):
            return NotImplemented
        return self.__id == other.__id  # pylint: disable=protected-access

    def __str__(self) -> str:
        return self.to_base58()

    def __repr__(self) -> str:
        return f"PeerId('{self.to_base58()}')"
