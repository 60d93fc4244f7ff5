"""
ReflectRPC Message Framing

Splits a TCP byte stream into messages.

Modes:
- raw    : one transport read is one message (protocol version 1,
           compatible with existing peers). Messages split across TCP
           segments, or several messages coalesced into one read, are
           not handled.
- length : every message is prefixed with its payload length as a
           4-byte big-endian unsigned integer (protocol version 2).
           Both peers must use the same mode.
"""

import struct
from abc import ABC, abstractmethod
from typing import Dict, List, Type

from ..errors import ProtocolError


# Length prefix: network-order uint32
LENGTH_HEADER = struct.Struct(">I")

# Sanity cap on a single framed message (4 MB)
MAX_MESSAGE_SIZE = 4 * 1024 * 1024


class FrameDecoder(ABC):
    """Stateful decoder for one connection."""

    @abstractmethod
    def feed(self, data: bytes) -> List[bytes]:
        """
        Add received bytes.

        Returns:
            Complete messages now available (possibly none)

        Raises:
            ProtocolError: If the stream is corrupt
        """
        pass

    def reset(self) -> None:
        """Discard any partially received message."""
        pass


class Framing(ABC):
    """Message framing strategy."""

    name = ""
    protocol_version = 0

    @abstractmethod
    def encode(self, payload: bytes) -> bytes:
        """Wrap one message for sending."""
        pass

    @abstractmethod
    def decoder(self) -> FrameDecoder:
        """Create a decoder for a new connection."""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class _RawDecoder(FrameDecoder):

    def feed(self, data: bytes) -> List[bytes]:
        return [data] if data else []


class RawFraming(Framing):
    """Unframed messages: the read boundary is the message boundary."""

    name = "raw"
    protocol_version = 1

    def encode(self, payload: bytes) -> bytes:
        return payload

    def decoder(self) -> FrameDecoder:
        return _RawDecoder()


class _LengthPrefixDecoder(FrameDecoder):

    def __init__(self, max_size: int):
        self._max_size = max_size
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[bytes]:
        self._buffer.extend(data)
        messages = []

        while len(self._buffer) >= LENGTH_HEADER.size:
            (length,) = LENGTH_HEADER.unpack_from(self._buffer)
            if length > self._max_size:
                self._buffer.clear()
                raise ProtocolError(f"Frame too large: {length} bytes")

            end = LENGTH_HEADER.size + length
            if len(self._buffer) < end:
                break

            messages.append(bytes(self._buffer[LENGTH_HEADER.size:end]))
            del self._buffer[:end]

        return messages

    def reset(self) -> None:
        self._buffer.clear()


class LengthPrefixFraming(Framing):
    """4-byte big-endian length prefix before every message."""

    name = "length"
    protocol_version = 2

    def __init__(self, max_size: int = MAX_MESSAGE_SIZE):
        self.max_size = max_size

    def encode(self, payload: bytes) -> bytes:
        if len(payload) > self.max_size:
            raise ProtocolError(f"Message too large: {len(payload)} bytes")
        return LENGTH_HEADER.pack(len(payload)) + payload

    def decoder(self) -> FrameDecoder:
        return _LengthPrefixDecoder(self.max_size)


FRAMINGS: Dict[str, Type[Framing]] = {
    RawFraming.name: RawFraming,
    LengthPrefixFraming.name: LengthPrefixFraming,
}


def get_framing(name: str) -> Framing:
    """
    Create a framing strategy by name ("raw" or "length").

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return FRAMINGS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown framing: {name}") from None
