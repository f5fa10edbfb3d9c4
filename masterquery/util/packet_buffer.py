"""
Byte buffer helpers for building and reading master server packets.

All multi-byte integers on the master server wire are big-endian
(network byte order).
"""

import socket
import struct

from masterquery.models.errors import TruncatedPacketError


class PacketBuilder:
    """Append-only writer used to assemble outbound query packets."""

    def __init__(self):
        self._buf = bytearray()

    def write_byte(self, value: int) -> "PacketBuilder":
        self._buf.append(value & 0xFF)
        return self

    def write_bytes(self, data: bytes) -> "PacketBuilder":
        self._buf.extend(data)
        return self

    def write_cstring(self, value: str) -> "PacketBuilder":
        """Write an ASCII string followed by a null terminator."""
        self._buf.extend(value.encode("ascii"))
        self._buf.append(0)
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


class PacketReader:
    """
    Sequential reader over an inbound packet.

    Each read consumes bytes from the front of the buffer and raises
    TruncatedPacketError when not enough bytes remain.
    """

    PORT_FORMAT = "!H"

    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, size: int) -> bytes:
        if self.remaining < size:
            raise TruncatedPacketError(size, self.remaining)
        chunk = self._data[self._offset : self._offset + size].tobytes()
        self._offset += size
        return chunk

    def read_ipv4(self) -> str:
        """Read 4 bytes as a dotted-quad IPv4 address."""
        return socket.inet_ntoa(self._take(4))

    def read_port(self) -> int:
        """Read 2 bytes as a big-endian port number."""
        return struct.unpack(self.PORT_FORMAT, self._take(2))[0]
