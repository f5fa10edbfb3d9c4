"""
Master Server Query Protocol Types.

This module defines the constants and value types shared by the encoder,
the decoder and the pagination driver.

Protocol reference:
- Query magic byte: 0x31 ('1')
- Response header: 0xFF 0xFF 0xFF 0xFF 0x66 0x0A
- Server records: 4-byte IPv4 address + 2-byte big-endian port
- A record of 0.0.0.0:0 terminates the result set
"""

import socket
import struct
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable


# Request magic byte
MASTER_QUERY_MAGIC = 0x31

# Fixed 6-byte header on every response packet
MASTER_RESPONSE_HEADER = bytes([0xFF, 0xFF, 0xFF, 0xFF, 0x66, 0x0A])

# Size of one server record on the wire
SERVER_RECORD_SIZE = 6

NULL_IP = "0.0.0.0"


class Region(IntEnum):
    """
    Region selector byte of the query packet.

    This client always asks for ALL; the other codes are kept for callers
    that configure a narrower region explicitly.
    """
    US_EAST_COAST = 0x00
    US_WEST_COAST = 0x01
    SOUTH_AMERICA = 0x02
    EUROPE = 0x03
    ASIA = 0x04
    AUSTRALIA = 0x05
    MIDDLE_EAST = 0x06
    AFRICA = 0x07
    ALL = 0xFF


@dataclass(frozen=True)
class ServerAddress:
    """An IPv4 address and port, as listed by the master server."""

    ip: str
    port: int

    RECORD_FORMAT = "!4sH"

    def to_bytes(self) -> bytes:
        """Encode as a 6-byte wire record."""
        return struct.pack(self.RECORD_FORMAT, socket.inet_aton(self.ip), self.port)

    @property
    def is_null(self) -> bool:
        """True for the 0.0.0.0:0 start cursor / end-of-list sentinel."""
        return self.ip == NULL_IP and self.port == 0

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


NULL_ADDRESS = ServerAddress(NULL_IP, 0)

# One decoded response packet, delivered to the caller as a unit
ServerPage = list[ServerAddress]

PageCallback = Callable[[ServerPage], object]


class PaginationPhase(Enum):
    """States of the per-batch pagination state machine."""

    START = "start"
    AWAITING_RESPONSE = "awaiting_response"
    DELIVER_PAGE = "deliver_page"
    CONTINUING = "continuing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class QueryState:
    """
    Loop-carried state of one batch's pagination.

    Each PaginationDriver step takes the current state and returns the
    next one, so the machine can be driven and inspected one step at a time.
    """

    phase: PaginationPhase = PaginationPhase.START
    cursor: ServerAddress = NULL_ADDRESS
    retries_left: int = 0
    page: ServerPage = field(default_factory=list)
    sentinel_seen: bool = False
    pages_delivered: int = 0
    servers_delivered: int = 0
    last_error: Exception | None = None

    @property
    def finished(self) -> bool:
        return self.phase in (PaginationPhase.DONE, PaginationPhase.FAILED)
