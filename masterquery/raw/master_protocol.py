"""
Master Server Query Protocol Parsing and Serialization.

Handles batching filters into transport-sized groups, building query
packets and parsing the paginated server list responses.
"""

from masterquery.models.errors import BadHeaderError, EmptyPageError
from masterquery.models.master_types import (
    MASTER_QUERY_MAGIC,
    MASTER_RESPONSE_HEADER,
    NULL_ADDRESS,
    SERVER_RECORD_SIZE,
    Region,
    ServerAddress,
)
from masterquery.util.logging_helper import format_hex, get_logger
from masterquery.util.packet_buffer import PacketBuilder, PacketReader

logger = get_logger(__name__)


# Maximum combined length, in bytes, of the filter tokens in one query packet
MAX_FILTER_LENGTH = 190

FILTER_ENCODING = "utf-8"


# =============================================================================
# Filter Batching
# =============================================================================


def format_filter(key: str, value) -> str:
    """Format a single filter token, e.g. format_filter("appid", 440) -> "\\appid\\440"."""
    return f"\\{key}\\{value}"


def encode_filter(token: str) -> bytes:
    """Wire bytes of a filter token (UTF-8)."""
    return token.encode(FILTER_ENCODING)


def compute_next_filter_batch(
    filters: list[str], max_length: int = MAX_FILTER_LENGTH
) -> tuple[list[str], list[str]]:
    """
    Split off the next batch of filters that fits in one query packet.

    Filters are taken greedily in order, stopping before the filter that
    would bring the running byte length to max_length or beyond. A first filter
    that alone reaches the budget is sent in a batch of its own, so every
    call on a non-empty list consumes at least one filter.

    Args:
        filters: Filter tokens still to be sent
        max_length: Byte budget for the joined tokens

    Returns:
        Tuple of (batch, remainder)
    """
    batch: list[str] = []
    length = 0
    for token in filters:
        size = len(encode_filter(token))
        if length + size >= max_length:
            break
        length += size
        batch.append(token)

    if not batch and filters:
        logger.warning(
            "Filter %r is %d bytes (limit %d), sending it in its own batch",
            filters[0],
            len(encode_filter(filters[0])),
            max_length,
        )
        batch.append(filters[0])

    return batch, list(filters[len(batch) :])


def iter_filter_batches(filters: list[str], max_length: int = MAX_FILTER_LENGTH):
    """
    Yield every batch for the filter list, in order.

    An empty filter list yields a single empty batch (an unfiltered query).
    """
    batch, remaining = compute_next_filter_batch(filters, max_length)
    yield batch
    while remaining:
        batch, remaining = compute_next_filter_batch(remaining, max_length)
        yield batch


# =============================================================================
# Query Encoding
# =============================================================================


def build_master_query(
    cursor: ServerAddress | str = NULL_ADDRESS,
    filters: list[str] | None = None,
    region: int = Region.ALL,
) -> bytes:
    """
    Build a master server query packet.

    Format:
        u8       0x31 magic
        u8       region code (0xFF = all regions)
        cstring  "ip:port" of the last server received ("0.0.0.0:0" first)
        filter section:
            empty batch:  0x00 0x00
            otherwise:    "\\or\\<N>" + joined tokens + 0x00

    Filter tokens go on the wire as UTF-8.

    Args:
        cursor: Server to resume listing after
        filters: Filter tokens for this batch, OR'd together
        region: Region selector byte

    Returns:
        Raw packet bytes
    """
    packet = PacketBuilder()
    packet.write_byte(MASTER_QUERY_MAGIC)
    packet.write_byte(region)
    packet.write_cstring(str(cursor))

    if not filters:
        packet.write_byte(0)
        packet.write_byte(0)
    else:
        packet.write_bytes(encode_filter(format_filter("or", len(filters))))
        for token in filters:
            packet.write_bytes(encode_filter(token))
        packet.write_byte(0)

    return packet.to_bytes()


# =============================================================================
# Response Decoding
# =============================================================================


def is_master_response(data: bytes) -> bool:
    """Check whether data starts with the master server response header."""
    return len(data) >= len(MASTER_RESPONSE_HEADER) and data[: len(MASTER_RESPONSE_HEADER)] == MASTER_RESPONSE_HEADER


def parse_master_response(packet: bytes) -> tuple[list[ServerAddress], bool]:
    """
    Parse one server list response packet.

    The end-of-list sentinel (0.0.0.0:0) is not included in the returned
    records; its presence is reported through the second tuple element.
    Records following the sentinel in the same packet are ignored.

    Args:
        packet: Raw response bytes, header included

    Returns:
        Tuple of (servers, sentinel_seen)

    Raises:
        BadHeaderError: Packet does not start with the response header
        EmptyPageError: No complete server record follows the header
        TruncatedPacketError: A record field ran past the end of the packet
    """
    if not is_master_response(packet):
        logger.debug("Bad response header: %s", format_hex(packet[: len(MASTER_RESPONSE_HEADER)]))
        raise BadHeaderError()

    body = packet[len(MASTER_RESPONSE_HEADER) :]
    record_count, leftover = divmod(len(body), SERVER_RECORD_SIZE)
    if record_count == 0:
        raise EmptyPageError()
    if leftover:
        logger.debug("Ignoring %d trailing bytes after %d records", leftover, record_count)

    reader = PacketReader(body)
    servers: list[ServerAddress] = []
    sentinel_seen = False
    for _ in range(record_count):
        address = ServerAddress(ip=reader.read_ipv4(), port=reader.read_port())
        # The list is terminated with 0s
        if address.is_null:
            sentinel_seen = True
            break
        servers.append(address)

    return servers, sentinel_seen
