"""
Blocking UDP socket used to talk to the master server.

Wraps a connected datagram socket with a fixed receive timeout and turns
every socket-level failure into a TransportError.
"""

import socket

from masterquery.models.errors import TransportError
from masterquery.util.logging_helper import HEX_DUMP_LIMIT, format_hex, get_logger

logger = get_logger(__name__)

# Large enough for any single UDP datagram
RECV_BUFFER_SIZE = 65535


def split_host_port(host_and_port: str | tuple[str, int]) -> tuple[str, int]:
    """Turn "host:port" (or an existing (host, port) tuple) into a tuple."""
    if isinstance(host_and_port, tuple):
        return host_and_port
    host, _, port = host_and_port.rpartition(":")
    if not host or not port:
        raise ValueError(f"expected host:port, got {host_and_port!r}")
    return host, int(port)


class UdpSocket:
    """
    Connected UDP socket with send/recv/close.

    close() is idempotent, and the socket is a context manager so the
    owner can release it on every exit path.
    """

    def __init__(self, host_and_port: str | tuple[str, int], timeout: float):
        try:
            self.address = split_host_port(host_and_port)
        except ValueError as e:
            raise TransportError(f"bad master address: {e}") from e
        self.timeout = timeout
        self._sock: socket.socket | None = None

        try:
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._sock.settimeout(timeout)
            self._sock.connect(self.address)
        except OSError as e:
            self.close()
            raise TransportError(f"could not open socket to {self.address[0]}:{self.address[1]}: {e}") from e

        logger.debug("Opened UDP socket to %s:%d (timeout %.1fs)", self.address[0], self.address[1], timeout)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def send(self, data: bytes) -> None:
        if self._sock is None:
            raise TransportError("send on closed socket")
        logger.debug(
            "UDP TX to %s:%d - %d bytes: %s", *self.address, len(data), format_hex(data, HEX_DUMP_LIMIT)
        )
        try:
            self._sock.send(data)
        except OSError as e:
            raise TransportError(f"send failed: {e}") from e

    def recv(self) -> bytes:
        if self._sock is None:
            raise TransportError("recv on closed socket")
        try:
            data = self._sock.recv(RECV_BUFFER_SIZE)
        except socket.timeout as e:
            raise TransportError(f"timed out after {self.timeout:.1f}s waiting for response") from e
        except OSError as e:
            raise TransportError(f"recv failed: {e}") from e
        logger.debug(
            "UDP RX from %s:%d - %d bytes: %s", *self.address, len(data), format_hex(data, HEX_DUMP_LIMIT)
        )
        return data

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> "UdpSocket":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
