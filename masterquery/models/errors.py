"""
Exception hierarchy for master server queries.

Every failure surfaced by the query client derives from MasterQueryError so
callers can catch the whole family with a single except clause.
"""


class MasterQueryError(Exception):
    """Base class for all master server query failures."""


# =============================================================================
# Protocol (decode) errors - never retried
# =============================================================================


class ProtocolError(MasterQueryError):
    """A response packet violated the master server wire format."""


class BadHeaderError(ProtocolError):
    """Response is missing the fixed FF FF FF FF 66 0A header."""

    def __init__(self, message: str = "bad response header"):
        super().__init__(message)


class EmptyPageError(ProtocolError):
    """Response header was valid but no complete server record followed."""

    def __init__(self, message: str = "expected at least one server in response"):
        super().__init__(message)


class TruncatedPacketError(ProtocolError):
    """Fewer bytes remained than the field being read requires."""

    def __init__(self, needed: int, available: int):
        super().__init__(f"truncated packet: needed {needed} bytes, {available} available")
        self.needed = needed
        self.available = available


# =============================================================================
# Transport, callback and control-flow errors
# =============================================================================


class TransportError(MasterQueryError):
    """Socket send/receive failure, including timeouts."""


class CallbackError(MasterQueryError):
    """The caller's page callback raised; the original exception is __cause__."""


class QueryCancelledError(MasterQueryError):
    """The caller requested cancellation while a query was in flight."""
