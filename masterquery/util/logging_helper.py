"""
Logging setup for the master server query client.

Log records go to stderr; stdout carries the server list.
"""

import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Longest packet prefix written to a debug hex dump
HEX_DUMP_LIMIT = 256

# Per-component logger names, for selective --debug output
PROTOCOL_LOGGER = "masterquery.raw.master_protocol"
PAGINATION_LOGGER = "masterquery.client.pagination"
QUERIER_LOGGER = "masterquery.client.querier"
SOCKET_LOGGER = "masterquery.util.udp_socket"

COMPONENT_LOGGERS = (PROTOCOL_LOGGER, PAGINATION_LOGGER, QUERIER_LOGGER, SOCKET_LOGGER)


def format_hex(data: bytes, limit: Optional[int] = None) -> str:
    """
    Format bytes as space-separated hex for debug logging.

    With a limit, only the first `limit` bytes are shown, followed by a
    count of what was left out.
    """
    if limit is not None and len(data) > limit:
        return " ".join(f"{b:02x}" for b in data[:limit]) + f" ... (+{len(data) - limit} bytes)"
    return " ".join(f"{b:02x}" for b in data)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def level_from_name(name: str) -> int:
    """Map a level name such as "info" or "DEBUG" to its logging constant."""
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {name!r}")
    return level


def setup_logging(
    level: int = logging.INFO,
    debug_modules: Optional[list[str]] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the root logger with a single stream handler.

    Args:
        level: Root log level
        debug_modules: Logger names forced to DEBUG regardless of level
        stream: Output stream (stderr when omitted)
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Replace rather than add, so repeated calls do not duplicate output
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for module in debug_modules or ():
        logging.getLogger(module).setLevel(logging.DEBUG)
