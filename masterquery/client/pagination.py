"""
Master Server Pagination Driver.

Runs the request/response loop for a single filter batch. The master
server returns its list in pages; each follow-up request names the last
server received, and the list ends with a 0.0.0.0:0 record.

State machine (one QueryState value per step):

    START -> AWAITING_RESPONSE -> DELIVER_PAGE -> DONE
                                       |   ^
                                       v   |
                                    CONTINUING
    (any state) -> FAILED

Only CONTINUING retries, and only on transport errors. The master server
is known to drop rapid successive queries, so every continuation attempt
is preceded by a fixed delay.
"""

import threading
import time
from dataclasses import replace
from typing import Callable

from masterquery.config.app_settings import MasterServerSettings
from masterquery.models.errors import (
    CallbackError,
    MasterQueryError,
    QueryCancelledError,
    TransportError,
)
from masterquery.models.master_types import (
    NULL_ADDRESS,
    PageCallback,
    PaginationPhase,
    QueryState,
)
from masterquery.raw.master_protocol import build_master_query, parse_master_response
from masterquery.util.logging_helper import get_logger
from masterquery.util.udp_socket import UdpSocket

logger = get_logger(__name__)


class PaginationDriver:
    """
    Drives one filter batch's pagination to completion.

    The driver opens its own socket for the run and closes it on every
    exit path.
    """

    def __init__(
        self,
        host_and_port: str | tuple[str, int],
        filters: list[str],
        callback: PageCallback,
        settings: MasterServerSettings | None = None,
        socket_factory: Callable[..., UdpSocket] = UdpSocket,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ):
        """
        Args:
            host_and_port: Master server address
            filters: Filter tokens of this batch
            callback: Called with each decoded page of servers
            settings: Timeout, retry and region configuration
            socket_factory: Called as socket_factory(host_and_port, timeout)
            sleep: Used for the inter-request delay when no cancel_event is given
            cancel_event: When set, the run stops with QueryCancelledError at
                the next send or delay
        """
        self.host_and_port = host_and_port
        self.filters = list(filters)
        self.callback = callback
        self.settings = settings or MasterServerSettings()
        self._socket_factory = socket_factory
        self._sleep = sleep
        self._cancel_event = cancel_event

    def initial_state(self) -> QueryState:
        return QueryState(retries_left=self.settings.retry_count)

    def run(self) -> QueryState:
        """
        Run the batch to completion.

        Returns:
            The final DONE state

        Raises:
            MasterQueryError: The error that moved the machine to FAILED
        """
        logger.info("Querying %s with %d filter(s)", self._address_str(), len(self.filters))

        state = self.initial_state()
        with self._socket_factory(self.host_and_port, self.settings.timeout) as sock:
            while not state.finished:
                state = self.step(sock, state)

        if state.phase is PaginationPhase.FAILED:
            logger.error(
                "Query to %s failed after %d page(s): %s", self._address_str(), state.pages_delivered, state.last_error
            )
            raise state.last_error

        logger.info(
            "Query to %s complete: %d server(s) in %d page(s)",
            self._address_str(),
            state.servers_delivered,
            state.pages_delivered,
        )
        return state

    def step(self, sock: UdpSocket, state: QueryState) -> QueryState:
        """Advance the state machine by one transition."""
        handlers = {
            PaginationPhase.START: self._start,
            PaginationPhase.AWAITING_RESPONSE: self._await_response,
            PaginationPhase.DELIVER_PAGE: self._deliver_page,
            PaginationPhase.CONTINUING: self._continue,
        }
        handler = handlers.get(state.phase)
        if handler is None:
            return state

        try:
            return handler(sock, state)
        except MasterQueryError as e:
            return replace(state, phase=PaginationPhase.FAILED, last_error=e)

    # =========================================================================
    # Transitions
    # =========================================================================

    def _start(self, sock: UdpSocket, state: QueryState) -> QueryState:
        self._check_cancelled()
        sock.send(self._build_query(NULL_ADDRESS))
        return replace(state, phase=PaginationPhase.AWAITING_RESPONSE, cursor=NULL_ADDRESS)

    def _await_response(self, sock: UdpSocket, state: QueryState) -> QueryState:
        packet = sock.recv()
        return self._decoded(state, packet)

    def _deliver_page(self, sock: UdpSocket, state: QueryState) -> QueryState:
        page = list(state.page)
        try:
            self.callback(page)
        except Exception as e:
            raise CallbackError(f"page callback failed: {e}") from e

        state = replace(
            state,
            pages_delivered=state.pages_delivered + 1,
            servers_delivered=state.servers_delivered + len(page),
        )
        if state.sentinel_seen:
            return replace(state, phase=PaginationPhase.DONE)

        return replace(
            state,
            phase=PaginationPhase.CONTINUING,
            cursor=page[-1],
            retries_left=self.settings.retry_count,
            last_error=None,
        )

    def _continue(self, sock: UdpSocket, state: QueryState) -> QueryState:
        self._wait()
        self._check_cancelled()
        try:
            sock.send(self._build_query(state.cursor))
            packet = sock.recv()
        except TransportError as e:
            if state.retries_left <= 0:
                raise
            logger.warning(
                "Continuation after %s failed (%s), %d retries left", state.cursor, e, state.retries_left
            )
            return replace(state, retries_left=state.retries_left - 1, last_error=e)

        return self._decoded(state, packet)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _decoded(self, state: QueryState, packet: bytes) -> QueryState:
        servers, sentinel_seen = parse_master_response(packet)
        logger.debug("Page of %d server(s) after %s, end=%s", len(servers), state.cursor, sentinel_seen)
        return replace(
            state,
            phase=PaginationPhase.DELIVER_PAGE,
            page=servers,
            sentinel_seen=sentinel_seen,
        )

    def _build_query(self, cursor) -> bytes:
        return build_master_query(cursor, self.filters, self.settings.region)

    def _wait(self) -> None:
        delay = self.settings.retry_delay
        if self._cancel_event is not None:
            if self._cancel_event.wait(delay):
                raise QueryCancelledError("query cancelled")
        else:
            self._sleep(delay)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise QueryCancelledError("query cancelled")

    def _address_str(self) -> str:
        if isinstance(self.host_and_port, tuple):
            return "%s:%d" % self.host_and_port
        return self.host_and_port
