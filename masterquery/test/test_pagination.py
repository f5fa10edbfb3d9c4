"""
Tests for the per-batch pagination driver.

These tests cover:
1. Single and multi-page listings
2. Continuation retry ceiling and delays
3. Non-retried failures (first request, decode errors, callback errors)
4. Socket release on every exit path
5. Cancellation
"""

import threading

import pytest

from masterquery.client.pagination import PaginationDriver
from masterquery.config.app_settings import MasterServerSettings
from masterquery.models.errors import (
    BadHeaderError,
    CallbackError,
    EmptyPageError,
    QueryCancelledError,
    TransportError,
)
from masterquery.models.master_types import (
    MASTER_RESPONSE_HEADER,
    NULL_ADDRESS,
    PaginationPhase,
    ServerAddress,
)
from masterquery.raw.master_protocol import build_master_query

FILTERS = ["\\appid\\440", "\\appid\\730"]


def make_response(servers, end=True):
    body = b"".join(server.to_bytes() for server in servers)
    if end:
        body += NULL_ADDRESS.to_bytes()
    return MASTER_RESPONSE_HEADER + body


def servers(count, subnet=1):
    return [ServerAddress(f"10.0.{subnet}.{i + 1}", 27015) for i in range(count)]


class MockSocket:
    """Socket double that records sends and replays scripted responses."""

    def __init__(self, responses, send_errors=()):
        # Each entry is response bytes or an exception to raise from recv()
        self.responses = list(responses)
        # Each entry is None (send succeeds) or an exception to raise from send()
        self.send_errors = list(send_errors)
        self.sent = []
        self.recv_calls = 0
        self.closed = False

    def send(self, data):
        self.sent.append(data)
        error = self.send_errors.pop(0) if self.send_errors else None
        if error is not None:
            raise error

    def recv(self):
        self.recv_calls += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def make_driver(sock, callback=None, settings=None, cancel_event=None):
    sleep = RecordingSleep()
    pages = []
    driver = PaginationDriver(
        "127.0.0.1:27011",
        FILTERS,
        callback if callback is not None else pages.append,
        settings=settings or MasterServerSettings(),
        socket_factory=lambda host_and_port, timeout: sock,
        sleep=sleep,
        cancel_event=cancel_event,
    )
    return driver, pages, sleep


class TestPaginationSuccess:
    def test_single_page(self):
        sock = MockSocket([make_response(servers(3))])
        driver, pages, sleep = make_driver(sock)

        state = driver.run()

        assert pages == [servers(3)]
        assert state.phase is PaginationPhase.DONE
        assert state.servers_delivered == 3
        assert sock.sent == [build_master_query(NULL_ADDRESS, FILTERS)]
        assert sleep.delays == []
        assert sock.closed

    def test_multiple_pages_advance_cursor(self):
        first, second = servers(2, subnet=1), servers(2, subnet=2)
        sock = MockSocket([make_response(first, end=False), make_response(second)])
        driver, pages, sleep = make_driver(sock)

        state = driver.run()

        assert pages == [first, second]
        assert state.pages_delivered == 2
        assert sock.sent[1] == build_master_query(first[-1], FILTERS)
        assert sleep.delays == [2.0]
        assert sock.closed

    def test_sentinel_only_page_is_delivered_empty(self):
        sock = MockSocket([make_response([])])
        driver, pages, _ = make_driver(sock)

        driver.run()

        assert pages == [[]]

    def test_continuation_recovers_after_transport_errors(self):
        first, second = servers(1, subnet=1), servers(1, subnet=2)
        sock = MockSocket(
            [
                make_response(first, end=False),
                TransportError("timed out"),
                TransportError("timed out"),
                make_response(second),
            ]
        )
        driver, pages, sleep = make_driver(sock)

        driver.run()

        assert pages == [first, second]
        assert sleep.delays == [2.0, 2.0, 2.0]
        # Every retry resends the same cursor
        assert sock.sent[1:] == [build_master_query(first[-1], FILTERS)] * 3

    def test_continuation_recovers_after_send_error(self):
        first, second = servers(1, subnet=1), servers(1, subnet=2)
        sock = MockSocket(
            [make_response(first, end=False), make_response(second)],
            send_errors=[None, TransportError("network unreachable"), None],
        )
        driver, pages, sleep = make_driver(sock)

        state = driver.run()

        assert pages == [first, second]
        assert state.phase is PaginationPhase.DONE
        assert sleep.delays == [2.0, 2.0]
        assert sock.sent[1:] == [build_master_query(first[-1], FILTERS)] * 2
        assert sock.recv_calls == 2

    def test_retry_budget_resets_after_successful_page(self):
        pages_in = [servers(1, subnet=n) for n in range(3)]
        sock = MockSocket(
            [make_response(pages_in[0], end=False)]
            + [TransportError("lost")] * 4
            + [make_response(pages_in[1], end=False)]
            + [TransportError("lost")] * 4
            + [make_response(pages_in[2])]
        )
        driver, pages, sleep = make_driver(sock)

        driver.run()

        assert pages == pages_in
        assert len(sleep.delays) == 10


class TestPaginationFailures:
    def test_retry_ceiling_is_five_attempts(self):
        sock = MockSocket([make_response(servers(2), end=False)] + [TransportError("timed out")] * 5)
        driver, pages, sleep = make_driver(sock)

        with pytest.raises(TransportError):
            driver.run()

        # 1 initial request + 5 continuation attempts
        assert sock.recv_calls == 6
        assert len(sock.sent) == 6
        assert sleep.delays == [2.0] * 5
        assert pages == [servers(2)]
        assert sock.closed

    def test_send_failure_on_every_continuation_gives_up_after_five_attempts(self):
        sock = MockSocket(
            [make_response(servers(2), end=False)],
            send_errors=[None] + [TransportError("network unreachable")] * 5,
        )
        driver, pages, sleep = make_driver(sock)

        with pytest.raises(TransportError, match="network unreachable"):
            driver.run()

        # 1 initial request + 5 continuation sends, none of which reached recv()
        assert len(sock.sent) == 6
        assert sock.recv_calls == 1
        assert sleep.delays == [2.0] * 5
        assert pages == [servers(2)]
        assert sock.closed

    def test_retry_settings_are_configurable(self):
        settings = MasterServerSettings(retry_count=1, retry_delay=0.5)
        sock = MockSocket([make_response(servers(1), end=False)] + [TransportError("timed out")] * 2)
        driver, _, sleep = make_driver(sock, settings=settings)

        with pytest.raises(TransportError):
            driver.run()

        assert sock.recv_calls == 3
        assert sleep.delays == [0.5, 0.5]

    def test_first_request_is_not_retried(self):
        sock = MockSocket([TransportError("timed out")])
        driver, pages, sleep = make_driver(sock)

        with pytest.raises(TransportError):
            driver.run()

        assert sock.recv_calls == 1
        assert sleep.delays == []
        assert pages == []
        assert sock.closed

    def test_bad_header_fails_immediately(self):
        sock = MockSocket([b"\x00" * 12])
        driver, pages, _ = make_driver(sock)

        with pytest.raises(BadHeaderError):
            driver.run()

        assert pages == []
        assert sock.closed

    def test_empty_page_fails_immediately(self):
        sock = MockSocket([MASTER_RESPONSE_HEADER])
        driver, _, _ = make_driver(sock)

        with pytest.raises(EmptyPageError):
            driver.run()

    def test_bad_header_on_continuation_is_not_retried(self):
        sock = MockSocket([make_response(servers(1), end=False), b"garbage!", make_response(servers(1))])
        driver, pages, sleep = make_driver(sock)

        with pytest.raises(BadHeaderError):
            driver.run()

        assert sock.recv_calls == 2
        assert sleep.delays == [2.0]
        assert len(pages) == 1

    def test_callback_error_aborts(self):
        sock = MockSocket([make_response(servers(1), end=False), make_response(servers(1))])

        def reject(page):
            raise ValueError("no thanks")

        driver, _, sleep = make_driver(sock, callback=reject)

        with pytest.raises(CallbackError) as exc_info:
            driver.run()

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert len(sock.sent) == 1
        assert sleep.delays == []
        assert sock.closed


class TestPaginationCancellation:
    def test_cancel_before_start(self):
        event = threading.Event()
        event.set()
        sock = MockSocket([])
        driver, _, _ = make_driver(sock, cancel_event=event)

        with pytest.raises(QueryCancelledError):
            driver.run()

        assert sock.sent == []
        assert sock.closed

    def test_cancel_during_delay(self):
        event = threading.Event()
        sock = MockSocket([make_response(servers(1), end=False), make_response(servers(1))])

        def cancel_after_first_page(page):
            event.set()

        driver, _, _ = make_driver(sock, callback=cancel_after_first_page, cancel_event=event)

        with pytest.raises(QueryCancelledError):
            driver.run()

        assert len(sock.sent) == 1


class TestPaginationSteps:
    """Drive the state machine one transition at a time."""

    def test_step_through_single_page(self):
        sock = MockSocket([make_response(servers(2))])
        driver, pages, _ = make_driver(sock)

        state = driver.initial_state()
        assert state.phase is PaginationPhase.START
        assert state.retries_left == 4

        state = driver.step(sock, state)
        assert state.phase is PaginationPhase.AWAITING_RESPONSE
        assert len(sock.sent) == 1

        state = driver.step(sock, state)
        assert state.phase is PaginationPhase.DELIVER_PAGE
        assert state.page == servers(2)
        assert state.sentinel_seen
        assert pages == []

        state = driver.step(sock, state)
        assert state.phase is PaginationPhase.DONE
        assert pages == [servers(2)]

    def test_continuing_state_counts_down_retries(self):
        sock = MockSocket([make_response(servers(1), end=False), TransportError("lost")])
        driver, _, _ = make_driver(sock)

        state = driver.initial_state()
        for _ in range(3):
            state = driver.step(sock, state)
        assert state.phase is PaginationPhase.CONTINUING
        assert state.cursor == servers(1)[0]

        state = driver.step(sock, state)
        assert state.phase is PaginationPhase.CONTINUING
        assert state.retries_left == 3
        assert isinstance(state.last_error, TransportError)

    def test_failure_is_recorded_in_state(self):
        sock = MockSocket([b"nope"])
        driver, _, _ = make_driver(sock)

        state = driver.step(sock, driver.step(sock, driver.initial_state()))

        assert state.phase is PaginationPhase.FAILED
        assert state.finished
        assert isinstance(state.last_error, BadHeaderError)
