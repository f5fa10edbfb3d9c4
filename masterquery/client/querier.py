"""
Master Server Querier.

Holds the master server address and the accumulated filter list, and
runs one full pagination pass per filter batch.
"""

import threading
import time
from typing import Callable, Iterable

from masterquery.client.pagination import PaginationDriver
from masterquery.config.app_settings import MasterServerSettings
from masterquery.models.master_types import PageCallback, ServerAddress, ServerPage
from masterquery.raw.master_protocol import format_filter, iter_filter_batches
from masterquery.util.logging_helper import get_logger
from masterquery.util.udp_socket import UdpSocket

logger = get_logger(__name__)


class MasterServerQuerier:
    """
    Queries a master server for every server matching the added filters.

    Filters are OR'd together. Because a single packet only has room for
    a limited amount of filter text, the list is split into batches and
    each batch is queried separately, one after another. Expect a query to
    be slow: every page after the first costs a fixed delay.

    Example:
        querier = MasterServerQuerier("hl2master.steampowered.com:27011")
        querier.filter_app_ids([440, 730])
        querier.query(lambda servers: print(len(servers)))
    """

    def __init__(
        self,
        host_and_port: str | tuple[str, int] | None = None,
        settings: MasterServerSettings | None = None,
        socket_factory: Callable[..., UdpSocket] = UdpSocket,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or MasterServerSettings()
        self.host_and_port = host_and_port or self.settings.address
        self._socket_factory = socket_factory
        self._sleep = sleep
        self._filters: list[str] = []
        self._querying = False

    @property
    def filters(self) -> tuple[str, ...]:
        return tuple(self._filters)

    def filter_app_ids(self, app_ids: Iterable[int]) -> None:
        """Add one \\appid\\<id> filter per app id."""
        self.add_filters(format_filter("appid", int(app_id)) for app_id in app_ids)

    def add_filter(self, key: str, value) -> None:
        """Add a single \\key\\value filter."""
        self.add_filters([format_filter(key, value)])

    def add_filters(self, tokens: Iterable[str]) -> None:
        """Add pre-formatted filter tokens."""
        if self._querying:
            raise RuntimeError("cannot add filters while a query is running")
        self._filters.extend(tokens)

    def query(self, callback: PageCallback, cancel_event: threading.Event | None = None) -> int:
        """
        Query the master for every batch of filters.

        Each batch runs to completion before the next starts, with a fresh
        socket and the listing restarted from 0.0.0.0:0. The first error
        aborts the whole query; pages already handed to the callback stay
        delivered.

        Args:
            callback: Called once per decoded page of servers
            cancel_event: Optional event that cancels the query when set

        Returns:
            Total number of servers delivered

        Raises:
            MasterQueryError: On the first unrecoverable failure
        """
        self._querying = True
        total = 0
        try:
            for batch_number, batch in enumerate(
                iter_filter_batches(self._filters, self.settings.max_filter_length), start=1
            ):
                logger.info("Starting filter batch %d (%d filters)", batch_number, len(batch))
                driver = PaginationDriver(
                    self.host_and_port,
                    batch,
                    callback,
                    settings=self.settings,
                    socket_factory=self._socket_factory,
                    sleep=self._sleep,
                    cancel_event=cancel_event,
                )
                state = driver.run()
                total += state.servers_delivered
        finally:
            self._querying = False

        logger.info("Master query finished: %d server(s)", total)
        return total

    def query_all(self, cancel_event: threading.Event | None = None) -> list[ServerAddress]:
        """Run query() and collect every page into one list."""
        servers: list[ServerAddress] = []

        def collect(page: ServerPage) -> None:
            servers.extend(page)

        self.query(collect, cancel_event=cancel_event)
        return servers
