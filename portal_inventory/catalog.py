import itertools
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from . import settings
from .exceptions import PortalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ListCache(Generic[T]):
    """
    Holds the most recently fetched full list of records (items or orders).

    There is no incremental patching: every refresh replaces the whole snapshot.
    Overlapping refreshes are not cancelled; whichever response *arrives* last
    is kept, even if its request was issued earlier.
    """

    def __init__(self, fetcher: Callable[[], list[T]], name: str):
        self.fetcher = fetcher
        self.name = name
        self._lock = threading.Lock()
        self._records: Optional[list[T]] = None
        self._request_ids = itertools.count(1)
        self._applied_request: int = 0

    @property
    def loaded(self) -> bool:
        return self._records is not None

    def refresh(self) -> list[T]:
        with self._lock:
            request_id = next(self._request_ids)

        records = self.fetcher()

        with self._lock:
            if request_id < self._applied_request:
                logger.warning(
                    f"⚠️ {self.name}: response to refresh #{request_id} arrived after #{self._applied_request}; "
                    "keeping the later arrival."
                )
            self._records = list(records)
            self._applied_request = request_id
            logger.debug(f"{self.name}: stored {len(self._records)} records from refresh #{request_id}.")
            return self._records

    def snapshot(self) -> list[T]:
        """The current list, fetched on first use."""
        with self._lock:
            records = self._records
        if records is None:
            return self.refresh()
        return records

    def invalidate(self) -> None:
        with self._lock:
            self._records = None


class InvalidationRouter:
    """
    Turns push events into full refetches. Event payloads are ignored; an event
    only says which list is stale.
    """

    def __init__(self, items: ListCache, orders: Optional[ListCache] = None):
        self.routes: dict[str, ListCache] = {event: items for event in settings.ITEM_EVENTS}
        if orders is not None:
            self.routes.update({event: orders for event in settings.ORDER_EVENTS})

    def handle(self, event: str, payload=None) -> bool:
        """Refreshes the list behind `event`. Returns False for unknown events or failed refreshes."""
        cache = self.routes.get(event)
        if cache is None:
            logger.debug(f"Ignoring push event {event!r}.")
            return False

        logger.info(f"📡 {event} received, refetching {cache.name}.")
        try:
            cache.refresh()
        except PortalError as e:
            # The stale snapshot stays in place until the next event or refresh.
            logger.error(f"❌ Refetch of {cache.name} after {event} failed: {e}")
            return False
        return True

    def bind(self, channel) -> None:
        """
        Registers a handler per event on any channel exposing `.on(event, handler)`,
        such as a python-socketio client.
        """
        for event in self.routes:
            channel.on(event, self._handler_for(event))

    def _handler_for(self, event: str):
        def _handler(payload=None):
            self.handle(event, payload)

        return _handler
