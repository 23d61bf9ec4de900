"""Tests for the list caches and push-event invalidation."""

import logging
import threading

from portal_inventory.catalog import InvalidationRouter, ListCache
from portal_inventory.exceptions import TransportError


class CountingFetcher:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self):
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return response


class FakeChannel:
    """Anything with `.on(event, handler)`, like a socket.io client."""

    def __init__(self):
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler


class TestListCache:
    def test_snapshot_fetches_lazily_once(self):
        fetcher = CountingFetcher(["a", "b"])
        cache = ListCache(fetcher, "items")
        assert not cache.loaded
        assert fetcher.calls == 0

        assert cache.snapshot() == ["a", "b"]
        assert cache.snapshot() == ["a", "b"]
        assert fetcher.calls == 1
        assert cache.loaded

    def test_refresh_replaces_whole_list(self):
        cache = ListCache(CountingFetcher(["a", "b"], ["c"]), "items")
        cache.refresh()
        assert cache.refresh() == ["c"]
        assert cache.snapshot() == ["c"]

    def test_invalidate_forces_refetch(self):
        fetcher = CountingFetcher(["a"], ["b"])
        cache = ListCache(fetcher, "items")
        cache.snapshot()
        cache.invalidate()
        assert not cache.loaded
        assert cache.snapshot() == ["b"]
        assert fetcher.calls == 2

    def test_failed_refresh_keeps_previous_snapshot(self):
        cache = ListCache(CountingFetcher(["a"], TransportError("down")), "items")
        cache.refresh()
        try:
            cache.refresh()
        except TransportError:
            pass
        assert cache.snapshot() == ["a"]

    def test_last_arriving_response_wins(self, caplog):
        """An older request that answers late overwrites a newer one, with a warning."""
        first_started = threading.Event()
        release_first = threading.Event()
        calls = []

        def fetcher():
            calls.append(None)
            if len(calls) == 1:
                first_started.set()
                release_first.wait(timeout=5)
                return ["stale"]
            return ["fresh"]

        cache = ListCache(fetcher, "items")
        slow = threading.Thread(target=cache.refresh)

        with caplog.at_level(logging.WARNING, logger="portal_inventory.catalog"):
            slow.start()
            assert first_started.wait(timeout=5)
            cache.refresh()
            assert cache.snapshot() == ["fresh"]

            release_first.set()
            slow.join(timeout=5)

        assert cache.snapshot() == ["stale"]
        assert "arrived after" in caplog.text


class TestInvalidationRouter:
    def test_item_events_refetch_items(self):
        items = ListCache(CountingFetcher(["a"]), "items")
        orders = ListCache(CountingFetcher(["o"]), "orders")
        router = InvalidationRouter(items, orders)

        assert router.handle("item:updated", {"id": 3})
        assert router.handle("item:archived")
        assert items.fetcher.calls == 2
        assert orders.fetcher.calls == 0

    def test_order_events_refetch_orders(self):
        items = ListCache(CountingFetcher(["a"]), "items")
        orders = ListCache(CountingFetcher(["o"]), "orders")
        router = InvalidationRouter(items, orders)

        assert router.handle("order:claimed", {"orderNumber": "ORD-1"})
        assert orders.snapshot() == ["o"]
        assert orders.fetcher.calls == 1

    def test_unknown_events_are_ignored(self):
        items = ListCache(CountingFetcher(["a"]), "items")
        router = InvalidationRouter(items)
        assert not router.handle("order:created")
        assert not router.handle("student:updated")
        assert items.fetcher.calls == 0

    def test_failed_refetch_is_reported_not_raised(self):
        items = ListCache(CountingFetcher(["a"], TransportError("down")), "items")
        items.refresh()
        router = InvalidationRouter(items)

        assert router.handle("item:updated") is False
        assert items.snapshot() == ["a"]

    def test_bind_registers_every_event(self):
        items = ListCache(CountingFetcher(["a"]), "items")
        orders = ListCache(CountingFetcher(["o"]), "orders")
        channel = FakeChannel()
        InvalidationRouter(items, orders).bind(channel)

        assert set(channel.handlers) == {"item:updated", "item:archived", "order:created", "order:claimed"}
        channel.handlers["item:updated"]({"id": 1})
        assert items.fetcher.calls == 1
