"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from portal_inventory import settings
from portal_inventory.catalog import ListCache
from portal_inventory.exceptions import AlreadyClaimedError, OrderNotClaimableError
from portal_inventory.schemas import CLAIMABLE_STATUSES, ItemRecord, Order, OrderStatus


NOW = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_outputs(tmp_path, monkeypatch):
    """Keep reports and reconciliation files out of the working tree."""
    monkeypatch.setattr(settings, "OUTPUT_DIR", tmp_path / "output")
    monkeypatch.setattr(settings, "RECONCILIATION_FILE", tmp_path / "output" / "reconciliation.jsonl")
    monkeypatch.setattr(settings, "WEBHOOK_URL", None)
    monkeypatch.setattr(settings, "MATCH_EDUCATION_LEVEL", False)
    return tmp_path / "output"


def make_record(id="1", name="Polo", **fields) -> ItemRecord:
    """ItemRecord with sensible defaults; `note` may be given as a dict."""
    note = fields.pop("note", None)
    if isinstance(note, dict):
        note = json.dumps(note)
    data = {
        "id": id,
        "name": name,
        "educationLevel": "Elementary",
        "itemType": "Uniform",
        "size": "N/A",
        "stock": 0,
        "price": 0,
        "createdAt": "2025-01-01T00:00:00Z",
        "note": note,
    }
    data.update(fields)
    return ItemRecord.model_validate(data)


@pytest.fixture
def record():
    return make_record


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class FakePortal:
    """In-memory stand-in for PortalClient that records every write."""

    def __init__(self, items=None, orders=None):
        self.items = list(items or [])
        self.orders = {o.order_number: o for o in orders or []}
        self.claim_calls: list[Order] = []
        self.adjust_calls: list[dict] = []
        self.fetch_calls = 0
        # Hooks tests can set to make a call fail.
        self.claim_error = None
        self.adjust_errors: dict[str, Exception] = {}
        self.order_error = None

    def fetch_items(self):
        self.fetch_calls += 1
        return list(self.items)

    def fetch_order_by_number(self, order_number):
        if self.order_error:
            raise self.order_error
        return self.orders.get(order_number)

    def claim_order(self, order):
        self.claim_calls.append(order)
        if order.status not in CLAIMABLE_STATUSES:
            raise OrderNotClaimableError(f"{order.status.value} order", order.status)
        if self.claim_error:
            raise self.claim_error
        stored = self.orders.get(order.order_number)
        if stored is not None and stored.status is OrderStatus.CLAIMED:
            raise AlreadyClaimedError("already claimed", stored.claimed_date)
        if stored is not None and stored.status is OrderStatus.CANCELLED:
            raise OrderNotClaimableError("cancelled", stored.status)
        claimed = order.model_copy(update={"status": OrderStatus.CLAIMED, "claimed_date": NOW})
        self.orders[order.order_number] = claimed
        return claimed

    def adjust_item(self, item_id, adjustment, reason, size=None):
        call = {"item_id": item_id, "adjustment": adjustment, "reason": reason, "size": size}
        self.adjust_calls.append(call)
        error = self.adjust_errors.get(item_id)
        if error:
            raise error
        return {"id": item_id}


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def items_cache(portal):
    return ListCache(portal.fetch_items, "items")


def make_order(order_number="ORD-20250310-00042", status=OrderStatus.PENDING, items=None, **fields) -> Order:
    data = {
        "id": "o-1",
        "orderNumber": order_number,
        "status": status,
        "educationLevel": "Elementary",
        "studentName": "Juan Dela Cruz",
        "items": items if items is not None else [{"name": "Polo", "size": "Small", "quantity": 2}],
        "createdAt": "2025-03-09T08:00:00Z",
    }
    data.update(fields)
    return Order.model_validate(data)
