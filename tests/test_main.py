"""Tests for the command line entry points."""

from unittest.mock import patch

import pytest

import main
from conftest import FakePortal, make_order, make_record
from portal_inventory.parsers import build_qr_payload
from portal_inventory.utils import utc_now


def receipt(order):
    return build_qr_payload(order, issued_at=utc_now())


@pytest.fixture
def fake_portal():
    order = make_order()
    portal = FakePortal(items=[make_record("1", "Polo", size="Small", stock=10)], orders=[order])
    with patch.object(main, "PortalClient", return_value=portal), patch.object(main, "setup_logger"):
        yield portal


class TestClaimCommand:
    def test_release_with_yes(self, fake_portal):
        payload = receipt(make_order())
        assert main.main(["claim", payload, "--yes"]) == 0
        assert len(fake_portal.claim_calls) == 1
        assert fake_portal.adjust_calls[0]["adjustment"] == -2

    def test_declined_confirmation_writes_nothing(self, fake_portal):
        payload = receipt(make_order())
        with patch("builtins.input", return_value="n"):
            assert main.main(["claim", payload]) == 0
        assert fake_portal.claim_calls == []

    def test_bad_payload(self, fake_portal):
        assert main.main(["claim", "hello", "--yes"]) == 1

    def test_unsynced_release_exit_code(self, fake_portal):
        order = make_order("ORD-20250310-00500", items=[{"name": "Blazer", "quantity": 1}])
        fake_portal.orders[order.order_number] = order
        assert main.main(["claim", receipt(order), "--yes"]) == 2


class TestReportCommand:
    def test_reports_in_test_mode(self, fake_portal, isolated_outputs):
        assert main.main(["report", "--test"]) == 0
        assert len(list(isolated_outputs.glob("*_report_*.csv"))) == 2
