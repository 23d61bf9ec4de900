"""Tests for ledger decoding and receipt QR payloads."""

import json
import logging
from datetime import datetime, timezone

import pytest

from conftest import make_order, make_record
from portal_inventory.exceptions import InvalidPayloadError, LedgerParseError
from portal_inventory.parsers import build_qr_payload, decode_ledger, parse_ledger, parse_qr_payload
from portal_inventory.schemas import AccessoryLedger, SizeLedger


class TestLedgerDecoding:
    def test_canonical_size_ledger(self):
        note = json.dumps(
            {"type": "sizeVariations", "entries": [{"size": "Small", "stock": 4, "price": 250}]}
        )
        ledger = parse_ledger(note)
        assert isinstance(ledger, SizeLedger)
        assert ledger.entries[0].size == "Small"
        assert ledger.entries[0].stock == 4

    def test_legacy_size_ledger(self):
        note = json.dumps(
            {
                "_type": "sizeVariations",
                "sizeVariations": [
                    {"size": "Medium", "stock": "6", "beginning_inventory": 2, "beginning_inventory_unit_price": 180}
                ],
            }
        )
        ledger = parse_ledger(note)
        assert isinstance(ledger, SizeLedger)
        entry = ledger.entries[0]
        assert entry.stock == 6
        assert entry.beginning_inventory == 2
        assert entry.beginning_inventory_unit_price == 180
        assert entry.purchases is None

    def test_legacy_accessory_ledger(self):
        note = json.dumps({"_type": "accessoryEntries", "accessoryEntries": [{"stock": 3, "price": 40}]})
        assert isinstance(parse_ledger(note), AccessoryLedger)

    def test_free_text_note_is_no_ledger(self):
        assert parse_ledger("Supplier: ABC Garments") is None
        assert parse_ledger("") is None
        assert parse_ledger(None) is None

    def test_malformed_json_is_logged_not_raised(self, caplog):
        with caplog.at_level(logging.WARNING, logger="portal_inventory.parsers"):
            assert parse_ledger('{"type": "sizeVariations", "entries": [', record_id="7") is None
        assert "item 7" in caplog.text

    def test_empty_entries_are_no_ledger(self):
        assert parse_ledger(json.dumps({"_type": "sizeVariations", "sizeVariations": []})) is None

    def test_strict_decoder_raises(self):
        with pytest.raises(LedgerParseError):
            decode_ledger("not json")
        with pytest.raises(LedgerParseError):
            decode_ledger(json.dumps({"type": "somethingElse", "entries": [{}]}))
        with pytest.raises(LedgerParseError):
            decode_ledger(json.dumps([1, 2, 3]))

    def test_item_record_decodes_its_note_once(self):
        item = make_record(note={"type": "accessoryEntries", "entries": [{"stock": 1}]})
        assert isinstance(item.ledger, AccessoryLedger)
        assert "ledger" not in item.model_dump(by_alias=True)

    def test_item_record_accepts_snake_case_and_nulls(self):
        item = make_record(stock=None, price="", beginningInventory=None, isActive=None)
        assert item.stock == 0
        assert item.price == 0
        assert item.beginning_inventory == 0
        assert item.is_active is True


class TestQRPayload:
    def test_parses_receipt(self):
        raw = json.dumps(
            {
                "type": "order_receipt",
                "orderNumber": "ORD-20250310-00042",
                "studentId": "S-1",
                "qrIssuedAt": "2025-03-09T08:00:00.000Z",
                "items": [{"name": "Polo", "quantity": 1, "size": "Small"}],
            }
        )
        payload = parse_qr_payload(raw)
        assert payload.order_number == "ORD-20250310-00042"
        assert payload.qr_issued_at == datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)

    def test_issue_time_is_optional(self):
        payload = parse_qr_payload(json.dumps({"type": "order_receipt", "orderNumber": "ORD-1"}))
        assert payload.qr_issued_at is None

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "ORD-20250310-00042",
            "[1, 2]",
            json.dumps({"type": "order_receipt"}),
            json.dumps({"type": "order_receipt", "orderNumber": ""}),
            json.dumps({"type": "student_id", "orderNumber": "ORD-1"}),
            json.dumps({"orderNumber": "ORD-1"}),
        ],
    )
    def test_rejects_non_receipts(self, raw):
        with pytest.raises(InvalidPayloadError):
            parse_qr_payload(raw)

    def test_build_payload_uses_order_creation_time(self):
        order = make_order()
        payload = parse_qr_payload(build_qr_payload(order))
        assert payload.order_number == order.order_number
        assert payload.qr_issued_at == order.created_at
        assert payload.items[0].name == "Polo"

    def test_build_payload_requires_items(self):
        with pytest.raises(InvalidPayloadError):
            build_qr_payload(make_order(items=[]))
