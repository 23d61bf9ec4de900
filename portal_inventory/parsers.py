import json
import logging
from datetime import datetime
from typing import Optional
from pydantic import ValidationError

from .exceptions import InvalidPayloadError, LedgerParseError
from .schemas import AccessoryLedger, Ledger, Order, QRPayload, SizeLedger
from .utils import as_utc, utc_now

logger = logging.getLogger(__name__)

# Legacy notes use a "_type" tag and name the entry list after the tag itself.
_LEGACY_LEDGER_KEYS = {
    "sizeVariations": SizeLedger,
    "accessoryEntries": AccessoryLedger,
}


def _normalize_ledger_document(document: dict) -> dict:
    """
    Rewrites the legacy note shape
        {"_type": "sizeVariations", "sizeVariations": [...]}
    into the canonical
        {"type": "sizeVariations", "entries": [...]}.
    Canonical documents pass through untouched.
    """
    if "type" in document and "entries" in document:
        return document

    tag = document.get("_type") or document.get("type")
    if tag in _LEGACY_LEDGER_KEYS and tag in document:
        return {"type": tag, "entries": document[tag]}
    return document


def decode_ledger(note: str) -> Ledger:
    """
    Strict ledger decoder: raises LedgerParseError for anything that is not
    a non-empty size or accessory ledger.
    """
    try:
        document = json.loads(note)
    except (TypeError, ValueError) as e:
        raise LedgerParseError(f"note is not JSON: {e}") from e

    if not isinstance(document, dict):
        raise LedgerParseError("note JSON is not an object")

    document = _normalize_ledger_document(document)
    ledger_cls = _LEGACY_LEDGER_KEYS.get(document.get("type"))
    if ledger_cls is None:
        raise LedgerParseError(f"unknown ledger type {document.get('type')!r}")

    try:
        return ledger_cls.model_validate(document)
    except ValidationError as e:
        raise LedgerParseError(str(e)) from e


def parse_ledger(note: Optional[str], record_id: Optional[str] = None) -> Optional[Ledger]:
    """
    Tolerant ledger decoder used at the data-access boundary.
    Free-form notes and malformed ledgers both mean "no ledger"; nothing is raised.
    """
    if not note or not note.strip():
        return None
    try:
        return decode_ledger(note)
    except LedgerParseError as e:
        # Plain-text notes are normal, only log what looked like an attempt at JSON.
        if note.lstrip().startswith(("{", "[")):
            logger.warning(f"⚠️ Ignoring unreadable ledger on item {record_id}: {e}")
        else:
            logger.debug(f"Item {record_id} note is free text, no ledger.")
        return None


def parse_qr_payload(raw: str) -> QRPayload:
    """
    Parses a scanned receipt QR string. Raises InvalidPayloadError when the string
    is not JSON, is not an order receipt, or has no order number.
    """
    if not raw or not raw.strip():
        raise InvalidPayloadError("Empty QR code.")
    try:
        document = json.loads(raw)
    except ValueError as e:
        raise InvalidPayloadError(f"QR code is not JSON: {e}") from e

    if not isinstance(document, dict):
        raise InvalidPayloadError("QR code does not hold an object.")

    try:
        return QRPayload.model_validate(document)
    except ValidationError as e:
        raise InvalidPayloadError(f"QR code is not an order receipt: {e}") from e


def build_qr_payload(order: Order, issued_at: Optional[datetime] = None) -> str:
    """
    Encodes the receipt QR string for an order. The issue time defaults to the
    order's creation time so validity counts from when the order was placed.
    """
    if not order.items:
        raise InvalidPayloadError("Order must contain at least one item for a QR receipt.")

    issued = issued_at or order.created_at or utc_now()
    payload = QRPayload(
        type="order_receipt",
        order_number=order.order_number,
        qr_issued_at=as_utc(issued),
        student_name=order.student_name,
        education_level=order.education_level,
        items=order.items,
    )
    return payload.model_dump_json(by_alias=True, exclude_none=True)
