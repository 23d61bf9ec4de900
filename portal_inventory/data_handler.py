import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
import pandas as pd
import requests
from pydantic import BaseModel, TypeAdapter, ValidationError

from . import settings
from . import utils
from .exceptions import (
    AdjustmentRejectedError,
    AlreadyClaimedError,
    NotFoundError,
    OrderNotClaimableError,
    TransportError,
)
from .schemas import CLAIMABLE_STATUSES, ItemRecord, Order, OrderStatus, ReconciliationRecord

logger = logging.getLogger(__name__)

_OPTIONAL_DATETIME = TypeAdapter(Optional[datetime])


def _claimed_date(data: Any) -> Optional[datetime]:
    """Pulls the claim timestamp out of an order-shaped response body, if there is one."""
    if not isinstance(data, dict):
        return None
    raw = data.get("claimedDate") or data.get("claimed_date")
    try:
        return _OPTIONAL_DATETIME.validate_python(raw or None)
    except ValidationError:
        return None


class PortalClient:
    """
    Thin client for the portal backend of record. Every call carries a timeout;
    connection problems, timeouts and 5xx answers all surface as TransportError.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 500:
            raise TransportError(f"{method} {path} returned {response.status_code}")
        return response

    @staticmethod
    def _body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Non-JSON response from {response.url}") from e

    @staticmethod
    def _unwrap(body: Any) -> tuple[bool, Any, Optional[str]]:
        """
        Splits the portal envelope {"success": ..., "data": ..., "message": ...}.
        Bare payloads are treated as successful.
        """
        if isinstance(body, dict) and "success" in body:
            return bool(body.get("success")), body.get("data"), body.get("message")
        return True, body, None

    # --- Catalog ---

    def fetch_items(self) -> list[ItemRecord]:
        response = self._request("GET", "/items")
        if not response.ok:
            raise TransportError(f"GET /items returned {response.status_code}")

        ok, data, message = self._unwrap(self._body(response))
        if not ok:
            raise TransportError(message or "GET /items was not successful")

        records = []
        for raw in data or []:
            try:
                records.append(ItemRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"⚠️ Skipping unreadable item record {raw.get('id') if isinstance(raw, dict) else raw!r}: {e}")
        logger.info(f"Fetched {len(records)} item records.")
        return records

    def fetch_orders(self) -> list[Order]:
        response = self._request("GET", "/orders")
        if not response.ok:
            raise TransportError(f"GET /orders returned {response.status_code}")

        ok, data, message = self._unwrap(self._body(response))
        if not ok:
            raise TransportError(message or "GET /orders was not successful")

        orders = []
        for raw in data or []:
            try:
                orders.append(Order.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"⚠️ Skipping unreadable order: {e}")
        return orders

    # --- Orders ---

    def fetch_order_by_number(self, order_number: str) -> Optional[Order]:
        """Returns None when the backend does not know the order number."""
        path = f"/orders/number/{requests.utils.quote(order_number, safe='')}"
        response = self._request("GET", path)
        if response.status_code == 404:
            return None
        if not response.ok:
            raise TransportError(f"GET {path} returned {response.status_code}")

        ok, data, _ = self._unwrap(self._body(response))
        if not ok or not data:
            return None
        try:
            return Order.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Order {order_number} came back malformed: {e}") from e

    def claim_order(self, order: Order) -> Order:
        """
        Conditional pending/processing -> claimed write. The backend only applies it
        while the order still has the status we observed; otherwise it answers 409.
        Orders in any other status are refused here without a request.
        """
        if order.status not in CLAIMABLE_STATUSES:
            raise OrderNotClaimableError(
                f"Order {order.order_number} is {order.status.value} and cannot be claimed.", order.status
            )

        path = f"/orders/{order.id}/status"
        payload = {"status": OrderStatus.CLAIMED.value, "expectedStatus": order.status.value}
        response = self._request("PATCH", path, json=payload)

        if response.status_code == 409:
            data = None
            try:
                _, data, _ = self._unwrap(response.json())
            except ValueError:
                pass
            current = data.get("status") if isinstance(data, dict) else None
            if current == OrderStatus.CANCELLED.value:
                raise OrderNotClaimableError(
                    f"Order {order.order_number} was cancelled before it could be claimed.", OrderStatus.CANCELLED
                )
            raise AlreadyClaimedError(f"Order {order.order_number} is already claimed.", _claimed_date(data))
        if not response.ok:
            raise TransportError(f"PATCH {path} returned {response.status_code}")

        ok, data, message = self._unwrap(self._body(response))
        if not ok:
            if message and "already claimed" in message.lower():
                raise AlreadyClaimedError(message)
            raise TransportError(message or f"PATCH {path} was not successful")

        return order.model_copy(
            update={
                "status": OrderStatus.CLAIMED,
                "claimed_date": _claimed_date(data) or utils.utc_now(),
            }
        )

    # --- Inventory ---

    def adjust_item(self, item_id: str, adjustment: int, reason: str, size: Optional[str] = None) -> Any:
        """Adjusts one variant's backing record. `size` is left out for sizeless records."""
        path = f"/items/{item_id}/adjust"
        payload: dict[str, Any] = {"adjustment": adjustment, "reason": reason}
        if size:
            payload["size"] = size

        response = self._request("PATCH", path, json=payload)
        if response.status_code == 404:
            raise NotFoundError(f"Item {item_id} no longer exists")
        if 400 <= response.status_code < 500:
            raise AdjustmentRejectedError(f"PATCH {path} returned {response.status_code}")

        ok, data, message = self._unwrap(self._body(response))
        if not ok:
            raise AdjustmentRejectedError(message or f"PATCH {path} was not successful")
        return data


# --- Local outputs ---


def save_outputs(validated_data: list[BaseModel], report_name: str) -> tuple[Path, Optional[Path]]:
    """Saves report rows to CSV and conditionally to JSON, with dated filenames."""
    settings.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    date_suffix = utils.get_date_suffix_for_filename()

    csv_path = settings.OUTPUT_DIR / f"{report_name}_{date_suffix}.csv"
    json_path = settings.OUTPUT_DIR / f"{report_name}_{date_suffix}.json"

    # Aliases are the human-readable column headers.
    df = pd.DataFrame([item.model_dump(by_alias=True) for item in validated_data])
    df.to_csv(csv_path, index=False)
    logger.info(f"✅ Report saved to: {csv_path}")

    if not settings.SAVE_JSON_OUTPUT:
        logger.info("Skipping JSON file save as per configuration.")
        return csv_path, None

    with open(json_path, "w", encoding="utf-8") as f:
        json_data = [item.model_dump(mode="json", by_alias=True) for item in validated_data]
        json.dump(json_data, f, indent=2, default=str)
    logger.info(f"✅ JSON output saved to: {json_path}")
    return csv_path, json_path


def post_to_webhook(validated_data: list[BaseModel], metadata: dict[str, Any], report_type: str) -> bool:
    """
    Posts the report rows AND the run metadata to the webhook.
    """
    if not settings.WEBHOOK_URL:
        logger.warning("⚠️ WEBHOOK_URL not set. Skipping webhook post.")
        return False

    logger.info(f"🚀 Posting {report_type} report to webhook.")

    payload = {
        "reportType": report_type,
        "reportData": [item.model_dump(mode="json", by_alias=True) for item in validated_data],
        "metadata": metadata,
    }

    try:
        response = requests.post(settings.WEBHOOK_URL, json=payload, timeout=settings.REQUEST_TIMEOUT)
        response.raise_for_status()
        logger.info("✅ Report successfully posted to webhook.")
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"❌ Error posting to webhook: {e}")
        return False


def save_reconciliation_record(record: ReconciliationRecord, path: Optional[Path] = None) -> Path:
    """Appends one record per line so unsynced claims can be replayed later."""
    path = path or settings.RECONCILIATION_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(record.model_dump_json(by_alias=True) + "\n")
    logger.warning(
        f"⚠️ Order {record.order_number}: {len(record.pending_items)} item(s) need reconciliation ({path})."
    )
    return path
