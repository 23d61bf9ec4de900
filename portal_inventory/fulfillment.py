"""
Order release at the pickup counter.

An operator scans the QR code on a student's receipt, checks the order on screen
and confirms the release. Confirming claims the order with a conditional status
write and then takes each ordered line out of inventory.

    IDLE -> SCANNING -> SCANNED -> AWAITING_CONFIRMATION -> RELEASING -> RELEASED

    SCANNING, SCANNED, RELEASING  -> FAILED
    AWAITING_CONFIRMATION         -> IDLE   (cancel)

A FAILED scanner goes back to IDLE on its own once the failure has been on
screen for settings.FAILED_DISPLAY_SECONDS (see OrderScanner.tick).

Stock adjustments are a best-effort batch, not a transaction. When the claim
went through but some lines could not be adjusted, a reconciliation record is
written so the stock can be corrected later; the claim itself is never rolled back.
Only pending and processing orders can be released; cancelled ones fail the scan.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from . import settings
from .catalog import ListCache
from .consolidation import MatchPolicy, default_policy, find_variant
from .data_handler import PortalClient, save_reconciliation_record
from .exceptions import (
    AdjustmentRejectedError,
    AlreadyClaimedError,
    InvalidPayloadError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotClaimableError,
    TransportError,
)
from .parsers import parse_qr_payload
from .schemas import (
    CLAIMABLE_STATUSES,
    ItemAdjustmentResult,
    ItemRecord,
    Order,
    OrderLine,
    OrderStatus,
    PortalModel,
    ReconciliationRecord,
    ReleaseOutcome,
    Variant,
)
from .utils import (
    as_utc,
    format_claim_date,
    remaining_validity,
    strip_abbreviation,
    utc_now,
    NOT_APPLICABLE,
)

logger = logging.getLogger(__name__)


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SCANNED = "scanned"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RELEASING = "releasing"
    RELEASED = "released"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_FORMAT = "invalid_format"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    EMPTY_ORDER = "empty_order"
    ALREADY_CLAIMED = "already_claimed"
    NOT_CLAIMABLE = "not_claimable"
    TRANSPORT_ERROR = "transport_error"


class ScanFailure(PortalModel):
    reason: FailureReason
    message: str
    # True only when nothing was written yet, so confirming again is safe.
    retryable: bool = False
    claim_committed: bool = False


INVALID_FORMAT_MESSAGE = "Invalid QR code format. Please scan a valid order receipt."
EXPIRED_MESSAGE = (
    "This QR code has expired. Please ask the student to open their order again "
    "to get a new QR code."
)
EMPTY_ORDER_MESSAGE = "This order does not contain any items. Please contact support."


class OrderScanner:
    """
    Drives one pickup counter through scan -> validate -> confirm -> claim.

    Operations called from a state that does not allow them raise
    InvalidTransitionError. Business and transport failures never raise; they move
    the scanner to FAILED and are described by `failure`.
    """

    def __init__(
        self,
        client: PortalClient,
        items: ListCache[ItemRecord],
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[MatchPolicy] = None,
        valid_days: Optional[int] = None,
        failed_display_seconds: Optional[float] = None,
        reconciliation_path: Optional[Path] = None,
    ):
        self.client = client
        self.items = items
        self.clock = clock
        self.policy = policy or default_policy()
        self.valid_days = valid_days if valid_days is not None else settings.QR_VALID_DAYS
        self.failed_display = timedelta(
            seconds=failed_display_seconds
            if failed_display_seconds is not None
            else settings.FAILED_DISPLAY_SECONDS
        )
        self.reconciliation_path = reconciliation_path

        self.state = ScannerState.IDLE
        self.history: list[ScannerState] = [ScannerState.IDLE]
        self.order: Optional[Order] = None
        self.failure: Optional[ScanFailure] = None
        self.outcome: Optional[ReleaseOutcome] = None
        self._failed_at: Optional[datetime] = None
        # Set when a claim request failed in transit, so the write may have landed.
        self._claim_in_doubt = False

    # --- bookkeeping ---

    def _enter(self, state: ScannerState) -> None:
        logger.debug(f"Scanner {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _require(self, *allowed: ScannerState) -> None:
        if self.state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise InvalidTransitionError(f"Cannot do that while {self.state.value} (needs {names}).")

    def _fail(
        self,
        reason: FailureReason,
        message: str,
        retryable: bool = False,
        claim_committed: bool = False,
    ) -> ScannerState:
        logger.error(f"❌ Scan failed ({reason.value}): {message}")
        self.failure = ScanFailure(
            reason=reason,
            message=message,
            retryable=retryable,
            claim_committed=claim_committed,
        )
        self._failed_at = self.clock()
        self._enter(ScannerState.FAILED)
        return self.state

    def _reset(self) -> None:
        self.order = None
        self.failure = None
        self.outcome = None
        self._failed_at = None
        self._claim_in_doubt = False

    # --- operator actions ---

    def open_scanner(self) -> ScannerState:
        self._require(ScannerState.IDLE, ScannerState.RELEASED, ScannerState.FAILED)
        self._reset()
        # History covers the current scan only.
        self.history = [self.state]
        self._enter(ScannerState.SCANNING)
        return self.state

    def on_decode(self, raw: str) -> ScannerState:
        """Validates a scanned receipt and loads its order for confirmation."""
        self._require(ScannerState.SCANNING)

        try:
            payload = parse_qr_payload(raw)
        except InvalidPayloadError as e:
            logger.info(f"Unreadable QR code: {e}")
            return self._fail(FailureReason.INVALID_FORMAT, INVALID_FORMAT_MESSAGE)

        # Receipts printed before issue times existed have no qrIssuedAt and are accepted.
        if payload.qr_issued_at is not None:
            remaining = remaining_validity(payload.qr_issued_at, self.clock(), self.valid_days)
            if remaining < timedelta(0):
                return self._fail(FailureReason.EXPIRED, EXPIRED_MESSAGE)

        order_number = payload.order_number
        logger.info(f"🔍 Looking up order {order_number}")
        try:
            order = self.client.fetch_order_by_number(order_number)
        except TransportError as e:
            return self._fail(
                FailureReason.TRANSPORT_ERROR,
                f"Could not reach the server to look up order {order_number}: {e}",
            )

        if order is None:
            return self._fail(FailureReason.NOT_FOUND, f"Order {order_number} not found.")

        self.order = order
        self._enter(ScannerState.SCANNED)
        if not order.items:
            return self._fail(FailureReason.EMPTY_ORDER, EMPTY_ORDER_MESSAGE)
        if order.status is OrderStatus.CLAIMED:
            return self._fail(
                FailureReason.ALREADY_CLAIMED,
                f"Order {order_number} has already been claimed on {format_claim_date(order.claimed_date)}.",
            )
        if order.status not in CLAIMABLE_STATUSES:
            return self._fail(
                FailureReason.NOT_CLAIMABLE,
                f"Order {order_number} is {order.status.value} and cannot be released.",
            )

        # Nothing has been written yet; the operator now reviews the order.
        self._enter(ScannerState.AWAITING_CONFIRMATION)
        return self.state

    def cancel(self) -> ScannerState:
        """Closes the scanner or drops the order under review. No side effects."""
        self._require(ScannerState.AWAITING_CONFIRMATION, ScannerState.SCANNING)
        self._reset()
        self._enter(ScannerState.IDLE)
        return self.state

    def retry(self) -> ScannerState:
        """Goes back to confirmation after a transport failure that happened before the claim."""
        self._require(ScannerState.FAILED)
        if not (self.failure and self.failure.retryable and self.order is not None):
            raise InvalidTransitionError("This failure cannot be retried; scan the receipt again.")
        self.failure = None
        self._failed_at = None
        self._enter(ScannerState.AWAITING_CONFIRMATION)
        return self.state

    def confirm(self) -> ScannerState:
        """
        Releases the order under review:
        a. conditional pending/processing -> claimed write (the single point of no return)
        b. one stock adjustment per ordered line, each attempted independently
        c. RELEASED with per-line results
        """
        self._require(ScannerState.AWAITING_CONFIRMATION)
        order = self.order
        self._enter(ScannerState.RELEASING)

        # --- a. claim ---
        try:
            claimed = self.client.claim_order(order)
        except AlreadyClaimedError as e:
            if self._claim_in_doubt:
                return self._claimed_in_transit(order)
            return self._fail(
                FailureReason.ALREADY_CLAIMED,
                f"Order {order.order_number} has already been claimed on {format_claim_date(e.claimed_date)}.",
            )
        except OrderNotClaimableError as e:
            return self._fail(FailureReason.NOT_CLAIMABLE, str(e))
        except TransportError as e:
            self._claim_in_doubt = True
            return self._fail(
                FailureReason.TRANSPORT_ERROR,
                f"Could not claim order {order.order_number}: {e}",
                retryable=True,
            )
        self.order = claimed
        logger.info(f"✅ Order {order.order_number} marked claimed.")

        # --- b. inventory ---
        results: list[ItemAdjustmentResult] = []
        try:
            catalog = self.items.snapshot()
            for line in order.items:
                results.append(self._release_line(order, line, catalog))
        except TransportError as e:
            done = len(results)
            results.extend(
                ItemAdjustmentResult(
                    item=line.name,
                    size=line.size,
                    quantity=line.quantity,
                    success=False,
                    error=f"Not attempted: {e}",
                )
                for line in order.items[done:]
            )
            self._reconcile(order, results, f"Transport failure during release: {e}")
            self.outcome = self._outcome(order, results)
            return self._fail(
                FailureReason.TRANSPORT_ERROR,
                f"Order {order.order_number} was claimed but inventory is only partly updated: {e}",
                claim_committed=True,
            )
        finally:
            # The adjustments (if any) made our snapshot stale.
            self.items.invalidate()

        # --- c. released ---
        self.outcome = self._outcome(order, results)
        if not self.outcome.fully_synced:
            self._reconcile(order, results, "Some line items could not be taken out of inventory.")
        self._enter(ScannerState.RELEASED)
        return self.state

    def tick(self, now: Optional[datetime] = None) -> ScannerState:
        """Returns a FAILED scanner to IDLE once its message has been shown long enough."""
        if self.state is ScannerState.FAILED and self._failed_at is not None:
            now = now or self.clock()
            if as_utc(now) - as_utc(self._failed_at) >= self.failed_display:
                self._reset()
                self._enter(ScannerState.IDLE)
        return self.state

    # --- release helpers ---

    def _release_line(self, order: Order, line: OrderLine, catalog: list[ItemRecord]) -> ItemAdjustmentResult:
        variant = find_variant(catalog, line.name, line.size, order.education_level, self.policy)
        if variant is None:
            logger.error(f"Inventory item not found: {line.name} ({line.size or 'no size'})")
            return ItemAdjustmentResult(
                item=line.name,
                size=line.size,
                quantity=line.quantity,
                success=False,
                error="No matching inventory variant.",
            )

        try:
            self.client.adjust_item(
                variant.source_record_id,
                -line.quantity,
                reason=f"Order {order.order_number} claimed - {line.quantity}x {line.name}",
                size=_adjustment_size(variant),
            )
        except (AdjustmentRejectedError, NotFoundError) as e:
            logger.error(f"Failed to adjust inventory for {line.name}: {e}")
            return ItemAdjustmentResult(
                item=line.name,
                size=line.size,
                quantity=line.quantity,
                success=False,
                source_record_id=variant.source_record_id,
                error=str(e),
            )

        logger.info(f"Inventory reduced: {line.name} {variant.size or ''} by {line.quantity}")
        return ItemAdjustmentResult(
            item=line.name,
            size=line.size,
            quantity=line.quantity,
            success=True,
            source_record_id=variant.source_record_id,
        )

    def _claimed_in_transit(self, order: Order) -> ScannerState:
        """
        A retried claim found the order already claimed after the previous attempt
        failed in transit. That earlier write may have been ours, so no stock is
        touched and every line is queued for reconciliation.
        """
        results = [
            ItemAdjustmentResult(
                item=line.name,
                size=line.size,
                quantity=line.quantity,
                success=False,
                error="Claim outcome unknown after a transport failure; not adjusted.",
            )
            for line in order.items
        ]
        self._reconcile(order, results, "Order found claimed after a claim attempt failed in transit.")
        self.outcome = self._outcome(order, results)
        return self._fail(
            FailureReason.ALREADY_CLAIMED,
            f"Order {order.order_number} is claimed, but the earlier claim attempt did not answer. "
            "Inventory was not adjusted and has been queued for reconciliation.",
            claim_committed=True,
        )

    def _outcome(self, order: Order, results: list[ItemAdjustmentResult]) -> ReleaseOutcome:
        failed = sum(1 for r in results if not r.success)
        if failed:
            message = f"Order {order.order_number} claimed; {failed} item(s) need inventory reconciliation."
        else:
            message = f"Order {order.order_number} successfully claimed!"
        return ReleaseOutcome(
            order_number=order.order_number,
            student_name=order.student_name,
            items=results,
            released_at=self.clock(),
            message=message,
        )

    def _reconcile(self, order: Order, results: list[ItemAdjustmentResult], reason: str) -> None:
        record = ReconciliationRecord(
            order_id=order.id,
            order_number=order.order_number,
            reason=reason,
            created_at=self.clock(),
            pending_items=[r for r in results if not r.success],
        )
        save_reconciliation_record(record, self.reconciliation_path)


def _adjustment_size(variant: Variant) -> Optional[str]:
    """Sizeless records are adjusted without a size."""
    if variant.size is None or strip_abbreviation(variant.size) == NOT_APPLICABLE:
        return None
    return variant.size
