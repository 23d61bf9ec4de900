import argparse
import logging
import sys

from portal_inventory.catalog import ListCache
from portal_inventory.data_handler import PortalClient
from portal_inventory.exceptions import PortalError
from portal_inventory.fulfillment import OrderScanner, ScannerState
from portal_inventory.logger import setup_logger
from portal_inventory.pipelines.health import HealthPipeline
from portal_inventory.pipelines.valuation import ValuationPipeline

logger = logging.getLogger("portal_inventory")


def run_reports(test_mode: bool = False) -> int:
    """Builds the valuation and health reports from one catalog fetch."""
    client = PortalClient()
    items = ListCache(client.fetch_items, "items")

    try:
        items.refresh()
    except PortalError as e:
        logger.error(f"❌ Could not fetch the catalog: {e}")
        return 1

    for pipeline in (ValuationPipeline(items, test_mode=test_mode), HealthPipeline(items, test_mode=test_mode)):
        if pipeline.run() is None:
            return 1
    return 0


def run_claim(payload: str, assume_yes: bool = False) -> int:
    """Scans one receipt payload and, once confirmed, releases the order."""
    client = PortalClient()
    scanner = OrderScanner(client, ListCache(client.fetch_items, "items"))

    scanner.open_scanner()
    if scanner.on_decode(payload) is ScannerState.FAILED:
        logger.error(scanner.failure.message)
        return 1

    order = scanner.order
    logger.info(f"\nOrder {order.order_number} for {order.student_name or 'unknown student'}:")
    for line in order.items:
        logger.info(f"  {line.quantity}x {line.name} ({line.size or 'N/A'})")

    if not assume_yes and input("Release this order? [y/N] ").strip().lower() != "y":
        scanner.cancel()
        logger.info("Release cancelled.")
        return 0

    if scanner.confirm() is ScannerState.FAILED:
        logger.error(scanner.failure.message)
        return 1

    outcome = scanner.outcome
    logger.info(outcome.message)
    for result in outcome.items:
        mark = "✅" if result.success else "❌"
        logger.info(f"  {mark} {result.quantity}x {result.item} {result.error or ''}")
    return 0 if outcome.fully_synced else 2


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Portal inventory reports and order release.")
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Write the valuation and inventory health reports.")
    report.add_argument("--test", action="store_true", help="Skip the webhook post.")

    claim = sub.add_parser("claim", help="Release the order behind a scanned receipt QR payload.")
    claim.add_argument("payload", help="Raw QR string from the receipt.")
    claim.add_argument("--yes", action="store_true", help="Release without asking for confirmation.")

    args = parser.parse_args(argv)
    setup_logger("portal_inventory")

    if args.command == "report":
        return run_reports(test_mode=args.test)
    return run_claim(args.payload, assume_yes=args.yes)


if __name__ == "__main__":
    sys.exit(main())
