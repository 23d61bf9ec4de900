import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel

from portal_inventory import data_handler
from portal_inventory.catalog import ListCache
from portal_inventory.consolidation import MatchPolicy, default_policy
from portal_inventory.schemas import ItemRecord

logger = logging.getLogger(__name__)


class DataPipeline(ABC):
    """
    Base class for catalog reports (valuation, health).
    Extract reads one catalog snapshot, transform consolidates it into report rows,
    load writes the rows to disk and posts them with the run summary.
    """

    def __init__(
        self,
        report_type: str,
        items: ListCache[ItemRecord],
        policy: Optional[MatchPolicy] = None,
        test_mode: bool = False,
    ):
        self.report_type = report_type
        self.items = items
        self.policy = policy or default_policy()
        self.test_mode = test_mode
        # Counts describing this run; sent as webhook metadata.
        self.status_summary: dict[str, Any] = {}

    def run(self) -> Optional[list[BaseModel]]:
        """
        Runs extract, transform and load. Returns the report rows, an empty list
        for an empty catalog, or None when the rows failed validation.
        """
        logger.info(f"🚀 STEP: {self.report_type.upper()} REPORT")
        logger.info("-" * 30)

        catalog = self.extract()
        if not catalog:
            logger.warning(f"⚠️ Catalog is empty; the {self.report_type} report will have no rows.")
            self.load([])
            return []

        rows = self.transform(catalog)
        if rows is None:
            logger.error(f"❌ Could not build the {self.report_type} report.")
            return None

        self.load(rows)
        logger.info(f"✅ {self.report_type.capitalize()} report done: {len(rows)} rows.\n")
        logger.info("=" * 60)
        return rows

    def extract(self) -> list[ItemRecord]:
        """Current catalog snapshot, fetched if the cache is cold."""
        catalog = self.items.snapshot()
        self.status_summary["records"] = len(catalog)
        return catalog

    @abstractmethod
    def transform(self, catalog: list[ItemRecord]) -> list[BaseModel] | None:
        """
        Consolidates the catalog and returns validated report rows, or None when
        validation fails. Adds its own counts to self.status_summary.
        """

    def load(self, rows: list[BaseModel]):
        if self.status_summary:
            logger.info(f"\n--- {self.report_type.capitalize()} Summary ---")
            for key, value in self.status_summary.items():
                logger.info(f"{key}: {value}")

        if rows:
            data_handler.save_outputs(rows, f"{self.report_type}_report")
        else:
            logger.warning("No rows to save to disk.")

        if self.test_mode:
            logger.info("🧪 Test Mode: Skipping webhook post.")
            return
        data_handler.post_to_webhook(
            validated_data=rows,
            metadata=self.status_summary,
            report_type=self.report_type,
        )
