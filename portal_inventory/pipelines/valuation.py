import logging
from pydantic import ValidationError

from portal_inventory.consolidation import consolidate_catalog, fifo_cost
from portal_inventory.pipeline import DataPipeline
from portal_inventory.schemas import ItemRecord, ValuationRow

logger = logging.getLogger(__name__)


class ValuationPipeline(DataPipeline):
    """One row per consolidated variant, valued with FIFO costing."""

    def __init__(self, items, policy=None, test_mode: bool = False):
        super().__init__("valuation", items, policy=policy, test_mode=test_mode)

    def transform(self, catalog: list[ItemRecord]) -> list[ValuationRow] | None:
        logger.info("\n--- Consolidating Variants ---")
        products = consolidate_catalog(catalog, self.policy)

        rows = []
        try:
            logger.info("Validating data against schema...")
            for product in products:
                for variant in product.variants:
                    rows.append(
                        ValuationRow(
                            product=variant.name,
                            education_level=variant.education_level or "N/A",
                            size=variant.size or "N/A",
                            stock=variant.stock,
                            price=variant.price,
                            beginning_inventory=variant.beginning_inventory,
                            purchases=variant.purchases,
                            beginning_unit_price=variant.beginning_inventory_unit_price or variant.price,
                            fifo_cost=round(fifo_cost(variant), 2),
                            approximate=variant.approximate,
                            source_record_id=variant.source_record_id,
                        )
                    )
            logger.info("✅ Data validation successful.")
        except ValidationError as e:
            logger.error("❌ Data validation failed!")
            logger.error(e)
            return None

        self.status_summary.update(
            {
                "products": len(products),
                "variants": len(rows),
                "total_stock": sum(p.total_stock for p in products),
                "total_cost": round(sum(p.total_cost for p in products), 2),
                "low_fidelity_products": sum(1 for p in products if p.low_fidelity),
            }
        )
        return rows
