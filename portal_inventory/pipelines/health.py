import logging
from pydantic import ValidationError

from portal_inventory.consolidation import consolidate_catalog, health_status, inventory_health
from portal_inventory.pipeline import DataPipeline
from portal_inventory.schemas import HealthRow, ItemRecord

logger = logging.getLogger(__name__)


class HealthPipeline(DataPipeline):
    """
    Flags every active variant as ok, at reorder point or out of stock.
    The summary counts go out as run metadata.
    """

    def __init__(self, items, policy=None, test_mode: bool = False):
        super().__init__("health", items, policy=policy, test_mode=test_mode)

    def transform(self, catalog: list[ItemRecord]) -> list[HealthRow] | None:
        products = consolidate_catalog(catalog, self.policy)
        inactive = {r.id for r in catalog if not r.is_active}

        try:
            rows = [
                HealthRow(
                    product=variant.name,
                    education_level=variant.education_level or "N/A",
                    size=variant.size or "N/A",
                    stock=variant.stock,
                    status=health_status(variant),
                )
                for product in products
                for variant in product.variants
                if variant.source_record_id not in inactive
            ]
        except ValidationError as e:
            logger.error("❌ Data validation failed!")
            logger.error(e)
            return None

        health = inventory_health(products, catalog)
        self.status_summary.update(health.model_dump(by_alias=True))
        logger.info(
            f"{health.total_item_variants} variants: {health.at_reorder_point} at reorder point, "
            f"{health.out_of_stock} out of stock."
        )
        return rows
