"""
Variant consolidation.

Item records in the catalog are denormalized: a product can be split over several
records (one per education level, or accidental duplicates), a record can carry a
JSON ledger of per-size stock in its note, and legacy records pack several sizes
into one comma-joined `size` field. This module rebuilds the list of purchasable
variants for a product out of all of that, and values it with FIFO costing.

Everything here is pure and synchronous; callers pass in a catalog snapshot.
"""

import logging
from enum import Enum
from typing import Iterable, Optional

from . import settings
from .schemas import (
    AccessoryLedger,
    ConsolidatedProduct,
    InventoryHealth,
    ItemRecord,
    SizeLedger,
    Variant,
)
from .utils import (
    has_size_list,
    normalize_education_level,
    normalize_name,
    sizes_match,
    sort_timestamp,
    split_sizes,
    strip_abbreviation,
    variant_key,
)

logger = logging.getLogger(__name__)


class MatchPolicy(str, Enum):
    """Which records count as the same product."""

    NAME_ONLY = "name_only"
    NAME_AND_LEVEL = "name_and_level"


def default_policy() -> MatchPolicy:
    return MatchPolicy.NAME_AND_LEVEL if settings.MATCH_EDUCATION_LEVEL else MatchPolicy.NAME_ONLY


def _same_product(record: ItemRecord, name: str, education_level: Optional[str], policy: MatchPolicy) -> bool:
    if normalize_name(record.name) != normalize_name(name):
        return False
    if policy is MatchPolicy.NAME_AND_LEVEL:
        return normalize_education_level(record.education_level) == normalize_education_level(
            education_level
        )
    return True


# --- Expansion: one record -> raw variants ---


def _pick(value, fallback):
    return fallback if value is None else value


def _make_variant(
    record: ItemRecord,
    display_key: str,
    size: Optional[str],
    stored_stock: int,
    price: float,
    beginning_inventory: int,
    purchases: Optional[int],
    beginning_unit_price: Optional[float],
    approximate: bool = False,
) -> Variant:
    # Purchases belong to this variant alone: explicit value, else derived from its own stock.
    if purchases is None:
        purchases = max(0, stored_stock - beginning_inventory)
    display_stock = max(stored_stock, beginning_inventory + purchases)
    return Variant(
        source_record_id=record.id,
        display_key=display_key,
        name=record.name,
        education_level=record.education_level,
        item_type=record.item_type,
        size=size,
        stock=display_stock,
        stored_stock=stored_stock,
        price=price,
        beginning_inventory=beginning_inventory,
        purchases=purchases,
        beginning_inventory_unit_price=beginning_unit_price,
        created_at=record.created_at,
        approximate=approximate,
    )


def _size_ledger_variants(record: ItemRecord, ledger: SizeLedger) -> list[Variant]:
    variants = []
    for index, entry in enumerate(ledger.entries):
        stock = _pick(entry.stock, record.stock)
        price = _pick(entry.price, record.price)
        size = entry.size.strip() if entry.size else None

        if not size:
            if not entry.stock and not entry.price:
                # Empty placeholder row left behind by the editor.
                continue
            if index < len(settings.DEFAULT_SIZE_LABELS):
                size = settings.DEFAULT_SIZE_LABELS[index]
            else:
                size = record.size if record.size and not has_size_list(record.size) else "N/A"

        variants.append(
            _make_variant(
                record,
                display_key=f"{record.id}-json-{index}",
                size=size,
                stored_stock=stock,
                price=price,
                beginning_inventory=_pick(entry.beginning_inventory, record.beginning_inventory),
                purchases=entry.purchases,
                beginning_unit_price=_pick(
                    entry.beginning_inventory_unit_price, record.beginning_inventory_unit_price
                ),
            )
        )
    return variants


def _accessory_variants(record: ItemRecord, ledger: AccessoryLedger) -> list[Variant]:
    variants = []
    for index, entry in enumerate(ledger.entries):
        variants.append(
            _make_variant(
                record,
                display_key=f"{record.id}-accessory-{index}",
                size=None,
                stored_stock=_pick(entry.stock, record.stock),
                price=_pick(entry.price, record.price),
                beginning_inventory=_pick(entry.beginning_inventory, record.beginning_inventory),
                purchases=entry.purchases,
                beginning_unit_price=_pick(
                    entry.beginning_inventory_unit_price,
                    _pick(record.beginning_inventory_unit_price, record.price),
                ),
            )
        )
    return variants


def _size_list_variants(record: ItemRecord) -> list[Variant]:
    """
    Legacy 'Small,Medium' records carry no per-size breakdown. Stock and beginning
    inventory are split evenly (floor division) and every variant is flagged approximate.
    """
    sizes = split_sizes(record.size)
    share = len(sizes)
    logger.debug(
        f"Item {record.id} has a legacy size list {sizes}; apportioning stock {record.stock} across {share}."
    )
    return [
        _make_variant(
            record,
            display_key=f"{record.id}-{index}",
            size=size,
            stored_stock=record.stock // share,
            price=record.price,
            beginning_inventory=record.beginning_inventory // share,
            purchases=None,
            beginning_unit_price=record.beginning_inventory_unit_price,
            approximate=True,
        )
        for index, size in enumerate(sizes)
    ]


def _whole_record_variant(record: ItemRecord) -> Variant:
    size = (record.size or "").strip()
    # A size made only of separators (",") names no size at all.
    if has_size_list(size) and not split_sizes(size):
        size = ""
    return _make_variant(
        record,
        display_key=record.id,
        size=size or "N/A",
        stored_stock=record.stock,
        price=record.price,
        beginning_inventory=record.beginning_inventory,
        purchases=record.purchases,
        beginning_unit_price=record.beginning_inventory_unit_price,
    )


def expand_record(record: ItemRecord) -> list[Variant]:
    """Turns one item record into its raw (not yet deduplicated) variants."""
    if isinstance(record.ledger, AccessoryLedger):
        return _accessory_variants(record, record.ledger)
    if isinstance(record.ledger, SizeLedger):
        return _size_ledger_variants(record, record.ledger)
    if has_size_list(record.size) and split_sizes(record.size):
        return _size_list_variants(record)
    return [_whole_record_variant(record)]


# --- Deduplication ---


def _merge_into(existing: Variant, duplicate: Variant) -> None:
    """Folds a same-record duplicate (e.g. 'Small' and 'Small (S)') into the first one."""
    combined = existing.stock + duplicate.stock
    existing.stored_stock += duplicate.stored_stock
    existing.purchases = max(0, combined - existing.beginning_inventory)
    existing.stock = max(combined, existing.beginning_inventory + existing.purchases)
    existing.approximate = existing.approximate or duplicate.approximate


def deduplicate(variants: Iterable[Variant]) -> list[Variant]:
    """
    Collapses variants sharing a name|size|education level key, oldest first.
    Same source record: merged. Different source record: the later one is dropped.
    Input order must already be oldest-first.
    """
    seen: dict[str, Variant] = {}
    unique: list[Variant] = []

    for variant in variants:
        key = variant_key(variant.name, variant.size, variant.education_level)
        existing = seen.get(key)
        if existing is None:
            # Copy so merging never mutates a caller's variant.
            kept = variant.model_copy()
            seen[key] = kept
            unique.append(kept)
        elif existing.source_record_id == variant.source_record_id:
            _merge_into(existing, variant)
            logger.debug(
                f"Merged duplicate size {variant.size!r} on item {variant.source_record_id} "
                f"-> stock={existing.stock}, purchases={existing.purchases}"
            )
        else:
            logger.info(
                f"⚠️ Skipping duplicate {variant.name} {variant.size} from item {variant.source_record_id}; "
                f"keeping older item {existing.source_record_id}."
            )
    return unique


# --- Costing ---


def fifo_cost(variant: Variant) -> float:
    """
    Beginning inventory at its recorded unit cost plus purchases at the current price.
    Without a recorded beginning cost, the current price values both.
    """
    beginning_unit_price = variant.beginning_inventory_unit_price or variant.price
    return variant.beginning_inventory * beginning_unit_price + variant.purchases * variant.price


def total_cost(variants: Iterable[Variant]) -> float:
    return sum(fifo_cost(v) for v in variants)


def total_stock(variants: Iterable[Variant]) -> int:
    return sum(v.stock for v in variants)


# --- Public entry points ---


def _select(variants: list[Variant], target: ItemRecord) -> Variant:
    target_sizes = split_sizes(target.size) if has_size_list(target.size) else [target.size]
    for variant in variants:
        if variant.source_record_id != target.id:
            continue
        if any(normalize_name(variant.size) == normalize_name(size) for size in target_sizes):
            return variant
    return variants[0]


def _build_product(name: str, education_level: Optional[str], variants: list[Variant], target: ItemRecord) -> ConsolidatedProduct:
    return ConsolidatedProduct(
        name=name,
        education_level=education_level,
        variants=variants,
        selected=_select(variants, target),
        total_cost=total_cost(variants),
        total_stock=total_stock(variants),
    )


def resolve_variants(
    catalog: list[ItemRecord],
    target: ItemRecord,
    policy: Optional[MatchPolicy] = None,
) -> ConsolidatedProduct:
    """
    Builds the consolidated product `target` belongs to.

    1. keep catalog records naming the same product (see MatchPolicy)
    2. expand every record into raw variants (ledger, size list or whole record)
    3. order raw variants by record creation time, oldest first
    4. deduplicate on name|size|education level
    5-6. FIFO total cost and total stock
    7. select the variant that corresponds to `target`

    Never returns an empty product: when nothing matches, `target` alone is used.
    """
    policy = policy or default_policy()
    matching = [r for r in catalog if _same_product(r, target.name, target.education_level, policy)]

    raw: list[Variant] = []
    for record in matching:
        raw.extend(expand_record(record))

    # sorted() is stable, so variants of one record keep their ledger order.
    raw = sorted(raw, key=lambda v: sort_timestamp(v.created_at))
    variants = deduplicate(raw)

    if not variants:
        logger.info(f"No catalog variants for {target.name!r}; using the item on its own.")
        variants = [_whole_record_variant(target)]

    level = target.education_level if policy is MatchPolicy.NAME_AND_LEVEL else None
    return _build_product(target.name, level, variants, target)


def consolidate_catalog(
    catalog: list[ItemRecord],
    policy: Optional[MatchPolicy] = None,
) -> list[ConsolidatedProduct]:
    """Every consolidated product in the catalog, ordered by its oldest record."""
    policy = policy or default_policy()
    representatives: dict[tuple[str, str], ItemRecord] = {}

    for record in sorted(catalog, key=lambda r: sort_timestamp(r.created_at)):
        group = (
            normalize_name(record.name),
            normalize_education_level(record.education_level)
            if policy is MatchPolicy.NAME_AND_LEVEL
            else "",
        )
        representatives.setdefault(group, record)

    return [resolve_variants(catalog, record, policy) for record in representatives.values()]


def find_variant(
    catalog: list[ItemRecord],
    name: str,
    size: Optional[str],
    education_level: Optional[str] = None,
    policy: Optional[MatchPolicy] = None,
) -> Optional[Variant]:
    """
    Resolves an ordered line item to the variant whose stock it draws from.

    Uses the same product grouping and size comparison as resolve_variants. When the
    product spans several education levels, a variant of the order's own level wins.
    Sizeless line items ('N/A' or blank) match sizeless variants.
    """
    policy = policy or default_policy()
    matching = [r for r in catalog if _same_product(r, name, education_level, policy)]
    if not matching:
        return None

    product = resolve_variants(catalog, matching[0], policy)
    wanted = strip_abbreviation(size)
    candidates = [v for v in product.variants if sizes_match(v.size, size)]

    if not candidates and wanted == strip_abbreviation(None):
        # Sizeless item: accept the product's only variant, whatever it is labelled.
        if len(product.variants) == 1:
            candidates = product.variants
    if not candidates:
        return None

    level = normalize_education_level(education_level)
    for variant in candidates:
        if normalize_education_level(variant.education_level) == level:
            return variant
    return candidates[0]


def inventory_health(products: Iterable[ConsolidatedProduct], catalog: Optional[list[ItemRecord]] = None) -> InventoryHealth:
    """
    Counts variants, variants sitting at the reorder point and variants out of stock.
    Variants of archived (inactive) records are left out when the catalog is given.
    """
    inactive = {r.id for r in catalog or [] if not r.is_active}
    health = InventoryHealth()
    for product in products:
        for variant in product.variants:
            if variant.source_record_id in inactive:
                continue
            health.total_item_variants += 1
            status = health_status(variant)
            if status == "out_of_stock":
                health.out_of_stock += 1
            elif status == "reorder":
                health.at_reorder_point += 1
    return health


def health_status(variant: Variant) -> str:
    if variant.stock <= 0:
        return "out_of_stock"
    if settings.REORDER_POINT_MIN <= variant.stock < settings.REORDER_POINT_MAX:
        return "reorder"
    return "ok"
