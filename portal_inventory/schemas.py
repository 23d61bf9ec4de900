from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class PortalModel(BaseModel):
    """
    Base for every record exchanged with the portal backend.
    The backend mixes camelCase and snake_case keys, so both spellings are accepted
    and camelCase is what we emit.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value):
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _none_to_zero(value):
    value = _blank_to_none(value)
    return 0 if value is None else value


# --- Ledger (JSON document embedded in ItemRecord.note) ---


class SizeEntry(PortalModel):
    size: Optional[str] = None
    stock: Optional[int] = None
    price: Optional[float] = None
    beginning_inventory: Optional[int] = None
    purchases: Optional[int] = None
    beginning_inventory_unit_price: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blanks(cls, value):
        return _blank_to_none(value)


class AccessoryEntry(PortalModel):
    stock: Optional[int] = None
    price: Optional[float] = None
    beginning_inventory: Optional[int] = None
    purchases: Optional[int] = None
    beginning_inventory_unit_price: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blanks(cls, value):
        return _blank_to_none(value)


class SizeLedger(PortalModel):
    type: Literal["sizeVariations"] = "sizeVariations"
    entries: list[SizeEntry] = Field(min_length=1)


class AccessoryLedger(PortalModel):
    type: Literal["accessoryEntries"] = "accessoryEntries"
    entries: list[AccessoryEntry] = Field(min_length=1)


Ledger = SizeLedger | AccessoryLedger


# --- Catalog ---


class ItemRecord(PortalModel):
    id: str
    name: str
    education_level: Optional[str] = None
    item_type: Optional[str] = None
    size: Optional[str] = None
    stock: int = 0
    price: float = 0.0
    beginning_inventory: int = 0
    purchases: Optional[int] = None
    beginning_inventory_unit_price: Optional[float] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    is_active: bool = True
    # Decoded once from `note` when the record is built; never sent back.
    ledger: Optional[Ledger] = Field(default=None, exclude=True)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_validator("stock", "price", "beginning_inventory", mode="before")
    @classmethod
    def _zero_fill(cls, value):
        return _none_to_zero(value)

    @field_validator("purchases", "beginning_inventory_unit_price", "created_at", mode="before")
    @classmethod
    def _optional_blanks(cls, value):
        return _blank_to_none(value)

    @field_validator("is_active", mode="before")
    @classmethod
    def _active_default(cls, value):
        return True if value is None else value

    @model_validator(mode="after")
    def _decode_ledger(self):
        if self.ledger is None and self.note:
            from .parsers import parse_ledger

            self.ledger = parse_ledger(self.note, record_id=self.id)
        return self


class Variant(PortalModel):
    """One addressable purchase option derived from an ItemRecord. Never persisted."""

    source_record_id: str
    display_key: str
    name: str
    education_level: Optional[str] = None
    item_type: Optional[str] = None
    size: Optional[str] = None
    stock: int = 0
    stored_stock: int = 0
    price: float = 0.0
    beginning_inventory: int = 0
    purchases: int = 0
    beginning_inventory_unit_price: Optional[float] = None
    created_at: Optional[datetime] = None
    # True when stock was apportioned across a legacy comma-joined size list.
    approximate: bool = False


class ConsolidatedProduct(PortalModel):
    name: str
    education_level: Optional[str] = None
    variants: list[Variant]
    selected: Variant
    total_cost: float = 0.0
    total_stock: int = 0

    @computed_field
    @property
    def low_fidelity(self) -> bool:
        return any(v.approximate for v in self.variants)


# --- Orders ---


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"


# Statuses the pickup counter may move to claimed.
CLAIMABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


class OrderLine(PortalModel):
    name: str
    size: Optional[str] = None
    quantity: int = Field(default=1, ge=1)

    @field_validator("size", mode="before")
    @classmethod
    def _blank_size(cls, value):
        return _blank_to_none(value)


class Order(PortalModel):
    id: str
    order_number: str
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderLine] = Field(default_factory=list)
    education_level: Optional[str] = None
    student_name: Optional[str] = None
    claimed_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, value):
        # Older orders were closed out as "completed" before "claimed" existed.
        if isinstance(value, str) and value.strip().lower() == "completed":
            return OrderStatus.CLAIMED.value
        return value

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, value):
        return [] if value is None else value

    @field_validator("claimed_date", "created_at", mode="before")
    @classmethod
    def _blank_dates(cls, value):
        return _blank_to_none(value)


class QRPayload(PortalModel):
    """Contents of the QR code printed on a student's order receipt."""

    type: Literal["order_receipt"]
    order_number: str = Field(min_length=1)
    qr_issued_at: Optional[datetime] = None
    student_name: Optional[str] = None
    education_level: Optional[str] = None
    items: list[OrderLine] = Field(default_factory=list)

    @field_validator("qr_issued_at", mode="before")
    @classmethod
    def _blank_issued(cls, value):
        return _blank_to_none(value)


# --- Claim results ---


class ItemAdjustmentResult(PortalModel):
    item: str
    size: Optional[str] = None
    quantity: int
    success: bool
    source_record_id: Optional[str] = None
    error: Optional[str] = None


class ReleaseOutcome(PortalModel):
    order_number: str
    student_name: Optional[str] = None
    items: list[ItemAdjustmentResult] = Field(default_factory=list)
    released_at: datetime
    message: str = ""

    @computed_field
    @property
    def fully_synced(self) -> bool:
        return all(r.success for r in self.items)


class ReconciliationRecord(PortalModel):
    """An order that was claimed while some of its stock adjustments did not land."""

    order_id: str
    order_number: str
    reason: str
    created_at: datetime
    pending_items: list[ItemAdjustmentResult]


# --- Report rows ---


class ValuationRow(BaseModel):
    """
    One variant in the inventory valuation report.
    Aliases double as the CSV column headers.
    """

    product: str = Field(..., alias="Product")
    education_level: str = Field(default="N/A", alias="Education Level")
    size: str = Field(default="N/A", alias="Size")
    stock: int = Field(default=0, alias="Stock")
    price: float = Field(default=0.0, ge=0, alias="Price")
    beginning_inventory: int = Field(default=0, ge=0, alias="Beginning Inventory")
    purchases: int = Field(default=0, ge=0, alias="Purchases")
    beginning_unit_price: float = Field(default=0.0, ge=0, alias="Beginning Unit Price")
    fifo_cost: float = Field(default=0.0, ge=0, alias="FIFO Cost")
    approximate: bool = Field(default=False, alias="Approximate")
    source_record_id: str = Field(..., alias="Record ID")

    model_config = ConfigDict(populate_by_name=True)


class HealthRow(BaseModel):
    product: str = Field(..., alias="Product")
    education_level: str = Field(default="N/A", alias="Education Level")
    size: str = Field(default="N/A", alias="Size")
    stock: int = Field(default=0, alias="Stock")
    status: Literal["ok", "reorder", "out_of_stock"] = Field(..., alias="Status")

    model_config = ConfigDict(populate_by_name=True)


class InventoryHealth(PortalModel):
    total_item_variants: int = 0
    at_reorder_point: int = 0
    out_of_stock: int = 0
