from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

MIX_PRODUCT_PREFIX = "mix-"


# ─── Request ──────────────────────────────────────────────────────────────────


class BatchRef(BaseModel):
    batch: str | None = Field(default=None, validation_alias=AliasChoices("batch", "batch_number"))
    expiry_date: date | None = None


class _LineBase(BaseModel):
    """Fields shared by bill lines and mix components.

    The sell screens post the same concept under several names (``batch`` /
    ``batch_number`` / ``batches[0]``); they are resolved here so the
    services only ever see ``batch``.
    """

    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(
        default="", validation_alias=AliasChoices("product_name", "productName", "name")
    )
    quantity: Decimal = Decimal("0")
    unit: str | None = None
    rate: Decimal = Decimal("0")
    batch: str | None = Field(
        default=None, validation_alias=AliasChoices("batch_number", "batch")
    )
    expiry_date: date | None = None
    batches: list[BatchRef] = Field(default_factory=list, exclude=True)

    @field_validator("batch", mode="before")
    @classmethod
    def blank_batch_is_none(cls, v: Any) -> Any:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @model_validator(mode="after")
    def batch_from_batches(self) -> "_LineBase":
        if self.batch is None and self.batches:
            first = self.batches[0]
            self.batch = first.batch
            if self.expiry_date is None:
                self.expiry_date = first.expiry_date
        return self


class MixComponentIn(_LineBase):
    product_id: int | None = Field(
        default=None, validation_alias=AliasChoices("product_id", "productId", "id")
    )
    quantity: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("quantity", "calculatedQuantity")
    )
    allocated_budget: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("allocatedBudget", "allocated_budget")
    )


class SaleItemIn(_LineBase):
    product_id: int | None = Field(
        default=None, validation_alias=AliasChoices("product_id", "productId")
    )
    gst_percentage: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("gst_percentage", "gst")
    )
    gst_amount: Decimal = Decimal("0")
    total: Decimal | None = None

    is_mix: bool = Field(default=False, validation_alias=AliasChoices("isMix", "is_mix"))
    mix_items: list[MixComponentIn] = Field(
        default_factory=list, validation_alias=AliasChoices("mixItems", "mix_items")
    )
    # Flat layout: a header row and its component rows are posted side by side
    # and tied together by ``mix_name``.
    is_mix_header: bool = Field(
        default=False, validation_alias=AliasChoices("isMixHeader", "is_mix_header")
    )
    is_mix_item: bool = Field(
        default=False, validation_alias=AliasChoices("isMixItem", "is_mix_item")
    )
    mix_name: str | None = Field(
        default=None, validation_alias=AliasChoices("mixName", "mix_name")
    )

    @model_validator(mode="before")
    @classmethod
    def mix_product_id(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        for key in ("product_id", "productId"):
            raw = data.get(key)
            if isinstance(raw, str) and raw.startswith(MIX_PRODUCT_PREFIX):
                data = {**data, key: None, "is_mix": True}
        return data

    @property
    def is_composite(self) -> bool:
        return self.is_mix or self.is_mix_header or bool(self.mix_items)


class OtherChargeIn(BaseModel):
    name: str = ""
    type: str = "fixed"
    value_type: str | None = None
    value: Decimal = Decimal("0")


class CatererSaleCreate(BaseModel):
    """Inbound bill. Required fields are checked by the service so that a
    missing one is reported with its own error code."""

    caterer_id: int | None = None
    bill_number: str | None = None
    sell_date: date | None = None
    subtotal: Decimal = Decimal("0")
    total_gst: Decimal = Decimal("0")
    items_total: Decimal = Decimal("0")
    other_charges_total: Decimal = Decimal("0")
    grand_total: Decimal | None = None
    items: list[SaleItemIn] = Field(default_factory=list)
    other_charges: list[OtherChargeIn] = Field(default_factory=list)
    payment_option: str | None = "full"
    payment_amount: Decimal | None = None
    payment_method: str | None = None
    payment_date: date | None = None
    notes: str | None = None

    @field_validator("bill_number", mode="before")
    @classmethod
    def bill_number_as_text(cls, v: Any) -> Any:
        if v is None:
            return None
        return str(v)


class PaymentCreate(BaseModel):
    amount: Decimal
    payment_method: str = Field(
        default="cash", validation_alias=AliasChoices("payment_method", "paymentMethod")
    )
    reference_number: str | None = Field(
        default=None, validation_alias=AliasChoices("reference_number", "referenceNumber")
    )
    notes: str | None = None
    payment_date: date | None = None


# ─── Response ─────────────────────────────────────────────────────────────────


class CatererSaleResult(BaseModel):
    success: bool = True
    sale_id: int
    bill_number: str
    payment_status: str
    total_paid: Decimal
    grand_total: Decimal
    created_at: str


class NextBillNumberOut(BaseModel):
    bill_number: str


class SaleItemOut(BaseModel):
    id: int
    product_id: int | None
    product_name: str
    quantity: Decimal
    unit: str
    rate: Decimal
    amount: Decimal
    gst_percentage: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    batch_number: str | None
    expiry_date: date | None
    line_kind: str
    mix_id: int | None
    is_mix: bool
    mix_items: list[SaleItemOut] = Field(default_factory=list)


class OtherChargeOut(BaseModel):
    id: int
    charge_name: str
    charge_amount: Decimal
    charge_type: str


class PaymentOut(BaseModel):
    id: int
    payment_date: date
    payment_method: str
    payment_option: str
    payment_amount: Decimal
    reference_number: str | None
    notes: str | None


class CatererSaleSummaryOut(BaseModel):
    id: int
    caterer_id: int
    bill_number: str
    sell_date: date
    grand_total: Decimal
    payment_status: str
    items_count: int
    total_paid: Decimal
    created_at: datetime | None


class CatererSaleDetailOut(CatererSaleSummaryOut):
    subtotal: Decimal
    total_gst: Decimal
    items_total: Decimal
    other_charges_total: Decimal
    items: list[SaleItemOut]
    payments: list[PaymentOut]
    other_charges: list[OtherChargeOut]


class PaymentRecordedOut(BaseModel):
    payment_id: int
    sale_id: int
    bill_number: str
    amount: Decimal
    total_paid: Decimal
    remaining: Decimal
    payment_status: str
