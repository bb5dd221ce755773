from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, field_validator

from backend.app.models.inventory import (
    BatchStatus,
    HistoryAction,
    InventoryUnit,
    ReferenceType,
)


class SufficiencyRequest(BaseModel):
    product_id: int
    required_quantity: Decimal
    batch: str | None = None

    @field_validator("required_quantity")
    @classmethod
    def quantity_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Required quantity must be greater than zero")
        return v


class InventorySufficiency(BaseModel):
    product_id: int
    is_sufficient: bool
    available_quantity: Decimal
    required_quantity: Decimal
    deficit: Decimal


class DeductionRecord(BaseModel):
    """Outcome of one batch decrement."""

    product_id: int
    product_name: str
    batch_id: int
    batch: str
    quantity_deducted: Decimal
    remaining_quantity: Decimal
    batch_deleted: bool
    history_id: int


class InventoryBatchOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    batch: str | None
    quantity: Decimal
    cost_per_unit: Decimal
    value: Decimal
    unit: InventoryUnit
    status: BatchStatus
    created_at: datetime | None

    class Config:
        from_attributes = True


class InventoryHistoryOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    batch: str
    action: HistoryAction
    quantity: Decimal
    value: Decimal
    cost_per_unit: Decimal
    unit: InventoryUnit
    notes: str | None
    reference_type: ReferenceType
    reference_id: int | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class InventorySummaryOut(BaseModel):
    product_id: int
    product_name: str
    total_quantity: Decimal
    total_value: Decimal
    average_cost_per_unit: Decimal
    unit: InventoryUnit

    class Config:
        from_attributes = True
