from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


class InventoryUnit(str, enum.Enum):
    KG = "kg"
    GRAM = "gram"
    POUND = "pound"
    BOX = "box"
    PACK = "pack"
    LITRE = "litre"


class BatchStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    MERGED = "merged"


class HistoryAction(str, enum.Enum):
    ADDED = "added"
    DEDUCTED = "deducted"
    ADJUSTED = "adjusted"
    MERGED = "merged"


class ReferenceType(str, enum.Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    CATERER_SALE = "caterer_sale"
    MANUAL = "manual"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"


class Product(Base):
    """Catalogue product. Maintained elsewhere; only read here."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="kg")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    batches: Mapped[list[InventoryBatch]] = relationship(back_populates="product")


class InventoryBatch(Base):
    """One physical lot of a product with its own remaining quantity and cost.

    Batches are received by the purchasing side. Caterer sales only ever
    decrement them, and delete them once exhausted.
    """

    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    batch: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=3), nullable=False, default=Decimal("0")
    )
    cost_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0")
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    unit: Mapped[InventoryUnit] = mapped_column(
        Enum(InventoryUnit), nullable=False, default=InventoryUnit.KG
    )
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus), nullable=False, default=BatchStatus.ACTIVE
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    product: Mapped[Product] = relationship(back_populates="batches")

    __table_args__ = (
        Index("ix_inventory_product", "product_id"),
        Index("ix_inventory_batch", "batch"),
        Index("ix_inventory_status", "status"),
        Index("ix_inventory_created_at", "created_at"),
    )


class InventoryHistory(Base):
    """Append-only ledger of every inventory movement."""

    __tablename__ = "inventory_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    batch: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[HistoryAction] = mapped_column(Enum(HistoryAction), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=3), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    cost_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0")
    )
    unit: Mapped[InventoryUnit] = mapped_column(
        Enum(InventoryUnit), nullable=False, default=InventoryUnit.KG
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_type: Mapped[ReferenceType] = mapped_column(
        Enum(ReferenceType), nullable=False, default=ReferenceType.MANUAL
    )
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_inventory_history_product", "product_id"),
        Index("ix_inventory_history_reference", "reference_type", "reference_id"),
        Index("ix_inventory_history_created_at", "created_at"),
    )


class InventorySummary(Base):
    """Per-product stock snapshot, always rebuilt from the live batches."""

    __tablename__ = "inventory_summary"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=3), nullable=False, default=Decimal("0")
    )
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    average_cost_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=4), nullable=False, default=Decimal("0")
    )
    unit: Mapped[InventoryUnit] = mapped_column(
        Enum(InventoryUnit), nullable=False, default=InventoryUnit.KG
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_quantity >= 0", name="ck_inventory_summary_qty_non_negative"),
    )
