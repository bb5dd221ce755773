from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
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


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CREDIT = "credit"


class PaymentOption(str, enum.Enum):
    FULL = "full"
    HALF = "half"
    CUSTOM = "custom"
    LATER = "later"


class ChargeType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class LineKind(str, enum.Enum):
    """Shape of a bill line.

    A mix is stored as one MIX_HEADER row followed by its MIX_COMPONENT rows;
    all of them share the header's ``mix_id`` and components point back to
    the header through ``parent_item_id``.
    """

    SIMPLE = "simple"
    MIX_HEADER = "mix_header"
    MIX_COMPONENT = "mix_component"


class Caterer(Base):
    __tablename__ = "caterers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    caterer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # Running totals, refreshed whenever a bill or payment is recorded
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    last_order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sales: Mapped[list[CatererSale]] = relationship(back_populates="caterer")

    __table_args__ = (Index("ix_caterers_name", "caterer_name"),)


class CatererSale(Base):
    """Bill header. Owns its items, other charges and payments."""

    __tablename__ = "caterer_sales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    caterer_id: Mapped[int] = mapped_column(
        ForeignKey("caterers.id", ondelete="RESTRICT"), nullable=False
    )
    bill_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    sell_date: Mapped[date] = mapped_column(Date, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    total_gst: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    items_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    other_charges_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    grand_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    caterer: Mapped[Caterer] = relationship(back_populates="sales")
    items: Mapped[list[CatererSaleItem]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="CatererSaleItem.id",
    )
    other_charges: Mapped[list[CatererSaleOtherCharge]] = relationship(
        back_populates="sale", cascade="all, delete-orphan"
    )
    payments: Mapped[list[CatererSalePayment]] = relationship(
        back_populates="sale", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_caterer_sales_caterer", "caterer_id"),
        Index("ix_caterer_sales_sell_date", "sell_date"),
        Index("ix_caterer_sales_payment_status", "payment_status"),
    )


class CatererSaleItem(Base):
    __tablename__ = "caterer_sale_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("caterer_sales.id", ondelete="CASCADE"), nullable=False
    )
    # NULL for a mix header, which has no physical product of its own
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=3), nullable=False
    )
    unit: Mapped[str] = mapped_column(String(50), nullable=False, default="kg")
    rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0")
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    gst_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2), nullable=False, default=Decimal("0")
    )
    gst_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0")
    )
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    line_kind: Mapped[LineKind] = mapped_column(
        Enum(LineKind), nullable=False, default=LineKind.SIMPLE
    )
    mix_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parent_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("caterer_sale_items.id", ondelete="CASCADE"), nullable=True
    )
    # Full component list as received, kept on the header row as a backup
    mix_item_data: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sale: Mapped[CatererSale] = relationship(back_populates="items")

    @property
    def is_mix(self) -> bool:
        return self.line_kind == LineKind.MIX_HEADER

    __table_args__ = (
        CheckConstraint(
            "(line_kind = 'SIMPLE' AND mix_id IS NULL AND parent_item_id IS NULL)"
            " OR (line_kind = 'MIX_HEADER' AND mix_id IS NOT NULL AND parent_item_id IS NULL)"
            " OR (line_kind = 'MIX_COMPONENT' AND mix_id IS NOT NULL AND parent_item_id IS NOT NULL)",
            name="ck_caterer_sale_item_line_kind_shape",
        ),
        Index("ix_caterer_sale_items_sale", "sale_id"),
        Index("ix_caterer_sale_items_product", "product_id"),
        Index("ix_caterer_sale_items_parent", "parent_item_id"),
    )


class CatererSaleOtherCharge(Base):
    __tablename__ = "caterer_sale_other_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("caterer_sales.id", ondelete="CASCADE"), nullable=False
    )
    charge_name: Mapped[str] = mapped_column(String(255), nullable=False)
    charge_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    charge_type: Mapped[ChargeType] = mapped_column(
        Enum(ChargeType), nullable=False, default=ChargeType.FIXED
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sale: Mapped[CatererSale] = relationship(back_populates="other_charges")

    __table_args__ = (Index("ix_caterer_sale_other_charges_sale", "sale_id"),)


class CatererSalePayment(Base):
    __tablename__ = "caterer_sale_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("caterer_sales.id", ondelete="CASCADE"), nullable=False
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH
    )
    payment_option: Mapped[PaymentOption] = mapped_column(
        Enum(PaymentOption), nullable=False, default=PaymentOption.FULL
    )
    payment_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sale: Mapped[CatererSale] = relationship(back_populates="payments")

    __table_args__ = (
        CheckConstraint("payment_amount >= 0", name="ck_caterer_payment_amount_non_negative"),
        Index("ix_caterer_sale_payments_sale", "sale_id"),
        Index("ix_caterer_sale_payments_date", "payment_date"),
    )
