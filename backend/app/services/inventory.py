from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Query, Session

from backend.app.core.config import settings
from backend.app.models.inventory import (
    BatchStatus,
    HistoryAction,
    InventoryBatch,
    InventoryHistory,
    InventorySummary,
    InventoryUnit,
    ReferenceType,
)
from backend.app.schemas.caterer_sales import MixComponentIn, SaleItemIn
from backend.app.schemas.inventory import DeductionRecord
from backend.app.services.errors import (
    InsufficientInventoryError,
    InventoryDeductionError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)

QTY_Q = Decimal("0.001")
MONEY_Q = Decimal("0.01")
AVG_COST_Q = Decimal("0.0001")
ZERO = Decimal("0")

DEFAULT_BATCH_LABEL = "default"
SALE_DEDUCTION_NOTE = "Caterer sale deduction - Sale ID: {sale_id}, Item: {name}, Sale Rate: {rate}"

UNIT_SYNONYMS: dict[str, str] = {
    "bag": "pack",
    "bags": "pack",
    "piece": "pack",
    "pieces": "pack",
    "pc": "pack",
    "pcs": "pack",
    "each": "pack",
    "item": "pack",
    "items": "pack",
}


def normalize_unit(raw: str | None) -> InventoryUnit | None:
    """Map a free-text unit to a stock unit, or None when it is not one."""
    if not raw:
        return None
    key = raw.strip().lower()
    key = UNIT_SYNONYMS.get(key, key)
    try:
        return InventoryUnit(key)
    except ValueError:
        return None


# ─── Batch selection ──────────────────────────────────────────────────────────


def _oldest_with_stock(query: Query) -> InventoryBatch | None:
    return (
        query.filter(InventoryBatch.quantity > 0)
        .order_by(InventoryBatch.created_at.asc(), InventoryBatch.id.asc())
        .with_for_update()
        .first()
    )


def select_batch(db: Session, product_id: int, label: str | None) -> InventoryBatch | None:
    """Pick the batch to deduct from and lock it.

    A labelled request takes the oldest batch with that label; when it is
    missing or empty the product's oldest batch with stock is used instead.
    """
    base = db.query(InventoryBatch).filter(InventoryBatch.product_id == product_id)
    if label:
        batch = _oldest_with_stock(base.filter(InventoryBatch.batch == label))
        if batch is not None:
            return batch
        logger.info(
            "Batch %s of product %s not available, falling back to FIFO", label, product_id
        )
    return _oldest_with_stock(base)


# ─── Aggregates ───────────────────────────────────────────────────────────────


def recompute_inventory_summary(
    db: Session, product_id: int, product_name: str
) -> InventorySummary:
    """Rebuild a product's summary row from its live batches."""
    batches = (
        db.query(InventoryBatch)
        .filter(
            InventoryBatch.product_id == product_id,
            InventoryBatch.quantity > 0,
            InventoryBatch.status != BatchStatus.MERGED,
        )
        .order_by(InventoryBatch.created_at.asc(), InventoryBatch.id.asc())
        .all()
    )

    total_quantity = ZERO
    total_value = ZERO
    for batch in batches:
        quantity = Decimal(str(batch.quantity))
        total_quantity += quantity
        total_value += quantity * Decimal(str(batch.cost_per_unit))

    summary = (
        db.query(InventorySummary)
        .filter(InventorySummary.product_id == product_id)
        .with_for_update()
        .first()
    )
    if summary is None:
        summary = InventorySummary(product_id=product_id, product_name=product_name)
        db.add(summary)

    summary.product_name = product_name
    summary.total_quantity = total_quantity.quantize(QTY_Q, rounding=ROUND_HALF_UP)
    summary.total_value = total_value.quantize(MONEY_Q, rounding=ROUND_HALF_UP)
    summary.average_cost_per_unit = (
        (total_value / total_quantity).quantize(AVG_COST_Q, rounding=ROUND_HALF_UP)
        if total_quantity > 0
        else ZERO
    )
    if batches:
        summary.unit = batches[0].unit
    elif summary.unit is None:
        summary.unit = InventoryUnit.KG
    summary.last_updated = datetime.now(timezone.utc)
    db.flush()
    return summary


# ─── Deduction ────────────────────────────────────────────────────────────────


def read_batch_quantity(db: Session, batch_id: int) -> Decimal:
    """Stored quantity of a batch; a removed batch reads as zero."""
    stored = db.query(InventoryBatch.quantity).filter(InventoryBatch.id == batch_id).scalar()
    return Decimal(str(stored)) if stored is not None else ZERO


def _deduct_line(
    db: Session,
    sale_id: int,
    line: SaleItemIn | MixComponentIn,
    batch_label: str | None,
) -> DeductionRecord:
    product_id = line.product_id
    required = line.quantity

    batch = select_batch(db, product_id, batch_label)
    if batch is None:
        requested = f" (batch {batch_label})" if batch_label else ""
        raise ProductNotFoundError(
            f"No inventory found for {line.product_name or 'product'} "
            f"(ID: {product_id}){requested}",
            product_id=product_id,
            batch=batch_label,
        )

    product_name = line.product_name or batch.product_name
    available = Decimal(str(batch.quantity))
    if available < required:
        raise InsufficientInventoryError(
            f"Insufficient quantity in batch {batch.batch or DEFAULT_BATCH_LABEL} "
            f"of {product_name}: available {available}, required {required}",
            product_name=product_name,
            available=available,
            required=required,
            product_id=product_id,
            batch=batch.batch,
        )

    cost = Decimal(str(batch.cost_per_unit))
    batch_id = batch.id
    history_batch = batch.batch or DEFAULT_BATCH_LABEL
    unit = normalize_unit(line.unit) or batch.unit or InventoryUnit.KG

    # ── Update or remove the batch ────────────────────────────────────────
    remaining = available - required
    deleted = remaining <= settings.INVENTORY_EPSILON
    if deleted:
        db.delete(batch)
        remaining = ZERO
    else:
        remaining = remaining.quantize(QTY_Q, rounding=ROUND_HALF_UP)
        batch.quantity = remaining
        batch.value = (remaining * cost).quantize(MONEY_Q, rounding=ROUND_HALF_UP)
        batch.updated_at = datetime.now(timezone.utc)
    db.flush()

    # ── History ───────────────────────────────────────────────────────────
    history = InventoryHistory(
        product_id=product_id,
        product_name=product_name,
        batch=history_batch,
        action=HistoryAction.DEDUCTED,
        quantity=-required,
        value=-(required * cost).quantize(MONEY_Q, rounding=ROUND_HALF_UP),
        cost_per_unit=cost,
        unit=unit,
        notes=SALE_DEDUCTION_NOTE.format(sale_id=sale_id, name=product_name, rate=line.rate),
        reference_type=ReferenceType.CATERER_SALE,
        reference_id=sale_id,
    )
    db.add(history)
    db.flush()

    recompute_inventory_summary(db, product_id, product_name)

    # ── Read-back ─────────────────────────────────────────────────────────
    stored_quantity = read_batch_quantity(db, batch_id)
    if abs(stored_quantity - remaining) > settings.INVENTORY_EPSILON:
        logger.warning(
            "Batch %s of product %s reads back %s after deduction, expected %s",
            batch_id,
            product_id,
            stored_quantity,
            remaining,
        )

    logger.info(
        "Sale %s: deducted %s %s of %s from batch %s, remaining %s%s",
        sale_id,
        required,
        unit.value,
        product_name,
        history_batch,
        remaining,
        " (batch removed)" if deleted else "",
    )
    return DeductionRecord(
        product_id=product_id,
        product_name=product_name,
        batch_id=batch_id,
        batch=history_batch,
        quantity_deducted=required,
        remaining_quantity=remaining,
        batch_deleted=deleted,
        history_id=history.id,
    )


def deduct_products_from_inventory(
    db: Session,
    sale_id: int,
    items: Sequence[SaleItemIn],
    bill_number: str | None = None,
) -> list[DeductionRecord]:
    """Deduct the physical stock sold on a caterer bill.

    Items are processed in order. Mix lines are expanded into their
    components, each deducted on its own; a component without a batch
    label uses the mix's label. Any failure aborts the whole call and the
    caller is expected to roll back. Nothing is committed here.
    """
    if not items:
        raise InventoryDeductionError(
            "No items provided for inventory deduction", sale_id=sale_id
        )

    logger.info(
        "Deducting inventory for caterer sale %s (bill %s, %d items)",
        sale_id,
        bill_number or "-",
        len(items),
    )

    records: list[DeductionRecord] = []
    for position, item in enumerate(items, start=1):
        if item.is_composite:
            if item.quantity <= 0:
                raise InventoryDeductionError(
                    f"Invalid quantity for mix item {item.product_name or position}",
                    sale_id=sale_id,
                    item=position,
                )
            for component in item.mix_items:
                if component.product_id is None or component.quantity <= 0:
                    logger.debug(
                        "Sale %s: skipping component %s of mix %s, missing product or quantity",
                        sale_id,
                        component.product_name or "?",
                        item.product_name,
                    )
                    continue
                records.append(
                    _deduct_line(db, sale_id, component, component.batch or item.batch)
                )
            continue

        if item.product_id is None or item.quantity <= 0:
            raise InventoryDeductionError(
                f"Invalid product or quantity for item {position} "
                f"({item.product_name or 'unnamed'})",
                sale_id=sale_id,
                item=position,
            )
        records.append(_deduct_line(db, sale_id, item, item.batch))

    return records


# ─── Read helpers ─────────────────────────────────────────────────────────────


def get_inventory_deduction_history(db: Session, sale_id: int) -> list[InventoryHistory]:
    return (
        db.query(InventoryHistory)
        .filter(
            InventoryHistory.reference_type == ReferenceType.CATERER_SALE,
            InventoryHistory.reference_id == sale_id,
            InventoryHistory.action == HistoryAction.DEDUCTED,
        )
        .order_by(InventoryHistory.created_at.desc(), InventoryHistory.id.desc())
        .all()
    )


def get_product_inventory_status(db: Session, product_id: int) -> list[InventoryBatch]:
    """Batches of a product that still hold stock, oldest first."""
    return (
        db.query(InventoryBatch)
        .filter(InventoryBatch.product_id == product_id, InventoryBatch.quantity > 0)
        .order_by(InventoryBatch.created_at.asc(), InventoryBatch.id.asc())
        .all()
    )


def get_inventory_summary(db: Session, product_id: int) -> InventorySummary | None:
    return (
        db.query(InventorySummary)
        .filter(InventorySummary.product_id == product_id)
        .first()
    )
