from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.app.models.inventory import InventoryBatch, Product
from backend.app.schemas.caterer_sales import SaleItemIn
from backend.app.schemas.inventory import InventorySufficiency
from backend.app.services.errors import InsufficientInventoryError

ZERO = Decimal("0")


def build_product_demand(items: Iterable[SaleItemIn]) -> dict[int, Decimal]:
    """Total quantity required per physical product across a bill.

    Mix lines contribute their components; lines without a product id
    (mix headers, free-text rows) contribute nothing.
    """
    demand: dict[int, Decimal] = {}
    for item in items:
        lines = item.mix_items if item.is_composite else [item]
        for line in lines:
            if line.product_id is None or line.quantity <= 0:
                continue
            demand[line.product_id] = demand.get(line.product_id, ZERO) + line.quantity
    return demand


def check_inventory_sufficiency(
    db: Session,
    product_id: int,
    required: Decimal,
    batch: str | None = None,
) -> InventorySufficiency:
    query = db.query(func.coalesce(func.sum(InventoryBatch.quantity), 0)).filter(
        InventoryBatch.product_id == product_id,
        InventoryBatch.quantity > 0,
    )
    if batch:
        query = query.filter(InventoryBatch.batch == batch)
    available = Decimal(str(query.scalar()))

    deficit = required - available
    return InventorySufficiency(
        product_id=product_id,
        is_sufficient=available >= required,
        available_quantity=available,
        required_quantity=required,
        deficit=deficit if deficit > 0 else ZERO,
    )


def ensure_sufficient_inventory(db: Session, demand: dict[int, Decimal]) -> None:
    """Raise on the first product (lowest id first) whose stock cannot cover the demand."""
    for product_id in sorted(demand):
        result = check_inventory_sufficiency(db, product_id, demand[product_id])
        if result.is_sufficient:
            continue

        product = db.query(Product).filter(Product.id == product_id).first()
        name = product.name if product else f"Product {product_id}"
        raise InsufficientInventoryError(
            f"Insufficient inventory for {name}: "
            f"required {result.required_quantity}, available {result.available_quantity}",
            product_name=name,
            available=result.available_quantity,
            required=result.required_quantity,
            product_id=product_id,
        )
