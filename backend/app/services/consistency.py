from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.app.models.inventory import InventoryHistory
from backend.app.schemas.caterer_sales import SaleItemIn
from backend.app.services.errors import ConsistencyCheckError


def expected_deduction_count(items: Iterable[SaleItemIn]) -> int:
    """One deduction per plain line, one per component for a mix line."""
    return sum(len(item.mix_items) if item.is_composite else 1 for item in items)


def count_sale_deductions(db: Session, sale_id: int) -> int:
    # The trailing comma keeps sale 4 from matching sale 42
    pattern = f"%Sale ID: {sale_id},%"
    return (
        db.query(func.count(InventoryHistory.id))
        .filter(
            InventoryHistory.notes.like(pattern),
            InventoryHistory.quantity < 0,
        )
        .scalar()
        or 0
    )


def verify_deduction_consistency(
    db: Session, sale_id: int, items: Iterable[SaleItemIn]
) -> int:
    """Raise ConsistencyCheckError unless every expected deduction was logged."""
    items = list(items)
    expected = expected_deduction_count(items)
    actual = count_sale_deductions(db, sale_id)
    if actual != expected:
        raise ConsistencyCheckError(sale_id, expected, actual)
    return actual
