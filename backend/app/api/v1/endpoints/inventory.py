from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.app.core.database import get_db
from backend.app.models.inventory import InventoryBatch, InventoryHistory, InventorySummary
from backend.app.schemas.inventory import (
    InventoryBatchOut,
    InventoryHistoryOut,
    InventorySufficiency,
    InventorySummaryOut,
    SufficiencyRequest,
)
from backend.app.services.inventory import (
    get_inventory_deduction_history,
    get_inventory_summary,
    get_product_inventory_status,
)
from backend.app.services.inventory_check import check_inventory_sufficiency

router = APIRouter()


@router.post("/sufficiency", response_model=InventorySufficiency)
def probe_sufficiency(
    payload: SufficiencyRequest,
    db: Session = Depends(get_db),
) -> InventorySufficiency:
    return check_inventory_sufficiency(
        db, payload.product_id, payload.required_quantity, batch=payload.batch
    )


@router.get("/products/{product_id}/batches", response_model=list[InventoryBatchOut])
def list_product_batches(
    product_id: int,
    db: Session = Depends(get_db),
) -> list[InventoryBatch]:
    return get_product_inventory_status(db, product_id)


@router.get("/products/{product_id}/summary", response_model=InventorySummaryOut)
def get_product_summary(
    product_id: int,
    db: Session = Depends(get_db),
) -> InventorySummary:
    summary = get_inventory_summary(db, product_id)
    if not summary:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No inventory summary for product"
        )
    return summary


@router.get("/deductions/{sale_id}", response_model=list[InventoryHistoryOut])
def list_sale_deductions(
    sale_id: int,
    db: Session = Depends(get_db),
) -> list[InventoryHistory]:
    return get_inventory_deduction_history(db, sale_id)
