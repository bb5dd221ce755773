from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.app.core.database import get_db
from backend.app.schemas.caterer_sales import (
    CatererSaleCreate,
    CatererSaleDetailOut,
    CatererSaleResult,
    CatererSaleSummaryOut,
    NextBillNumberOut,
    PaymentCreate,
    PaymentRecordedOut,
)
from backend.app.services.caterer_sales import (
    create_caterer_sale,
    get_caterer_sale_details,
    list_caterer_sales,
    next_bill_number,
    record_sale_payment,
)

router = APIRouter()


# ─── Bills ────────────────────────────────────────────────────────────────────


@router.post("", response_model=CatererSaleResult, status_code=status.HTTP_201_CREATED)
def create_sale(
    payload: CatererSaleCreate,
    db: Session = Depends(get_db),
) -> CatererSaleResult:
    # CatererSaleError is rendered by the app-level handler
    return create_caterer_sale(db, payload)


@router.get("", response_model=list[CatererSaleSummaryOut])
def list_sales(
    caterer_id: int | None = None,
    db: Session = Depends(get_db),
) -> list[CatererSaleSummaryOut]:
    return list_caterer_sales(db, caterer_id=caterer_id)


@router.get("/next-bill-number", response_model=NextBillNumberOut)
def get_next_bill_number(db: Session = Depends(get_db)) -> NextBillNumberOut:
    return NextBillNumberOut(bill_number=next_bill_number(db))


@router.get("/caterer/{caterer_id}", response_model=list[CatererSaleSummaryOut])
def list_sales_for_caterer(
    caterer_id: int,
    db: Session = Depends(get_db),
) -> list[CatererSaleSummaryOut]:
    return list_caterer_sales(db, caterer_id=caterer_id)


@router.get("/{sale_id}", response_model=CatererSaleDetailOut)
def get_sale(sale_id: int, db: Session = Depends(get_db)) -> CatererSaleDetailOut:
    sale = get_caterer_sale_details(db, sale_id)
    if not sale:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Caterer sale not found"
        )
    return sale


# ─── Payments ─────────────────────────────────────────────────────────────────


@router.post(
    "/{sale_id}/payments",
    response_model=PaymentRecordedOut,
    status_code=status.HTTP_201_CREATED,
)
def add_payment(
    sale_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
) -> PaymentRecordedOut:
    try:
        return record_sale_payment(
            db,
            sale_id,
            amount=payload.amount,
            payment_method=payload.payment_method,
            reference_number=payload.reference_number,
            notes=payload.notes,
            payment_date=payload.payment_date,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
