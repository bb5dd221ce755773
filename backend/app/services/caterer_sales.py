from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from backend.app.models.caterer import (
    Caterer,
    CatererSale,
    CatererSaleItem,
    CatererSaleOtherCharge,
    CatererSalePayment,
    ChargeType,
    LineKind,
    PaymentMethod,
    PaymentOption,
    PaymentStatus,
)
from backend.app.schemas.caterer_sales import (
    CatererSaleCreate,
    CatererSaleDetailOut,
    CatererSaleResult,
    CatererSaleSummaryOut,
    MixComponentIn,
    OtherChargeIn,
    OtherChargeOut,
    PaymentOut,
    PaymentRecordedOut,
    SaleItemIn,
    SaleItemOut,
)
from backend.app.services.consistency import verify_deduction_consistency
from backend.app.services.errors import (
    CatererSaleError,
    DatabaseUnavailableError,
    DuplicateBillNumberError,
    InvalidItemsError,
    MissingRequiredFieldsError,
)
from backend.app.services.inventory import deduct_products_from_inventory
from backend.app.services.inventory_check import (
    build_product_demand,
    ensure_sufficient_inventory,
)

logger = logging.getLogger(__name__)

MONEY_Q = Decimal("0.01")
ZERO = Decimal("0")
# A follow-up payment leaving less than this outstanding settles the bill
PAYMENT_TOLERANCE = Decimal("0.01")
DEFAULT_UNIT = "kg"
MIX_HEADER_UNIT = "mix"

PAYMENT_METHOD_MAP: dict[str, PaymentMethod] = {
    "cash": PaymentMethod.CASH,
    "upi": PaymentMethod.UPI,
    "card": PaymentMethod.CARD,
    "bank": PaymentMethod.BANK_TRANSFER,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "cheque": PaymentMethod.CHEQUE,
    "check": PaymentMethod.CHEQUE,
    "credit": PaymentMethod.CREDIT,
}


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


# ─── Bill numbers ─────────────────────────────────────────────────────────────


def normalize_bill_number(raw: str | None) -> str | None:
    """``"12"``, ``"#12"`` and ``"BILL-12"`` all become ``"#0012"``."""
    if not raw:
        return None
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None
    return "#" + digits.zfill(4)


def _bill_exists(db: Session, bill_number: str) -> bool:
    return (
        db.query(CatererSale.id).filter(CatererSale.bill_number == bill_number).first()
        is not None
    )


def next_bill_number(db: Session) -> str:
    last = db.query(CatererSale.bill_number).order_by(CatererSale.id.desc()).first()
    number = 1
    if last:
        digits = re.sub(r"\D", "", last[0])
        number = int(digits) + 1 if digits else 1

    candidate = "#" + str(number).zfill(4)
    while _bill_exists(db, candidate):
        number += 1
        candidate = "#" + str(number).zfill(4)
    return candidate


def resolve_bill_number(db: Session, requested: str | None) -> str:
    normalized = normalize_bill_number(requested)
    if normalized and not _bill_exists(db, normalized):
        return normalized
    generated = next_bill_number(db)
    if normalized:
        logger.info("Bill number %s already used, assigning %s", normalized, generated)
    return generated


# ─── Payments ─────────────────────────────────────────────────────────────────


def normalize_payment_method(raw: str | None) -> PaymentMethod:
    return PAYMENT_METHOD_MAP.get((raw or "").strip().lower(), PaymentMethod.CASH)


def _payment_option(raw: str | None) -> PaymentOption:
    try:
        return PaymentOption((raw or "").strip().lower())
    except ValueError:
        return PaymentOption.LATER


def derive_payment_amount(
    option: str | None, grand_total: Decimal, amount: Decimal | None = None
) -> Decimal:
    """Amount collected at billing time for the chosen payment option."""
    selected = _payment_option(option)
    if selected is PaymentOption.FULL:
        return _money(grand_total)
    if selected is PaymentOption.HALF:
        return _money(grand_total / 2)
    if selected is PaymentOption.CUSTOM:
        return _money(amount) if amount and amount > 0 else ZERO
    return ZERO


def compute_payment_status(grand_total: Decimal, total_paid: Decimal) -> PaymentStatus:
    if total_paid > 0 and grand_total - total_paid <= 0:
        return PaymentStatus.PAID
    if total_paid > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


def _total_paid(db: Session, sale_id: int) -> Decimal:
    paid = (
        db.query(func.coalesce(func.sum(CatererSalePayment.payment_amount), 0))
        .filter(CatererSalePayment.sale_id == sale_id)
        .scalar()
    )
    return _money(Decimal(str(paid)))


def refresh_caterer_totals(db: Session, caterer_id: int) -> Caterer:
    """Recompute a caterer's running totals from their bills and payments."""
    caterer = db.query(Caterer).filter(Caterer.id == caterer_id).with_for_update().first()
    if caterer is None:
        raise ValueError(f"Caterer {caterer_id} not found")

    db.flush()
    sales = db.query(CatererSale).filter(CatererSale.caterer_id == caterer_id).all()
    paid_by_sale = dict(
        db.query(CatererSalePayment.sale_id, func.sum(CatererSalePayment.payment_amount))
        .join(CatererSale, CatererSale.id == CatererSalePayment.sale_id)
        .filter(CatererSale.caterer_id == caterer_id)
        .group_by(CatererSalePayment.sale_id)
        .all()
    )

    total_amount = ZERO
    balance_due = ZERO
    for sale in sales:
        grand_total = Decimal(str(sale.grand_total))
        paid = Decimal(str(paid_by_sale.get(sale.id) or 0))
        total_amount += grand_total
        balance_due += max(grand_total - paid, ZERO)

    caterer.total_orders = len(sales)
    caterer.total_amount = _money(total_amount)
    caterer.balance_due = _money(balance_due)
    caterer.last_order_date = max((s.sell_date for s in sales), default=None)
    db.flush()
    return caterer


# ─── Item canonicalization ────────────────────────────────────────────────────


def _as_component(item: SaleItemIn) -> MixComponentIn:
    budget = item.total if item.total is not None else item.quantity * item.rate
    return MixComponentIn(
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        unit=item.unit,
        rate=item.rate,
        allocated_budget=budget,
        batch=item.batch,
        expiry_date=item.expiry_date,
    )


def group_mix_items(items: list[SaleItemIn]) -> list[SaleItemIn]:
    """Attach flat mix component rows to their header row.

    Components are matched to the header carrying the same ``mix_name``,
    which must be unique among headers. A component whose header is missing
    stays a plain line.
    """
    headers = {
        item.mix_name for item in items if item.is_mix_header and item.mix_name
    }
    attached: dict[str, list[MixComponentIn]] = defaultdict(list)
    remaining: list[SaleItemIn] = []
    for item in items:
        if item.is_mix_item and not item.is_mix_header and item.mix_name in headers:
            attached[item.mix_name].append(_as_component(item))
        else:
            remaining.append(item)

    grouped: list[SaleItemIn] = []
    for item in remaining:
        if item.is_mix_header and item.mix_name in attached:
            item = item.model_copy(
                update={
                    "is_mix": True,
                    "mix_items": [*item.mix_items, *attached.pop(item.mix_name)],
                }
            )
        grouped.append(item)
    return grouped


# ─── Persistence helpers ──────────────────────────────────────────────────────


def _insert_items(db: Session, sale: CatererSale, items: list[SaleItemIn]) -> None:
    mix_id = 0
    for item in items:
        if not item.is_composite:
            amount = _money(item.quantity * item.rate)
            db.add(
                CatererSaleItem(
                    sale_id=sale.id,
                    product_id=item.product_id,
                    product_name=item.product_name or f"Product {item.product_id}",
                    quantity=item.quantity,
                    unit=item.unit or DEFAULT_UNIT,
                    rate=_money(item.rate),
                    amount=amount,
                    gst_percentage=item.gst_percentage,
                    gst_amount=_money(item.gst_amount),
                    total_amount=_money(item.total if item.total is not None else amount + item.gst_amount),
                    batch_number=item.batch,
                    expiry_date=item.expiry_date,
                    line_kind=LineKind.SIMPLE,
                )
            )
            continue

        mix_id += 1
        amount = _money(item.quantity * item.rate)
        header = CatererSaleItem(
            sale_id=sale.id,
            product_id=None,
            product_name=item.product_name or item.mix_name or f"Mix {mix_id}",
            quantity=item.quantity,
            unit=item.unit or MIX_HEADER_UNIT,
            rate=_money(item.rate),
            amount=amount,
            gst_percentage=item.gst_percentage,
            gst_amount=_money(item.gst_amount),
            total_amount=_money(item.total if item.total is not None else amount + item.gst_amount),
            batch_number=item.batch,
            expiry_date=item.expiry_date,
            line_kind=LineKind.MIX_HEADER,
            mix_id=mix_id,
            mix_item_data=[c.model_dump(mode="json") for c in item.mix_items],
        )
        db.add(header)
        db.flush()

        for component in item.mix_items:
            budget = _money(component.allocated_budget)
            db.add(
                CatererSaleItem(
                    sale_id=sale.id,
                    product_id=component.product_id,
                    product_name=component.product_name or f"Product {component.product_id}",
                    quantity=component.quantity,
                    unit=component.unit or item.unit or DEFAULT_UNIT,
                    rate=_money(component.rate),
                    amount=budget,
                    total_amount=budget,
                    batch_number=component.batch or item.batch,
                    expiry_date=component.expiry_date,
                    line_kind=LineKind.MIX_COMPONENT,
                    mix_id=mix_id,
                    parent_item_id=header.id,
                )
            )
    db.flush()


def _charge_type(charge: OtherChargeIn) -> ChargeType:
    kind = charge.type.strip().lower()
    if kind == "discount":
        if (charge.value_type or "").strip().lower() == "percentage":
            return ChargeType.PERCENTAGE
        return ChargeType.FIXED
    try:
        return ChargeType(kind)
    except ValueError:
        return ChargeType.FIXED


def _insert_other_charges(
    db: Session, sale: CatererSale, charges: list[OtherChargeIn]
) -> None:
    for charge in charges:
        if not charge.name.strip():
            continue
        db.add(
            CatererSaleOtherCharge(
                sale_id=sale.id,
                charge_name=charge.name.strip(),
                charge_amount=_money(charge.value),
                charge_type=_charge_type(charge),
            )
        )


# ─── Orchestrator ─────────────────────────────────────────────────────────────


def _validate_payload(payload: CatererSaleCreate) -> list[SaleItemIn]:
    missing = [
        name
        for name in ("caterer_id", "sell_date", "grand_total")
        if getattr(payload, name) is None
    ]
    if missing:
        raise MissingRequiredFieldsError(
            f"Missing required fields: {', '.join(missing)}", fields=missing
        )
    if not payload.items:
        raise InvalidItemsError("At least one item is required")

    header_names = [
        item.mix_name for item in payload.items if item.is_mix_header and item.mix_name
    ]
    duplicates = sorted({name for name in header_names if header_names.count(name) > 1})
    if duplicates:
        raise InvalidItemsError(
            f"Mix name used by more than one mix: {', '.join(duplicates)}"
        )

    items = group_mix_items(payload.items)
    for item in items:
        if item.is_composite and not item.mix_items:
            raise InvalidItemsError(
                f"Mix item {item.product_name or item.mix_name or '?'} has no components"
            )
    return items


def _write_sale(
    db: Session, payload: CatererSaleCreate, items: list[SaleItemIn]
) -> tuple[CatererSale, Decimal]:
    bill_number = resolve_bill_number(db, payload.bill_number)
    grand_total = _money(payload.grand_total)
    paid_now = derive_payment_amount(
        payload.payment_option, grand_total, payload.payment_amount
    )

    # ── Header ────────────────────────────────────────────────────────────
    sale = CatererSale(
        caterer_id=payload.caterer_id,
        bill_number=bill_number,
        sell_date=payload.sell_date,
        subtotal=_money(payload.subtotal),
        total_gst=_money(payload.total_gst),
        items_total=_money(payload.items_total),
        other_charges_total=_money(payload.other_charges_total),
        grand_total=grand_total,
        payment_status=PaymentStatus.PENDING,
        notes=payload.notes,
    )
    db.add(sale)
    db.flush()

    # ── Lines, charges, payment ───────────────────────────────────────────
    _insert_items(db, sale, items)
    _insert_other_charges(db, sale, payload.other_charges)
    db.add(
        CatererSalePayment(
            sale_id=sale.id,
            payment_date=payload.payment_date or payload.sell_date,
            payment_method=normalize_payment_method(payload.payment_method),
            payment_option=_payment_option(payload.payment_option),
            payment_amount=paid_now,
        )
    )
    db.flush()

    total_paid = _total_paid(db, sale.id)
    sale.payment_status = compute_payment_status(grand_total, total_paid)

    # ── Inventory ─────────────────────────────────────────────────────────
    ensure_sufficient_inventory(db, build_product_demand(items))
    deduct_products_from_inventory(db, sale.id, items, bill_number)
    verify_deduction_consistency(db, sale.id, items)

    refresh_caterer_totals(db, sale.caterer_id)
    return sale, total_paid


def create_caterer_sale(db: Session, payload: CatererSaleCreate) -> CatererSaleResult:
    """Record a caterer bill and deduct its stock in one transaction.

    Either the bill, its lines, charges, payment, inventory deductions and
    history are all committed, or nothing is. Failures are re-raised as
    ``CatererSaleError`` subclasses carrying an ``ErrorCode``.
    """
    items = _validate_payload(payload)

    try:
        db.connection()
    except OperationalError as exc:
        raise DatabaseUnavailableError("Database connection is not available") from exc

    if db.query(Caterer.id).filter(Caterer.id == payload.caterer_id).first() is None:
        raise MissingRequiredFieldsError(
            f"Caterer {payload.caterer_id} does not exist", fields=["caterer_id"]
        )

    try:
        sale, total_paid = _write_sale(db, payload, items)
        db.commit()
    except CatererSaleError as exc:
        db.rollback()
        logger.warning("Caterer sale rolled back [%s]: %s", exc.code.value, exc.message)
        raise
    except IntegrityError as exc:
        db.rollback()
        if "bill_number" in str(exc.orig):
            logger.warning("Caterer sale rolled back: duplicate bill number")
            raise DuplicateBillNumberError(
                "Bill number already exists, please retry"
            ) from exc
        logger.exception("Caterer sale rolled back on integrity error")
        raise CatererSaleError(f"Failed to create caterer sale: {exc.orig}") from exc
    except Exception as exc:
        db.rollback()
        logger.exception("Caterer sale rolled back on unexpected error")
        raise CatererSaleError(f"Failed to create caterer sale: {exc}") from exc

    db.refresh(sale)
    created_at = sale.created_at or datetime.now(timezone.utc)
    logger.info(
        "Caterer sale %s committed (bill %s, status %s)",
        sale.id,
        sale.bill_number,
        sale.payment_status.value,
    )
    return CatererSaleResult(
        sale_id=sale.id,
        bill_number=sale.bill_number,
        payment_status=sale.payment_status.value,
        total_paid=total_paid,
        grand_total=sale.grand_total,
        created_at=created_at.isoformat(),
    )


# ─── Follow-up payments ───────────────────────────────────────────────────────


def record_sale_payment(
    db: Session,
    sale_id: int,
    amount: Decimal,
    payment_method: str | None = "cash",
    reference_number: str | None = None,
    notes: str | None = None,
    payment_date: date | None = None,
) -> PaymentRecordedOut:
    """Collect a payment against an existing bill and update its status."""
    if amount <= 0:
        raise ValueError("Payment amount must be greater than zero")

    sale = db.query(CatererSale).filter(CatererSale.id == sale_id).with_for_update().first()
    if not sale:
        raise ValueError("Caterer sale not found")

    grand_total = Decimal(str(sale.grand_total))
    paid_before = _total_paid(db, sale.id)
    pending = grand_total - paid_before
    if pending <= PAYMENT_TOLERANCE:
        raise ValueError(f"Bill {sale.bill_number} is already fully paid")

    amount = _money(amount)
    if amount > pending:
        raise ValueError(
            f"Payment amount {amount} exceeds pending amount {_money(pending)}"
        )

    payment = CatererSalePayment(
        sale_id=sale.id,
        payment_date=payment_date or date.today(),
        payment_method=normalize_payment_method(payment_method),
        payment_option=PaymentOption.CUSTOM,
        payment_amount=amount,
        reference_number=reference_number,
        notes=notes,
    )
    db.add(payment)
    db.flush()

    total_paid = paid_before + amount
    remaining = grand_total - total_paid
    sale.payment_status = (
        PaymentStatus.PAID if remaining <= PAYMENT_TOLERANCE else PaymentStatus.PARTIAL
    )
    refresh_caterer_totals(db, sale.caterer_id)
    db.commit()

    logger.info(
        "Payment of %s recorded on bill %s, status %s",
        amount,
        sale.bill_number,
        sale.payment_status.value,
    )
    return PaymentRecordedOut(
        payment_id=payment.id,
        sale_id=sale.id,
        bill_number=sale.bill_number,
        amount=amount,
        total_paid=total_paid,
        remaining=max(_money(remaining), ZERO),
        payment_status=sale.payment_status.value,
    )


# ─── Reads ────────────────────────────────────────────────────────────────────


def _summary_fields(sale: CatererSale, items_count: int, total_paid: Decimal) -> dict:
    return {
        "id": sale.id,
        "caterer_id": sale.caterer_id,
        "bill_number": sale.bill_number,
        "sell_date": sale.sell_date,
        "grand_total": sale.grand_total,
        "payment_status": sale.payment_status.value,
        "items_count": items_count,
        "total_paid": _money(Decimal(str(total_paid or 0))),
        "created_at": sale.created_at,
    }


def list_caterer_sales(
    db: Session, caterer_id: int | None = None
) -> list[CatererSaleSummaryOut]:
    """Bills newest first, optionally for one caterer."""
    paid = (
        db.query(
            CatererSalePayment.sale_id.label("sale_id"),
            func.sum(CatererSalePayment.payment_amount).label("total_paid"),
        )
        .group_by(CatererSalePayment.sale_id)
        .subquery()
    )
    counts = (
        db.query(
            CatererSaleItem.sale_id.label("sale_id"),
            func.count(CatererSaleItem.id).label("items_count"),
        )
        .filter(CatererSaleItem.parent_item_id.is_(None))
        .group_by(CatererSaleItem.sale_id)
        .subquery()
    )
    query = (
        db.query(CatererSale, paid.c.total_paid, counts.c.items_count)
        .outerjoin(paid, paid.c.sale_id == CatererSale.id)
        .outerjoin(counts, counts.c.sale_id == CatererSale.id)
    )
    if caterer_id is not None:
        query = query.filter(CatererSale.caterer_id == caterer_id)
    rows = query.order_by(
        CatererSale.sell_date.desc(), CatererSale.created_at.desc(), CatererSale.id.desc()
    ).all()

    return [
        CatererSaleSummaryOut(**_summary_fields(sale, items_count or 0, total_paid))
        for sale, total_paid, items_count in rows
    ]


def _item_out(item: CatererSaleItem) -> SaleItemOut:
    return SaleItemOut(
        id=item.id,
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        unit=item.unit,
        rate=item.rate,
        amount=item.amount,
        gst_percentage=item.gst_percentage,
        gst_amount=item.gst_amount,
        total_amount=item.total_amount,
        batch_number=item.batch_number,
        expiry_date=item.expiry_date,
        line_kind=item.line_kind.value,
        mix_id=item.mix_id,
        is_mix=item.is_mix,
    )


def build_item_tree(items: list[CatererSaleItem]) -> list[SaleItemOut]:
    """Nest mix components under their header, keeping row order."""
    nodes = {item.id: _item_out(item) for item in items}
    roots: list[SaleItemOut] = []
    for item in items:
        parent = nodes.get(item.parent_item_id) if item.parent_item_id else None
        if parent is not None:
            parent.mix_items.append(nodes[item.id])
        else:
            roots.append(nodes[item.id])
    return roots


def get_caterer_sale_details(db: Session, sale_id: int) -> CatererSaleDetailOut | None:
    sale = db.query(CatererSale).filter(CatererSale.id == sale_id).first()
    if not sale:
        return None

    items = build_item_tree(list(sale.items))
    payments = sorted(sale.payments, key=lambda p: (p.payment_date, p.id), reverse=True)
    total_paid = sum((Decimal(str(p.payment_amount)) for p in payments), ZERO)

    return CatererSaleDetailOut(
        **_summary_fields(sale, len(items), total_paid),
        subtotal=sale.subtotal,
        total_gst=sale.total_gst,
        items_total=sale.items_total,
        other_charges_total=sale.other_charges_total,
        items=items,
        payments=[
            PaymentOut(
                id=p.id,
                payment_date=p.payment_date,
                payment_method=p.payment_method.value,
                payment_option=p.payment_option.value,
                payment_amount=p.payment_amount,
                reference_number=p.reference_number,
                notes=p.notes,
            )
            for p in payments
        ],
        other_charges=[
            OtherChargeOut(
                id=c.id,
                charge_name=c.charge_name,
                charge_amount=c.charge_amount,
                charge_type=c.charge_type.value,
            )
            for c in sorted(sale.other_charges, key=lambda c: c.id)
        ],
    )
