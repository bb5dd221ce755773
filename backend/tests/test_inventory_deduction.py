"""Tests for batch-level inventory deduction."""
from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from backend.app.models.inventory import (
    BatchStatus,
    HistoryAction,
    InventoryBatch,
    InventoryHistory,
    InventorySummary,
    InventoryUnit,
    Product,
    ReferenceType,
)
from backend.app.schemas.caterer_sales import SaleItemIn
from backend.app.services import inventory as inventory_service
from backend.app.services.errors import (
    ErrorCode,
    InsufficientInventoryError,
    InventoryDeductionError,
    ProductNotFoundError,
)
from backend.app.services.inventory import (
    deduct_products_from_inventory,
    get_inventory_deduction_history,
    get_product_inventory_status,
    normalize_unit,
)
from backend.tests.conftest import add_batch


def _items(*rows: dict) -> list[SaleItemIn]:
    return [SaleItemIn.model_validate(row) for row in rows]


def _batch_qty(db: Session, batch_id: int) -> Decimal | None:
    return db.query(InventoryBatch.quantity).filter(InventoryBatch.id == batch_id).scalar()


def _history(db: Session, product_id: int) -> list[InventoryHistory]:
    return (
        db.query(InventoryHistory)
        .filter(InventoryHistory.product_id == product_id)
        .order_by(InventoryHistory.id)
        .all()
    )


# ── Single product ───────────────────────────────────────────────────────────


class TestRegularDeduction:

    def test_labelled_batch_is_decremented(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")

        records = deduct_products_from_inventory(
            db, 7, _items({"product_id": rice.id, "quantity": 4, "batch": "B1", "rate": 55})
        )
        db.commit()

        assert len(records) == 1
        assert records[0].remaining_quantity == Decimal("6")
        assert _batch_qty(db, b1.id) == Decimal("6")

        rows = _history(db, rice.id)
        assert len(rows) == 1
        assert rows[0].quantity == Decimal("-4")
        assert rows[0].value == Decimal("-200")
        assert rows[0].cost_per_unit == Decimal("50")
        assert rows[0].action == HistoryAction.DEDUCTED
        assert rows[0].reference_type == ReferenceType.CATERER_SALE
        assert rows[0].reference_id == 7
        assert rows[0].batch == "B1"
        assert rows[0].notes == "Caterer sale deduction - Sale ID: 7, Item: Basmati Rice, Sale Rate: 55"

    def test_batch_value_follows_quantity(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": "2.5", "batch_number": "B1"})
        )
        db.commit()

        batch = db.query(InventoryBatch).filter(InventoryBatch.id == b1.id).one()
        assert batch.quantity == Decimal("7.5")
        assert batch.value == Decimal("375")

    def test_conservation(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "12.75", "40")
        before = _batch_qty(db, b1.id)

        deduct_products_from_inventory(
            db, 3, _items({"product_id": rice.id, "quantity": "3.125", "batch": "B1"})
        )
        db.commit()

        after = _batch_qty(db, b1.id)
        assert abs((before - after) - Decimal("3.125")) <= Decimal("0.001")
        rows = _history(db, rice.id)
        assert len(rows) == 1
        assert rows[0].quantity == Decimal("-3.125")

    def test_batch_taken_from_batches_list(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "OLD", "10", "50", age=0)
        newer = add_batch(db, rice, "NEW", "10", "55", age=1)

        deduct_products_from_inventory(
            db,
            1,
            _items({"product_id": rice.id, "quantity": 1, "batches": [{"batch": "NEW"}]}),
        )
        db.commit()

        assert _batch_qty(db, newer.id) == Decimal("9")

    def test_scenario_b_oldest_batch_without_spill_over(
        self, db: Session, rice: Product
    ) -> None:
        b1 = add_batch(db, rice, "B1", "2", "50", age=0)
        b2 = add_batch(db, rice, "B2", "10", "60", age=1)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            deduct_products_from_inventory(
                db, 9, _items({"product_id": rice.id, "quantity": 5})
            )
        db.rollback()

        err = exc_info.value
        assert err.code == ErrorCode.INSUFFICIENT_INVENTORY
        assert err.context["available"] == Decimal("2")
        assert err.context["required"] == Decimal("5")
        assert _batch_qty(db, b1.id) == Decimal("2")
        assert _batch_qty(db, b2.id) == Decimal("10")
        assert _history(db, rice.id) == []

    def test_fifo_when_no_batch_given(self, db: Session, rice: Product) -> None:
        older = add_batch(db, rice, "B1", "10", "50", age=0)
        newer = add_batch(db, rice, "B2", "10", "60", age=1)

        deduct_products_from_inventory(db, 1, _items({"product_id": rice.id, "quantity": 3}))
        db.commit()

        assert _batch_qty(db, older.id) == Decimal("7")
        assert _batch_qty(db, newer.id) == Decimal("10")

    def test_unknown_label_falls_back_to_fifo(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 2, "batch": "MISSING"})
        )
        db.commit()

        assert _batch_qty(db, b1.id) == Decimal("8")
        assert _history(db, rice.id)[0].batch == "B1"

    def test_empty_labelled_batch_falls_back(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "EMPTY", "0", "50", age=0)
        b2 = add_batch(db, rice, "B2", "10", "50", age=1)

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 1, "batch": "EMPTY"})
        )
        db.commit()

        assert _batch_qty(db, b2.id) == Decimal("9")

    def test_no_batches_raises_product_not_found(self, db: Session, rice: Product) -> None:
        with pytest.raises(ProductNotFoundError) as exc_info:
            deduct_products_from_inventory(
                db, 1, _items({"product_id": rice.id, "quantity": 1, "batch": "B1"})
            )
        assert exc_info.value.code == ErrorCode.PRODUCT_NOT_FOUND
        assert exc_info.value.context["batch"] == "B1"

    def test_unlabelled_batch_logged_as_default(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, None, "10", "50")

        deduct_products_from_inventory(db, 1, _items({"product_id": rice.id, "quantity": 1}))
        db.commit()

        assert _history(db, rice.id)[0].batch == "default"

    def test_read_back_mismatch_only_warns(
        self,
        db: Session,
        rice: Product,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")
        monkeypatch.setattr(
            inventory_service, "read_batch_quantity", lambda db, batch_id: Decimal("9")
        )

        with caplog.at_level(logging.WARNING, logger=inventory_service.__name__):
            records = deduct_products_from_inventory(
                db, 3, _items({"product_id": rice.id, "quantity": 4, "batch": "B1"})
            )
        db.commit()

        assert len(records) == 1
        assert records[0].remaining_quantity == Decimal("6")
        assert _batch_qty(db, b1.id) == Decimal("6")
        assert len(_history(db, rice.id)) == 1
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("reads back" in r.getMessage() for r in warnings)


# ── Exhaustion & aggregates ──────────────────────────────────────────────────


class TestExhaustionAndSummary:

    def test_exact_exhaustion_deletes_batch(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")

        records = deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 10, "batch": "B1"})
        )
        db.commit()

        assert records[0].batch_deleted is True
        assert db.query(InventoryBatch).filter(InventoryBatch.id == b1.id).first() is None

    def test_residue_within_epsilon_deletes_batch(self, db: Session, rice: Product) -> None:
        b1 = add_batch(db, rice, "B1", "10", "50")

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": "9.9995", "batch": "B1"})
        )
        db.commit()

        assert db.query(InventoryBatch).filter(InventoryBatch.id == b1.id).first() is None

    def test_summary_is_weighted_over_live_batches(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "B1", "10", "50", age=0)
        add_batch(db, rice, "B2", "5", "60", age=1)
        add_batch(db, rice, "B3", "3", "100", age=2, status=BatchStatus.MERGED)

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 4, "batch": "B1"})
        )
        db.commit()

        summary = db.query(InventorySummary).filter(InventorySummary.product_id == rice.id).one()
        assert summary.total_quantity == Decimal("11")
        assert summary.total_value == Decimal("600")
        assert summary.average_cost_per_unit == Decimal("54.5455")

    def test_summary_zeroed_when_stock_runs_out(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "B1", "4", "50")

        deduct_products_from_inventory(db, 1, _items({"product_id": rice.id, "quantity": 4}))
        db.commit()

        summary = db.query(InventorySummary).filter(InventorySummary.product_id == rice.id).one()
        assert summary.total_quantity == Decimal("0")
        assert summary.total_value == Decimal("0")
        assert summary.average_cost_per_unit == Decimal("0")


# ── Units ────────────────────────────────────────────────────────────────────


class TestUnits:

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("kg", InventoryUnit.KG),
            ("Bags", InventoryUnit.PACK),
            ("pcs", InventoryUnit.PACK),
            ("each", InventoryUnit.PACK),
            (" litre ", InventoryUnit.LITRE),
            ("crate", None),
            (None, None),
        ],
    )
    def test_normalize_unit(self, raw: str | None, expected: InventoryUnit | None) -> None:
        assert normalize_unit(raw) == expected

    def test_synonym_recorded_in_history(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "B1", "10", "50")

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 1, "unit": "bags"})
        )
        db.commit()

        assert _history(db, rice.id)[0].unit == InventoryUnit.PACK

    def test_unknown_unit_uses_batch_unit(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "B1", "10", "50", unit=InventoryUnit.BOX)

        deduct_products_from_inventory(
            db, 1, _items({"product_id": rice.id, "quantity": 1, "unit": "crate"})
        )
        db.commit()

        assert _history(db, rice.id)[0].unit == InventoryUnit.BOX


# ── Mix items ────────────────────────────────────────────────────────────────


class TestMixDeduction:

    def test_scenario_c_components_deducted_individually(
        self, db: Session, rice: Product, chilli: Product
    ) -> None:
        add_batch(db, rice, "R1", "10", "60")
        add_batch(db, chilli, "C1", "10", "200")

        records = deduct_products_from_inventory(
            db,
            42,
            _items(
                {
                    "product_id": "mix-1",
                    "product_name": "Mix-A",
                    "quantity": 5,
                    "isMix": True,
                    "mixItems": [
                        {"id": rice.id, "name": "Basmati Rice", "quantity": 2},
                        {"id": chilli.id, "name": "Chilli Powder", "quantity": 3},
                    ],
                }
            ),
        )
        db.commit()

        assert len(records) == 2
        rows = get_inventory_deduction_history(db, 42)
        assert len(rows) == 2
        assert {r.product_id for r in rows} == {rice.id, chilli.id}
        assert all("Sale ID: 42," in r.notes for r in rows)

    def test_component_inherits_mix_batch(self, db: Session, rice: Product) -> None:
        older = add_batch(db, rice, "OLD", "10", "50", age=0)
        labelled = add_batch(db, rice, "M1", "10", "55", age=1)

        deduct_products_from_inventory(
            db,
            1,
            _items(
                {
                    "product_name": "Biryani Mix",
                    "quantity": 1,
                    "is_mix": True,
                    "batch": "M1",
                    "mix_items": [{"product_id": rice.id, "quantity": 2}],
                }
            ),
        )
        db.commit()

        assert _batch_qty(db, older.id) == Decimal("10")
        assert _batch_qty(db, labelled.id) == Decimal("8")

    def test_component_label_wins_over_mix_label(self, db: Session, rice: Product) -> None:
        own = add_batch(db, rice, "R9", "10", "50", age=0)
        add_batch(db, rice, "M1", "10", "55", age=1)

        deduct_products_from_inventory(
            db,
            1,
            _items(
                {
                    "quantity": 1,
                    "isMix": True,
                    "batch": "M1",
                    "mixItems": [{"product_id": rice.id, "quantity": 2, "batch": "R9"}],
                }
            ),
        )
        db.commit()

        assert _batch_qty(db, own.id) == Decimal("8")

    def test_invalid_component_is_skipped(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "R1", "10", "60")

        records = deduct_products_from_inventory(
            db,
            1,
            _items(
                {
                    "quantity": 1,
                    "isMix": True,
                    "mixItems": [
                        {"name": "Loose spice", "quantity": 1},
                        {"id": rice.id, "quantity": 0},
                        {"id": rice.id, "quantity": 2},
                    ],
                }
            ),
        )

        assert len(records) == 1
        assert records[0].quantity_deducted == Decimal("2")

    def test_mix_with_zero_quantity_fails(self, db: Session, rice: Product) -> None:
        with pytest.raises(InventoryDeductionError):
            deduct_products_from_inventory(
                db,
                1,
                _items(
                    {
                        "quantity": 0,
                        "isMix": True,
                        "mixItems": [{"id": rice.id, "quantity": 2}],
                    }
                ),
            )


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidation:

    def test_empty_item_list(self, db: Session) -> None:
        with pytest.raises(InventoryDeductionError) as exc_info:
            deduct_products_from_inventory(db, 1, [])
        assert exc_info.value.code == ErrorCode.INVENTORY_DEDUCTION_FAILED

    def test_top_level_item_without_product(self, db: Session) -> None:
        with pytest.raises(InventoryDeductionError):
            deduct_products_from_inventory(
                db, 1, _items({"product_name": "Loose item", "quantity": 1})
            )

    def test_top_level_item_with_zero_quantity(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "R1", "10", "60")
        with pytest.raises(InventoryDeductionError):
            deduct_products_from_inventory(
                db, 1, _items({"product_id": rice.id, "quantity": 0})
            )

    def test_failure_midway_leaves_nothing_after_rollback(
        self, db: Session, rice: Product, chilli: Product
    ) -> None:
        r1 = add_batch(db, rice, "R1", "10", "60")
        add_batch(db, chilli, "C1", "1", "200")

        with pytest.raises(InsufficientInventoryError):
            deduct_products_from_inventory(
                db,
                1,
                _items(
                    {"product_id": rice.id, "quantity": 2},
                    {"product_id": chilli.id, "quantity": 5},
                ),
            )
        db.rollback()

        assert _batch_qty(db, r1.id) == Decimal("10")
        assert db.query(InventoryHistory).count() == 0


# ── Read helpers ─────────────────────────────────────────────────────────────


class TestReadHelpers:

    def test_product_status_lists_stocked_batches_oldest_first(
        self, db: Session, rice: Product
    ) -> None:
        add_batch(db, rice, "B2", "5", "60", age=2)
        add_batch(db, rice, "EMPTY", "0", "60", age=1)
        add_batch(db, rice, "B1", "5", "50", age=0)

        batches = get_product_inventory_status(db, rice.id)
        assert [b.batch for b in batches] == ["B1", "B2"]

    def test_history_is_scoped_to_sale(self, db: Session, rice: Product) -> None:
        add_batch(db, rice, "B1", "10", "50")

        deduct_products_from_inventory(db, 4, _items({"product_id": rice.id, "quantity": 1}))
        deduct_products_from_inventory(db, 42, _items({"product_id": rice.id, "quantity": 1}))
        db.commit()

        assert len(get_inventory_deduction_history(db, 4)) == 1
        assert len(get_inventory_deduction_history(db, 42)) == 1
