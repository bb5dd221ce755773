"""Shared test fixtures.

Every test gets its own in-memory SQLite database, so services can commit
and roll back for real without tests leaking into each other.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.core.database import Base, get_db
from backend.app.main import app
from backend.app.models.caterer import Caterer
from backend.app.models.inventory import (
    BatchStatus,
    InventoryBatch,
    InventoryUnit,
    Product,
)

BASE_TIME = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)


# ─── Database ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def db(engine: Engine) -> Generator[Session, None, None]:
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture()
def client(db: Session) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the per-test session."""

    def _override_get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ─── Seed data ────────────────────────────────────────────────────────────────


def add_batch(
    db: Session,
    product: Product,
    label: str | None,
    quantity: str,
    cost: str,
    *,
    age: int = 0,
    unit: InventoryUnit = InventoryUnit.KG,
    status: BatchStatus = BatchStatus.ACTIVE,
) -> InventoryBatch:
    """Insert a batch; a larger ``age`` means it was received later."""
    qty = Decimal(quantity)
    cost_per_unit = Decimal(cost)
    batch = InventoryBatch(
        product_id=product.id,
        product_name=product.name,
        batch=label,
        quantity=qty,
        cost_per_unit=cost_per_unit,
        value=qty * cost_per_unit,
        unit=unit,
        status=status,
        created_at=BASE_TIME + timedelta(hours=age),
    )
    db.add(batch)
    db.commit()
    return batch


@pytest.fixture()
def caterer(db: Session) -> Caterer:
    c = Caterer(caterer_name="Spice Route Caterers", contact_person="Anil", phone_number="9000000001")
    db.add(c)
    db.commit()
    return c


@pytest.fixture()
def rice(db: Session) -> Product:
    p = Product(name="Basmati Rice", unit="kg")
    db.add(p)
    db.commit()
    return p


@pytest.fixture()
def chilli(db: Session) -> Product:
    p = Product(name="Chilli Powder", unit="kg")
    db.add(p)
    db.commit()
    return p


@pytest.fixture()
def turmeric(db: Session) -> Product:
    p = Product(name="Turmeric Powder", unit="kg")
    db.add(p)
    db.commit()
    return p


@pytest.fixture()
def stocked(
    db: Session, rice: Product, chilli: Product, turmeric: Product
) -> dict[str, InventoryBatch]:
    """One batch per product with plenty of stock."""
    return {
        "rice": add_batch(db, rice, "R1", "100", "60"),
        "chilli": add_batch(db, chilli, "C1", "20", "200"),
        "turmeric": add_batch(db, turmeric, "T1", "20", "150"),
    }
