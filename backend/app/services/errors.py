"""Typed errors raised by the caterer billing and inventory services.

Every error subclasses ``ValueError`` so callers that only care about
"the request could not be honoured" can keep catching ``ValueError``; callers
that need the machine-readable reason read ``error.code``.
"""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any


class ErrorCode(str, enum.Enum):
    DB_POOL_NOT_FOUND = "DB_POOL_NOT_FOUND"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    INVALID_ITEMS = "INVALID_ITEMS"
    INVENTORY_DEDUCTION_FAILED = "INVENTORY_DEDUCTION_FAILED"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    DUPLICATE_BILL_NUMBER = "DUPLICATE_BILL_NUMBER"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class CatererSaleError(ValueError):
    code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)


# ─── Input validation (raised before any statement runs) ─────────────────────


class MissingRequiredFieldsError(CatererSaleError):
    code = ErrorCode.MISSING_REQUIRED_FIELDS


class InvalidItemsError(CatererSaleError):
    code = ErrorCode.INVALID_ITEMS


# ─── Infrastructure ──────────────────────────────────────────────────────────


class DatabaseUnavailableError(CatererSaleError):
    code = ErrorCode.DB_POOL_NOT_FOUND


# ─── Domain errors (raised inside the transaction) ───────────────────────────


class InventoryDeductionError(CatererSaleError):
    code = ErrorCode.INVENTORY_DEDUCTION_FAILED


class ConsistencyCheckError(InventoryDeductionError):
    def __init__(self, sale_id: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Consistency check failed for sale {sale_id}: "
            f"expected {expected} inventory deductions, found {actual}",
            sale_id=sale_id,
            expected=expected,
            actual=actual,
        )


class ProductNotFoundError(CatererSaleError):
    code = ErrorCode.PRODUCT_NOT_FOUND


class InsufficientInventoryError(CatererSaleError):
    code = ErrorCode.INSUFFICIENT_INVENTORY

    def __init__(
        self,
        message: str,
        *,
        product_name: str,
        available: Decimal,
        required: Decimal,
        **context: Any,
    ) -> None:
        super().__init__(
            message,
            product_name=product_name,
            available=available,
            required=required,
            **context,
        )


class DuplicateBillNumberError(CatererSaleError):
    code = ErrorCode.DUPLICATE_BILL_NUMBER
