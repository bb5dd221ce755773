from fastapi import Request, status
from fastapi.responses import JSONResponse

from backend.app.services.errors import CatererSaleError, ErrorCode

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.MISSING_REQUIRED_FIELDS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_ITEMS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVENTORY_DEDUCTION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.PRODUCT_NOT_FOUND: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INSUFFICIENT_INVENTORY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.DUPLICATE_BILL_NUMBER: status.HTTP_409_CONFLICT,
    ErrorCode.DB_POOL_NOT_FOUND: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.UNKNOWN_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def caterer_sale_error_handler(request: Request, exc: CatererSaleError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"success": False, "error": exc.code.value, "message": exc.message},
    )
