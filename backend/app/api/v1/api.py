from fastapi import APIRouter

from backend.app.api.v1.endpoints import caterer_sales, inventory

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(caterer_sales.router, prefix="/caterer-sales", tags=["caterer-sales"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
