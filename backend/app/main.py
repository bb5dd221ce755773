import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api.errors import caterer_sale_error_handler
from backend.app.api.v1.api import api_router
from backend.app.core.config import settings
from backend.app.services.errors import CatererSaleError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Caterer Billing & Inventory")

# ─── CORS ─────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Accept"],
)

app.add_exception_handler(CatererSaleError, caterer_sale_error_handler)

app.include_router(api_router)
