from sqlalchemy import text

from stockledger.core.errors import StockLedgerError
from stockledger.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    stock_ledger_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockledger.core.config import settings
from stockledger.db.session import engine
from stockledger.routers import inventory, reconciliations, sales, stock

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Daily stock ledger API.\n\n"
        "Mutating endpoints expect the authenticated user id in the `X-User-Id` header, "
        "set by the upstream auth gateway.\n"
        "Quick test flow:\n"
        "1. `POST /inventory/inward` to receive stock.\n"
        "2. `POST /sales` to sell it.\n"
        "3. `GET /stock/daily/{product_id}/{date}` to read the day's ledger record.\n"
        "4. `POST /reconciliations`, count items, then `POST /reconciliations/{id}/finalize`."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "sales", "description": "Sales capture with atomic stock decrement, and sales history."},
        {"name": "inventory", "description": "Stock inward events, inward history and low-stock alerts."},
        {"name": "stock", "description": "Daily stock ledger records, summaries and consistency reports."},
        {"name": "reconciliations", "description": "Physical-count reconciliation workflow."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StockLedgerError, stock_ledger_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local tooling runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sales.router)
app.include_router(inventory.router)
app.include_router(stock.router)
app.include_router(reconciliations.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
