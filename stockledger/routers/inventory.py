from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.config import settings
from stockledger.core.deps import get_current_actor, get_db
from stockledger.schemas.common import paginate
from stockledger.schemas.inventory import (
    InwardCommand,
    InwardListOut,
    InwardOut,
    InwardRecordOut,
    LowStockListOut,
    LowStockProductOut,
)
from stockledger.services.inward_service import list_inwards, record_inward
from stockledger.services.product_registry import list_low_stock

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post(
    "/inward",
    response_model=InwardOut,
    status_code=201,
    summary="Record stock received for a product",
    responses=error_responses(400, 401, 404, 409, 422, 500, 503),
)
def create_inward(
    payload: InwardCommand,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return record_inward(db, payload, actor_id=actor_id)


@router.get(
    "/inward",
    response_model=InwardListOut,
    summary="List stock inward history",
    responses=error_responses(422, 500),
)
def get_inwards(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    product_id: str | None = Query(default=None, description="Optional product filter"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    rows, total = list_inwards(
        db,
        start_date=start_date,
        end_date=end_date,
        product_id=product_id,
        limit=limit,
        offset=offset,
    )
    items = [InwardRecordOut.model_validate(row) for row in rows]
    return InwardListOut(items=items, pagination=paginate(total, limit, offset, len(items)))


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="List active products at or below their reorder level",
    responses=error_responses(422, 500),
)
def get_low_stock(
    threshold: int | None = Query(
        default=None,
        ge=0,
        description="Fallback threshold for products without a reorder level. Defaults to the configured value.",
    ),
    category_id: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    default_threshold = threshold if threshold is not None else settings.low_stock_default_threshold
    rows, total = list_low_stock(
        db,
        default_threshold=default_threshold,
        category_id=category_id,
        limit=limit,
        offset=offset,
    )
    items = [
        LowStockProductOut(
            product_id=product.id,
            name=product.name,
            category_id=product.category_id,
            stock_quantity=product.stock_quantity,
            min_stock_level=product.min_stock_level,
            threshold=level,
        )
        for product, level in rows
    ]
    return LowStockListOut(items=items, pagination=paginate(total, limit, offset, len(items)))
