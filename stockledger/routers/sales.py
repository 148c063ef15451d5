from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_current_actor, get_db
from stockledger.schemas.common import paginate
from stockledger.schemas.sales import SaleCommand, SaleItemOut, SaleListOut, SaleOut, SaleResultOut
from stockledger.services.sale_service import apply_sale, list_sales

router = APIRouter(prefix="/sales", tags=["sales"])


@router.post(
    "",
    response_model=SaleResultOut,
    status_code=201,
    summary="Record a sale and decrement stock",
    responses=error_responses(400, 401, 404, 409, 422, 500, 503),
)
def create_sale(
    payload: SaleCommand,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return apply_sale(db, payload, actor_id=actor_id)


@router.get(
    "",
    response_model=SaleListOut,
    summary="List sales",
    responses=error_responses(422, 500),
)
def get_sales(
    start_date: date | None = Query(default=None, description="Inclusive lower bound on sale date"),
    end_date: date | None = Query(default=None, description="Inclusive upper bound on sale date"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    sales, items_by_sale, total = list_sales(
        db,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    items = [
        SaleOut(
            id=sale.id,
            invoice_no=sale.invoice_no,
            sale_date=sale.sale_date,
            biller_id=sale.biller_id,
            payment_method=sale.payment_method,
            customer_name=sale.customer_name,
            subtotal=float(sale.subtotal),
            tax_amount=float(sale.tax_amount),
            discount_amount=float(sale.discount_amount),
            total_amount=float(sale.total_amount),
            created_at=sale.created_at,
            items=[SaleItemOut.model_validate(item) for item in items_by_sale[sale.id]],
        )
        for sale in sales
    ]
    return SaleListOut(
        pagination=paginate(total, limit, offset, len(items)),
        start_date=start_date,
        end_date=end_date,
        items=items,
    )
