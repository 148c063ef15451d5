from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_current_actor, get_db
from stockledger.schemas.common import paginate
from stockledger.schemas.ledger import (
    ContinuityReportOut,
    DailySnapshotsOut,
    DailyStockRecordListOut,
    DailyStockRecordOut,
    DailySummaryOut,
    IntegrityReportOut,
)
from stockledger.schemas.movement import AuditLogListOut, AuditLogOut, StockMovementListOut
from stockledger.schemas.sales import AvailabilityCommand, AvailabilityOut
from stockledger.services import daily_stock_service, movement_service, sale_service

router = APIRouter(prefix="/stock", tags=["stock"])


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")


@router.get(
    "/daily/{product_id}/{stock_date}",
    response_model=DailyStockRecordOut,
    summary="Get (or open) the ledger record for a product and day",
    responses=error_responses(400, 404, 422, 500, 503),
)
def get_daily_record(
    product_id: str,
    stock_date: date,
    db: Session = Depends(get_db),
):
    record = daily_stock_service.get_or_create_daily_record(db, product_id, stock_date)
    return DailyStockRecordOut.model_validate(record)


@router.post(
    "/daily-snapshots",
    response_model=DailySnapshotsOut,
    summary="Roll every active product forward into a day",
    responses=error_responses(400, 401, 422, 500, 503),
)
def create_daily_snapshots(
    stock_date: date | None = Query(default=None, description="Defaults to today"),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return daily_stock_service.create_daily_snapshots(db, stock_date or date.today())


@router.get(
    "/ledger",
    response_model=DailyStockRecordListOut,
    summary="List ledger records in a date range",
    responses=error_responses(400, 422, 500),
)
def get_ledger(
    start_date: date = Query(...),
    end_date: date = Query(...),
    category_id: str | None = Query(default=None),
    product_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    _check_range(start_date, end_date)
    records, total = daily_stock_service.list_ledger_records(
        db,
        start_date,
        end_date,
        category_id=category_id,
        product_id=product_id,
        limit=limit,
        offset=offset,
    )
    items = [DailyStockRecordOut.model_validate(record) for record in records]
    return DailyStockRecordListOut(items=items, pagination=paginate(total, limit, offset, len(items)))


@router.get(
    "/summary",
    response_model=DailySummaryOut,
    summary="Aggregated ledger totals for a day",
    responses=error_responses(422, 500),
)
def get_summary(
    stock_date: date | None = Query(default=None, description="Defaults to today"),
    category_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return daily_stock_service.get_daily_summary(db, stock_date or date.today(), category_id=category_id)


@router.get(
    "/continuity",
    response_model=ContinuityReportOut,
    summary="Days whose opening stock does not match the previous closing stock",
    responses=error_responses(400, 422, 500),
)
def get_continuity(
    start_date: date = Query(...),
    end_date: date = Query(...),
    product_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    _check_range(start_date, end_date)
    return daily_stock_service.get_continuity_report(db, start_date, end_date, product_id=product_id)


@router.get(
    "/integrity",
    response_model=IntegrityReportOut,
    summary="Check a day's ledger records against their arithmetic and sale items",
    responses=error_responses(422, 500),
)
def get_integrity(
    stock_date: date | None = Query(default=None, description="Defaults to today"),
    db: Session = Depends(get_db),
):
    return daily_stock_service.validate_ledger_integrity(db, stock_date or date.today())


@router.post(
    "/validate-availability",
    response_model=AvailabilityOut,
    summary="Check a cart against live stock without changing it",
    responses=error_responses(400, 422, 500),
)
def check_availability(
    payload: AvailabilityCommand,
    db: Session = Depends(get_db),
):
    return sale_service.validate_availability(db, payload)


@router.get(
    "/movements/{product_id}",
    response_model=StockMovementListOut,
    summary="Sales and inwards for a product, newest first",
    responses=error_responses(400, 404, 422, 500),
)
def get_movements(
    product_id: str,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    if start_date and end_date:
        _check_range(start_date, end_date)
    items, total = movement_service.list_stock_movements(
        db,
        product_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return StockMovementListOut(
        product_id=product_id,
        items=items,
        pagination=paginate(total, limit, offset, len(items)),
    )


@router.get(
    "/audit/{product_id}",
    response_model=AuditLogListOut,
    summary="Audit trail of stock changes for a product",
    responses=error_responses(400, 404, 422, 500),
)
def get_audit_trail(
    product_id: str,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    if start_date and end_date:
        _check_range(start_date, end_date)
    rows, total = movement_service.list_stock_audit_trail(
        db,
        product_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    items = [AuditLogOut.model_validate(row) for row in rows]
    return AuditLogListOut(
        product_id=product_id,
        items=items,
        pagination=paginate(total, limit, offset, len(items)),
    )
