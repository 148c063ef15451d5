"""
Read-only per-product history: stock movements from sales and inwards, and
the audit trail written alongside every stock change.
"""

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.models.audit_log import AuditLog
from stockledger.models.inward import StockInward
from stockledger.models.sales import Sale, SaleItem
from stockledger.schemas.movement import StockMovementOut
from stockledger.services import product_registry
from stockledger.services.audit_service import PRODUCT_TARGET


def _sale_movements(db: Session, product_id: str, filters: list, fetch: int) -> tuple[list[StockMovementOut], int]:
    count_stmt = (
        select(func.count(SaleItem.id))
        .join(Sale, Sale.id == SaleItem.sale_id)
        .where(SaleItem.product_id == product_id, *filters)
    )
    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        select(SaleItem, Sale)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .where(SaleItem.product_id == product_id, *filters)
        .order_by(Sale.sale_date.desc(), Sale.created_at.desc())
        .limit(fetch)
    ).all()
    movements = [
        StockMovementOut(
            product_id=product_id,
            movement_type="out",
            movement_category="sale",
            movement_date=sale.sale_date,
            quantity=item.quantity,
            unit_amount=float(item.unit_price),
            total_amount=float(item.line_total),
            reference_type="sale",
            reference_id=sale.id,
            reference_number=sale.invoice_no,
            created_by=sale.biller_id,
            created_at=sale.created_at,
        )
        for item, sale in rows
    ]
    return movements, total


def _inward_movements(db: Session, product_id: str, filters: list, fetch: int) -> tuple[list[StockMovementOut], int]:
    total = int(
        db.execute(
            select(func.count(StockInward.id)).where(StockInward.product_id == product_id, *filters)
        ).scalar_one()
    )
    rows = db.execute(
        select(StockInward)
        .where(StockInward.product_id == product_id, *filters)
        .order_by(StockInward.inward_date.desc(), StockInward.created_at.desc())
        .limit(fetch)
    ).scalars().all()
    movements = [
        StockMovementOut(
            product_id=product_id,
            movement_type="in",
            movement_category="stock_inward",
            movement_date=inward.inward_date,
            quantity=inward.quantity,
            unit_amount=float(inward.cost_per_unit),
            total_amount=float(inward.total_cost),
            reference_type="stock_inward",
            reference_id=inward.id,
            reference_number=inward.invoice_number,
            created_by=inward.created_by,
            created_at=inward.created_at,
        )
        for inward in rows
    ]
    return movements, total


def list_stock_movements(
    db: Session,
    product_id: str,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockMovementOut], int]:
    """Sales and inwards for one product, newest day first."""
    product_registry.get_product(db, product_id)

    sale_filters = []
    inward_filters = []
    if start_date:
        sale_filters.append(Sale.sale_date >= start_date)
        inward_filters.append(StockInward.inward_date >= start_date)
    if end_date:
        sale_filters.append(Sale.sale_date <= end_date)
        inward_filters.append(StockInward.inward_date <= end_date)

    # Each side only needs enough rows to fill the requested page after merging.
    fetch = offset + limit
    sales, sales_total = _sale_movements(db, product_id, sale_filters, fetch)
    inwards, inwards_total = _inward_movements(db, product_id, inward_filters, fetch)

    merged = sorted(
        sales + inwards,
        key=lambda movement: (movement.movement_date, movement.created_at is not None, movement.created_at),
        reverse=True,
    )
    return merged[offset:offset + limit], sales_total + inwards_total


def list_stock_audit_trail(
    db: Session,
    product_id: str,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    product_registry.get_product(db, product_id)

    count_stmt = select(func.count(AuditLog.id)).where(
        AuditLog.target_type == PRODUCT_TARGET,
        AuditLog.target_id == product_id,
    )
    data_stmt = select(AuditLog).where(
        AuditLog.target_type == PRODUCT_TARGET,
        AuditLog.target_id == product_id,
    )
    if start_date:
        count_stmt = count_stmt.where(func.date(AuditLog.created_at) >= start_date)
        data_stmt = data_stmt.where(func.date(AuditLog.created_at) >= start_date)
    if end_date:
        count_stmt = count_stmt.where(func.date(AuditLog.created_at) <= end_date)
        data_stmt = data_stmt.where(func.date(AuditLog.created_at) <= end_date)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return list(rows), total
