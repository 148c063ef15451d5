import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.errors import InvalidQuantityError
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.money import to_money
from stockledger.core.observability import log_event
from stockledger.models.inward import StockInward
from stockledger.schemas.inventory import InwardCommand, InwardOut
from stockledger.services import product_registry
from stockledger.services.audit_service import log_audit_event, log_stock_change
from stockledger.services.daily_stock_service import ensure_not_backdated, lock_daily_record, verify_closure
from stockledger.services.transactions import run_in_transaction

logger = logging.getLogger("stockledger.inward")


def _validate(command: InwardCommand) -> None:
    if command.quantity <= 0:
        raise InvalidQuantityError("quantity", command.quantity)
    if command.cost_per_unit is not None and command.cost_per_unit < 0:
        raise InvalidQuantityError(
            "cost_per_unit",
            command.cost_per_unit,
            message=f"cost_per_unit cannot be negative (got {command.cost_per_unit})",
        )


def record_inward(db: Session, command: InwardCommand, *, actor_id: str) -> InwardOut:
    """
    Add stock for one product on one day.

    Live counter, the day's ledger record and the inward audit row change in
    one transaction. Lock order matches sales: product row, then ledger row.
    """
    _validate(command)

    def work() -> InwardOut:
        product = product_registry.get_product(db, command.product_id)
        new_stock_level = product_registry.adjust_stock(db, product.id, command.quantity)

        record = lock_daily_record(db, product.id, command.inward_date)
        ensure_not_backdated(db, product.id, command.inward_date)
        before = record.snapshot()
        record.add_inward(command.quantity, command.cost_per_unit)
        verify_closure(record, before=before, operation="inward.record")

        if command.cost_per_unit is not None:
            product_registry.set_cost(db, product.id, command.cost_per_unit)
            cost_per_unit = to_money(command.cost_per_unit)
        else:
            cost_per_unit = to_money(record.cost_per_unit)

        inward = StockInward(
            id=generate_shortuuid(),
            product_id=product.id,
            inward_date=command.inward_date,
            quantity=command.quantity,
            cost_per_unit=cost_per_unit,
            total_cost=to_money(cost_per_unit * command.quantity),
            supplier_name=command.supplier_name,
            invoice_number=command.invoice_number,
            batch_number=command.batch_number,
            expiry_date=command.expiry_date,
            notes=command.notes,
            created_by=actor_id,
        )
        db.add(inward)
        log_stock_change(
            db,
            actor_user_id=actor_id,
            product_id=product.id,
            change_type="inward",
            old_value=new_stock_level - command.quantity,
            new_value=new_stock_level,
            reference_type="stock_inward",
            reference_id=inward.id,
            stock_date=command.inward_date,
        )
        log_audit_event(
            db,
            actor_user_id=actor_id,
            action="inventory.inward",
            target_type="stock_inward",
            target_id=inward.id,
            metadata_json={
                "product_id": product.id,
                "inward_date": command.inward_date.isoformat(),
                "quantity": command.quantity,
                "cost_per_unit": float(cost_per_unit),
                "supplier_name": command.supplier_name,
                "invoice_number": command.invoice_number,
            },
        )
        db.flush()
        return InwardOut(
            id=inward.id,
            product_id=product.id,
            inward_date=command.inward_date,
            quantity=command.quantity,
            cost_per_unit=float(cost_per_unit),
            total_cost=float(inward.total_cost),
            new_stock_level=new_stock_level,
            stock_inward=record.stock_inward,
            closing_stock=record.closing_stock,
        )

    result = run_in_transaction(db, work, operation="inward.record")
    log_event(
        logger,
        logging.INFO,
        "ledger.inward_recorded",
        inward_id=result.id,
        product_id=result.product_id,
        inward_date=result.inward_date.isoformat(),
        quantity=result.quantity,
        new_stock_level=result.new_stock_level,
        closing_stock=result.closing_stock,
        actor_id=actor_id,
    )
    return result


def list_inwards(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    product_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockInward], int]:
    count_stmt = select(func.count(StockInward.id))
    stmt = select(StockInward)
    filters = []
    if start_date:
        filters.append(StockInward.inward_date >= start_date)
    if end_date:
        filters.append(StockInward.inward_date <= end_date)
    if product_id:
        filters.append(StockInward.product_id == product_id)
    if filters:
        count_stmt = count_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(StockInward.inward_date.desc(), StockInward.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return list(rows), total
