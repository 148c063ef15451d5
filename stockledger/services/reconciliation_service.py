"""
Physical-count reconciliation workflow.

    in_progress --(every item counted)--> completed
    in_progress | completed --finalize--> approved (terminal)

Counts are written back to the daily ledger as annotations only; opening,
inward, sold and closing keep their transactional values. Finalize annotates
each counted item in its own short transaction, so an interrupted finalize
can be re-run and picks up where it stopped.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.errors import (
    DuplicateReconciliationError,
    InvalidQuantityError,
    ReconciliationItemNotFoundError,
    ReconciliationNotFoundError,
    TerminalStateViolationError,
)
from stockledger.core.id_utils import generate_shortuuid, reconciliation_code
from stockledger.core.money import ZERO_MONEY, to_money
from stockledger.core.observability import log_event
from stockledger.models.reconciliation import (
    RECONCILIATION_APPROVED,
    RECONCILIATION_COMPLETED,
    RECONCILIATION_IN_PROGRESS,
    ReconciliationItem,
    StockReconciliation,
)
from stockledger.schemas.reconciliation import (
    FinalizeCommand,
    PhysicalCountCommand,
    ReconciliationStatusSummaryOut,
    ReconciliationSummaryOut,
)
from stockledger.services import product_registry
from stockledger.services.audit_service import log_audit_event, log_stock_change
from stockledger.services.daily_stock_service import ensure_not_future, lock_daily_record, verify_closure
from stockledger.services.transactions import run_in_transaction

logger = logging.getLogger("stockledger.reconciliation")

RECONCILIATION_STATUSES = (RECONCILIATION_IN_PROGRESS, RECONCILIATION_COMPLETED, RECONCILIATION_APPROVED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load(db: Session, reconciliation_id: str, *, lock: bool = False) -> StockReconciliation:
    stmt = select(StockReconciliation).where(StockReconciliation.id == reconciliation_id)
    if lock:
        stmt = stmt.with_for_update()
    reconciliation = db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()
    if reconciliation is None:
        raise ReconciliationNotFoundError(reconciliation_id)
    return reconciliation


def _refresh_totals(reconciliation: StockReconciliation) -> None:
    counted = [item for item in reconciliation.items if item.is_counted]
    reconciliation.total_products = len(reconciliation.items)
    reconciliation.products_reconciled = len(counted)
    reconciliation.total_variance = sum(abs(item.variance or 0) for item in counted)
    reconciliation.variance_value = to_money(
        sum((item.variance_value or ZERO_MONEY for item in counted), ZERO_MONEY)
    )


def get_reconciliation(db: Session, reconciliation_id: str) -> StockReconciliation:
    return _load(db, reconciliation_id)


def create_reconciliation(db: Session, reconciliation_date: date, *, actor_id: str) -> StockReconciliation:
    """Open a run for ``reconciliation_date`` with a snapshot of every active product's live stock."""
    ensure_not_future(reconciliation_date)

    def work() -> StockReconciliation:
        existing_id = db.execute(
            select(StockReconciliation.id).where(StockReconciliation.reconciliation_date == reconciliation_date)
        ).scalar_one_or_none()
        if existing_id is not None:
            raise DuplicateReconciliationError(reconciliation_date.isoformat(), existing_id)

        products = product_registry.list_active_products(db)
        reconciliation = StockReconciliation(
            id=generate_shortuuid(),
            reconciliation_code=reconciliation_code(reconciliation_date),
            reconciliation_date=reconciliation_date,
            status=RECONCILIATION_IN_PROGRESS,
            created_by=actor_id,
            total_products=len(products),
            products_reconciled=0,
            total_variance=0,
            variance_value=ZERO_MONEY,
        )
        for product in products:
            reconciliation.items.append(
                ReconciliationItem(
                    id=generate_shortuuid(),
                    product_id=product.id,
                    system_stock=product.stock_quantity,
                    cost_per_unit=to_money(product.cost_per_unit or 0),
                )
            )
        savepoint = db.begin_nested()
        try:
            db.add(reconciliation)
            db.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner_id = db.execute(
                select(StockReconciliation.id).where(StockReconciliation.reconciliation_date == reconciliation_date)
            ).scalar_one_or_none()
            if winner_id is None:
                raise
            raise DuplicateReconciliationError(reconciliation_date.isoformat(), winner_id) from None

        log_audit_event(
            db,
            actor_user_id=actor_id,
            action="reconciliation.create",
            target_type="stock_reconciliation",
            target_id=reconciliation.id,
            metadata_json={
                "reconciliation_code": reconciliation.reconciliation_code,
                "reconciliation_date": reconciliation_date.isoformat(),
                "total_products": len(products),
            },
        )
        return reconciliation

    reconciliation = run_in_transaction(db, work, operation="reconciliation.create")
    log_event(
        logger,
        logging.INFO,
        "ledger.reconciliation_created",
        reconciliation_id=reconciliation.id,
        reconciliation_code=reconciliation.reconciliation_code,
        reconciliation_date=reconciliation_date.isoformat(),
        total_products=reconciliation.total_products,
        actor_id=actor_id,
    )
    return reconciliation


def update_physical_stock(
    db: Session,
    reconciliation_id: str,
    product_id: str,
    command: PhysicalCountCommand,
    *,
    actor_id: str,
) -> StockReconciliation:
    """Record a physical count for one product. A repeated count replaces the earlier one."""
    if command.physical_stock < 0:
        raise InvalidQuantityError(
            "physical_stock",
            command.physical_stock,
            message=f"physical_stock cannot be negative (got {command.physical_stock})",
        )

    def work() -> tuple[StockReconciliation, str, ReconciliationItem]:
        reconciliation = _load(db, reconciliation_id, lock=True)
        if reconciliation.is_terminal:
            raise TerminalStateViolationError(reconciliation_id, reconciliation.status, "update")

        item = next((row for row in reconciliation.items if row.product_id == product_id), None)
        if item is None:
            raise ReconciliationItemNotFoundError(reconciliation_id, product_id)

        variance = command.physical_stock - item.system_stock
        item.physical_stock = command.physical_stock
        item.variance = variance
        item.variance_value = to_money(Decimal(variance) * item.cost_per_unit)
        item.reason = command.reason
        item.reconciled_at = _utcnow()
        # A recount after a partial finalize must be written to the ledger again.
        item.ledger_annotated_at = None

        previous_status = reconciliation.status
        _refresh_totals(reconciliation)
        if (
            reconciliation.status == RECONCILIATION_IN_PROGRESS
            and reconciliation.products_reconciled == reconciliation.total_products
        ):
            reconciliation.status = RECONCILIATION_COMPLETED

        log_audit_event(
            db,
            actor_user_id=actor_id,
            action="reconciliation.count",
            target_type="stock_reconciliation",
            target_id=reconciliation_id,
            metadata_json={
                "product_id": product_id,
                "system_stock": item.system_stock,
                "physical_stock": command.physical_stock,
                "variance": variance,
                "reason": command.reason,
            },
        )
        db.flush()
        return reconciliation, previous_status, item

    reconciliation, previous_status, item = run_in_transaction(db, work, operation="reconciliation.update_item")
    log_event(
        logger,
        logging.INFO,
        "ledger.reconciliation_counted",
        reconciliation_id=reconciliation_id,
        product_id=product_id,
        system_stock=item.system_stock,
        physical_stock=item.physical_stock,
        variance=item.variance,
        actor_id=actor_id,
    )
    if previous_status != reconciliation.status:
        log_event(
            logger,
            logging.INFO,
            "ledger.reconciliation_status",
            reconciliation_id=reconciliation_id,
            from_status=previous_status,
            to_status=reconciliation.status,
        )
    return reconciliation


def _annotate_ledger(
    db: Session,
    item: ReconciliationItem,
    target_date: date,
    *,
    actor_id: str,
    annotated_at: datetime,
) -> None:
    record = lock_daily_record(db, item.product_id, target_date)
    before = record.snapshot()
    record.annotate_physical_count(
        physical_stock=item.physical_stock,
        variance=item.variance,
        reconciled_at=annotated_at,
        reconciled_by=actor_id,
    )
    verify_closure(record, before=before, operation="reconciliation.finalize")
    log_stock_change(
        db,
        actor_user_id=actor_id,
        product_id=item.product_id,
        change_type="reconciliation",
        old_value=record.closing_stock,
        new_value=item.physical_stock,
        reference_type="stock_reconciliation",
        reference_id=item.reconciliation_id,
        stock_date=target_date,
        reason=item.reason,
    )
    item.ledger_annotated_at = annotated_at
    db.flush()


def _pending_items(reconciliation: StockReconciliation) -> list[ReconciliationItem]:
    return [item for item in reconciliation.items if item.is_counted and item.ledger_annotated_at is None]


def finalize_reconciliation(
    db: Session,
    reconciliation_id: str,
    command: FinalizeCommand,
    *,
    actor_id: str,
) -> StockReconciliation:
    def load_pending() -> tuple[date, list[str]]:
        reconciliation = _load(db, reconciliation_id)
        if reconciliation.is_terminal:
            raise TerminalStateViolationError(reconciliation_id, reconciliation.status, "finalize")
        return reconciliation.reconciliation_date, [item.id for item in _pending_items(reconciliation)]

    target_date, pending_ids = run_in_transaction(db, load_pending, operation="reconciliation.finalize")

    annotated = 0
    for item_id in pending_ids:

        def annotate_one(item_id: str = item_id) -> bool:
            item = db.execute(
                select(ReconciliationItem)
                .where(ReconciliationItem.id == item_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            if item.ledger_annotated_at is not None or not item.is_counted:
                return False
            _annotate_ledger(db, item, target_date, actor_id=actor_id, annotated_at=_utcnow())
            return True

        if run_in_transaction(db, annotate_one, operation="reconciliation.annotate_item"):
            annotated += 1

    def approve() -> tuple[StockReconciliation, int]:
        reconciliation = _load(db, reconciliation_id, lock=True)
        if reconciliation.is_terminal:
            raise TerminalStateViolationError(reconciliation_id, reconciliation.status, "finalize")

        # Counts recorded while the per-item pass was running.
        late = _pending_items(reconciliation)
        now = _utcnow()
        for item in late:
            _annotate_ledger(db, item, reconciliation.reconciliation_date, actor_id=actor_id, annotated_at=now)

        _refresh_totals(reconciliation)
        reconciliation.status = RECONCILIATION_APPROVED
        reconciliation.approved_by = actor_id
        reconciliation.approved_at = now
        if command.notes is not None:
            reconciliation.notes = command.notes

        log_audit_event(
            db,
            actor_user_id=actor_id,
            action="reconciliation.approve",
            target_type="stock_reconciliation",
            target_id=reconciliation_id,
            metadata_json={
                "reconciliation_date": reconciliation.reconciliation_date.isoformat(),
                "products_reconciled": reconciliation.products_reconciled,
                "total_variance": reconciliation.total_variance,
                "variance_value": float(reconciliation.variance_value),
            },
        )
        db.flush()
        return reconciliation, len(late)

    reconciliation, late_count = run_in_transaction(db, approve, operation="reconciliation.approve")
    log_event(
        logger,
        logging.INFO,
        "ledger.reconciliation_approved",
        reconciliation_id=reconciliation_id,
        reconciliation_date=target_date.isoformat(),
        annotated_records=annotated + late_count,
        products_reconciled=reconciliation.products_reconciled,
        total_variance=reconciliation.total_variance,
        actor_id=actor_id,
    )
    return reconciliation


def list_reconciliations(
    db: Session,
    *,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockReconciliation], int]:
    filters = []
    if status:
        filters.append(StockReconciliation.status == status)
    if start_date:
        filters.append(StockReconciliation.reconciliation_date >= start_date)
    if end_date:
        filters.append(StockReconciliation.reconciliation_date <= end_date)

    total = int(db.execute(select(func.count(StockReconciliation.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockReconciliation)
        .where(*filters)
        .order_by(StockReconciliation.reconciliation_date.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total


def reconciliation_summary(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> ReconciliationSummaryOut:
    stmt = select(
        StockReconciliation.status,
        func.count(StockReconciliation.id),
        func.coalesce(func.sum(StockReconciliation.total_variance), 0),
        func.coalesce(func.sum(StockReconciliation.variance_value), 0),
    ).group_by(StockReconciliation.status)
    if start_date:
        stmt = stmt.where(StockReconciliation.reconciliation_date >= start_date)
    if end_date:
        stmt = stmt.where(StockReconciliation.reconciliation_date <= end_date)

    rows = {status: (count, variance, value) for status, count, variance, value in db.execute(stmt).all()}
    statuses = []
    for status in RECONCILIATION_STATUSES:
        count, variance, value = rows.get(status, (0, 0, 0))
        statuses.append(
            ReconciliationStatusSummaryOut(
                status=status,
                count=int(count),
                total_variance=int(variance),
                variance_value=float(to_money(value)),
            )
        )
    return ReconciliationSummaryOut(start_date=start_date, end_date=end_date, statuses=statuses)
