"""
Daily stock ledger: per-day resolution, locking and read-side reports.

A record for (product, day) is created lazily from the closing stock of the
most recent earlier record. Creation races are settled by the unique
constraint on (product_id, stock_date): the insert runs inside a SAVEPOINT
and the loser re-reads the winner's row.
"""

import logging
from collections import defaultdict
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.errors import BackdatedMutationError, FutureLedgerDayError, InvariantViolationError
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.money import stock_valuation, to_money
from stockledger.core.observability import log_event
from stockledger.models.daily_stock import DailyStockRecord
from stockledger.models.product import Product
from stockledger.models.sales import Sale, SaleItem
from stockledger.schemas.ledger import (
    ContinuityIssueOut,
    ContinuityReportOut,
    DailySnapshotsOut,
    DailySummaryOut,
    IntegrityIssueOut,
    IntegrityReportOut,
)
from stockledger.services import product_registry
from stockledger.services.transactions import run_in_transaction

logger = logging.getLogger("stockledger.ledger")

ARITHMETIC_CLOSURE = "arithmetic_closure"


def _record_stmt(product_id: str, stock_date: date, *, lock: bool):
    stmt = select(DailyStockRecord).where(
        DailyStockRecord.product_id == product_id,
        DailyStockRecord.stock_date == stock_date,
    )
    if lock:
        stmt = stmt.with_for_update()
    return stmt.execution_options(populate_existing=True)


def find_daily_record(db: Session, product_id: str, stock_date: date, *, lock: bool = False) -> DailyStockRecord | None:
    return db.execute(_record_stmt(product_id, stock_date, lock=lock)).scalar_one_or_none()


def latest_record_before(
    db: Session,
    product_id: str,
    stock_date: date,
    *,
    lock: bool = False,
) -> DailyStockRecord | None:
    stmt = (
        select(DailyStockRecord)
        .where(
            DailyStockRecord.product_id == product_id,
            DailyStockRecord.stock_date < stock_date,
        )
        .order_by(DailyStockRecord.stock_date.desc())
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def _lock_roll_forward_source(db: Session, product_id: str, stock_date: date) -> DailyStockRecord | None:
    """
    Lock the record a new day opens from.

    A writer holding that row may have been inserting a newer day between it
    and ``stock_date``; once our lock is granted that insert is committed, so
    re-read and move the lock until the locked row is still the latest.
    """
    prior = latest_record_before(db, product_id, stock_date, lock=True)
    while prior is not None:
        latest = latest_record_before(db, product_id, stock_date)
        if latest is None or latest.id == prior.id:
            return prior
        prior = latest_record_before(db, product_id, stock_date, lock=True)
    return prior


def ensure_not_future(stock_date: date, product_id: str | None = None) -> None:
    today = date.today()
    if stock_date > today:
        raise FutureLedgerDayError(product_id, stock_date.isoformat(), today.isoformat())


def resolve_daily_record(
    db: Session,
    product_id: str,
    stock_date: date,
    *,
    lock: bool = False,
) -> DailyStockRecord:
    """
    Return the record for (product_id, stock_date), creating it on first use.

    Runs inside the caller's transaction. With ``lock=True`` the row is held
    FOR UPDATE until that transaction ends. Days after today are never
    created. The record the new day rolls forward from stays locked until the
    caller commits, so its closing stock cannot move under the new opening.
    """
    record = find_daily_record(db, product_id, stock_date, lock=lock)
    if record is not None:
        return record

    product = product_registry.get_product(db, product_id)
    ensure_not_future(stock_date, product_id)
    prior = _lock_roll_forward_source(db, product_id, stock_date)
    opening_stock = prior.closing_stock if prior is not None else 0
    cost_per_unit = to_money(product.cost_per_unit or 0)

    savepoint = db.begin_nested()
    try:
        record = DailyStockRecord(
            id=generate_shortuuid(),
            product_id=product_id,
            stock_date=stock_date,
            opening_stock=opening_stock,
            stock_inward=0,
            sold_quantity=0,
            closing_stock=opening_stock,
            cost_per_unit=cost_per_unit,
            stock_value=stock_valuation(opening_stock, cost_per_unit),
        )
        db.add(record)
        db.flush()
        savepoint.commit()
    except IntegrityError:
        # Another worker created the same day first; use its row.
        savepoint.rollback()
        log_event(
            logger,
            logging.DEBUG,
            "ledger.record_create_race",
            product_id=product_id,
            stock_date=stock_date.isoformat(),
        )
        return db.execute(_record_stmt(product_id, stock_date, lock=lock)).scalar_one()

    log_event(
        logger,
        logging.INFO,
        "ledger.record_created",
        product_id=product_id,
        stock_date=stock_date.isoformat(),
        opening_stock=opening_stock,
        rolled_from=prior.stock_date.isoformat() if prior is not None else None,
    )
    return record


def lock_daily_record(db: Session, product_id: str, stock_date: date) -> DailyStockRecord:
    return resolve_daily_record(db, product_id, stock_date, lock=True)


def get_or_create_daily_record(db: Session, product_id: str, stock_date: date) -> DailyStockRecord:
    return run_in_transaction(
        db,
        lambda: resolve_daily_record(db, product_id, stock_date),
        operation="ledger.get_or_create",
    )


def ensure_not_backdated(db: Session, product_id: str, stock_date: date) -> None:
    """
    Reject arithmetic changes to a day that already has a later day rolled from it.

    Call with the ``stock_date`` row already locked: a later day is only ever
    created while holding that row, so the answer cannot change before commit.
    """
    later = db.execute(
        select(func.max(DailyStockRecord.stock_date)).where(
            DailyStockRecord.product_id == product_id,
            DailyStockRecord.stock_date > stock_date,
        )
    ).scalar_one_or_none()
    if later is not None:
        raise BackdatedMutationError(product_id, stock_date.isoformat(), later.isoformat())


def verify_closure(record: DailyStockRecord, *, before: dict, operation: str) -> None:
    after = record.snapshot()
    expected_value = stock_valuation(record.closing_stock, record.cost_per_unit)
    if record.closes() and to_money(record.stock_value) == expected_value:
        if record.closing_stock < 0:
            log_event(
                logger,
                logging.WARNING,
                "ledger.negative_closing",
                operation=operation,
                record=after,
            )
        return

    log_event(
        logger,
        logging.ERROR,
        "ledger.invariant_violation",
        invariant=ARITHMETIC_CLOSURE,
        operation=operation,
        expected_closing_stock=record.expected_closing_stock,
        expected_stock_value=str(expected_value),
        before=before,
        after=after,
    )
    raise InvariantViolationError(ARITHMETIC_CLOSURE, record.id, before, after)


def create_daily_snapshots(db: Session, stock_date: date) -> DailySnapshotsOut:
    """Roll every active product forward into ``stock_date``."""
    ensure_not_future(stock_date)

    def work() -> DailySnapshotsOut:
        created = 0
        existing = 0
        for product in product_registry.list_active_products(db):
            if find_daily_record(db, product.id, stock_date) is not None:
                existing += 1
                continue
            resolve_daily_record(db, product.id, stock_date)
            created += 1
        return DailySnapshotsOut(stock_date=stock_date, created=created, existing=existing)

    result = run_in_transaction(db, work, operation="ledger.daily_snapshots")
    log_event(
        logger,
        logging.INFO,
        "ledger.daily_snapshots",
        stock_date=stock_date.isoformat(),
        created=result.created,
        existing=result.existing,
    )
    return result


def _ledger_query(
    *,
    start_date: date,
    end_date: date,
    category_id: str | None,
    product_id: str | None,
):
    stmt = select(DailyStockRecord).where(
        DailyStockRecord.stock_date >= start_date,
        DailyStockRecord.stock_date <= end_date,
    )
    if category_id:
        stmt = stmt.join(Product, Product.id == DailyStockRecord.product_id).where(
            Product.category_id == category_id
        )
    if product_id:
        stmt = stmt.where(DailyStockRecord.product_id == product_id)
    return stmt


def list_ledger_records(
    db: Session,
    start_date: date,
    end_date: date,
    *,
    category_id: str | None = None,
    product_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[DailyStockRecord], int]:
    """Read-only bulk query; every returned row is checked for arithmetic closure."""
    base = _ledger_query(
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        product_id=product_id,
    )
    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one())
    stmt = base.order_by(DailyStockRecord.stock_date.asc(), DailyStockRecord.product_id.asc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    records = list(db.execute(stmt).scalars().all())
    for record in records:
        verify_closure(record, before=record.snapshot(), operation="ledger.read")
    return records, total


def get_daily_summary(db: Session, stock_date: date, *, category_id: str | None = None) -> DailySummaryOut:
    stmt = select(
        func.count(DailyStockRecord.id),
        func.coalesce(func.sum(DailyStockRecord.opening_stock), 0),
        func.coalesce(func.sum(DailyStockRecord.stock_inward), 0),
        func.coalesce(func.sum(DailyStockRecord.sold_quantity), 0),
        func.coalesce(func.sum(DailyStockRecord.closing_stock), 0),
        func.coalesce(func.sum(DailyStockRecord.stock_value), 0),
        func.count(DailyStockRecord.physical_stock),
        func.coalesce(func.sum(DailyStockRecord.stock_variance), 0),
    ).where(DailyStockRecord.stock_date == stock_date)
    if category_id:
        stmt = stmt.join(Product, Product.id == DailyStockRecord.product_id).where(
            Product.category_id == category_id
        )

    (
        total_products,
        opening,
        inward,
        sold,
        closing,
        value,
        reconciled,
        variance,
    ) = db.execute(stmt).one()
    return DailySummaryOut(
        stock_date=stock_date,
        category_id=category_id,
        total_products=int(total_products),
        total_opening_stock=int(opening),
        total_stock_inward=int(inward),
        total_sold_quantity=int(sold),
        total_closing_stock=int(closing),
        total_stock_value=float(to_money(value)),
        products_reconciled=int(reconciled),
        total_stock_variance=int(variance),
    )


def get_continuity_report(
    db: Session,
    start_date: date,
    end_date: date,
    *,
    product_id: str | None = None,
) -> ContinuityReportOut:
    """Pairs of adjacent records whose opening stock differs from the earlier closing stock."""
    stmt = _ledger_query(
        start_date=start_date,
        end_date=end_date,
        category_id=None,
        product_id=product_id,
    ).order_by(DailyStockRecord.product_id.asc(), DailyStockRecord.stock_date.asc())
    records = db.execute(stmt).scalars().all()

    by_product: dict[str, list[DailyStockRecord]] = defaultdict(list)
    for record in records:
        by_product[record.product_id].append(record)

    issues: list[ContinuityIssueOut] = []
    for pid, rows in by_product.items():
        for previous, current in zip(rows, rows[1:]):
            if current.opening_stock != previous.closing_stock:
                issues.append(
                    ContinuityIssueOut(
                        product_id=pid,
                        stock_date=current.stock_date,
                        previous_date=previous.stock_date,
                        expected_opening=previous.closing_stock,
                        actual_opening=current.opening_stock,
                        difference=current.opening_stock - previous.closing_stock,
                    )
                )

    return ContinuityReportOut(
        start_date=start_date,
        end_date=end_date,
        total_products=len(by_product),
        total_records=len(records),
        continuity_issues=len(issues),
        issues=issues,
    )


def sold_quantities_for_date(db: Session, stock_date: date) -> dict[str, int]:
    rows = db.execute(
        select(SaleItem.product_id, func.coalesce(func.sum(SaleItem.quantity), 0))
        .join(Sale, Sale.id == SaleItem.sale_id)
        .where(Sale.sale_date == stock_date)
        .group_by(SaleItem.product_id)
    ).all()
    return {product_id: int(quantity) for product_id, quantity in rows}


def validate_ledger_integrity(db: Session, stock_date: date) -> IntegrityReportOut:
    """
    Check every record of a day. Reports only; nothing is rewritten, since a
    mismatch points at a lost update or oversell that needs investigating.
    """
    records = db.execute(
        select(DailyStockRecord)
        .where(DailyStockRecord.stock_date == stock_date)
        .order_by(DailyStockRecord.product_id.asc())
    ).scalars().all()
    sold_by_product = sold_quantities_for_date(db, stock_date)

    report_issues: list[IntegrityIssueOut] = []
    valid_records = 0
    seen_products: set[str] = set()
    for record in records:
        seen_products.add(record.product_id)
        problems: list[str] = []
        if not record.closes():
            problems.append(
                f"Closing stock mismatch: expected {record.expected_closing_stock}, actual {record.closing_stock}"
            )
        expected_value = stock_valuation(record.closing_stock, record.cost_per_unit)
        if to_money(record.stock_value) != expected_value:
            problems.append(f"Stock value mismatch: expected {expected_value}, actual {to_money(record.stock_value)}")
        if record.closing_stock < 0:
            problems.append(f"Negative closing stock: {record.closing_stock}")
        sold_from_sales = sold_by_product.get(record.product_id, 0)
        if record.sold_quantity != sold_from_sales:
            problems.append(
                f"Sold quantity mismatch: ledger {record.sold_quantity}, sale items {sold_from_sales}"
            )

        if problems:
            report_issues.append(IntegrityIssueOut(product_id=record.product_id, record_id=record.id, issues=problems))
        else:
            valid_records += 1

    for product_id, quantity in sorted(sold_by_product.items()):
        if product_id not in seen_products and quantity:
            report_issues.append(
                IntegrityIssueOut(
                    product_id=product_id,
                    issues=[f"Sales of {quantity} units recorded without a ledger record"],
                )
            )

    report = IntegrityReportOut(
        stock_date=stock_date,
        valid=not report_issues,
        total_records=len(records),
        valid_records=valid_records,
        invalid_records=len(records) - valid_records,
        issues=report_issues,
    )
    if not report.valid:
        log_event(
            logger,
            logging.WARNING,
            "ledger.integrity_issues",
            stock_date=stock_date.isoformat(),
            invalid_records=report.invalid_records,
            issues=len(report_issues),
        )
    return report
