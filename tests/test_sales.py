import threading
from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from stockledger.core.errors import InsufficientStockError, InvalidQuantityError, ProductInactiveError
from stockledger.models.audit_log import AuditLog
from stockledger.models.daily_stock import DailyStockRecord
from stockledger.models.product import PRODUCT_STATUS_INACTIVE, Product
from stockledger.models.sales import Sale, SaleItem
from stockledger.schemas.inventory import InwardCommand
from stockledger.schemas.sales import SaleCommand, SaleItemCommand
from stockledger.services.daily_stock_service import find_daily_record, validate_ledger_integrity
from stockledger.services.inward_service import record_inward
from stockledger.services.sale_service import apply_sale, list_sales

SALE_DAY = date(2025, 9, 16)


def _stock_in(session_local, product_id: str, quantity: int, stock_date: date = SALE_DAY) -> None:
    with session_local() as db:
        record_inward(
            db,
            InwardCommand(product_id=product_id, quantity=quantity, inward_date=stock_date),
            actor_id="user-1",
        )


def _sell(db, *lines: tuple[str, int], sale_date: date = SALE_DAY, **kwargs):
    return apply_sale(
        db,
        SaleCommand(
            items=[SaleItemCommand(product_id=pid, quantity=qty) for pid, qty in lines],
            sale_date=sale_date,
            **kwargs,
        ),
        actor_id="user-1",
    )


def _live_stock(session_local, product_id: str) -> int:
    with session_local() as db:
        return db.execute(select(Product.stock_quantity).where(Product.id == product_id)).scalar_one()


def test_sale_decrements_live_stock_and_ledger(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(price="150.00")
    _stock_in(session_local, product_id, 50)

    with session_local() as db:
        result = _sell(db, (product_id, 12))

    assert result.items_count == 1
    assert result.invoice_no.startswith("INV-20250916-")
    level = result.stock_levels[0]
    assert level.quantity_sold == 12
    assert level.new_stock_level == 38
    assert level.sold_quantity == 12
    assert level.closing_stock == 38
    assert _live_stock(session_local, product_id) == 38

    with session_local() as db:
        record = find_daily_record(db, product_id, SALE_DAY)
        assert record.sold_quantity == 12
        assert record.closing_stock == 38
        assert record.closes()


def test_sale_totals_apply_tax_and_discount(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(price="150.00")
    _stock_in(session_local, product_id, 10)

    with session_local() as db:
        result = _sell(db, (product_id, 2), discount_amount="30")

    assert result.subtotal == 300.0
    assert result.tax_amount == 30.0
    assert result.discount_amount == 30.0
    assert result.total_amount == 300.0


def test_sale_uses_explicit_unit_price(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(price="150.00")
    _stock_in(session_local, product_id, 10)

    with session_local() as db:
        result = apply_sale(
            db,
            SaleCommand(
                items=[SaleItemCommand(product_id=product_id, quantity=1, unit_price="120")],
                sale_date=SALE_DAY,
            ),
            actor_id="user-1",
        )
        item = db.execute(select(SaleItem).where(SaleItem.sale_id == result.id)).scalar_one()
        assert float(item.unit_price) == 120.0
        assert float(item.line_total) == 132.0


def test_oversell_rejected_without_mutation(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(stock_quantity=5)

    with session_local() as db:
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(db, (product_id, 6))

    error = exc_info.value
    assert error.product_id == product_id
    assert error.available == 5
    assert error.requested == 6
    assert error.shortfall == 1
    assert _live_stock(session_local, product_id) == 5

    with session_local() as db:
        assert find_daily_record(db, product_id, SALE_DAY) is None
        assert db.execute(select(func.count(Sale.id))).scalar_one() == 0


def test_multi_item_sale_is_all_or_nothing(test_context, make_product):
    _, session_local = test_context
    product_a = make_product("Vodka 1L")
    product_b = make_product("Brandy 375ml")
    _stock_in(session_local, product_a, 10)
    _stock_in(session_local, product_b, 2)

    with session_local() as db:
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(db, (product_a, 3), (product_b, 5))

    assert exc_info.value.product_id == product_b
    assert exc_info.value.shortfall == 3
    assert _live_stock(session_local, product_a) == 10
    assert _live_stock(session_local, product_b) == 2

    with session_local() as db:
        record_a = find_daily_record(db, product_a, SALE_DAY)
        record_b = find_daily_record(db, product_b, SALE_DAY)
        assert record_a.sold_quantity == 0
        assert record_a.closing_stock == 10
        assert record_b.sold_quantity == 0
        assert db.execute(select(func.count(SaleItem.id))).scalar_one() == 0


def test_repeated_product_lines_are_aggregated(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    _stock_in(session_local, product_id, 5)

    with session_local() as db:
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(db, (product_id, 3), (product_id, 3))
        assert exc_info.value.requested == 6

        result = _sell(db, (product_id, 2), (product_id, 3))
        assert result.items_count == 2
        assert result.stock_levels[0].quantity_sold == 5
        assert result.stock_levels[0].new_stock_level == 0


def test_inactive_product_cannot_be_sold(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(stock_quantity=10, status=PRODUCT_STATUS_INACTIVE)

    with session_local() as db:
        with pytest.raises(ProductInactiveError):
            _sell(db, (product_id, 1))
    assert _live_stock(session_local, product_id) == 10


@pytest.mark.parametrize("quantity", [0, -3])
def test_non_positive_quantity_rejected(test_context, make_product, quantity):
    _, session_local = test_context
    product_id = make_product(stock_quantity=10)

    with session_local() as db:
        with pytest.raises(InvalidQuantityError):
            _sell(db, (product_id, quantity))


def test_empty_sale_rejected(test_context):
    _, session_local = test_context
    with session_local() as db:
        with pytest.raises(InvalidQuantityError):
            apply_sale(db, SaleCommand(items=[], sale_date=SALE_DAY), actor_id="user-1")


def test_discount_larger_than_total_rejected(test_context, make_product):
    _, session_local = test_context
    product_id = make_product(price="10.00")
    _stock_in(session_local, product_id, 5)

    with session_local() as db:
        with pytest.raises(InvalidQuantityError) as exc_info:
            _sell(db, (product_id, 1), discount_amount="50")
        assert exc_info.value.field == "discount_amount"
    assert _live_stock(session_local, product_id) == 5


def test_sale_command_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        SaleCommand(items=[], closing_stock=99)
    with pytest.raises(ValidationError):
        SaleItemCommand(product_id="p", quantity=1, sold_quantity=1)


def test_sale_writes_audit_entry(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    _stock_in(session_local, product_id, 3)

    with session_local() as db:
        result = _sell(db, (product_id, 1))
        entry = db.execute(
            select(AuditLog).where(AuditLog.action == "sale.create", AuditLog.target_id == result.id)
        ).scalar_one()
        assert entry.actor_user_id == "user-1"
        assert entry.metadata_json["invoice_no"] == result.invoice_no


def test_sold_quantity_matches_sale_items(test_context, make_product):
    _, session_local = test_context
    product_a = make_product("Rum 750ml")
    product_b = make_product("Tonic water")
    _stock_in(session_local, product_a, 20)
    _stock_in(session_local, product_b, 20)

    with session_local() as db:
        _sell(db, (product_a, 2))
        _sell(db, (product_a, 1), (product_b, 4))
        _sell(db, (product_b, 1))

        report = validate_ledger_integrity(db, SALE_DAY)
        assert report.valid, report.issues
        assert find_daily_record(db, product_a, SALE_DAY).sold_quantity == 3
        assert find_daily_record(db, product_b, SALE_DAY).sold_quantity == 5

        sales, items_by_sale, total = list_sales(db, start_date=SALE_DAY, end_date=SALE_DAY)
        assert total == 3
        assert sum(len(items) for items in items_by_sale.values()) == 4


def _run_concurrently(workers: int, target) -> tuple[list, list[Exception]]:
    barrier = threading.Barrier(workers)
    results: list = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def run():
        barrier.wait()
        try:
            outcome = target()
            with lock:
                results.append(outcome)
        except Exception as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


def test_concurrent_sales_do_not_lose_updates(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    _stock_in(session_local, product_id, 100)

    def sell_three():
        db = session_local()
        try:
            return _sell(db, (product_id, 3))
        finally:
            db.close()

    results, errors = _run_concurrently(10, sell_three)

    assert errors == []
    assert len(results) == 10
    assert _live_stock(session_local, product_id) == 70
    with session_local() as db:
        record = find_daily_record(db, product_id, SALE_DAY)
        assert record.sold_quantity == 30
        assert record.closing_stock == 70
        assert record.closes()
        assert validate_ledger_integrity(db, SALE_DAY).valid


def test_concurrent_sales_never_oversell(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    _stock_in(session_local, product_id, 10)

    def sell_one():
        db = session_local()
        try:
            return _sell(db, (product_id, 1))
        finally:
            db.close()

    results, errors = _run_concurrently(15, sell_one)

    assert len(results) == 10
    assert len(errors) == 5
    assert all(isinstance(error, InsufficientStockError) for error in errors)
    assert _live_stock(session_local, product_id) == 0
    with session_local() as db:
        record = db.execute(
            select(DailyStockRecord).where(DailyStockRecord.product_id == product_id)
        ).scalar_one()
        assert record.sold_quantity == 10
        assert record.closing_stock == 0
