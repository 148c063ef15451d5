from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stockledger.core.errors import (
    DuplicateReconciliationError,
    FutureLedgerDayError,
    InvalidQuantityError,
    ReconciliationItemNotFoundError,
    ReconciliationNotFoundError,
    TerminalStateViolationError,
)
from stockledger.models.product import PRODUCT_STATUS_INACTIVE
from stockledger.models.reconciliation import ReconciliationItem
from stockledger.schemas.inventory import InwardCommand
from stockledger.schemas.reconciliation import FinalizeCommand, PhysicalCountCommand
from stockledger.schemas.sales import SaleCommand, SaleItemCommand
from stockledger.services.daily_stock_service import find_daily_record
from stockledger.services.inward_service import record_inward
from stockledger.services.reconciliation_service import (
    create_reconciliation,
    finalize_reconciliation,
    get_reconciliation,
    list_reconciliations,
    reconciliation_summary,
    update_physical_stock,
)
from stockledger.services.sale_service import apply_sale

COUNT_DAY = date(2025, 9, 16)


@pytest.fixture()
def stocked_products(test_context, make_product):
    _, session_local = test_context
    whisky = make_product("Whisky 750ml", cost_per_unit="100.00")
    beer = make_product("Beer 650ml", cost_per_unit="20.00")
    make_product("Discontinued", stock_quantity=4, status=PRODUCT_STATUS_INACTIVE)

    with session_local() as db:
        record_inward(db, InwardCommand(product_id=whisky, quantity=50, inward_date=COUNT_DAY), actor_id="u")
        record_inward(db, InwardCommand(product_id=beer, quantity=24, inward_date=COUNT_DAY), actor_id="u")
        apply_sale(
            db,
            SaleCommand(items=[SaleItemCommand(product_id=whisky, quantity=12)], sale_date=COUNT_DAY),
            actor_id="u",
        )
    return whisky, beer


def test_create_snapshots_active_products(test_context, stocked_products):
    _, session_local = test_context
    whisky, beer = stocked_products

    with session_local() as db:
        reconciliation = create_reconciliation(db, COUNT_DAY, actor_id="auditor")
        assert reconciliation.status == "in_progress"
        assert reconciliation.reconciliation_code.startswith("REC-20250916-")
        assert reconciliation.created_by == "auditor"
        assert reconciliation.total_products == 2

        items = {item.product_id: item for item in reconciliation.items}
        assert set(items) == {whisky, beer}
        assert items[whisky].system_stock == 38
        assert items[beer].system_stock == 24
        assert float(items[whisky].cost_per_unit) == 100.0
        assert all(item.physical_stock is None for item in items.values())


def test_duplicate_reconciliation_rejected(test_context, stocked_products):
    _, session_local = test_context

    with session_local() as db:
        first = create_reconciliation(db, COUNT_DAY, actor_id="auditor")
        first_id = first.id
        with pytest.raises(DuplicateReconciliationError) as exc_info:
            create_reconciliation(db, COUNT_DAY, actor_id="auditor")
        assert exc_info.value.existing_id == first_id

        _, total = list_reconciliations(db)
        assert total == 1


def test_physical_count_overwrites_and_completes(test_context, stocked_products):
    _, session_local = test_context
    whisky, beer = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id

        updated = update_physical_stock(
            db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=30, reason="miscount"), actor_id="a"
        )
        item = next(i for i in updated.items if i.product_id == whisky)
        assert item.variance == -8
        assert float(item.variance_value) == -800.0
        assert updated.status == "in_progress"

        updated = update_physical_stock(
            db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=36, reason="2 broken"), actor_id="a"
        )
        item = next(i for i in updated.items if i.product_id == whisky)
        assert item.physical_stock == 36
        assert item.variance == -2
        assert item.reason == "2 broken"
        assert item.reconciled_at is not None
        assert updated.products_reconciled == 1
        assert updated.total_variance == 2

        updated = update_physical_stock(
            db, reconciliation_id, beer, PhysicalCountCommand(physical_stock=25), actor_id="a"
        )
        assert updated.status == "completed"
        assert updated.products_reconciled == 2
        assert updated.total_variance == 3
        assert float(updated.variance_value) == -180.0


def test_physical_count_validation(test_context, stocked_products):
    _, session_local = test_context
    whisky, _ = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id

        with pytest.raises(InvalidQuantityError):
            update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=-1), actor_id="a")
        with pytest.raises(ReconciliationItemNotFoundError):
            update_physical_stock(db, reconciliation_id, "unknown", PhysicalCountCommand(physical_stock=1), actor_id="a")
        with pytest.raises(ReconciliationNotFoundError):
            update_physical_stock(db, "missing", whisky, PhysicalCountCommand(physical_stock=1), actor_id="a")


def test_finalize_annotates_ledger_without_touching_arithmetic(test_context, stocked_products):
    _, session_local = test_context
    whisky, beer = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id
        update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=36), actor_id="a")

        finalized = finalize_reconciliation(
            db, reconciliation_id, FinalizeCommand(notes="Month-end count"), actor_id="manager"
        )
        assert finalized.status == "approved"
        assert finalized.approved_by == "manager"
        assert finalized.approved_at is not None
        assert finalized.notes == "Month-end count"

    with session_local() as db:
        whisky_record = find_daily_record(db, whisky, COUNT_DAY)
        assert whisky_record.physical_stock == 36
        assert whisky_record.stock_variance == -2
        assert whisky_record.reconciled_by == "manager"
        assert whisky_record.reconciliation_date is not None
        assert whisky_record.opening_stock == 0
        assert whisky_record.stock_inward == 50
        assert whisky_record.sold_quantity == 12
        assert whisky_record.closing_stock == 38
        assert whisky_record.closes()

        # Uncounted items are left alone.
        beer_record = find_daily_record(db, beer, COUNT_DAY)
        assert beer_record.physical_stock is None
        assert beer_record.stock_variance is None


def test_finalize_creates_missing_ledger_record(test_context, stocked_products):
    _, session_local = test_context
    whisky, _ = stocked_products
    later_day = date(2025, 9, 20)

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, later_day, actor_id="auditor").id
        update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=38), actor_id="a")
        finalize_reconciliation(db, reconciliation_id, FinalizeCommand(), actor_id="manager")

    with session_local() as db:
        record = find_daily_record(db, whisky, later_day)
        assert record.opening_stock == 38
        assert record.closing_stock == 38
        assert record.physical_stock == 38
        assert record.stock_variance == 0


def test_approved_reconciliation_is_terminal(test_context, stocked_products):
    _, session_local = test_context
    whisky, _ = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id
        finalize_reconciliation(db, reconciliation_id, FinalizeCommand(), actor_id="manager")

        with pytest.raises(TerminalStateViolationError):
            finalize_reconciliation(db, reconciliation_id, FinalizeCommand(), actor_id="manager")
        with pytest.raises(TerminalStateViolationError) as exc_info:
            update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=1), actor_id="a")
        assert exc_info.value.status == "approved"

        assert get_reconciliation(db, reconciliation_id).status == "approved"


def test_finalize_resumes_after_partial_annotation(test_context, stocked_products):
    _, session_local = test_context
    whisky, beer = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id
        update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=36), actor_id="a")
        update_physical_stock(db, reconciliation_id, beer, PhysicalCountCommand(physical_stock=20), actor_id="a")

    # An earlier finalize attempt got as far as the whisky item.
    stamped_at = datetime(2025, 9, 16, 21, 0, tzinfo=timezone.utc)
    with session_local() as db:
        item = db.execute(
            select(ReconciliationItem).where(
                ReconciliationItem.reconciliation_id == reconciliation_id,
                ReconciliationItem.product_id == whisky,
            )
        ).scalar_one()
        item.ledger_annotated_at = stamped_at
        db.commit()

    with session_local() as db:
        finalize_reconciliation(db, reconciliation_id, FinalizeCommand(), actor_id="manager")

    with session_local() as db:
        assert find_daily_record(db, whisky, COUNT_DAY).physical_stock is None
        beer_record = find_daily_record(db, beer, COUNT_DAY)
        assert beer_record.physical_stock == 20
        assert beer_record.stock_variance == -4
        items = get_reconciliation(db, reconciliation_id).items
        assert all(item.ledger_annotated_at is not None for item in items)


def test_recount_clears_previous_annotation_stamp(test_context, stocked_products):
    _, session_local = test_context
    whisky, _ = stocked_products

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, COUNT_DAY, actor_id="auditor").id
        update_physical_stock(db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=36), actor_id="a")
        item = db.execute(
            select(ReconciliationItem).where(ReconciliationItem.product_id == whisky)
        ).scalar_one()
        item.ledger_annotated_at = datetime.now(timezone.utc)
        db.commit()

        updated = update_physical_stock(
            db, reconciliation_id, whisky, PhysicalCountCommand(physical_stock=37), actor_id="a"
        )
        item = next(i for i in updated.items if i.product_id == whisky)
        assert item.ledger_annotated_at is None


def test_list_and_summary(test_context, stocked_products):
    _, session_local = test_context
    whisky, _ = stocked_products

    with session_local() as db:
        first_id = create_reconciliation(db, date(2025, 9, 1), actor_id="auditor").id
        create_reconciliation(db, date(2025, 9, 2), actor_id="auditor")
        update_physical_stock(db, first_id, whisky, PhysicalCountCommand(physical_stock=40), actor_id="a")
        finalize_reconciliation(db, first_id, FinalizeCommand(), actor_id="manager")

        rows, total = list_reconciliations(db, status="approved")
        assert total == 1
        assert rows[0].id == first_id

        rows, total = list_reconciliations(db, start_date=date(2025, 9, 2))
        assert total == 1
        assert rows[0].reconciliation_date == date(2025, 9, 2)

        summary = reconciliation_summary(db)
        by_status = {entry.status: entry for entry in summary.statuses}
        assert by_status["approved"].count == 1
        assert by_status["approved"].total_variance == 2
        assert by_status["approved"].variance_value == 200.0
        assert by_status["in_progress"].count == 1
        assert by_status["completed"].count == 0


def test_code_collision_is_not_reported_as_duplicate_date(test_context, stocked_products, monkeypatch):
    _, session_local = test_context
    monkeypatch.setattr(
        "stockledger.services.reconciliation_service.reconciliation_code",
        lambda target_date: "REC-FIXED-0001",
    )

    with session_local() as db:
        create_reconciliation(db, date(2025, 9, 1), actor_id="auditor")
        with pytest.raises(IntegrityError):
            create_reconciliation(db, date(2025, 9, 2), actor_id="auditor")

    with session_local() as db:
        _, total = list_reconciliations(db)
        assert total == 1


def test_reconciliation_for_a_future_day_is_refused(test_context, stocked_products):
    _, session_local = test_context
    tomorrow = date.today() + timedelta(days=1)

    with session_local() as db:
        with pytest.raises(FutureLedgerDayError):
            create_reconciliation(db, tomorrow, actor_id="auditor")
        _, total = list_reconciliations(db)
        assert total == 0
