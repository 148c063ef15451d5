from datetime import date

import pytest
from sqlalchemy import func, select

from stockledger.core.errors import InvalidQuantityError, ProductNotFoundError
from stockledger.models.daily_stock import DailyStockRecord
from stockledger.models.product import PRODUCT_STATUS_INACTIVE, Product
from stockledger.schemas.inventory import InwardCommand
from stockledger.schemas.reconciliation import FinalizeCommand, PhysicalCountCommand
from stockledger.schemas.sales import AvailabilityCommand, SaleCommand, SaleItemCommand
from stockledger.services.inward_service import record_inward
from stockledger.services.movement_service import list_stock_audit_trail, list_stock_movements
from stockledger.services.reconciliation_service import (
    create_reconciliation,
    finalize_reconciliation,
    update_physical_stock,
)
from stockledger.services.sale_service import apply_sale, validate_availability

DAY_ONE = date(2025, 9, 16)
DAY_TWO = date(2025, 9, 17)

ACTOR_HEADERS = {"X-User-Id": "user-1"}


def _trade(session_local, product_id: str) -> str:
    with session_local() as db:
        record_inward(
            db,
            InwardCommand(product_id=product_id, quantity=50, cost_per_unit=100, inward_date=DAY_ONE),
            actor_id="receiver",
        )
        sale = apply_sale(
            db,
            SaleCommand(items=[SaleItemCommand(product_id=product_id, quantity=12)], sale_date=DAY_ONE),
            actor_id="cashier",
        )
        record_inward(db, InwardCommand(product_id=product_id, quantity=6, inward_date=DAY_TWO), actor_id="receiver")
        return sale.id


def test_movements_merge_sales_and_inwards_newest_day_first(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    sale_id = _trade(session_local, product_id)

    with session_local() as db:
        movements, total = list_stock_movements(db, product_id)
        assert total == 3
        assert movements[0].movement_date == DAY_TWO
        assert movements[0].movement_type == "in"
        assert movements[0].quantity == 6

        sale_moves = [m for m in movements if m.movement_category == "sale"]
        assert len(sale_moves) == 1
        assert sale_moves[0].movement_type == "out"
        assert sale_moves[0].quantity == 12
        assert sale_moves[0].reference_id == sale_id
        assert sale_moves[0].created_by == "cashier"

        day_one, day_one_total = list_stock_movements(db, product_id, start_date=DAY_ONE, end_date=DAY_ONE)
        assert day_one_total == 2
        assert {m.movement_category for m in day_one} == {"sale", "stock_inward"}

        page, page_total = list_stock_movements(db, product_id, limit=1, offset=1)
        assert page_total == 3
        assert len(page) == 1
        assert page[0].movement_date == DAY_ONE


def test_movements_for_unknown_product(test_context):
    _, session_local = test_context
    with session_local() as db:
        with pytest.raises(ProductNotFoundError):
            list_stock_movements(db, "missing-product")
        with pytest.raises(ProductNotFoundError):
            list_stock_audit_trail(db, "missing-product")


def test_audit_trail_records_every_stock_change(test_context, make_product):
    _, session_local = test_context
    product_id = make_product()
    other_id = make_product("Gin 750ml")
    _trade(session_local, product_id)

    with session_local() as db:
        reconciliation_id = create_reconciliation(db, DAY_TWO, actor_id="auditor").id
        update_physical_stock(db, reconciliation_id, product_id, PhysicalCountCommand(physical_stock=43), actor_id="a")
        update_physical_stock(db, reconciliation_id, other_id, PhysicalCountCommand(physical_stock=0), actor_id="a")
        finalize_reconciliation(db, reconciliation_id, FinalizeCommand(), actor_id="manager")

    with session_local() as db:
        rows, total = list_stock_audit_trail(db, product_id)
        assert total == 4
        by_action = {}
        for row in rows:
            by_action.setdefault(row.action, []).append(row)
        assert len(by_action["stock.inward"]) == 2
        assert len(by_action["stock.sale"]) == 1
        assert len(by_action["stock.reconciliation"]) == 1

        sale_change = by_action["stock.sale"][0].metadata_json
        assert sale_change["old_value"] == 50
        assert sale_change["new_value"] == 38
        assert sale_change["quantity_changed"] == -12
        assert sale_change["reference_type"] == "sale"

        count_change = by_action["stock.reconciliation"][0]
        assert count_change.actor_user_id == "manager"
        assert count_change.metadata_json["old_value"] == 44
        assert count_change.metadata_json["new_value"] == 43
        assert count_change.metadata_json["reference_id"] == reconciliation_id

        page, page_total = list_stock_audit_trail(db, product_id, limit=2)
        assert page_total == 4
        assert len(page) == 2


def test_availability_reports_without_changing_stock(test_context, make_product):
    _, session_local = test_context
    plenty = make_product("Beer 650ml", stock_quantity=30, min_stock_level=5)
    short = make_product("Whisky 750ml", stock_quantity=2, min_stock_level=3)
    retired = make_product("Old Rum", stock_quantity=10, status=PRODUCT_STATUS_INACTIVE)

    with session_local() as db:
        ok = validate_availability(
            db,
            AvailabilityCommand(
                items=[
                    SaleItemCommand(product_id=plenty, quantity=10),
                    SaleItemCommand(product_id=plenty, quantity=5),
                ]
            ),
        )
        assert ok.valid is True
        assert ok.errors == []
        assert ok.items[0].requested == 15
        assert ok.items[0].available == 30

        bad = validate_availability(
            db,
            AvailabilityCommand(
                items=[
                    SaleItemCommand(product_id=short, quantity=3),
                    SaleItemCommand(product_id=retired, quantity=1),
                    SaleItemCommand(product_id="missing-product", quantity=1),
                ]
            ),
        )
        assert bad.valid is False
        assert len(bad.errors) == 3
        assert any("Available: 2, Required: 3" in error for error in bad.errors)
        assert any("at or below minimum stock level (3)" in warning for warning in bad.warnings)
        missing = next(item for item in bad.items if item.product_id == "missing-product")
        assert missing.sufficient is False
        assert missing.available is None

        with pytest.raises(InvalidQuantityError):
            validate_availability(db, AvailabilityCommand(items=[SaleItemCommand(product_id=plenty, quantity=0)]))

    with session_local() as db:
        assert db.get(Product, plenty).stock_quantity == 30
        assert db.get(Product, short).stock_quantity == 2
        assert db.execute(select(func.count(DailyStockRecord.id))).scalar_one() == 0


def test_stock_history_routes(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(stock_quantity=0)
    _trade(session_local, product_id)

    movements = client.get(f"/stock/movements/{product_id}")
    assert movements.status_code == 200, movements.text
    assert movements.json()["pagination"]["total"] == 3
    assert movements.json()["product_id"] == product_id

    audit = client.get(f"/stock/audit/{product_id}")
    assert audit.status_code == 200, audit.text
    assert audit.json()["pagination"]["total"] == 3
    assert {item["action"] for item in audit.json()["items"]} == {"stock.inward", "stock.sale"}

    missing = client.get("/stock/movements/missing-product")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"

    bad_range = client.get(
        f"/stock/movements/{product_id}", params={"start_date": "2025-09-17", "end_date": "2025-09-16"}
    )
    assert bad_range.status_code == 400


def test_validate_availability_route_needs_no_actor(test_context, make_product):
    client, _ = test_context
    product_id = make_product(stock_quantity=4)

    response = client.post(
        "/stock/validate-availability",
        json={"items": [{"product_id": product_id, "quantity": 5}]},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["valid"] is False
    assert body["items"][0]["available"] == 4

    sale = client.post(
        "/sales",
        json={"items": [{"product_id": product_id, "quantity": 4}]},
        headers=ACTOR_HEADERS,
    )
    assert sale.status_code == 201, sale.text
