"""
Sale stock-decrement transaction.

All line items of a sale are one unit: live counters, ledger records, the sale
and its items either all commit or none do. Products are processed in id
order so two sales touching the same products take their locks in the same
order.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.errors import InvalidQuantityError, ProductNotFoundError
from stockledger.core.id_utils import generate_shortuuid, invoice_number
from stockledger.core.money import ZERO_MONEY, to_money
from stockledger.core.observability import log_event
from stockledger.models.product import Product
from stockledger.models.sales import Sale, SaleItem
from stockledger.schemas.sales import (
    AvailabilityCommand,
    AvailabilityItemOut,
    AvailabilityOut,
    SaleCommand,
    SaleResultOut,
    StockLevelOut,
)
from stockledger.services import product_registry
from stockledger.services.audit_service import log_audit_event, log_stock_change
from stockledger.services.daily_stock_service import ensure_not_backdated, lock_daily_record, verify_closure
from stockledger.services.transactions import run_in_transaction

logger = logging.getLogger("stockledger.sales")


def _quantities_by_product(command: SaleCommand | AvailabilityCommand) -> dict[str, int]:
    if not command.items:
        raise InvalidQuantityError("items", 0, message="A sale needs at least one item")

    quantities: dict[str, int] = {}
    for item in command.items:
        if item.quantity <= 0:
            raise InvalidQuantityError(f"items[{item.product_id}].quantity", item.quantity)
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    return quantities


def _price_lines(
    command: SaleCommand,
    products: dict[str, Product],
    tax_rate: Decimal,
) -> list[tuple[str, int, Decimal, Decimal, Decimal]]:
    lines = []
    for item in command.items:
        product = products[item.product_id]
        unit_price = to_money(item.unit_price if item.unit_price is not None else product.price)
        line_subtotal = unit_price * item.quantity
        tax_amount = to_money(line_subtotal * tax_rate)
        lines.append((item.product_id, item.quantity, unit_price, tax_amount, to_money(line_subtotal + tax_amount)))
    return lines


def apply_sale(db: Session, command: SaleCommand, *, actor_id: str) -> SaleResultOut:
    quantities = _quantities_by_product(command)
    product_ids = sorted(quantities)
    tax_rate = Decimal(str(settings.sales_tax_rate))

    def work() -> SaleResultOut:
        sale_id = generate_shortuuid()
        products = {pid: product_registry.get_active_product(db, pid) for pid in product_ids}

        new_levels: dict[str, int] = {}
        for pid in product_ids:
            new_levels[pid] = product_registry.adjust_stock(db, pid, -quantities[pid])

        stock_levels: list[StockLevelOut] = []
        for pid in product_ids:
            record = lock_daily_record(db, pid, command.sale_date)
            ensure_not_backdated(db, pid, command.sale_date)
            before = record.snapshot()
            record.add_sold(quantities[pid])
            verify_closure(record, before=before, operation="sale.apply")
            log_stock_change(
                db,
                actor_user_id=actor_id,
                product_id=pid,
                change_type="sale",
                old_value=new_levels[pid] + quantities[pid],
                new_value=new_levels[pid],
                reference_type="sale",
                reference_id=sale_id,
                stock_date=command.sale_date,
            )
            db.flush()
            stock_levels.append(
                StockLevelOut(
                    product_id=pid,
                    quantity_sold=quantities[pid],
                    new_stock_level=new_levels[pid],
                    sold_quantity=record.sold_quantity,
                    closing_stock=record.closing_stock,
                )
            )

        lines = _price_lines(command, products, tax_rate)
        subtotal = to_money(sum((unit_price * qty for _, qty, unit_price, _, _ in lines), ZERO_MONEY))
        tax_total = to_money(sum((tax for _, _, _, tax, _ in lines), ZERO_MONEY))
        discount = to_money(command.discount_amount)
        if discount > subtotal + tax_total:
            raise InvalidQuantityError(
                "discount_amount",
                discount,
                message=f"discount_amount {discount} exceeds the sale total {subtotal + tax_total}",
            )
        total = to_money(subtotal + tax_total - discount)

        sale = Sale(
            id=sale_id,
            invoice_no=invoice_number(command.sale_date),
            sale_date=command.sale_date,
            biller_id=actor_id,
            customer_name=command.customer_name,
            customer_phone=command.customer_phone,
            payment_method=command.payment_method,
            subtotal=subtotal,
            tax_amount=tax_total,
            discount_amount=discount,
            total_amount=total,
            notes=command.notes,
        )
        db.add(sale)
        for pid, qty, unit_price, tax_amount, line_total in lines:
            db.add(
                SaleItem(
                    id=generate_shortuuid(),
                    sale_id=sale.id,
                    product_id=pid,
                    quantity=qty,
                    unit_price=unit_price,
                    tax_amount=tax_amount,
                    line_total=line_total,
                )
            )

        log_audit_event(
            db,
            actor_user_id=actor_id,
            action="sale.create",
            target_type="sale",
            target_id=sale.id,
            metadata_json={
                "invoice_no": sale.invoice_no,
                "sale_date": command.sale_date.isoformat(),
                "payment_method": command.payment_method,
                "items_count": len(command.items),
                "total": float(total),
            },
        )
        db.flush()
        return SaleResultOut(
            id=sale.id,
            invoice_no=sale.invoice_no,
            sale_date=command.sale_date,
            subtotal=float(subtotal),
            tax_amount=float(tax_total),
            discount_amount=float(discount),
            total_amount=float(total),
            items_count=len(command.items),
            stock_levels=stock_levels,
        )

    result = run_in_transaction(db, work, operation="sale.apply")
    log_event(
        logger,
        logging.INFO,
        "ledger.sale_applied",
        sale_id=result.id,
        invoice_no=result.invoice_no,
        sale_date=result.sale_date.isoformat(),
        items_count=result.items_count,
        stock_levels=[level.model_dump() for level in result.stock_levels],
        actor_id=actor_id,
    )
    return result


def list_sales(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], dict[str, list[SaleItem]], int]:
    count_stmt = select(func.count(Sale.id))
    stmt = select(Sale)
    if start_date:
        count_stmt = count_stmt.where(Sale.sale_date >= start_date)
        stmt = stmt.where(Sale.sale_date >= start_date)
    if end_date:
        count_stmt = count_stmt.where(Sale.sale_date <= end_date)
        stmt = stmt.where(Sale.sale_date <= end_date)

    total = int(db.execute(count_stmt).scalar_one())
    sales = list(
        db.execute(stmt.order_by(Sale.sale_date.desc(), Sale.created_at.desc()).offset(offset).limit(limit))
        .scalars()
        .all()
    )

    items_by_sale: dict[str, list[SaleItem]] = {sale.id: [] for sale in sales}
    if sales:
        item_rows = db.execute(
            select(SaleItem).where(SaleItem.sale_id.in_(list(items_by_sale))).order_by(SaleItem.product_id)
        ).scalars().all()
        for item in item_rows:
            items_by_sale[item.sale_id].append(item)
    return sales, items_by_sale, total


def validate_availability(db: Session, command: AvailabilityCommand) -> AvailabilityOut:
    """
    Check a cart against live stock without touching it.

    Unknown, inactive or short products make the cart invalid. Products whose
    stock is at or below their reorder level only add a warning.
    """
    quantities = _quantities_by_product(command)
    items: list[AvailabilityItemOut] = []
    errors: list[str] = []
    warnings: list[str] = []

    for pid in sorted(quantities):
        requested = quantities[pid]
        try:
            product = product_registry.get_product(db, pid)
        except ProductNotFoundError:
            errors.append(f"Product not found: {pid}")
            items.append(AvailabilityItemOut(product_id=pid, requested=requested, sufficient=False))
            continue

        sufficient = product.is_active and product.stock_quantity >= requested
        if not product.is_active:
            errors.append(f"{product.name} is inactive")
        elif not sufficient:
            errors.append(
                f"Insufficient stock for {product.name}. "
                f"Available: {product.stock_quantity}, Required: {requested}"
            )
        low = product.min_stock_level > 0 and product.stock_quantity <= product.min_stock_level
        if low:
            warnings.append(f"{product.name} is at or below minimum stock level ({product.min_stock_level})")
        items.append(
            AvailabilityItemOut(
                product_id=pid,
                name=product.name,
                requested=requested,
                available=product.stock_quantity,
                sufficient=sufficient,
                at_or_below_min_level=low,
            )
        )

    return AvailabilityOut(valid=not errors, items=items, errors=errors, warnings=warnings)
