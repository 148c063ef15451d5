"""Product registry: the only way ledger services read or move live stock."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from stockledger.core.errors import InsufficientStockError, ProductInactiveError, ProductNotFoundError
from stockledger.core.money import to_money
from stockledger.models.product import PRODUCT_STATUS_ACTIVE, Product


def get_product(db: Session, product_id: str) -> Product:
    product = db.execute(
        select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not product:
        raise ProductNotFoundError(product_id)
    return product


def get_active_product(db: Session, product_id: str) -> Product:
    product = get_product(db, product_id)
    if not product.is_active:
        raise ProductInactiveError(product_id)
    return product


def list_active_products(db: Session, *, category_id: str | None = None) -> list[Product]:
    stmt = select(Product).where(Product.status == PRODUCT_STATUS_ACTIVE)
    if category_id:
        stmt = stmt.where(Product.category_id == category_id)
    return list(db.execute(stmt.order_by(Product.id)).scalars().all())


def adjust_stock(db: Session, product_id: str, delta: int) -> int:
    """
    Atomically add ``delta`` to the live counter and return the new quantity.

    A decrement is a single conditional UPDATE, so it either applies in full
    or raises InsufficientStockError without touching the row.
    """
    stmt = update(Product).where(Product.id == product_id)
    if delta < 0:
        stmt = stmt.where(Product.stock_quantity >= -delta)
    stmt = stmt.values(
        stock_quantity=Product.stock_quantity + delta,
        last_stock_update=datetime.now(timezone.utc),
    ).execution_options(synchronize_session=False)

    result = db.execute(stmt)
    if result.rowcount == 0:
        product = get_product(db, product_id)
        raise InsufficientStockError(
            product_id=product_id,
            available=product.stock_quantity,
            requested=-delta,
            product_name=product.name,
        )
    return get_product(db, product_id).stock_quantity


def set_cost(db: Session, product_id: str, cost_per_unit: Decimal) -> Product:
    product = get_product(db, product_id)
    product.cost_per_unit = to_money(cost_per_unit)
    return product


def list_low_stock(
    db: Session,
    *,
    default_threshold: int,
    category_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[tuple[Product, int]], int]:
    """Active products at or below their reorder level; a level of 0 falls back to ``default_threshold``."""
    threshold = case(
        (Product.min_stock_level > 0, Product.min_stock_level),
        else_=default_threshold,
    )
    filters = [Product.status == PRODUCT_STATUS_ACTIVE, Product.stock_quantity <= threshold]
    if category_id:
        filters.append(Product.category_id == category_id)

    total = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product, threshold)
        .where(*filters)
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    return [(product, int(level)) for product, level in rows], total
