import pytest
import os
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LEDGER_RETRY_BACKOFF_MS", "5")

import stockledger.models  # noqa: F401
from stockledger.core.deps import get_db
from stockledger.core.id_utils import generate_shortuuid
from stockledger.db.base import Base
from stockledger.db.session import build_engine
from stockledger.main import app
from stockledger.models.product import PRODUCT_STATUS_ACTIVE, Category, Product


@pytest.fixture()
def test_context(tmp_path):
    # File-backed so worker threads get their own connections to one database.
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def make_product(test_context):
    _, session_local = test_context

    def _make(
        name: str = "Whisky 750ml",
        *,
        stock_quantity: int = 0,
        price: str = "150.00",
        cost_per_unit: str = "100.00",
        min_stock_level: int = 0,
        status: str = PRODUCT_STATUS_ACTIVE,
        category_name: str | None = None,
    ) -> str:
        with session_local() as db:
            category_id = None
            if category_name:
                category = db.execute(
                    select(Category).where(Category.name == category_name)
                ).scalar_one_or_none()
                if category is None:
                    category = Category(id=generate_shortuuid(), name=category_name)
                    db.add(category)
                    db.flush()
                category_id = category.id
            product = Product(
                id=generate_shortuuid(),
                name=name,
                category_id=category_id,
                price=Decimal(price),
                cost_per_unit=Decimal(cost_per_unit),
                stock_quantity=stock_quantity,
                min_stock_level=min_stock_level,
                status=status,
            )
            db.add(product)
            db.commit()
            return product.id

    return _make
