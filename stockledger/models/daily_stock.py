from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.core.money import stock_valuation, to_money
from stockledger.db.base import Base


class DailyStockRecord(Base):
    """
    One row per (product, calendar day).

    closing_stock is maintained incrementally by the mutators below and is
    re-checked against opening + inward - sold after each of them.
    """
    __tablename__ = "daily_stock_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    stock_date: Mapped[date] = mapped_column(Date, nullable=False)

    opening_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock_inward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sold_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closing_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    stock_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Reconciliation annotations, written only by reconciliation finalize.
    physical_stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stock_variance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reconciliation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("product_id", "stock_date", name="ux_daily_stock_records_product_date"),
        CheckConstraint("stock_inward >= 0", name="ck_daily_stock_records_inward_non_negative"),
        CheckConstraint("sold_quantity >= 0", name="ck_daily_stock_records_sold_non_negative"),
        CheckConstraint("cost_per_unit >= 0", name="ck_daily_stock_records_cost_non_negative"),
        Index("ix_daily_stock_records_date_product", "stock_date", "product_id"),
        Index("ix_daily_stock_records_reconciliation_date", "reconciliation_date"),
    )

    @property
    def expected_closing_stock(self) -> int:
        return self.opening_stock + self.stock_inward - self.sold_quantity

    def closes(self) -> bool:
        return self.closing_stock == self.expected_closing_stock

    def revalue(self) -> None:
        self.stock_value = stock_valuation(self.closing_stock, self.cost_per_unit)

    def add_inward(self, quantity: int, cost_per_unit: Decimal | None = None) -> None:
        self.stock_inward += quantity
        self.closing_stock += quantity
        if cost_per_unit is not None:
            self.cost_per_unit = to_money(cost_per_unit)
        self.revalue()

    def add_sold(self, quantity: int) -> None:
        self.sold_quantity += quantity
        self.closing_stock -= quantity
        self.revalue()

    def annotate_physical_count(
        self,
        *,
        physical_stock: int,
        variance: int,
        reconciled_at: datetime,
        reconciled_by: str,
    ) -> None:
        self.physical_stock = physical_stock
        self.stock_variance = variance
        self.reconciliation_date = reconciled_at
        self.reconciled_by = reconciled_by

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "stock_date": self.stock_date.isoformat() if self.stock_date else None,
            "opening_stock": self.opening_stock,
            "stock_inward": self.stock_inward,
            "sold_quantity": self.sold_quantity,
            "closing_stock": self.closing_stock,
            "cost_per_unit": str(self.cost_per_unit),
            "stock_value": str(self.stock_value),
            "physical_stock": self.physical_stock,
            "stock_variance": self.stock_variance,
            "version": self.version,
        }
