from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.db.base import Base

RECONCILIATION_IN_PROGRESS = "in_progress"
RECONCILIATION_COMPLETED = "completed"
RECONCILIATION_APPROVED = "approved"


class StockReconciliation(Base):
    __tablename__ = "stock_reconciliations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reconciliation_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    reconciliation_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RECONCILIATION_IN_PROGRESS, server_default=RECONCILIATION_IN_PROGRESS
    )
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)

    total_products: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    products_reconciled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_variance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variance_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    approved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["ReconciliationItem"]] = relationship(
        back_populates="reconciliation",
        order_by="ReconciliationItem.product_id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_stock_reconciliations_date_status", "reconciliation_date", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status == RECONCILIATION_APPROVED


class ReconciliationItem(Base):
    __tablename__ = "reconciliation_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reconciliation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_reconciliations.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    system_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    physical_stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    variance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    variance_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ledger_annotated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    reconciliation: Mapped[StockReconciliation] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("reconciliation_id", "product_id", name="ux_reconciliation_items_run_product"),
    )

    @property
    def is_counted(self) -> bool:
        return self.physical_stock is not None
