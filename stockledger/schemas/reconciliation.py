from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.schemas.common import PaginationMeta

ReconciliationStatus = Literal["in_progress", "completed", "approved"]


class ReconciliationCreate(BaseModel):
    reconciliation_date: date

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"reconciliation_date": "2025-09-16"}},
    )


class PhysicalCountCommand(BaseModel):
    physical_stock: int
    reason: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        json_schema_extra={"example": {"physical_stock": 36, "reason": "2 bottles broken in storage"}},
    )


class FinalizeCommand(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)

    model_config = ConfigDict(extra="forbid", frozen=True)


class ReconciliationItemOut(BaseModel):
    product_id: str
    system_stock: int
    physical_stock: int | None = None
    variance: int | None = None
    variance_value: float | None = None
    cost_per_unit: float
    reason: str | None = None
    reconciled_at: datetime | None = None
    ledger_annotated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReconciliationOut(BaseModel):
    id: str
    reconciliation_code: str
    reconciliation_date: date
    status: ReconciliationStatus
    created_by: str
    total_products: int
    products_reconciled: int
    total_variance: int
    variance_value: float
    notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None
    items: list[ReconciliationItemOut]

    model_config = ConfigDict(from_attributes=True)


class ReconciliationHeaderOut(BaseModel):
    id: str
    reconciliation_code: str
    reconciliation_date: date
    status: ReconciliationStatus
    created_by: str
    total_products: int
    products_reconciled: int
    total_variance: int
    variance_value: float
    approved_by: str | None = None
    approved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReconciliationListOut(BaseModel):
    items: list[ReconciliationHeaderOut]
    pagination: PaginationMeta


class ReconciliationStatusSummaryOut(BaseModel):
    status: ReconciliationStatus
    count: int
    total_variance: int
    variance_value: float


class ReconciliationSummaryOut(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    statuses: list[ReconciliationStatusSummaryOut]
