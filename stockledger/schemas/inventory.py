from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.schemas.common import PaginationMeta


class InwardCommand(BaseModel):
    """Closed input for a stock-inward event. Quantities are checked by the service."""

    product_id: str = Field(min_length=1, max_length=36)
    quantity: int
    cost_per_unit: Decimal | None = None
    inward_date: date = Field(default_factory=date.today)
    supplier_name: str | None = Field(default=None, max_length=200)
    invoice_number: str | None = Field(default=None, max_length=100)
    batch_number: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None
    notes: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "quantity": 50,
                "cost_per_unit": 100.0,
                "inward_date": "2025-09-16",
                "supplier_name": "United Spirits",
                "invoice_number": "US-88121",
                "batch_number": "B-2025-09",
            }
        },
    )


class InwardOut(BaseModel):
    id: str
    product_id: str
    inward_date: date
    quantity: int
    cost_per_unit: float
    total_cost: float
    new_stock_level: int
    stock_inward: int
    closing_stock: int


class InwardRecordOut(BaseModel):
    id: str
    product_id: str
    inward_date: date
    quantity: int
    cost_per_unit: float
    total_cost: float
    supplier_name: str | None = None
    invoice_number: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None
    created_by: str
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class InwardListOut(BaseModel):
    items: list[InwardRecordOut]
    pagination: PaginationMeta


class LowStockProductOut(BaseModel):
    product_id: str
    name: str
    category_id: str | None = None
    stock_quantity: int
    min_stock_level: int
    threshold: int


class LowStockListOut(BaseModel):
    items: list[LowStockProductOut]
    pagination: PaginationMeta
