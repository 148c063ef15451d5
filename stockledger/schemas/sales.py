from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from stockledger.schemas.common import PaginationMeta


PaymentMethod = Literal["cash", "upi", "credit", "mixed"]


class SaleItemCommand(BaseModel):
    product_id: str = Field(min_length=1, max_length=36)
    quantity: int
    unit_price: Decimal | None = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class SaleCommand(BaseModel):
    """Closed input for a sale; all items commit or none do."""

    items: List[SaleItemCommand]
    sale_date: date = Field(default_factory=date.today)
    payment_method: PaymentMethod = "cash"
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    customer_name: Optional[str] = Field(default=None, max_length=100)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        json_schema_extra={
            "example": {
                "sale_date": "2025-09-16",
                "payment_method": "cash",
                "items": [
                    {
                        "product_id": "product-id-here",
                        "quantity": 2,
                        "unit_price": 120.0,
                    }
                ],
            }
        },
    )


class StockLevelOut(BaseModel):
    product_id: str
    quantity_sold: int
    new_stock_level: int
    sold_quantity: int
    closing_stock: int


class SaleResultOut(BaseModel):
    id: str
    invoice_no: str
    sale_date: date
    subtotal: float
    tax_amount: float
    discount_amount: float
    total_amount: float
    items_count: int
    stock_levels: list[StockLevelOut]


class SaleItemOut(BaseModel):
    product_id: str
    quantity: int
    unit_price: float
    tax_amount: float
    line_total: float

    model_config = ConfigDict(from_attributes=True)


class SaleOut(BaseModel):
    id: str
    invoice_no: str
    sale_date: date
    biller_id: str
    payment_method: PaymentMethod
    customer_name: Optional[str] = None
    subtotal: float
    tax_amount: float
    discount_amount: float
    total_amount: float
    created_at: datetime | None = None
    items: list[SaleItemOut]


class SaleListOut(BaseModel):
    pagination: PaginationMeta
    start_date: date | None = None
    end_date: date | None = None
    items: list[SaleOut]


class AvailabilityCommand(BaseModel):
    """Cart to check against live stock; nothing is reserved or changed."""

    items: List[SaleItemCommand]

    model_config = ConfigDict(extra="forbid", frozen=True)


class AvailabilityItemOut(BaseModel):
    product_id: str
    name: str | None = None
    requested: int
    available: int | None = None
    sufficient: bool
    at_or_below_min_level: bool = False


class AvailabilityOut(BaseModel):
    valid: bool
    items: list[AvailabilityItemOut]
    errors: list[str]
    warnings: list[str]
