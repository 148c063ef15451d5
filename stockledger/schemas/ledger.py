from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from stockledger.schemas.common import PaginationMeta


class DailyStockRecordOut(BaseModel):
    id: str
    product_id: str
    stock_date: date
    opening_stock: int
    stock_inward: int
    sold_quantity: int
    closing_stock: int
    cost_per_unit: float
    stock_value: float
    physical_stock: int | None = None
    stock_variance: int | None = None
    reconciliation_date: datetime | None = None
    reconciled_by: str | None = None

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "record-id",
                "product_id": "product-id",
                "stock_date": "2025-09-16",
                "opening_stock": 0,
                "stock_inward": 50,
                "sold_quantity": 12,
                "closing_stock": 38,
                "cost_per_unit": 100.0,
                "stock_value": 3800.0,
                "physical_stock": None,
                "stock_variance": None,
                "reconciliation_date": None,
                "reconciled_by": None,
            }
        },
    )


class DailyStockRecordListOut(BaseModel):
    items: list[DailyStockRecordOut]
    pagination: PaginationMeta


class DailySnapshotsOut(BaseModel):
    stock_date: date
    created: int
    existing: int


class DailySummaryOut(BaseModel):
    stock_date: date
    category_id: str | None = None
    total_products: int
    total_opening_stock: int
    total_stock_inward: int
    total_sold_quantity: int
    total_closing_stock: int
    total_stock_value: float
    products_reconciled: int
    total_stock_variance: int


class ContinuityIssueOut(BaseModel):
    product_id: str
    stock_date: date
    previous_date: date
    expected_opening: int
    actual_opening: int
    difference: int


class ContinuityReportOut(BaseModel):
    start_date: date
    end_date: date
    total_products: int
    total_records: int
    continuity_issues: int
    issues: list[ContinuityIssueOut]


class IntegrityIssueOut(BaseModel):
    product_id: str
    record_id: str | None = None
    issues: list[str]


class IntegrityReportOut(BaseModel):
    stock_date: date
    valid: bool
    total_records: int
    valid_records: int
    invalid_records: int
    issues: list[IntegrityIssueOut]
