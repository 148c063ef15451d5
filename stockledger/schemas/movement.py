from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from stockledger.schemas.common import PaginationMeta


class StockMovementOut(BaseModel):
    product_id: str
    movement_type: Literal["in", "out"]
    movement_category: Literal["stock_inward", "sale"]
    movement_date: date
    quantity: int
    unit_amount: float
    total_amount: float
    reference_type: str
    reference_id: str
    reference_number: str | None = None
    created_by: str
    created_at: datetime | None = None


class StockMovementListOut(BaseModel):
    product_id: str
    items: list[StockMovementOut]
    pagination: PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_user_id: str
    action: str
    target_type: str
    target_id: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListOut(BaseModel):
    product_id: str
    items: list[AuditLogOut]
    pagination: PaginationMeta
