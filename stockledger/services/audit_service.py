from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from stockledger.core.id_utils import generate_shortuuid
from stockledger.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        id=generate_shortuuid(),
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event


PRODUCT_TARGET = "product"


def log_stock_change(
    db: Session,
    *,
    actor_user_id: str,
    product_id: str,
    change_type: str,
    old_value: int,
    new_value: int,
    reference_type: str,
    reference_id: str,
    stock_date: date,
    reason: str | None = None,
) -> AuditLog:
    """Per-product audit row; these make up the product's stock audit trail."""
    return log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action=f"stock.{change_type}",
        target_type=PRODUCT_TARGET,
        target_id=product_id,
        metadata_json={
            "change_type": change_type,
            "old_value": old_value,
            "new_value": new_value,
            "quantity_changed": new_value - old_value,
            "reference_type": reference_type,
            "reference_id": reference_id,
            "stock_date": stock_date.isoformat(),
            "reason": reason,
        },
    )
