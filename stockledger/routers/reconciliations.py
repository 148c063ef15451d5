from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_current_actor, get_db
from stockledger.schemas.common import paginate
from stockledger.schemas.reconciliation import (
    FinalizeCommand,
    PhysicalCountCommand,
    ReconciliationCreate,
    ReconciliationHeaderOut,
    ReconciliationListOut,
    ReconciliationOut,
    ReconciliationStatus,
    ReconciliationSummaryOut,
)
from stockledger.services import reconciliation_service

router = APIRouter(prefix="/reconciliations", tags=["reconciliations"])


@router.post(
    "",
    response_model=ReconciliationOut,
    status_code=201,
    summary="Start a physical-count reconciliation for a date",
    responses=error_responses(400, 401, 409, 422, 500, 503),
)
def create_reconciliation(
    payload: ReconciliationCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    reconciliation = reconciliation_service.create_reconciliation(
        db, payload.reconciliation_date, actor_id=actor_id
    )
    return ReconciliationOut.model_validate(reconciliation)


@router.get(
    "",
    response_model=ReconciliationListOut,
    summary="List reconciliations",
    responses=error_responses(422, 500),
)
def list_reconciliations(
    status: ReconciliationStatus | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    rows, total = reconciliation_service.list_reconciliations(
        db,
        status=status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    items = [ReconciliationHeaderOut.model_validate(row) for row in rows]
    return ReconciliationListOut(items=items, pagination=paginate(total, limit, offset, len(items)))


@router.get(
    "/summary",
    response_model=ReconciliationSummaryOut,
    summary="Reconciliation counts and variance per status",
    responses=error_responses(422, 500),
)
def get_reconciliation_summary(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return reconciliation_service.reconciliation_summary(db, start_date=start_date, end_date=end_date)


@router.get(
    "/{reconciliation_id}",
    response_model=ReconciliationOut,
    summary="Get a reconciliation with its items",
    responses=error_responses(404, 422, 500),
)
def get_reconciliation(
    reconciliation_id: str,
    db: Session = Depends(get_db),
):
    return ReconciliationOut.model_validate(reconciliation_service.get_reconciliation(db, reconciliation_id))


@router.put(
    "/{reconciliation_id}/items/{product_id}",
    response_model=ReconciliationOut,
    summary="Record the physical count for one product",
    responses=error_responses(400, 401, 404, 409, 422, 500, 503),
)
def update_physical_stock(
    reconciliation_id: str,
    product_id: str,
    payload: PhysicalCountCommand,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    reconciliation = reconciliation_service.update_physical_stock(
        db, reconciliation_id, product_id, payload, actor_id=actor_id
    )
    return ReconciliationOut.model_validate(reconciliation)


@router.post(
    "/{reconciliation_id}/finalize",
    response_model=ReconciliationOut,
    summary="Approve a reconciliation and annotate the ledger with its counts",
    responses=error_responses(401, 404, 409, 422, 500, 503),
)
def finalize_reconciliation(
    reconciliation_id: str,
    payload: FinalizeCommand | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    reconciliation = reconciliation_service.finalize_reconciliation(
        db, reconciliation_id, payload or FinalizeCommand(), actor_id=actor_id
    )
    return ReconciliationOut.model_validate(reconciliation)
