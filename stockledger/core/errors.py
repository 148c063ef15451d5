"""
Typed errors raised by the stock ledger services.

Every error carries a machine-readable ``code``, the HTTP status the API layer
answers with, a ``retryable`` flag and a ``details`` dict with structured data,
so callers branch on the type and never on the message text.

    StockLedgerError
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- ReconciliationNotFoundError
    |   +-- ReconciliationItemNotFoundError
    +-- ProductInactiveError
    +-- InsufficientStockError
    +-- InvalidQuantityError
    +-- DuplicateReconciliationError
    +-- TerminalStateViolationError
    +-- BackdatedMutationError
    +-- FutureLedgerDayError
    +-- ConcurrencyError (retryable)
    |   +-- ConflictError
    |   +-- LockTimeoutError
    +-- InvariantViolationError (fatal)
"""

from typing import Any


class StockLedgerError(Exception):
    code: str = "stock_ledger_error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_details(self) -> dict[str, Any]:
        return {"retryable": self.retryable, **self.details}


class NotFoundError(StockLedgerError):
    code = "not_found"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}", product_id=product_id)


class ReconciliationNotFoundError(NotFoundError):
    def __init__(self, reconciliation_id: str):
        self.reconciliation_id = reconciliation_id
        super().__init__(
            f"Reconciliation not found: {reconciliation_id}",
            reconciliation_id=reconciliation_id,
        )


class ReconciliationItemNotFoundError(NotFoundError):
    def __init__(self, reconciliation_id: str, product_id: str):
        self.reconciliation_id = reconciliation_id
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is not part of reconciliation {reconciliation_id}",
            reconciliation_id=reconciliation_id,
            product_id=product_id,
        )


class ProductInactiveError(StockLedgerError):
    code = "product_inactive"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product is inactive: {product_id}", product_id=product_id)


class InsufficientStockError(StockLedgerError):
    code = "insufficient_stock"

    def __init__(self, product_id: str, available: int, requested: int, product_name: str | None = None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.shortfall = requested - available
        label = product_name or product_id
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Required: {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
            shortfall=self.shortfall,
        )


class InvalidQuantityError(StockLedgerError):
    code = "invalid_quantity"

    def __init__(self, field: str, value: Any, message: str | None = None):
        self.field = field
        self.value = value
        super().__init__(
            message or f"{field} must be greater than zero (got {value})",
            field=field,
            value=str(value),
        )


class DuplicateReconciliationError(StockLedgerError):
    code = "duplicate_reconciliation"
    status_code = 409

    def __init__(self, reconciliation_date: str, existing_id: str | None = None):
        self.reconciliation_date = reconciliation_date
        self.existing_id = existing_id
        super().__init__(
            f"Reconciliation already exists for {reconciliation_date}",
            reconciliation_date=reconciliation_date,
            existing_id=existing_id,
        )


class TerminalStateViolationError(StockLedgerError):
    code = "terminal_state_violation"
    status_code = 409

    def __init__(self, reconciliation_id: str, status: str, action: str):
        self.reconciliation_id = reconciliation_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} reconciliation {reconciliation_id} in terminal status '{status}'",
            reconciliation_id=reconciliation_id,
            status=status,
            action=action,
        )


class BackdatedMutationError(StockLedgerError):
    code = "backdated_mutation"
    status_code = 409

    def __init__(self, product_id: str, stock_date: str, latest_date: str):
        self.product_id = product_id
        self.stock_date = stock_date
        self.latest_date = latest_date
        super().__init__(
            f"Ledger for product {product_id} already rolled forward to {latest_date}; "
            f"cannot change stock for {stock_date}",
            product_id=product_id,
            stock_date=stock_date,
            latest_date=latest_date,
        )


class FutureLedgerDayError(StockLedgerError):
    code = "future_ledger_day"

    def __init__(self, product_id: str | None, stock_date: str, today: str):
        self.product_id = product_id
        self.stock_date = stock_date
        self.today = today
        super().__init__(
            f"Cannot open a ledger day after today ({today}); got {stock_date}",
            product_id=product_id,
            stock_date=stock_date,
            today=today,
        )


class ConcurrencyError(StockLedgerError):
    code = "conflict"
    status_code = 409
    retryable = True

    def __init__(self, operation: str, attempts: int, reason: str):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} did not complete after {attempts} attempts: {reason}",
            operation=operation,
            attempts=attempts,
        )


class ConflictError(ConcurrencyError):
    code = "conflict"
    status_code = 409


class LockTimeoutError(ConcurrencyError):
    code = "lock_timeout"
    status_code = 503


class InvariantViolationError(StockLedgerError):
    """Ledger arithmetic no longer closes. Never corrected automatically."""

    code = "invariant_violation"
    status_code = 500

    def __init__(self, invariant: str, record_id: str | None, before: dict, after: dict):
        self.invariant = invariant
        self.record_id = record_id
        self.before = before
        self.after = after
        super().__init__(
            f"Ledger invariant {invariant} violated on record {record_id}",
            invariant=invariant,
            record_id=record_id,
            before=before,
            after=after,
        )
