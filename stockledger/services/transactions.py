import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.config import settings
from stockledger.core.errors import ConflictError, LockTimeoutError
from stockledger.core.observability import log_event

T = TypeVar("T")

logger = logging.getLogger("stockledger.ledger")

# lock_not_available
_LOCK_TIMEOUT_SQLSTATES = {"55P03"}
# serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}

LOCK_TIMEOUT = "lock_timeout"
CONFLICT = "conflict"


def classify_contention(exc: Exception) -> str | None:
    """Return LOCK_TIMEOUT / CONFLICT for retryable contention errors, else None."""
    if isinstance(exc, StaleDataError):
        return CONFLICT
    if not isinstance(exc, DBAPIError):
        return None
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _LOCK_TIMEOUT_SQLSTATES:
        return LOCK_TIMEOUT
    if sqlstate in _CONFLICT_SQLSTATES:
        return CONFLICT
    if isinstance(exc, OperationalError) and "database is locked" in str(orig).lower():
        return LOCK_TIMEOUT
    return None


def _apply_lock_timeout(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.ledger_lock_timeout_ms)}ms'"))


def _backoff(attempt: int) -> None:
    base_ms = settings.ledger_retry_backoff_ms
    if base_ms <= 0:
        return
    delay_ms = base_ms * (2 ** (attempt - 1))
    time.sleep(random.uniform(delay_ms / 2, delay_ms) / 1000)


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    operation: str,
    max_attempts: int | None = None,
) -> T:
    """
    Run ``work`` in its own transaction and commit it.

    Lock timeouts, deadlocks, serialization failures and stale-version writes
    roll the whole unit back and re-run it with backoff. Anything else rolls
    back and propagates unchanged. ``work`` must therefore be safe to re-run
    from scratch.
    """
    attempts = max_attempts or settings.ledger_max_retries
    last_kind = CONFLICT
    last_reason = "unknown"

    for attempt in range(1, attempts + 1):
        try:
            _apply_lock_timeout(db)
            result = work()
            db.commit()
            return result
        except (StaleDataError, DBAPIError) as exc:
            db.rollback()
            kind = classify_contention(exc)
            if kind is None:
                raise
            last_kind = kind
            last_reason = str(exc.orig) if isinstance(exc, DBAPIError) else str(exc)
            log_event(
                logger,
                logging.WARNING,
                "ledger.retry",
                operation=operation,
                attempt=attempt,
                max_attempts=attempts,
                kind=kind,
                reason=last_reason,
            )
            if attempt < attempts:
                _backoff(attempt)
        except Exception:
            db.rollback()
            raise

    if last_kind == LOCK_TIMEOUT:
        raise LockTimeoutError(operation, attempts, last_reason)
    raise ConflictError(operation, attempts, last_reason)
