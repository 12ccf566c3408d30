# Overview: Locking and retry helpers shared by every ledger write.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

CONCURRENCY_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking to a stock record query.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the StockRecord
    version_id check is what rejects a lost update.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=CONCURRENCY_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (another writer bumped a StockRecord version first). func must be safe
    to run again from scratch: it re-reads everything it needs.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_integrity: bool = False,
):
    """
    Run func and commit once; roll back on any failure.

    This is the transaction boundary for ledger operations: either every
    stock write and movement made by func is committed, or none is.

    retry_integrity also retries IntegrityError, for operations whose only
    unique constraint is the lazily-created StockRecord key.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    retry_on = CONCURRENCY_ERRORS + (IntegrityError,) if retry_integrity else CONCURRENCY_ERRORS
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base, retry_on=retry_on)
