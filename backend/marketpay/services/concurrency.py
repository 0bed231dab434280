# Overview: Row locking and retry helpers shared by the payment ledger and period allocator.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Lock the selected rows for the rest of the database transaction.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; PostgreSQL honors it, which
    serializes two gateway callbacks racing on the same transaction row.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Run a unit of work, retrying on lock and version conflicts.

    OperationalError covers deadlocks and lock timeouts; StaleDataError is
    raised when Transaction.version_id moved underneath us. retry_on adds
    caller-specific conflicts (e.g. IntegrityError from a lost insert race,
    where the retry re-reads the winner's rows). The session is rolled back
    before every retry so func starts from a clean state.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    return None
