# Overview: Row locking and commit retry shared by the mutating services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the candidate QR / request rows.

    SQLite has no row locks and ignores the clause; PostgreSQL and MySQL
    serialize two approvers drawing from the same pool.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func, rolling back and retrying on lock timeouts, deadlocks and
    stale rows. Sleeps backoff_base * 2**n between tries; the last failure
    propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning("Retrying after %s (attempt %d/%d, sleeping %.2fs)",
                           type(exc).__name__, attempt, attempts, delay)
            time.sleep(delay)


def run_in_transaction(op, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run op and commit its changes as one unit of work.

    A retryable failure in op or in the commit rolls back the session and
    runs op again from scratch, so op must reload whatever rows it touches.
    Returns op's result.
    """
    def _op():
        result = op()
        db.session.commit()
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
