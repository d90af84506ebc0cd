# Overview: Locking and retry helpers shared by the ledger services.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    The store gave up (lock timeout, deadlock) after all attempts.

    Nothing was committed. The terminal may resubmit; order intake is
    idempotent on (device_id, ordered_at).
    """


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the current unit of work holding the database write lock.

    SQLite has no row locks, so the read-then-write sections (daily sequence,
    dedup check, stock balances, shift totals) take the RESERVED lock up front
    with BEGIN IMMEDIATE. Other backends rely on lock_for_update().
    """
    if db.engine.dialect.name != "sqlite":
        return
    # pysqlite opens its own transaction lazily before the first DML
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError.
    Any other exception rolls the session back and propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise RetryableError("Store busy, please retry") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
