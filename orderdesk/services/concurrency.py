# Overview: Locking and retry helpers shared by every unit of work.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (OperationalError, StaleDataError)


def is_sqlite(session: Session) -> bool:
    return session.get_bind().dialect.name == "sqlite"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, begin_write() serializes writers instead.
    """
    return query.with_for_update()


def begin_write(session: Session) -> None:
    """
    Take the database write lock up front on SQLite.

    WHY: Without it two checkouts can both read "no such customer" before
    either writes. BEGIN IMMEDIATE makes the second writer wait until the
    first commits, so its reads observe the committed rows.
    """
    if is_sqlite(session):
        session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(
    func,
    *,
    session: Session,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. The session is rolled back
    before each retry and before the final exception propagates.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
