# Overview: Transaction boundary, row locking and retry helpers shared by services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import DependencyFailureError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, timeout: float | None = None):
    """
    Execute one unit of work with retry on concurrency-related failures.

    func must do all of its writes and commit at the end. Any exception
    rolls the session back before it propagates, so a failed unit of work
    leaves no partial writes behind.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) until attempts or the operation
    deadline run out.
    """
    if timeout is None:
        timeout = current_app.config.get("OPERATION_TIMEOUT_SECONDS", 10.0)
    deadline = time.monotonic() + timeout

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            delay = backoff_base * (2 ** attempt)
            if attempt >= attempts - 1 or time.monotonic() + delay > deadline:
                current_app.logger.warning("Unit of work gave up after %d attempt(s): %s", attempt + 1, exc)
                raise DependencyFailureError("The datastore is busy, please retry") from exc
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise
