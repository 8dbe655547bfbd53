# Overview: Transaction helpers shared by every mutating service operation.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def compare_and_set(model, *, row_id: int, expected_version: int, values: dict, conditions=()) -> bool:
    """
    Conditional UPDATE guarded by the row's version_id.

    Returns True when exactly one row matched. The ORM identity map is not
    synchronized; callers refresh the instance they hold.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.version_id == expected_version, *conditions)
        .values(version_id=model.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the
    transaction back and propagates. Change signals for work committed
    by `func` are dispatched once it returns.
    """
    from . import change_bus

    last_exc = None
    for attempt in range(attempts):
        try:
            result = func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
            continue
        except Exception:
            db.session.rollback()
            raise
        change_bus.publish_committed()
        return result
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
