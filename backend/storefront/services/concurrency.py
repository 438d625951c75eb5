# Overview: Service-layer operations for concurrency; compare-and-set writes and bounded retry.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db
from ..models import OrderSequence


def compare_and_set(model, row_id: int, column, expected, values: dict) -> bool:
    """
    Conditionally update one row: only if `column` still holds one of the
    `expected` values.

    This is the only way status columns are written. The guard is evaluated
    by the database against the current row, so two writers that both read
    the same old state cannot both succeed.

    Returns True if exactly one row changed.
    """
    if isinstance(expected, str):
        expected = (expected,)
    stmt = (
        update(model)
        .where(model.id == row_id, column.in_(tuple(expected)))
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 2, backoff_base: float = 0.05):
    """
    Execute a DB operation, re-reading and retrying once on a lost race.

    Retries on ConcurrencyConflict (compare-and-set lost), OperationalError
    (locks) and StaleDataError. The last failure is surfaced to the caller.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (ConcurrencyConflict, OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def next_order_number(*, sequence: str = "orders", prefix: str = "PO", pad: int = 6) -> str:
    """
    Atomically allocate the next order number (e.g. PO-000042).

    Increments in place; creates the sequence row on first use.
    Runs inside the caller's transaction.
    """
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.name == sequence)
        .values(next_number=OrderSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = db.session.query(OrderSequence.next_number).filter_by(name=sequence).scalar()
        next_num = current - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(OrderSequence(name=sequence, next_number=2))
            next_num = 1
        except IntegrityError:
            # Another checkout created the row first
            db.session.execute(stmt)
            db.session.flush()
            current = db.session.query(OrderSequence.next_number).filter_by(name=sequence).scalar()
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"


def run_in_transaction(func, *, attempts: int = 2):
    """
    Run func() and commit as one unit; roll back on any error.

    A lost compare-and-set is retried once from a fresh read (func must
    re-read the rows it guards).
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except BaseException:
            db.session.rollback()
            raise
    return run_with_retry(_op, attempts=attempts)
