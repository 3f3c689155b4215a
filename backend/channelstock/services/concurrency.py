# Overview: Service-layer concurrency primitives: row locks, write transactions, status CAS, retry.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db
from ..state_machine import StateMachine

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, begin_write() provides the equivalent serialization.
    """
    return query.with_for_update()


def lock_for_share(query):
    """SELECT ... FOR SHARE: blocks status writers, not other readers."""
    return query.with_for_update(read=True)


def begin_write() -> None:
    """
    Start the write transaction up front.

    SQLite only takes its write lock at the first INSERT/UPDATE, so two
    sessions can both read a ledger row before either writes. BEGIN IMMEDIATE
    takes the lock before the read. Must be the first statement of the unit.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def compare_and_set_status(
    model,
    row_id: int,
    *,
    expected: str,
    new: str,
    entity: str,
    values: dict | None = None,
) -> None:
    """
    UPDATE model SET status = new WHERE id = row_id AND status = expected.

    Raises ConcurrencyConflict when no row matched, i.e. someone else moved
    the row out of `expected` after we read it.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.status == expected)
        .values(status=new, **(values or {}))
        .execution_options(synchronize_session="evaluate")
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrencyConflict(
            entity,
            row_id,
            f"{entity} {row_id} is no longer '{expected}'; another request changed it first",
        )


def transition(obj, machine: StateMachine, event: str, **values) -> tuple[str, str]:
    """
    Apply `event` to obj through its state machine with a status CAS.

    Returns (previous_status, new_status). Raises InvalidTransition when the
    table does not allow the event from obj's current status.
    """
    previous = obj.status
    new = machine.next_state(previous, event, entity_id=obj.id)
    compare_and_set_status(
        type(obj),
        obj.id,
        expected=previous,
        new=new,
        entity=machine.entity,
        values=values,
    )
    logger.info("%s %s: %s --%s--> %s", machine.entity, obj.id, previous, event, new)
    return previous, new


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB unit of work, rolling back on any failure.

    Retries on OperationalError only (database locked, deadlock detected):
    those failures happen before any business decision was taken. Business
    conflicts are never retried here; StaleDataError surfaces to the caller
    as ConcurrencyConflict.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Database busy, retrying (attempt %d of %d)", attempt + 2, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except StaleDataError as exc:
            db.session.rollback()
            # the ORM does not report which instance went stale
            raise ConcurrencyConflict("versioned_row", None, str(exc)) from exc
        except Exception:
            db.session.rollback()
            raise
