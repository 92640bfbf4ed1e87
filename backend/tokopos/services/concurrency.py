# Overview: Transaction boundary and row locking shared by every orchestrator.

"""
LOCK ORDER

Every operation that locks more than one kind of row takes them in this
order, so two transactions can wait on each other but never in a cycle:

    sales (id order) -> customer return / purchase order
        -> products (id order) -> customer -> debts (oldest first)

An operation that only needs a later kind may skip the earlier ones, but it
never goes back to an earlier kind once it holds a later one. Plain UPDATEs
count as locks too: code that changes a sale row (debt payoff, return
status) locks that sale before anything else.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistenceFailure, PosError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the session are refreshed from the locked read.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() covers it.
    """
    return query.with_for_update().populate_existing()


def begin_immediate() -> None:
    """
    On SQLite, take the database write lock up front.

    WHY: A deferred SQLite transaction only locks on its first write, so two
    checkouts could both read the same stock before either decrements it.
    BEGIN IMMEDIATE serializes writers from the first read.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_atomically(func):
    """
    Run one business operation as a single all-or-nothing transaction.

    - success: commit and return func()'s result
    - PosError (business rejection): rollback, re-raise unchanged
    - SQLAlchemyError (storage abort, lock conflict, stale version):
      rollback, raise PersistenceFailure

    No retry or backoff here; the caller decides whether to re-submit.
    """
    try:
        begin_immediate()
        result = func()
        db.session.commit()
        return result
    except PosError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Transaction aborted by the database")
        raise PersistenceFailure()
    except Exception:
        db.session.rollback()
        raise
