# Overview: Transaction helpers for order-session writes; encapsulates locking and rollback.

from __future__ import annotations

from sqlalchemy import text

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Start the current transaction as a writer.

    SQLite has no row locks, so BEGIN IMMEDIATE takes the database write
    lock up front. Two transactions can then never both read "no active
    row" and both insert. Other engines rely on lock_for_update.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(func):
    """
    Run func inside a single write transaction.

    Commits when func returns, rolls back on any exception and re-raises.
    Never retries; a rolled-back transaction leaves the prior state intact.
    """
    try:
        begin_write_transaction()
        result = func()
        db.session.commit()
        return result
    except Exception:
        db.session.rollback()
        raise
