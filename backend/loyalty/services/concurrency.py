# Overview: Service-layer helpers for locking and transaction boundaries.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import event

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; see enable_sqlite_immediate_transactions.
    """
    return query.with_for_update()


@contextmanager
def unit_of_work():
    """
    Run a block as one atomic database transaction.

    Commits when the block finishes, rolls back and re-raises on any
    exception. This is the only place pipelines roll back; inner steps never
    attempt partial recovery, and nothing is retried.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def enable_sqlite_immediate_transactions(engine) -> None:
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two requests could both
    read a balance before either writes it. Taking the write lock up front
    serializes the whole read-modify-write, like FOR UPDATE on PostgreSQL.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
