"""
core/db.py -- SQLAlchemy engine factory and the forward-only migration runner.

Engine:
  create_db_engine() builds a SQLAlchemy Core engine. For SQLite it disables
  the same-thread check (FastAPI runs sync handlers in a thread pool) and
  enables WAL journal mode on every new connection.

Migrations:
  The whole database carries a single integer version in the _migrations
  table. A feature package hands run_migrations() an ordered list of steps;
  step N upgrades the schema from version N to N+1. Pending steps and the
  version bump run inside ONE transaction, so a failed step leaves the schema
  exactly as it was before startup.

  Steps must be idempotent (CREATE ... IF NOT EXISTS semantics) so that a
  database created by hand, or a half-applied legacy schema, converges.

  Any failure raises MigrationError. Callers treat it as fatal: the process
  must not serve requests against a schema it does not understand.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, Table, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("hearthgate.db")

MigrationStep = Callable[[Connection], None]

_metadata = MetaData()

_migrations = Table(
    "_migrations",
    _metadata,
    Column("version", Integer, nullable=False, server_default="0"),
)


class MigrationError(RuntimeError):
    """Raised when the schema cannot be brought to the expected version."""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Return an Engine for db_url, creating the parent directory of a SQLite file if needed."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        db_file = db_url.split("///", 1)[-1]
        if db_file and not db_file.startswith((":memory:", "file:")):
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def check_database(engine: Engine) -> bool:
    """Return True if a trivial query succeeds. Used by the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        return False
    return True


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def current_version(conn: Connection) -> int:
    """Return the stored schema version, seeding the single row with 0 if absent."""
    _metadata.create_all(conn, tables=[_migrations], checkfirst=True)
    version = conn.execute(select(_migrations.c.version)).scalar()
    if version is None:
        conn.execute(_migrations.insert().values(version=0))
        return 0
    return version


def run_migrations(engine: Engine, steps: Sequence[MigrationStep]) -> int:
    """Apply every pending step in order and return the resulting version.

    Raises MigrationError if the stored version is newer than the code knows
    about, or if any step fails. The transaction is rolled back in both cases.
    """
    target = len(steps)
    try:
        with engine.begin() as conn:
            version = current_version(conn)
            if version > target:
                raise MigrationError(
                    f"Database schema version {version} is newer than this build supports ({target})."
                )
            for index in range(version, target):
                steps[index](conn)
            if version != target:
                conn.execute(_migrations.update().values(version=target))
                logger.info("Migrated database from version %d to %d", version, target)
            return target
    except SQLAlchemyError as exc:
        raise MigrationError(f"Migration failed: {exc}") from exc
