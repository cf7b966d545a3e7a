"""
SQLite connection management.

``get_connection()`` is a context manager that:
  - Enables foreign key enforcement (OFF by default in SQLite).
  - Enables WAL journal mode so predictions can read while a training job writes.
  - Sets a busy timeout to handle lock contention gracefully.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Commits on clean exit, rolls back on exception.

``atomic()`` wraps a multi-statement write (demote ACTIVE + insert new
version, rollback swaps) in a SAVEPOINT so it is all-or-nothing whether or
not the caller already has a transaction open.

Usage::

    from demand_forecaster.db.connection import atomic, get_connection

    with get_connection("data/db/demand_forecaster.db") as conn:
        with atomic(conn, "save_model"):
            conn.execute("UPDATE ml_models ...")
            conn.execute("INSERT INTO ml_models ...")
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

_SAVEPOINT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The connection is committed on clean exit and rolled back on exception.
    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file. Use ``":memory:"`` for
            in-memory databases (useful in tests).
        wal_mode: If ``True``, enable WAL journal mode for better concurrency.
        busy_timeout_ms: Milliseconds to wait when the database is locked
            before raising ``OperationalError``.

    Yields:
        An open, configured ``sqlite3.Connection``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        # These pragmas must be set before any DML/DDL
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")

        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()


@contextmanager
def atomic(conn: sqlite3.Connection, name: str = "atomic") -> Generator[None, None, None]:
    """Run the enclosed statements inside a SAVEPOINT.

    On exception everything since the savepoint is rolled back and the error
    re-raised; on success the savepoint is released. When no outer
    transaction is open, releasing the savepoint commits.

    Args:
        conn: Open connection.
        name: Savepoint identifier (letters, digits, underscore).

    Raises:
        ValueError: If ``name`` is not a valid identifier.
    """
    if not _SAVEPOINT_NAME.match(name):
        raise ValueError(f"Invalid savepoint name: {name!r}")

    conn.execute(f"SAVEPOINT {name};")
    try:
        yield
    except Exception:
        logger.debug("Rolling back savepoint %s", name)
        conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
        conn.execute(f"RELEASE SAVEPOINT {name};")
        raise
    else:
        conn.execute(f"RELEASE SAVEPOINT {name};")
