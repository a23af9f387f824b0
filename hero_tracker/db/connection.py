"""
SQLite connection management.

Provides a context manager ``get_connection()`` that:
  - Enables foreign key enforcement (OFF by default in SQLite) so that
    ``hero_stats`` rows cascade with their snapshot.
  - Enables WAL journal mode so readers (query layer) never block on the
    orchestrator's writer, and vice versa.
  - Sets a short busy timeout; longer contention is handled by the
    snapshot store's own retry budget (see ``is_lock_error``).
  - Optionally opens the transaction with ``BEGIN IMMEDIATE`` so a writer
    takes the write lock up front instead of failing half-way through.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Commits on clean exit, rolls back on exception.

Usage::

    from hero_tracker.db.connection import get_connection

    with get_connection("data/db/hero_tracker.db", immediate=True) as conn:
        conn.execute("INSERT INTO ...")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

_LOCK_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def is_lock_error(exc: BaseException) -> bool:
    """Return ``True`` if ``exc`` is SQLite lock contention (SQLITE_BUSY/LOCKED)."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(m in message for m in _LOCK_MESSAGES)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 2000,
    immediate: bool = False,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The connection is committed on clean exit and rolled back on exception.
    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file. Use ``":memory:"`` for
            a throwaway in-memory database.
        wal_mode: If ``True``, enable WAL journal mode.
        busy_timeout_ms: Milliseconds SQLite itself waits on a lock before
            raising ``OperationalError``.
        immediate: If ``True``, start a ``BEGIN IMMEDIATE`` write transaction.

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
        # Pragmas must be set outside any transaction
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")

        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")

        if immediate:
            conn.execute("BEGIN IMMEDIATE;")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()
