"""
Base repository providing shared SQLite execution helpers.

Repositories receive an open ``sqlite3.Connection`` at construction time.
Transaction scope (commit / rollback) belongs to the caller — normally the
``SnapshotStore``, which opens one connection per logical operation via
``get_connection()``.

Design:
  - No ORM — all SQL is explicit, parameterized, and lives in repository
    methods.
  - Repositories speak Pydantic models, not raw dicts.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

Params = Sequence[Any] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        logger.debug("SQL: %s | params: %s", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list[Params]) -> sqlite3.Cursor:
        logger.debug("SQL (many): %s | count: %d", " ".join(sql.split()), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def fetch_scalar(self, sql: str, params: Params = ()) -> Any:
        """Return the first column of the first row, or ``None`` if no row."""
        row = self.execute(sql, params).fetchone()
        return row[0] if row is not None else None
