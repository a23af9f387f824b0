"""
Repository for scrape run records.

A run row is inserted once with ``status='running'`` and updated once with
its terminal status, counts, and JSON-encoded error list.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from hero_tracker.db.repositories.base import BaseRepository
from hero_tracker.models.run import RunError, RunRecord
from hero_tracker.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class RunRecordRepository(BaseRepository):
    """Read/write access to ``run_records``."""

    def insert_run(self, run: RunRecord) -> int:
        """Insert a new run record and return its ``run_id``."""
        cursor = self.execute(
            """
            INSERT INTO run_records (
                run_slug, status, started_at, combination_count
            ) VALUES (?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.status,
                to_db_timestamp(run.started_at),
                run.combination_count,
            ),
        )
        return int(cursor.lastrowid)

    def update_run(self, run: RunRecord) -> None:
        """Write the terminal state of ``run``.

        Raises:
            ValueError: If ``run`` has not been inserted yet.
        """
        if run.run_id is None:
            raise ValueError("Cannot update a RunRecord that has no run_id.")
        self.execute(
            """
            UPDATE run_records
            SET status            = ?,
                completed_at      = ?,
                combination_count = ?,
                snapshots_created = ?,
                snapshots_skipped = ?,
                partial_count     = ?,
                errors            = ?,
                duration_ms       = ?,
                cancelled         = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                to_db_timestamp(run.completed_at) if run.completed_at else None,
                run.combination_count,
                run.snapshots_created,
                run.snapshots_skipped,
                run.partial_count,
                json.dumps([e.model_dump() for e in run.errors]),
                run.duration_ms,
                int(run.cancelled),
                run.run_id,
            ),
        )

    def get_by_id(self, run_id: int) -> Optional[RunRecord]:
        row = self.fetchone("SELECT * FROM run_records WHERE run_id = ?;", (run_id,))
        return _row_to_run(row) if row else None

    def get_latest(self) -> Optional[RunRecord]:
        """Most recently started run, or ``None`` if no run has been recorded."""
        row = self.fetchone(
            "SELECT * FROM run_records ORDER BY started_at DESC, run_id DESC LIMIT 1;"
        )
        return _row_to_run(row) if row else None

    def get_recent(self, limit: int = 10) -> list[RunRecord]:
        rows = self.fetchall(
            "SELECT * FROM run_records ORDER BY started_at DESC, run_id DESC LIMIT ?;",
            (limit,),
        )
        return [_row_to_run(r) for r in rows]


# ── Private helper ─────────────────────────────────────────────────────────────

def _row_to_run(row: sqlite3.Row) -> RunRecord:
    """Convert a ``sqlite3.Row`` from ``run_records`` to a ``RunRecord``."""
    errors = [RunError(**e) for e in json.loads(row["errors"] or "[]")]
    return RunRecord(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        status=row["status"],
        started_at=from_db_timestamp(row["started_at"]),
        completed_at=from_db_timestamp(row["completed_at"]) if row["completed_at"] else None,
        combination_count=row["combination_count"],
        snapshots_created=row["snapshots_created"],
        snapshots_skipped=row["snapshots_skipped"],
        partial_count=row["partial_count"],
        errors=errors,
        duration_ms=row["duration_ms"],
        cancelled=bool(row["cancelled"]),
    )
