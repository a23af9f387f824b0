"""
Repository for snapshots and their per-hero rows.

A snapshot header lives in ``snapshots``; its hero rows live in
``hero_stats`` and are written in the same transaction by
``insert_snapshot()``. The caller owns the transaction — see
``SnapshotStore.insert`` for the atomic wrapper and lock-retry policy.

Uniqueness note:
  ``insert_snapshot`` lets ``sqlite3.IntegrityError`` propagate when the
  ``(combination, snapshot_day)`` constraint fires. ``find_id_for_day``
  resolves the row that already holds the slot.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from typing import Iterable, Optional

from hero_tracker.db.repositories.base import BaseRepository
from hero_tracker.models.combination import Combination, SnapshotFilter
from hero_tracker.models.snapshot import HeroRate, Snapshot, SnapshotSummary
from hero_tracker.utils.time_utils import from_db_timestamp, to_db_timestamp, utc_day

logger = logging.getLogger(__name__)

_COMBINATION_WHERE = "mode = ? AND input = ? AND region = ? AND tier = ? AND map = ?"


def _combo_params(combination: Combination) -> tuple[str, str, str, str, str]:
    p = combination.as_params()
    return p["mode"], p["input"], p["region"], p["tier"], p["map"]


class SnapshotRepository(BaseRepository):
    """Read/write access to ``snapshots`` and ``hero_stats``."""

    # ── Writes ────────────────────────────────────────────────────────────────

    def insert_snapshot(
        self,
        combination: Combination,
        content_digest: str,
        hero_rates: Iterable[HeroRate],
        captured_at: datetime,
    ) -> int:
        """Insert a snapshot header and all of its hero rows.

        Args:
            combination: Series being observed.
            content_digest: Digest of the normalized table.
            hero_rates: Normalized rows (already sorted by ``hero_id``).
            captured_at: UTC capture timestamp; its UTC day is the
                uniqueness slot.

        Returns:
            The newly assigned ``snapshot_id``.

        Raises:
            ValueError: If ``hero_rates`` is empty.
            sqlite3.IntegrityError: If the combination already has a snapshot
                on that day.
        """
        rows = list(hero_rates)
        if not rows:
            raise ValueError("Refusing to insert a snapshot with no hero rows.")

        cursor = self.execute(
            """
            INSERT INTO snapshots (
                captured_at, snapshot_day, mode, input, region, tier, map,
                content_digest, hero_count
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                to_db_timestamp(captured_at),
                utc_day(captured_at).isoformat(),
                *_combo_params(combination),
                content_digest,
                len(rows),
            ),
        )
        snapshot_id = int(cursor.lastrowid)

        self.executemany(
            """
            INSERT INTO hero_stats (snapshot_id, hero, pick_rate, win_rate)
            VALUES (?, ?, ?, ?);
            """,
            [(snapshot_id, r.hero_id, r.pick_rate, r.win_rate) for r in rows],
        )
        return snapshot_id

    # ── Point lookups ─────────────────────────────────────────────────────────

    def find_id_for_day(self, combination: Combination, day: date) -> Optional[int]:
        """Return the id of the snapshot occupying ``(combination, day)``, if any."""
        value = self.fetch_scalar(
            f"""
            SELECT snapshot_id FROM snapshots
            WHERE {_COMBINATION_WHERE} AND snapshot_day = ?;
            """,
            (*_combo_params(combination), day.isoformat()),
        )
        return int(value) if value is not None else None

    def exists(self, combination: Combination, content_digest: str, day: date) -> bool:
        """True if ``combination`` has a snapshot with ``content_digest`` on ``day``."""
        value = self.fetch_scalar(
            f"""
            SELECT 1 FROM snapshots
            WHERE {_COMBINATION_WHERE}
              AND snapshot_day = ? AND content_digest = ?
            LIMIT 1;
            """,
            (*_combo_params(combination), day.isoformat(), content_digest),
        )
        return value is not None

    def get_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        row = self.fetchone(
            "SELECT * FROM snapshots WHERE snapshot_id = ?;", (snapshot_id,)
        )
        return self._with_rates(row) if row else None

    def get_latest(
        self,
        combination: Combination,
        day: Optional[date] = None,
    ) -> Optional[Snapshot]:
        """Most recent snapshot for ``combination``, optionally on one UTC day."""
        sql = f"SELECT * FROM snapshots WHERE {_COMBINATION_WHERE}"
        params: list = list(_combo_params(combination))
        if day is not None:
            sql += " AND snapshot_day = ?"
            params.append(day.isoformat())
        sql += " ORDER BY captured_at DESC, snapshot_id DESC LIMIT 1;"
        row = self.fetchone(sql, params)
        return self._with_rates(row) if row else None

    # ── Range lookups ─────────────────────────────────────────────────────────

    def get_range(
        self,
        combination: Combination,
        from_time: datetime,
        to_time: datetime,
    ) -> list[Snapshot]:
        """Snapshots with ``from_time <= captured_at <= to_time``, oldest first."""
        rows = self.fetchall(
            f"""
            SELECT * FROM snapshots
            WHERE {_COMBINATION_WHERE}
              AND captured_at BETWEEN ? AND ?
            ORDER BY captured_at ASC, snapshot_id ASC;
            """,
            (*_combo_params(combination), to_db_timestamp(from_time), to_db_timestamp(to_time)),
        )
        return [self._with_rates(r) for r in rows]

    def get_range_edge(
        self,
        combination: Combination,
        from_time: datetime,
        to_time: datetime,
        newest: bool,
    ) -> Optional[Snapshot]:
        """Oldest (``newest=False``) or newest snapshot inside the window."""
        order = "DESC" if newest else "ASC"
        row = self.fetchone(
            f"""
            SELECT * FROM snapshots
            WHERE {_COMBINATION_WHERE}
              AND captured_at BETWEEN ? AND ?
            ORDER BY captured_at {order}, snapshot_id {order}
            LIMIT 1;
            """,
            (*_combo_params(combination), to_db_timestamp(from_time), to_db_timestamp(to_time)),
        )
        return self._with_rates(row) if row else None

    def list_summaries(self, snapshot_filter: SnapshotFilter) -> list[SnapshotSummary]:
        """Snapshot headers matching ``snapshot_filter``, newest first."""
        where, params = snapshot_filter.where_clause()
        rows = self.fetchall(
            f"""
            SELECT * FROM snapshots
            {where}
            ORDER BY captured_at DESC, snapshot_id DESC
            LIMIT ?;
            """,
            [*params, snapshot_filter.limit],
        )
        return [_row_to_summary(r) for r in rows]

    def get_hero_rates(self, snapshot_id: int) -> tuple[HeroRate, ...]:
        rows = self.fetchall(
            """
            SELECT hero, pick_rate, win_rate FROM hero_stats
            WHERE snapshot_id = ?
            ORDER BY hero ASC;
            """,
            (snapshot_id,),
        )
        return tuple(
            HeroRate(hero_id=r["hero"], pick_rate=r["pick_rate"], win_rate=r["win_rate"])
            for r in rows
        )

    # ── Aggregates ────────────────────────────────────────────────────────────

    def stats(self) -> tuple[int, Optional[datetime], Optional[datetime]]:
        """Return ``(total, oldest_captured_at, newest_captured_at)``."""
        row = self.fetchone(
            """
            SELECT COUNT(*) AS n,
                   MIN(captured_at) AS oldest,
                   MAX(captured_at) AS newest
            FROM snapshots;
            """
        )
        if row is None:
            raise RuntimeError("Aggregate query over snapshots returned no row.")
        oldest = from_db_timestamp(row["oldest"]) if row["oldest"] else None
        newest = from_db_timestamp(row["newest"]) if row["newest"] else None
        return int(row["n"]), oldest, newest

    def count(self) -> int:
        return int(self.fetch_scalar("SELECT COUNT(*) FROM snapshots;"))

    def count_hero_rows(self) -> int:
        return int(self.fetch_scalar("SELECT COUNT(*) FROM hero_stats;"))

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _with_rates(self, row: sqlite3.Row) -> Snapshot:
        summary = _row_to_summary(row)
        return Snapshot(
            **summary.model_dump(exclude={"combination"}),
            combination=summary.combination,
            hero_rates=self.get_hero_rates(summary.snapshot_id),
        )


# ── Private helper ─────────────────────────────────────────────────────────────

def _row_to_summary(row: sqlite3.Row) -> SnapshotSummary:
    """Convert a ``sqlite3.Row`` from ``snapshots`` to a ``SnapshotSummary``."""
    return SnapshotSummary(
        snapshot_id=row["snapshot_id"],
        captured_at=from_db_timestamp(row["captured_at"]),
        snapshot_day=date.fromisoformat(row["snapshot_day"]),
        combination=Combination(
            mode=row["mode"],
            input=row["input"],
            region=row["region"],
            tier=row["tier"],
            map=row["map"],
        ),
        content_digest=row["content_digest"],
        hero_count=row["hero_count"],
    )
