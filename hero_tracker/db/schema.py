"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. at the start of every
scrape run, or in tests).

Tables:
  1. snapshots    — one row per observation of a combination. The
                    ``UNIQUE(mode, input, region, tier, map, snapshot_day)``
                    constraint is the one-snapshot-per-combination-per-day
                    invariant; it is enforced here, not in application code,
                    so it holds even under concurrent orchestrator runs.
  2. hero_stats   (→ snapshots, ON DELETE CASCADE) — per-hero rows.
  3. run_records  — one row per orchestrator run, for health reporting.

Timestamps are fixed-width UTC text (see ``utils.time_utils``), so
``ORDER BY captured_at`` is chronological.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS snapshots (
    snapshot_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    captured_at     TEXT    NOT NULL,
    snapshot_day    TEXT    NOT NULL,
    mode            TEXT    NOT NULL,
    input           TEXT    NOT NULL,
    region          TEXT    NOT NULL,
    tier            TEXT    NOT NULL,
    map             TEXT    NOT NULL DEFAULT 'all-maps',
    content_digest  TEXT    NOT NULL,
    hero_count      INTEGER NOT NULL CHECK (hero_count > 0),
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (mode, input, region, tier, map, snapshot_day)
);
"""

_DDL_SNAPSHOTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_snapshots_lookup
    ON snapshots(mode, input, region, tier, map, captured_at DESC);

CREATE INDEX IF NOT EXISTS idx_snapshots_captured
    ON snapshots(captured_at DESC);

CREATE INDEX IF NOT EXISTS idx_snapshots_digest
    ON snapshots(content_digest);
"""

_DDL_HERO_STATS = """
CREATE TABLE IF NOT EXISTS hero_stats (
    stat_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id  INTEGER NOT NULL REFERENCES snapshots(snapshot_id) ON DELETE CASCADE,
    hero         TEXT    NOT NULL,
    pick_rate    REAL,
    win_rate     REAL,
    UNIQUE (snapshot_id, hero)
);
"""

_DDL_HERO_STATS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_hero_stats_hero
    ON hero_stats(hero);
"""

_DDL_RUN_RECORDS = """
CREATE TABLE IF NOT EXISTS run_records (
    run_id             INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug           TEXT    NOT NULL UNIQUE,
    status             TEXT    NOT NULL DEFAULT 'running'
                       CHECK (status IN ('running', 'success', 'partial', 'failed')),
    started_at         TEXT    NOT NULL,
    completed_at       TEXT,
    combination_count  INTEGER NOT NULL DEFAULT 0,
    snapshots_created  INTEGER NOT NULL DEFAULT 0,
    snapshots_skipped  INTEGER NOT NULL DEFAULT 0,
    partial_count      INTEGER NOT NULL DEFAULT 0,
    errors             TEXT    NOT NULL DEFAULT '[]',
    duration_ms        INTEGER,
    cancelled          INTEGER NOT NULL DEFAULT 0
);
"""

_DDL_RUN_RECORDS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_run_records_started
    ON run_records(started_at DESC);
"""

# ── Ordered list of all DDL to apply ──────────────────────────────────────────

_ALL_DDL: list[str] = [
    _DDL_SNAPSHOTS,
    _DDL_SNAPSHOTS_INDEXES,
    _DDL_HERO_STATS,
    _DDL_HERO_STATS_INDEXES,
    _DDL_RUN_RECORDS,
    _DDL_RUN_RECORDS_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "snapshots",
    "hero_stats",
    "run_records",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.debug("Schema applied: %d tables verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database (sorted alphabetically)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database (sorted alphabetically)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
