"""Tests for hero_tracker.db.schema — DDL application and constraints."""

from __future__ import annotations

import sqlite3

import pytest

from hero_tracker.db.schema import (
    ALL_TABLE_NAMES,
    apply_schema,
    get_existing_indexes,
    get_existing_tables,
)


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for name in ALL_TABLE_NAMES:
            assert name in tables

    def test_indexes_created(self, in_memory_db):
        indexes = get_existing_indexes(in_memory_db)
        assert "idx_snapshots_lookup" in indexes
        assert "idx_hero_stats_hero" in indexes

    def test_idempotent(self, in_memory_db):
        apply_schema(in_memory_db)
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))


def _insert_snapshot(conn, day="2026-10-19", digest="d1", hero_count=1) -> int:
    cur = conn.execute(
        """
        INSERT INTO snapshots (captured_at, snapshot_day, mode, input, region, tier, map,
                               content_digest, hero_count)
        VALUES (?, ?, 'competitive', 'PC', 'Europe', 'Gold', 'all-maps', ?, ?);
        """,
        (f"{day}T07:00:00.000000Z", day, digest, hero_count),
    )
    return cur.lastrowid


class TestConstraints:
    def test_one_snapshot_per_combination_per_day(self, in_memory_db):
        _insert_snapshot(in_memory_db)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_snapshot(in_memory_db, digest="d2")

    def test_next_day_allowed(self, in_memory_db):
        _insert_snapshot(in_memory_db)
        _insert_snapshot(in_memory_db, day="2026-10-20")

    def test_hero_count_positive(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            _insert_snapshot(in_memory_db, hero_count=0)

    def test_hero_rows_unique_per_snapshot(self, in_memory_db):
        sid = _insert_snapshot(in_memory_db)
        in_memory_db.execute(
            "INSERT INTO hero_stats (snapshot_id, hero, pick_rate, win_rate) VALUES (?, 'ana', 1, 2);",
            (sid,),
        )
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO hero_stats (snapshot_id, hero, pick_rate, win_rate) VALUES (?, 'ana', 3, 4);",
                (sid,),
            )

    def test_hero_rows_cascade_with_snapshot(self, in_memory_db):
        sid = _insert_snapshot(in_memory_db)
        in_memory_db.execute(
            "INSERT INTO hero_stats (snapshot_id, hero) VALUES (?, 'ana');", (sid,)
        )
        in_memory_db.execute("DELETE FROM snapshots WHERE snapshot_id = ?;", (sid,))
        assert in_memory_db.execute("SELECT COUNT(*) FROM hero_stats;").fetchone()[0] == 0

    def test_hero_rows_need_parent(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute("INSERT INTO hero_stats (snapshot_id, hero) VALUES (999, 'ana');")

    def test_run_status_check(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO run_records (run_slug, status, started_at) VALUES ('r', 'done', 'x');"
            )
