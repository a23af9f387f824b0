"""Tests for hero_tracker.pipeline.change_detector."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from conftest import make_table

from hero_tracker.models.snapshot import NormalizedTable, Snapshot
from hero_tracker.pipeline.change_detector import (
    REASON_BELOW_THRESHOLD,
    REASON_CHANGED,
    REASON_DUPLICATE,
    REASON_NO_PRIOR,
    ChangeDetector,
)

_BASE = {"Ana": (5.0, 50.0), "Tracer": (8.0, 51.0)}


def _snapshot(table: NormalizedTable, combo) -> Snapshot:
    return Snapshot(
        snapshot_id=1,
        captured_at=datetime(2026, 10, 18, tzinfo=timezone.utc),
        snapshot_day=date(2026, 10, 18),
        combination=combo,
        content_digest=table.digest,
        hero_count=len(table),
        hero_rates=table.hero_rates,
    )


class TestHashOnly:
    def test_no_prior_snapshot(self):
        decision = ChangeDetector().should_persist(make_table(_BASE), None)
        assert decision.persist
        assert decision.reason == REASON_NO_PRIOR

    def test_identical_digest_skipped(self, combo):
        table = make_table(_BASE)
        decision = ChangeDetector().should_persist(table, _snapshot(table, combo))
        assert not decision.persist
        assert decision.reason == REASON_DUPLICATE

    def test_any_change_persisted_without_threshold(self, combo):
        latest = _snapshot(make_table(_BASE), combo)
        tiny = make_table({"Ana": (5.001, 50.0), "Tracer": (8.0, 51.0)})
        decision = ChangeDetector().should_persist(tiny, latest)
        assert decision.persist
        assert decision.reason == REASON_CHANGED


class TestMateriality:
    def test_below_threshold_skipped(self, combo):
        latest = _snapshot(make_table(_BASE), combo)
        small = make_table({"Ana": (5.05, 50.0), "Tracer": (8.0, 50.95)})
        decision = ChangeDetector(0.1).should_persist(small, latest)
        assert not decision.persist
        assert decision.reason == REASON_BELOW_THRESHOLD

    def test_at_threshold_is_material(self, combo):
        latest = _snapshot(make_table({"Ana": (5.0, 50.0)}), combo)
        moved = make_table({"Ana": (5.5, 50.0)})
        assert ChangeDetector(0.5).should_persist(moved, latest).persist

    def test_new_hero_always_material(self, combo):
        latest = _snapshot(make_table(_BASE), combo)
        added = make_table({**_BASE, "Juno": (0.01, 50.0)})
        decision = ChangeDetector(50.0).should_persist(added, latest)
        assert decision.persist
        assert decision.reason == REASON_CHANGED

    def test_removed_hero_always_material(self, combo):
        latest = _snapshot(make_table(_BASE), combo)
        removed = make_table({"Ana": (5.0, 50.0)})
        assert ChangeDetector(50.0).should_persist(removed, latest).persist

    def test_null_versus_value_always_material(self, combo):
        latest = _snapshot(make_table({"Ana": (None, 50.0)}), combo)
        now_known = make_table({"Ana": (0.0, 50.0)})
        assert ChangeDetector(50.0).should_persist(now_known, latest).persist

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            ChangeDetector(0)
        with pytest.raises(ValueError):
            ChangeDetector(-1.0)
