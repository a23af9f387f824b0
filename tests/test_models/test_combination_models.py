"""Tests for Combination, SnapshotFilter, build_combinations and run models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from hero_tracker.models.combination import (
    ALL_MAPS,
    DEFAULT_MAP,
    Combination,
    GameMode,
    InputDevice,
    Region,
    SnapshotFilter,
    Tier,
    build_combinations,
)
from hero_tracker.models.run import RunError, RunRecord
from hero_tracker.models.snapshot import HeroRate


class TestCombination:
    def test_defaults_map_to_all_maps(self):
        c = Combination(mode="competitive", input="PC", region="Europe", tier="Gold")
        assert c.map == DEFAULT_MAP
        assert c.label == "competitive/PC/Europe/Gold/all-maps"

    def test_is_frozen(self, combo):
        with pytest.raises(ValidationError):
            combo.tier = Tier.SILVER

    def test_hashable_and_equal_by_value(self, combo):
        twin = Combination(mode="competitive", input="PC", region="Europe", tier="Gold")
        assert {combo: 1}[twin] == 1

    def test_rejects_unknown_axis_values(self):
        with pytest.raises(ValidationError):
            Combination(mode="arcade", input="PC", region="Europe", tier="Gold")
        with pytest.raises(ValidationError):
            Combination(mode="competitive", input="PC", region="Mars", tier="Gold")

    def test_rejects_bad_map_slug(self):
        with pytest.raises(ValidationError):
            Combination(mode="competitive", input="PC", region="Europe", tier="Gold", map="Kings Row")

    def test_label_round_trip(self, other_combo):
        assert Combination.from_label(other_combo.label) == other_combo

    def test_from_label_without_map(self):
        c = Combination.from_label("quick-play/Console/Asia/All")
        assert c.map == DEFAULT_MAP

    def test_from_label_rejects_garbage(self):
        with pytest.raises(ValueError):
            Combination.from_label("competitive/PC")

    def test_rq_flag(self):
        assert GameMode.QUICK_PLAY.rq == 0
        assert GameMode.COMPETITIVE.rq == 1

    def test_as_params_uses_plain_strings(self, combo):
        assert combo.as_params() == {
            "mode": "competitive", "input": "PC", "region": "Europe",
            "tier": "Gold", "map": "all-maps",
        }


class TestBuildCombinations:
    def test_cartesian_product_size(self):
        combos = build_combinations(list(GameMode), list(InputDevice), list(Region), list(Tier))
        assert len(combos) == 2 * 2 * 3 * 8

    def test_deterministic_order(self):
        combos = build_combinations(
            [GameMode.QUICK_PLAY, GameMode.COMPETITIVE],
            [InputDevice.PC],
            [Region.AMERICAS, Region.EUROPE],
            [Tier.ALL],
        )
        assert [c.label for c in combos] == [
            "quick-play/PC/Americas/All/all-maps",
            "quick-play/PC/Europe/All/all-maps",
            "competitive/PC/Americas/All/all-maps",
            "competitive/PC/Europe/All/all-maps",
        ]

    def test_maps_axis(self):
        combos = build_combinations(["competitive"], ["PC"], ["Europe"], ["All"], ALL_MAPS)
        assert [c.map for c in combos] == ALL_MAPS
        assert len(set(ALL_MAPS)) == len(ALL_MAPS)


class TestSnapshotFilter:
    def test_empty_filter(self):
        assert SnapshotFilter().where_clause() == ("", [])

    def test_renders_bound_parameters(self):
        sql, params = SnapshotFilter(mode="competitive", region="Europe").where_clause()
        assert sql == "WHERE mode = ? AND region = ?"
        assert params == ["competitive", "Europe"]

    def test_limit_bounds(self):
        assert SnapshotFilter().limit == 30
        with pytest.raises(ValidationError):
            SnapshotFilter(limit=0)
        with pytest.raises(ValidationError):
            SnapshotFilter(limit=501)

    def test_map_value_never_interpolated(self):
        with pytest.raises(ValidationError):
            SnapshotFilter(map="x'; DROP TABLE snapshots; --")


class TestHeroRate:
    def test_metric_lookup(self):
        r = HeroRate(hero_id="ana", pick_rate=5.0, win_rate=None)
        assert r.metric("pick_rate") == 5.0
        assert r.metric("win_rate") is None

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            HeroRate(hero_id="ana").metric("kda")


class TestRunRecord:
    def test_defaults(self):
        run = RunRecord(run_slug="abc", started_at=datetime(2026, 10, 19, tzinfo=timezone.utc))
        assert run.status == "running"
        assert not run.is_terminal
        assert run.errors == []

    def test_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            RunRecord(run_slug="abc", started_at=datetime.now(timezone.utc), status="done")

    def test_mutable_counters_and_to_dict(self):
        run = RunRecord(run_slug="abc", started_at=datetime(2026, 10, 19, tzinfo=timezone.utc))
        run.snapshots_created += 2
        run.errors.append(RunError(combination="x", message="boom"))
        run.status = "partial"
        d = run.to_dict()
        assert d["snapshots_created"] == 2
        assert d["errors"] == [{"combination": "x", "message": "boom"}]
        assert run.is_terminal

    def test_error_lists_not_shared(self):
        a = RunRecord(run_slug="a", started_at=datetime.now(timezone.utc))
        b = RunRecord(run_slug="b", started_at=datetime.now(timezone.utc))
        a.errors.append(RunError(combination="x", message="y"))
        assert b.errors == []
