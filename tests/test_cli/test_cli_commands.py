"""
End-to-end tests for the hero-tracker CLI using typer's CliRunner.

Every command runs against a throwaway TOML config and database under
``tmp_path``; ``scrape`` always uses the fixture client.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from hero_tracker.cli import app

runner = CliRunner()

_CONFIG = """
[database]
db_path = "{db}"
lock_retry_delay_ms = 1

[scrape]
modes = ["competitive"]
inputs = ["PC"]
regions = ["Europe"]
tiers = ["Gold", "All"]
request_delay_ms = 0
base_delay_ms = 1
min_heroes = 1

[data]
raw_dir = "{raw}"
export_dir = "{exports}"

[logging]
level = "WARNING"
log_file = ""
"""

_COMBO = ["--mode", "competitive", "--input", "PC", "--region", "Europe", "--tier", "Gold"]


@pytest.fixture
def cfg(tmp_path) -> list[str]:
    path = tmp_path / "config.toml"
    path.write_text(
        _CONFIG.format(
            db=(tmp_path / "cli.db").as_posix(),
            raw=(tmp_path / "raw").as_posix(),
            exports=(tmp_path / "exports").as_posix(),
        ),
        encoding="utf-8",
    )
    return ["--config", str(path)]


def _invoke(*args: str):
    return runner.invoke(app, list(args))


def _scrape(cfg: list[str]):
    return _invoke("scrape", "--fixture", *cfg)


class TestSetup:
    def test_validate_config(self, cfg):
        result = _invoke("validate-config", *cfg)
        assert result.exit_code == 0
        assert "Combinations:     2" in result.stdout
        assert "off (hash only)" in result.stdout

    def test_missing_config_exits_1(self, tmp_path):
        result = _invoke("validate-config", "--config", str(tmp_path / "nope.toml"))
        assert result.exit_code == 1

    def test_init_db(self, cfg, tmp_path):
        result = _invoke("init-db", *cfg)
        assert result.exit_code == 0
        assert (tmp_path / "cli.db").exists()


class TestScrape:
    def test_fixture_scrape_then_rerun_skips(self, cfg):
        first = _scrape(cfg)
        assert first.exit_code == 0, first.output
        assert "Created:      2" in first.stdout

        second = _scrape(cfg)
        assert second.exit_code == 0
        assert "Created:      0" in second.stdout
        assert "Skipped:      2" in second.stdout

    def test_dry_run_lists_plan(self, cfg, tmp_path):
        result = _invoke("scrape", "--dry-run", "--region", "Asia", *cfg)
        assert result.exit_code == 0
        assert "competitive/PC/Asia/Gold/all-maps" in result.stdout
        assert not (tmp_path / "cli.db").exists()

    def test_invalid_filter_exits_1(self, cfg):
        result = _invoke("scrape", "--fixture", "--region", "Mars", *cfg)
        assert result.exit_code == 1


class TestQueries:
    def test_snapshots_and_show(self, cfg):
        _scrape(cfg)
        listing = _invoke("snapshots", *cfg)
        assert listing.exit_code == 0
        assert "competitive/PC/Europe/Gold/all-maps" in listing.stdout

        detail = _invoke("show-snapshot", "1", *cfg)
        assert detail.exit_code == 0
        assert "soldier-76" in detail.stdout

        missing = _invoke("show-snapshot", "999", *cfg)
        assert missing.exit_code == 1

    def test_top_json(self, cfg):
        _scrape(cfg)
        result = _invoke("top", *_COMBO, "--metric", "pick_rate", "--n", "5", "--json", *cfg)
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        values = [e["value"] for e in payload["top"]]
        assert len(values) == 5
        assert values == sorted(values, reverse=True)

    def test_top_bad_metric(self, cfg):
        result = _invoke("top", *_COMBO, "--metric", "ban_rate", *cfg)
        assert result.exit_code == 1

    def test_top_without_data(self, cfg):
        result = _invoke("top", *_COMBO, *cfg)
        assert result.exit_code == 0
        assert "no snapshot available" in result.stdout

    def test_compare_json(self, cfg):
        _scrape(cfg)
        result = _invoke("compare", *_COMBO, "--json", *cfg)
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert len(rows) == 41
        assert all(r["pick_rate_delta"] == 0.0 for r in rows)
        assert all(r["start"]["timestamp"] == r["end"]["timestamp"] for r in rows)

    def test_compare_inverted_window(self, cfg):
        result = _invoke("compare", *_COMBO, "--from", "2026-10-19", "--to", "2026-10-01", *cfg)
        assert result.exit_code == 1

    def test_health_json(self, cfg):
        _scrape(cfg)
        result = _invoke("health", "--json", *cfg)
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["total_snapshots"] == 2
        assert payload["last_run"]["status"] == "success"

    def test_export_latest(self, cfg, tmp_path):
        _scrape(cfg)
        result = _invoke("export-latest", *cfg)
        assert result.exit_code == 0
        files = list(Path(tmp_path / "exports").glob("latest_*.json"))
        assert len(files) == 1
        data = json.loads(files[0].read_text(encoding="utf-8"))
        assert len(data["combinations"]) == 2


class TestRuns:
    def test_history_lists_newest_first(self, cfg):
        _scrape(cfg)
        _scrape(cfg)
        result = _invoke("runs", "--limit", "5", *cfg)
        assert result.exit_code == 0
        assert "Recent Scrape Runs" in result.stdout
        assert result.stdout.count("success") == 2

        payload = json.loads(_invoke("runs", "--json", "--limit", "1", *cfg).stdout)
        assert len(payload) == 1
        assert payload[0]["snapshots_skipped"] == 2

    def test_no_runs(self, cfg):
        result = _invoke("runs", *cfg)
        assert result.exit_code == 0
        assert "(no runs recorded)" in result.stdout


class TestReplay:
    @pytest.fixture
    def archived(self, tmp_path) -> Path:
        from hero_tracker.ingestion.archive import RawArchive
        from hero_tracker.models.combination import Combination
        from hero_tracker.models.snapshot import RawHeroRate

        combo = Combination(mode="competitive", input="PC", region="Europe", tier="Gold")
        rows = [
            RawHeroRate(hero="Ana", pick_rate=5.0, win_rate=50.0),
            RawHeroRate(hero="Tracer", pick_rate=8.0, win_rate=51.0),
        ]
        return RawArchive(str(tmp_path / "raw")).save(
            combo, rows, fetched_at=datetime(2026, 10, 18, 7, tzinfo=timezone.utc)
        )

    def test_decision_only_by_default(self, cfg, archived):
        result = _invoke("replay", str(archived), *cfg)
        assert result.exit_code == 0, result.output
        assert "competitive/PC/Europe/Gold/all-maps" in result.stdout
        assert "persist (no_prior_snapshot)" in result.stdout
        assert "Stored snapshot" not in result.stdout

    def test_persist_then_duplicate(self, cfg, archived):
        first = _invoke("replay", str(archived), "--persist", *cfg)
        assert first.exit_code == 0, first.output
        assert "[OK] Stored snapshot 1." in first.stdout

        listing = json.loads(_invoke("snapshots", "--json", *cfg).stdout)
        assert listing[0]["timestamp"].startswith("2026-10-18T07:00:00")
        assert listing[0]["day"] == "2026-10-18"

        second = _invoke("replay", str(archived), "--persist", *cfg)
        assert second.exit_code == 0
        assert "skip (duplicate_digest)" in second.stdout

    def test_missing_file(self, cfg, tmp_path):
        result = _invoke("replay", str(tmp_path / "nope.json"), *cfg)
        assert result.exit_code == 1
