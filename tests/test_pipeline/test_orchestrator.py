"""
Tests for hero_tracker.pipeline.orchestrator — ScrapeOrchestrator.

Uses a real file-backed SnapshotStore and scripted in-memory clients; no
network and no real sleeping.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, timedelta
from typing import Optional
from unittest.mock import patch

import pytest
from conftest import make_config

from hero_tracker.db.store import DuplicateSnapshotError, StoreUnavailableError
from hero_tracker.ingestion.archive import RawArchive
from hero_tracker.ingestion.normalize import normalize
from hero_tracker.ingestion.rates_client import (
    FixtureRatesClient,
    MalformedResponseError,
    TransientProviderError,
)
from hero_tracker.models.combination import Combination
from hero_tracker.models.run import OUTCOME_FAILED, OUTCOME_PERSISTED, OUTCOME_SKIPPED
from hero_tracker.models.snapshot import RawHeroRate
from hero_tracker.pipeline.orchestrator import ScrapeOrchestrator, derive_status
from hero_tracker.utils.time_utils import utcnow

_ROWS = [
    RawHeroRate(hero="Ana", pick_rate=5.0, win_rate=50.0),
    RawHeroRate(hero="Tracer", pick_rate=8.0, win_rate=51.0),
]


class _ScriptedClient:
    """Returns (or raises) queued responses per combination label."""

    def __init__(self, script: dict[str, list], default=None) -> None:
        self.script = {k: list(v) for k, v in script.items()}
        self.default = default if default is not None else _ROWS
        self.calls: list[str] = []

    def fetch_rates(self, combination: Combination):
        self.calls.append(combination.label)
        queue = self.script.get(combination.label)
        item = queue.pop(0) if queue else self.default
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        return None


def _combos(n: int) -> list[Combination]:
    regions = ["Americas", "Europe", "Asia"]
    tiers = ["All", "Bronze", "Silver", "Gold"]
    return [
        Combination(mode="competitive", input="PC", region=regions[i % 3], tier=tiers[i // 3])
        for i in range(n)
    ]


def _orchestrator(store, client, sleeps: Optional[list] = None, **scrape) -> ScrapeOrchestrator:
    sleeps = sleeps if sleeps is not None else []
    return ScrapeOrchestrator(store, client, make_config(**scrape), sleep=sleeps.append)


class TestDeriveStatus:
    @pytest.mark.parametrize(
        "failures, successes, partials, cancelled, expected",
        [
            (0, 0, 0, False, "success"),
            (0, 5, 0, False, "success"),
            (0, 5, 1, False, "partial"),
            (1, 4, 0, False, "partial"),
            (3, 0, 0, False, "failed"),
            (0, 2, 0, True, "partial"),
            (0, 0, 0, True, "partial"),
            (1, 0, 0, True, "partial"),
            (3, 0, 0, True, "partial"),
        ],
    )
    def test_mapping(self, failures, successes, partials, cancelled, expected):
        assert derive_status(failures, successes, partials, cancelled) == expected


class TestRun:
    def test_first_run_persists_everything(self, store):
        combos = _combos(3)
        run = _orchestrator(store, _ScriptedClient({})).run(combos)

        assert run.status == "success"
        assert run.snapshots_created == 3
        assert run.snapshots_skipped == 0
        assert [o.outcome for o in run.outcomes] == [OUTCOME_PERSISTED] * 3
        assert store.health().total_snapshots == 3
        assert store.last_run().status == "success"

    def test_rerun_same_day_skips_duplicates(self, store):
        combos = _combos(2)
        _orchestrator(store, _ScriptedClient({})).run(combos)
        run = _orchestrator(store, _ScriptedClient({})).run(combos)

        assert run.status == "success"
        assert run.snapshots_created == 0
        assert run.snapshots_skipped == 2
        assert {o.reason for o in run.outcomes} == {"duplicate_digest"}
        assert store.health().total_snapshots == 2

    def test_changed_table_same_day_is_already_exists(self, store):
        combo = _combos(1)[0]
        _orchestrator(store, _ScriptedClient({})).run([combo])
        changed = [RawHeroRate(hero="Ana", pick_rate=9.0, win_rate=50.0)]
        run = _orchestrator(store, _ScriptedClient({combo.label: [changed]})).run([combo])

        assert run.snapshots_skipped == 1
        assert run.outcomes[0].reason == "already_exists"
        assert store.health().total_snapshots == 1

    def test_below_threshold_skipped(self, store):
        combo = _combos(1)[0]
        _orchestrator(store, _ScriptedClient({})).run([combo])
        nudged = [
            RawHeroRate(hero="Ana", pick_rate=5.01, win_rate=50.0),
            RawHeroRate(hero="Tracer", pick_rate=8.0, win_rate=51.0),
        ]
        client = _ScriptedClient({combo.label: [nudged]})
        run = _orchestrator(store, client, materiality_threshold=0.1).run([combo])
        assert run.outcomes[0].reason == "below_threshold"

    def test_failure_isolated_per_combination(self, store):
        combos = _combos(3)
        client = _ScriptedClient({combos[1].label: [MalformedResponseError("bad body")]})
        run = _orchestrator(store, client).run(combos)

        assert run.status == "partial"
        assert run.snapshots_created == 2
        assert [o.outcome for o in run.outcomes] == [
            OUTCOME_PERSISTED, OUTCOME_FAILED, OUTCOME_PERSISTED,
        ]
        assert len(run.errors) == 1
        assert run.errors[0].combination == combos[1].label
        assert "bad body" in run.errors[0].message
        assert store.last_run().errors == run.errors

    def test_every_combination_fails(self, store):
        combos = _combos(3)
        client = _ScriptedClient({c.label: [MalformedResponseError("bad body")] for c in combos})
        run = _orchestrator(store, client).run(combos)

        assert run.status == "failed"
        assert run.snapshots_created == 0
        assert len(run.errors) == run.combination_count == 3
        assert [e.combination for e in run.errors] == [c.label for c in combos]
        assert store.last_run().status == "failed"
        assert store.health().total_snapshots == 0

    def test_unchanged_since_yesterday_skips(self, store):
        combo = _combos(1)[0]
        table = normalize(_ROWS)
        store.insert(
            combo, table.digest, table.hero_rates, captured_at=utcnow() - timedelta(days=1)
        )

        run = _orchestrator(store, _ScriptedClient({})).run([combo])

        assert run.status == "success"
        assert run.snapshots_created == 0
        assert run.snapshots_skipped == 1
        assert run.outcomes[0].outcome == OUTCOME_SKIPPED
        assert run.outcomes[0].reason == "duplicate_digest"
        assert store.health().total_snapshots == 1

    def test_transient_failure_retried_with_backoff(self, store):
        combo = _combos(1)[0]
        client = _ScriptedClient({combo.label: [TransientProviderError("503")] * 2})
        sleeps: list[float] = []
        run = _orchestrator(store, client, sleeps, base_delay_ms=5000).run([combo])

        assert run.status == "success"
        assert client.calls == [combo.label] * 3
        assert sleeps == [5.0, 15.0]

    def test_retries_exhausted_fails_run(self, store):
        combo = _combos(1)[0]
        client = _ScriptedClient({combo.label: [TransientProviderError("503")] * 3})
        sleeps: list[float] = []
        run = _orchestrator(store, client, sleeps, base_delay_ms=5000).run([combo])

        assert run.status == "failed"
        assert client.calls == [combo.label] * 3
        assert sleeps == [5.0, 15.0]
        assert store.latest(combo) is None

    def test_empty_table_is_failure(self, store):
        combo = _combos(1)[0]
        run = _orchestrator(store, _ScriptedClient({combo.label: [[]]})).run([combo])
        assert run.status == "failed"
        assert "EmptyTableError" in run.errors[0].message

    def test_partial_table_warning(self, store):
        run = _orchestrator(store, _ScriptedClient({}), min_heroes=30).run(_combos(1))
        assert run.status == "partial"
        assert run.partial_count == 1
        assert run.snapshots_created == 1

    def test_request_delay_between_combinations(self, store):
        sleeps: list[float] = []
        _orchestrator(store, _ScriptedClient({}), sleeps, request_delay_ms=2000).run(_combos(3))
        assert sleeps == [2.0, 2.0]

    def test_empty_combination_list(self, store):
        run = _orchestrator(store, _ScriptedClient({})).run([])
        assert run.status == "success"
        assert run.combination_count == 0

    def test_duplicate_race_is_skip(self, store):
        combo = _combos(1)[0]
        orchestrator = _orchestrator(store, _ScriptedClient({}))
        with patch.object(
            store, "insert", side_effect=DuplicateSnapshotError(combo, date(2026, 10, 19), 42)
        ):
            run = orchestrator.run([combo])
        assert run.status == "success"
        assert run.outcomes[0].reason == "already_exists"
        assert run.outcomes[0].snapshot_id == 42

    def test_store_unavailable_is_failure(self, store):
        combos = _combos(2)
        orchestrator = _orchestrator(store, _ScriptedClient({}))
        real_insert = store.insert
        calls = {"n": 0}

        def flaky_insert(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StoreUnavailableError("locked")
            return real_insert(*args, **kwargs)

        with patch.object(store, "insert", side_effect=flaky_insert):
            run = orchestrator.run(combos)
        assert run.status == "partial"
        assert run.snapshots_created == 1
        assert "StoreUnavailableError" in run.errors[0].message

    def test_preflight_failure(self, store):
        with patch.object(store, "initialize", side_effect=StoreUnavailableError("locked")):
            run = _orchestrator(store, _ScriptedClient({})).run(_combos(2))
        assert run.status == "failed"
        assert run.run_id is None

    def test_defaults_to_configured_plan(self, store):
        orchestrator = _orchestrator(
            store, FixtureRatesClient(),
            modes=["competitive"], inputs=["PC"], regions=["Europe"], tiers=["Gold", "All"],
        )
        assert len(orchestrator.plan()) == 2
        run = orchestrator.run()
        assert run.combination_count == 2
        assert run.snapshots_created == 2

    def test_log_lines_carry_run_context(self, store, caplog):
        combo = _combos(1)[0]
        with caplog.at_level(logging.INFO, logger="hero_tracker.pipeline.orchestrator"):
            run = _orchestrator(store, _ScriptedClient({})).run([combo])

        persisted = [r for r in caplog.records if "persisted" in r.getMessage()]
        assert len(persisted) == 1
        assert persisted[0].run_slug == run.run_slug
        assert persisted[0].combination == combo.label
        own = [r for r in caplog.records if r.name == "hero_tracker.pipeline.orchestrator"]
        assert own and all(r.run_slug == run.run_slug for r in own)

    def test_archive_written(self, store, tmp_path):
        archive = RawArchive(str(tmp_path / "raw"))
        orchestrator = ScrapeOrchestrator(
            store, _ScriptedClient({}), make_config(), sleep=lambda s: None, archive=archive,
        )
        run = orchestrator.run(_combos(1))
        files = list((tmp_path / "raw").rglob("*.json"))
        assert len(files) == 1
        assert archive.run_slug == run.run_slug


class TestCancellation:
    def test_cancel_before_start(self, store):
        event = threading.Event()
        event.set()
        client = _ScriptedClient({})
        run = ScrapeOrchestrator(store, client, make_config(), cancel_event=event).run(_combos(3))

        assert run.cancelled
        assert run.status == "partial"
        assert client.calls == []
        assert store.last_run().cancelled

    def test_cancel_mid_run_stops_after_current(self, store):
        event = threading.Event()
        combos = _combos(3)

        class _CancellingClient(_ScriptedClient):
            def fetch_rates(self, combination):
                rows = super().fetch_rates(combination)
                event.set()
                return rows

        client = _CancellingClient({})
        run = ScrapeOrchestrator(
            store, client, make_config(request_delay_ms=60_000), cancel_event=event,
        ).run(combos)

        assert client.calls == [combos[0].label]
        assert run.snapshots_created == 1
        assert run.cancelled
        assert run.status == "partial"

    def test_failed_first_combination_then_cancel_is_partial(self, store):
        event = threading.Event()
        combos = _combos(3)

        class _FailAndCancelClient(_ScriptedClient):
            def fetch_rates(self, combination):
                event.set()
                raise MalformedResponseError("bad body")

        client = _FailAndCancelClient({})
        run = ScrapeOrchestrator(
            store, client, make_config(), sleep=lambda s: None, cancel_event=event,
        ).run(combos)

        assert client.calls == [combos[0].label]
        assert [o.outcome for o in run.outcomes] == [OUTCOME_FAILED]
        assert run.cancelled
        assert run.status == "partial"
        assert store.last_run().status == "partial"

    def test_cancel_during_backoff_finishes_current_combination(self, store):
        event = threading.Event()
        combos = _combos(3)
        client = _ScriptedClient({combos[0].label: [TransientProviderError("503")]})
        sleeps: list[float] = []

        def sleep(seconds: float) -> None:
            sleeps.append(seconds)
            event.set()

        run = ScrapeOrchestrator(
            store, client, make_config(base_delay_ms=5000), sleep=sleep, cancel_event=event,
        ).run(combos)

        assert sleeps == [5.0]
        assert client.calls == [combos[0].label] * 2
        assert [o.outcome for o in run.outcomes] == [OUTCOME_PERSISTED]
        assert run.snapshots_created == 1
        assert store.latest(combos[0]) is not None
        assert store.latest(combos[1]) is None
        assert run.cancelled
        assert run.status == "partial"
