"""
Shared pytest fixtures for the Hero Rate Tracker test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``store``: A file-backed ``SnapshotStore`` under ``tmp_path`` (each store
    operation opens its own connection, so ``:memory:`` cannot be used).
  - Sample combinations and hero tables shared across test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Generator

import pytest

from hero_tracker.config import AppConfig, ScrapeConfig
from hero_tracker.db.schema import apply_schema
from hero_tracker.db.store import SnapshotStore
from hero_tracker.ingestion.normalize import normalize
from hero_tracker.models.combination import Combination, GameMode, InputDevice, Region, Tier
from hero_tracker.models.snapshot import HeroRate, NormalizedTable, RawHeroRate

FIXED_DT = datetime(2026, 10, 19, 7, 0, 0, tzinfo=timezone.utc)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    """An initialized file-backed store whose lock retries never really sleep."""
    s = SnapshotStore(
        str(tmp_path / "db" / "test.db"),
        lock_retries=3,
        lock_retry_delay_ms=1,
        sleep=lambda _s: None,
    )
    s.initialize()
    return s


# ── Domain fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def combo() -> Combination:
    return Combination(
        mode=GameMode.COMPETITIVE,
        input=InputDevice.PC,
        region=Region.EUROPE,
        tier=Tier.GOLD,
    )


@pytest.fixture
def other_combo() -> Combination:
    return Combination(
        mode=GameMode.QUICK_PLAY,
        input=InputDevice.CONSOLE,
        region=Region.ASIA,
        tier=Tier.ALL,
        map="kings-row",
    )


@pytest.fixture
def raw_rows() -> list[RawHeroRate]:
    """Provider-order rows with display names (not yet canonical)."""
    return [
        RawHeroRate(hero="Tracer", pick_rate=8.0, win_rate=51.0),
        RawHeroRate(hero="Ana", pick_rate=5.5, win_rate=49.5),
        RawHeroRate(hero="Soldier: 76", pick_rate=6.25, win_rate=50.0),
        RawHeroRate(hero="D.Va", pick_rate=None, win_rate=None),
    ]


@pytest.fixture
def table(raw_rows) -> NormalizedTable:
    return normalize(raw_rows)


def make_table(rates: dict[str, tuple]) -> NormalizedTable:
    """Build a normalized table from ``{hero: (pick, win)}``."""
    return normalize(
        [RawHeroRate(hero=h, pick_rate=p, win_rate=w) for h, (p, w) in rates.items()]
    )


def make_rates(rates: dict[str, tuple]) -> list[HeroRate]:
    return list(make_table(rates).hero_rates)


def make_config(**scrape_overrides) -> AppConfig:
    """AppConfig with no inter-request delay and tiny backoff unless overridden."""
    scrape = {"request_delay_ms": 0, "base_delay_ms": 10, "min_heroes": 1, **scrape_overrides}
    return AppConfig(scrape=ScrapeConfig(**scrape))
