"""
Query layer — read-only views over the snapshot store.

This is the surface external consumers (CLI, dashboards, an HTTP layer) call.
"No data" is never an error: an unknown combination or an empty window yields
an empty result. Invalid *arguments* (unknown metric, ``n < 1``, inverted
window) raise ``ValueError``.

Queries:
  - ``top_n``       — top heroes by one metric in the latest snapshot
                      (optionally the latest snapshot of a given UTC day).
  - ``compare``     — full outer join of the oldest and newest snapshots in a
                      time window, per hero.
  - ``list_snapshots`` / ``get_snapshot`` / ``health`` — thin pass-throughs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from hero_tracker.db.store import SnapshotStore, StoreHealth
from hero_tracker.models.combination import Combination, SnapshotFilter
from hero_tracker.models.snapshot import HeroRate, Snapshot, SnapshotSummary
from hero_tracker.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

METRICS = ("pick_rate", "win_rate")
DEFAULT_COMPARE_DAYS = 7


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TopHeroEntry:
    rank: int
    hero_id: str
    value: float
    pick_rate: Optional[float]
    win_rate: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "hero": self.hero_id,
            "value": self.value,
            "pick_rate": self.pick_rate,
            "win_rate": self.win_rate,
        }


@dataclass(frozen=True)
class TopHeroesResult:
    """Result of ``top_n``.

    Attributes:
        metric:      ``pick_rate`` or ``win_rate``.
        entries:     Ranked heroes (at most ``n``); empty when no snapshot.
        timestamp:   ``captured_at`` of the source snapshot, or None.
        snapshot_id: Id of the source snapshot, or None.
    """

    metric: str
    entries: list[TopHeroEntry] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    snapshot_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "top": [e.to_dict() for e in self.entries],
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "snapshot_id": self.snapshot_id,
        }


@dataclass(frozen=True)
class ComparisonSide:
    """A hero's rates in one of the two compared snapshots.

    Rates may be None (insufficient sample); ``timestamp`` is the
    ``captured_at`` of the snapshot the side was read from.
    """

    pick_rate: Optional[float]
    win_rate: Optional[float]
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "pick_rate": self.pick_rate,
            "win_rate": self.win_rate,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class HeroComparison:
    """One hero at both ends of a comparison window.

    ``start`` comes from the oldest snapshot in the window, ``end`` from the
    newest. A side is None only when the hero is absent from that snapshot;
    a hero that is present with unavailable rates has a side whose rates
    are None. Deltas are None unless both rates are known.
    """

    hero_id: str
    start: Optional[ComparisonSide]
    end: Optional[ComparisonSide]

    @property
    def pick_rate_delta(self) -> Optional[float]:
        return self._delta("pick_rate")

    @property
    def win_rate_delta(self) -> Optional[float]:
        return self._delta("win_rate")

    def _delta(self, metric: str) -> Optional[float]:
        if self.start is None or self.end is None:
            return None
        before = getattr(self.start, metric)
        after = getattr(self.end, metric)
        if before is None or after is None:
            return None
        return round(after - before, 6)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hero": self.hero_id,
            "start": self.start.to_dict() if self.start else None,
            "end": self.end.to_dict() if self.end else None,
            "pick_rate_delta": self.pick_rate_delta,
            "win_rate_delta": self.win_rate_delta,
        }


# ── Queries ───────────────────────────────────────────────────────────────────

class HeroStatsQueries:
    """Read-only queries over a ``SnapshotStore``."""

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    def top_n(
        self,
        combination: Combination,
        metric: str,
        n: int = 10,
        as_of_day: Optional[date] = None,
    ) -> TopHeroesResult:
        """Top ``n`` heroes by ``metric`` in the latest snapshot.

        Heroes whose value is None are excluded. Ties keep hero-id order.

        Args:
            combination: Series to query.
            metric: ``"pick_rate"`` or ``"win_rate"``.
            n: Maximum number of entries (>= 1).
            as_of_day: Restrict to the latest snapshot captured on this UTC day.

        Raises:
            ValueError: On an unknown metric or ``n < 1``.
        """
        if metric not in METRICS:
            raise ValueError(f"Unknown metric {metric!r}; expected one of {METRICS}.")
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}.")

        snapshot = self.store.latest(combination, day=as_of_day)
        if snapshot is None:
            logger.debug("top_n: no snapshot for %s (day=%s).", combination.label, as_of_day)
            return TopHeroesResult(metric=metric)

        # hero_rates are sorted by hero_id and sorted() is stable
        ranked = sorted(
            (r for r in snapshot.hero_rates if r.metric(metric) is not None),
            key=lambda r: r.metric(metric),
            reverse=True,
        )
        entries = [
            TopHeroEntry(
                rank=i,
                hero_id=r.hero_id,
                value=r.metric(metric),
                pick_rate=r.pick_rate,
                win_rate=r.win_rate,
            )
            for i, r in enumerate(ranked[:n], start=1)
        ]
        return TopHeroesResult(
            metric=metric,
            entries=entries,
            timestamp=snapshot.captured_at,
            snapshot_id=snapshot.snapshot_id,
        )

    def compare(
        self,
        combination: Combination,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> list[HeroComparison]:
        """Per-hero comparison of the oldest vs newest snapshot in a window.

        The window defaults to the last 7 days ending now. Bounds are
        inclusive. Heroes from either side are included (full outer join),
        sorted by hero id.

        Raises:
            ValueError: If ``from_time`` is after ``to_time``.
        """
        end = ensure_utc(to_time) if to_time else utcnow()
        start = ensure_utc(from_time) if from_time else end - timedelta(days=DEFAULT_COMPARE_DAYS)
        if start > end:
            raise ValueError(f"from_time {start.isoformat()} is after to_time {end.isoformat()}.")

        oldest, newest = self.store.range_edges(combination, start, end)
        if oldest is None or newest is None:
            return []
        return compare_snapshots(oldest, newest)

    def list_snapshots(self, snapshot_filter: Optional[SnapshotFilter] = None) -> list[SnapshotSummary]:
        return self.store.list_snapshots(snapshot_filter or SnapshotFilter())

    def get_snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        return self.store.get_snapshot(snapshot_id)

    def health(self) -> StoreHealth:
        return self.store.health()


def compare_snapshots(before: Snapshot, after: Snapshot) -> list[HeroComparison]:
    """Full outer join of two snapshots' hero rows, sorted by hero id."""
    old = before.by_hero()
    new = after.by_hero()
    return [
        HeroComparison(
            hero_id=hero_id,
            start=_side(old.get(hero_id), before.captured_at),
            end=_side(new.get(hero_id), after.captured_at),
        )
        for hero_id in sorted(old.keys() | new.keys())
    ]


def _side(rate: Optional[HeroRate], timestamp: datetime) -> Optional[ComparisonSide]:
    if rate is None:
        return None
    return ComparisonSide(pick_rate=rate.pick_rate, win_rate=rate.win_rate, timestamp=timestamp)
