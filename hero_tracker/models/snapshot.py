"""
Hero rate and snapshot models.

Three layers, mirroring the pipeline:
  1. ``RawHeroRate``      — exactly what the rate provider returned; hero
                            identifier is un-canonicalized, rates unchecked.
  2. ``HeroRate``         — canonical id, validated rates. ``None`` means
                            "insufficient sample" and is distinct from ``0.0``.
  3. ``Snapshot``         — a committed observation of one ``Combination``.

All models are frozen after construction; snapshots are never mutated once
created.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from hero_tracker.models.combination import Combination


class RawHeroRate(BaseModel):
    """One row of a provider response, before normalization.

    Rates are kept as received (``Any``) so that the normalizer, not the
    client, decides what counts as malformed.
    """

    model_config = ConfigDict(frozen=True)

    hero: Any
    pick_rate: Any = None
    win_rate: Any = None


class HeroRate(BaseModel):
    """Normalized per-hero statistics (percentages in ``[0, 100]``)."""

    model_config = ConfigDict(frozen=True)

    hero_id: str
    pick_rate: Optional[float] = None
    win_rate: Optional[float] = None

    def metric(self, name: str) -> Optional[float]:
        """Return the value of ``"pick_rate"`` or ``"win_rate"``."""
        if name == "pick_rate":
            return self.pick_rate
        if name == "win_rate":
            return self.win_rate
        raise ValueError(f"Unknown metric {name!r}; expected 'pick_rate' or 'win_rate'.")


class NormalizedTable(BaseModel):
    """Output of the normalizer: sorted hero rates plus their content digest."""

    model_config = ConfigDict(frozen=True)

    hero_rates: tuple[HeroRate, ...]
    digest: str

    def __len__(self) -> int:
        return len(self.hero_rates)

    def by_hero(self) -> dict[str, HeroRate]:
        return {r.hero_id: r for r in self.hero_rates}


class SnapshotSummary(BaseModel):
    """Snapshot header row without its hero rows (list queries).

    Attributes:
        snapshot_id: DB primary key.
        captured_at: UTC timestamp the snapshot was taken.
        snapshot_day: UTC calendar day of ``captured_at``; unique per combination.
        combination: The series this snapshot observes.
        content_digest: SHA-256 of the normalized hero table.
        hero_count: Number of hero rows attached.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: int
    captured_at: datetime
    snapshot_day: date
    combination: Combination
    content_digest: str
    hero_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.snapshot_id,
            "timestamp": self.captured_at.isoformat(),
            "day": self.snapshot_day.isoformat(),
            **self.combination.as_params(),
            "hash": self.content_digest,
            "hero_count": self.hero_count,
        }


class Snapshot(SnapshotSummary):
    """A committed snapshot including its hero rows, ordered by ``hero_id``."""

    hero_rates: tuple[HeroRate, ...] = ()

    def by_hero(self) -> dict[str, HeroRate]:
        return {r.hero_id: r for r in self.hero_rates}

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["heroes"] = [r.model_dump() for r in self.hero_rates]
        return payload
