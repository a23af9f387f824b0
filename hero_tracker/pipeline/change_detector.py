"""
Change detector — decide whether a freshly normalized table deserves a snapshot.

Decision order:
  1. No prior snapshot for the combination        → persist (``no_prior_snapshot``)
  2. Digest equals the latest snapshot's digest   → skip    (``duplicate_digest``)
  3. Threshold configured and every hero's pick
     and win rate moved strictly less than it     → skip    (``below_threshold``)
  4. Otherwise                                    → persist (``changed``)

A hero present on only one side, or a rate that is ``None`` on one side and
a number on the other, is always a material change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from hero_tracker.models.snapshot import HeroRate, NormalizedTable, Snapshot

logger = logging.getLogger(__name__)

REASON_NO_PRIOR = "no_prior_snapshot"
REASON_DUPLICATE = "duplicate_digest"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_CHANGED = "changed"

_METRICS = ("pick_rate", "win_rate")


@dataclass(frozen=True)
class ChangeDecision:
    persist: bool
    reason: str


class ChangeDetector:
    """Digest check plus optional materiality check.

    Args:
        materiality_threshold: Percentage-point movement below which a change
            is ignored. ``None`` disables the check (hash-only dedup).
    """

    def __init__(self, materiality_threshold: Optional[float] = None) -> None:
        if materiality_threshold is not None and materiality_threshold <= 0:
            raise ValueError(
                f"materiality_threshold must be > 0 when set, got {materiality_threshold}."
            )
        self.materiality_threshold = materiality_threshold

    def should_persist(
        self,
        table: NormalizedTable,
        latest: Optional[Snapshot],
    ) -> ChangeDecision:
        if latest is None:
            return ChangeDecision(True, REASON_NO_PRIOR)
        if table.digest == latest.content_digest:
            return ChangeDecision(False, REASON_DUPLICATE)
        if self.materiality_threshold is not None and not self.is_material(table, latest):
            return ChangeDecision(False, REASON_BELOW_THRESHOLD)
        return ChangeDecision(True, REASON_CHANGED)

    def is_material(self, table: NormalizedTable, latest: Snapshot) -> bool:
        """True if any hero moved by at least the threshold, or appeared/vanished."""
        threshold = self.materiality_threshold
        if threshold is None:
            return True

        new = table.by_hero()
        old = latest.by_hero()
        if new.keys() != old.keys():
            return True

        for hero_id, current in new.items():
            if _hero_moved(current, old[hero_id], threshold):
                logger.debug("Material change for %s (threshold=%s)", hero_id, threshold)
                return True
        return False


def _hero_moved(current: HeroRate, previous: HeroRate, threshold: float) -> bool:
    for metric in _METRICS:
        a = current.metric(metric)
        b = previous.metric(metric)
        if a is None and b is None:
            continue
        if a is None or b is None:
            return True
        if abs(a - b) >= threshold:
            return True
    return False
