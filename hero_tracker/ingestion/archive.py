"""
Raw archive — keep each fetched provider table on disk as timestamped JSON.

Enabled by ``scrape.archive_raw``. The snapshot store never reads the archive;
``load_archive`` feeds the ``replay`` CLI command, which re-runs an archived
fetch through normalization and change detection.

File layout::

    data/raw/rates/
      competitive/
        2026/10/19/
          competitive_PC_Europe_Gold_all-maps_20261019T070000Z.json
      quick-play/
        2026/10/19/
          quick-play_Console_Asia_All_busan_20261019T070002Z.json

Each file contains::

    {
      "_meta": {
        "combination": "competitive/PC/Europe/Gold/all-maps",
        "mode": "competitive", "input": "PC", ...,
        "run_slug": "...",
        "fetched_at": "2026-10-19T07:00:00Z",
        "written_at": "2026-10-19T07:00:00Z"
      },
      "data": [{"hero": "Ana", "pick_rate": 5.1, "win_rate": 49.8}, ...]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from hero_tracker.models.combination import Combination
from hero_tracker.models.snapshot import RawHeroRate
from hero_tracker.utils.time_utils import ensure_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)


def build_archive_path(
    raw_dir: str,
    combination: Combination,
    fetched_at: datetime,
) -> Path:
    """Deterministic path for one archived fetch.

    Example::

        build_archive_path("data/raw", combo, datetime(2026, 10, 19, 7, tzinfo=timezone.utc))
        # → Path("data/raw/rates/competitive/2026/10/19/"
        #        "competitive_PC_Europe_Gold_all-maps_20261019T070000Z.json")
    """
    fetched_at = ensure_utc(fetched_at)
    ts = fetched_at.strftime("%Y%m%dT%H%M%SZ")
    date_part = fetched_at.strftime("%Y/%m/%d")
    name = combination.label.replace("/", "_")
    return Path(raw_dir) / "rates" / str(combination.mode) / date_part / f"{name}_{ts}.json"


@dataclass
class RawArchive:
    """Writes raw provider tables under ``raw_dir``.

    Attributes:
        raw_dir: Base raw data directory (``data.raw_dir`` in config).
        run_slug: Optional run identifier copied into each ``_meta`` block.
    """

    raw_dir: str
    run_slug: Optional[str] = None

    def save(
        self,
        combination: Combination,
        raw_rates: list[RawHeroRate],
        fetched_at: Optional[datetime] = None,
    ) -> Path:
        """Write ``raw_rates`` to disk and return the file path."""
        fetched = ensure_utc(fetched_at) if fetched_at else utcnow()
        path = build_archive_path(self.raw_dir, combination, fetched)
        path.parent.mkdir(parents=True, exist_ok=True)

        meta: dict[str, Any] = {
            "combination": combination.label,
            **combination.as_params(),
            "run_slug": self.run_slug,
            "fetched_at": fetched.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "written_at": utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        envelope = {"_meta": meta, "data": [r.model_dump() for r in raw_rates]}

        with open(path, "w", encoding="utf-8") as f:
            json.dump(envelope, f, indent=2, default=str)

        logger.debug("Raw table archived: %s | rows=%d", path.name, len(raw_rates))
        return path


@dataclass(frozen=True)
class ArchivedFetch:
    """One archived provider table, as read back by ``load_archive``."""

    combination: Combination
    rows: list[RawHeroRate]
    fetched_at: datetime
    run_slug: Optional[str] = None


def load_archive(path: Path) -> ArchivedFetch:
    """Load an archived fetch for replay.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the envelope lacks ``_meta`` or ``data``, or a field
            fails validation.
    """
    with open(path, encoding="utf-8") as f:
        envelope = json.load(f)
    if not isinstance(envelope, dict) or "_meta" not in envelope or "data" not in envelope:
        raise ValueError(f"{path} is not a raw archive file (missing _meta/data).")

    meta = envelope["_meta"]
    return ArchivedFetch(
        combination=Combination.from_label(meta["combination"]),
        rows=[RawHeroRate(**row) for row in envelope["data"]],
        fetched_at=parse_datetime(meta["fetched_at"]),
        run_slug=meta.get("run_slug"),
    )
