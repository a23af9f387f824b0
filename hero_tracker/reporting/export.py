"""
Export helpers for offline analysis and external consumers.

All functions write to disk and return the written ``Path``.

``export_latest()`` writes the latest snapshot of every requested
combination into one JSON document (one entry per combination; a
combination with no snapshot is listed with ``snapshot: null``), so a static
dashboard can be served straight from the file.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from hero_tracker.db.store import SnapshotStore
from hero_tracker.models.combination import Combination
from hero_tracker.models.snapshot import Snapshot
from hero_tracker.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def export_to_json(data: dict | list, path: Path) -> Path:
    """Write ``data`` to a pretty-printed JSON file (parent dirs created)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    return path


def export_to_csv(
    records: list[dict],
    path: Path,
    fieldnames: list[str] | None = None,
) -> Path:
    """Write ``records`` to a UTF-8 CSV file.

    Args:
        records:    List of flat row dicts.
        path:       Destination file path (parent dirs created if missing).
        fieldnames: Column order.  If None, uses the keys of the first record.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if not records:
        path.write_text("", encoding="utf-8")
        return path
    cols = fieldnames or list(records[0].keys())
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=cols, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(records)
    return path


def flatten_snapshot(snapshot: Snapshot) -> list[dict]:
    """One flat row per hero, carrying the snapshot's combination columns."""
    base = {
        "snapshot_id": snapshot.snapshot_id,
        "captured_at": snapshot.captured_at.isoformat(),
        **snapshot.combination.as_params(),
    }
    return [
        {**base, "hero": r.hero_id, "pick_rate": r.pick_rate, "win_rate": r.win_rate}
        for r in snapshot.hero_rates
    ]


def build_latest_payload(
    store: SnapshotStore,
    combinations: Iterable[Combination],
) -> dict:
    """Collect the latest snapshot per combination into an export document."""
    entries = []
    for combo in combinations:
        snapshot = store.latest(combo)
        entries.append({
            "combination": combo.label,
            **combo.as_params(),
            "snapshot": snapshot.to_dict() if snapshot else None,
        })
    return {
        "generated_at": utcnow().isoformat(),
        "combinations": entries,
    }


def export_latest(
    store: SnapshotStore,
    combinations: Iterable[Combination],
    export_dir: str,
    filename: Optional[str] = None,
    csv_rows: bool = False,
) -> Path:
    """Write the latest snapshot of each combination to ``export_dir``.

    Args:
        store:        Snapshot store to read from.
        combinations: Combinations to include.
        export_dir:   Output directory (``data.export_dir``).
        filename:     Output file name; defaults to ``latest_{YYYYMMDD}.json``
                      (``.csv`` when ``csv_rows``).
        csv_rows:     Write one flat CSV row per hero instead of JSON.

    Returns:
        Path of the written file.
    """
    combos = list(combinations)
    suffix = "csv" if csv_rows else "json"
    name = filename or f"latest_{utcnow().strftime('%Y%m%d')}.{suffix}"
    path = Path(export_dir) / name

    if csv_rows:
        rows: list[dict] = []
        for combo in combos:
            snapshot = store.latest(combo)
            if snapshot is not None:
                rows.extend(flatten_snapshot(snapshot))
        export_to_csv(
            rows, path,
            fieldnames=[
                "snapshot_id", "captured_at", "mode", "input", "region", "tier", "map",
                "hero", "pick_rate", "win_rate",
            ],
        )
        logger.info("Exported %d hero rows to %s", len(rows), path)
    else:
        payload = build_latest_payload(store, combos)
        export_to_json(payload, path)
        logger.info("Exported %d combinations to %s", len(combos), path)
    return path
