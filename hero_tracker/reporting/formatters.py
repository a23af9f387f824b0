"""
ASCII terminal formatters for CLI query commands.

All formatters accept query results / models and return plain multi-line
strings suitable for ``typer.echo()``.

No third-party dependencies (no ``rich``, no ``colorama``).

Rates are percentages; ``--`` marks an unavailable value (insufficient
sample), which is distinct from ``0.00``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from hero_tracker.db.store import StoreHealth
from hero_tracker.models.combination import Combination
from hero_tracker.models.run import RunRecord
from hero_tracker.models.snapshot import Snapshot, SnapshotSummary
from hero_tracker.reporting.queries import ComparisonSide, HeroComparison, TopHeroesResult


def _rate(value: Optional[float]) -> str:
    return "--" if value is None else f"{value:.2f}"


def _delta(value: Optional[float]) -> str:
    return "--" if value is None else f"{value:+.2f}"


def _ts(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%SZ") if value else "--"


def _size(n_bytes: int) -> str:
    size = float(n_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{n_bytes} B"


# ── Top heroes ────────────────────────────────────────────────────────────────


def format_top_heroes(result: TopHeroesResult, combination: Combination) -> str:
    """Ranked table for ``HeroStatsQueries.top_n``::

        === Top Heroes by win_rate ===
          Combination: competitive/PC/Europe/Gold/all-maps
          Snapshot:    #12 @ 2026-10-19 07:00:00Z

          Rank  Hero              Pick %   Win %
          --------------------------------------
             1  ana                5.10    53.20
    """
    lines = [
        "",
        f"=== Top Heroes by {result.metric} ===",
        f"  Combination: {combination.label}",
    ]
    if not result.entries:
        lines.append("")
        lines.append("  (no snapshot available — run 'scrape' first)")
        return "\n".join(lines)

    lines.append(f"  Snapshot:    #{result.snapshot_id} @ {_ts(result.timestamp)}")
    lines.append("")
    header = f"  {'Rank':>4}  {'Hero':<16}  {'Pick %':>7}  {'Win %':>7}"
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for e in result.entries:
        lines.append(
            f"  {e.rank:>4}  {e.hero_id:<16}  {_rate(e.pick_rate):>7}  {_rate(e.win_rate):>7}"
        )
    return "\n".join(lines)


# ── Comparison ────────────────────────────────────────────────────────────────


def format_comparison(
    rows: list[HeroComparison],
    combination: Combination,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
) -> str:
    """Start / end table for ``HeroStatsQueries.compare``.

    ``absent`` marks a hero missing from that end's snapshot; ``--`` marks a
    hero that is present but whose rate is unavailable.
    """
    lines = [
        "",
        "=== Hero Rate Comparison ===",
        f"  Combination: {combination.label}",
    ]
    if from_time or to_time:
        lines.append(f"  Window:      {_ts(from_time)} .. {_ts(to_time)}")
    if not rows:
        lines.append("")
        lines.append("  (no snapshots in window)")
        return "\n".join(lines)

    start_ts = next((r.start.timestamp for r in rows if r.start), None)
    end_ts = next((r.end.timestamp for r in rows if r.end), None)
    lines.append(f"  Start:       {_ts(start_ts)}")
    lines.append(f"  End:         {_ts(end_ts)}")
    lines.append("")
    header = (
        f"  {'Hero':<16}  {'Pick start':>10}  {'Pick end':>8}  {'Δ':>7}  "
        f"{'Win start':>9}  {'Win end':>7}  {'Δ':>7}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for r in rows:
        lines.append(
            f"  {r.hero_id:<16}  {_side_rate(r.start, 'pick_rate'):>10}  "
            f"{_side_rate(r.end, 'pick_rate'):>8}  {_delta(r.pick_rate_delta):>7}  "
            f"{_side_rate(r.start, 'win_rate'):>9}  {_side_rate(r.end, 'win_rate'):>7}  "
            f"{_delta(r.win_rate_delta):>7}"
        )
    return "\n".join(lines)


def _side_rate(side: Optional[ComparisonSide], metric: str) -> str:
    if side is None:
        return "absent"
    return _rate(getattr(side, metric))


# ── Snapshots ─────────────────────────────────────────────────────────────────


def format_snapshot_list(summaries: list[SnapshotSummary]) -> str:
    lines = ["", "=== Snapshots (newest first) ==="]
    if not summaries:
        lines.append("  (no snapshots match)")
        return "\n".join(lines)

    header = f"  {'ID':>6}  {'Captured':<20}  {'Combination':<48}  {'Heroes':>6}  {'Digest':<12}"
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for s in summaries:
        lines.append(
            f"  {s.snapshot_id:>6}  {_ts(s.captured_at):<20}  {s.combination.label:<48}  "
            f"{s.hero_count:>6}  {s.content_digest[:12]:<12}"
        )
    return "\n".join(lines)


def format_snapshot_detail(snapshot: Snapshot) -> str:
    lines = [
        "",
        f"=== Snapshot #{snapshot.snapshot_id} ===",
        f"  Combination: {snapshot.combination.label}",
        f"  Captured:    {_ts(snapshot.captured_at)}",
        f"  Digest:      {snapshot.content_digest}",
        f"  Heroes:      {len(snapshot.hero_rates)}",
        "",
        f"  {'Hero':<16}  {'Pick %':>7}  {'Win %':>7}",
        "  " + "-" * 34,
    ]
    for r in snapshot.hero_rates:
        lines.append(f"  {r.hero_id:<16}  {_rate(r.pick_rate):>7}  {_rate(r.win_rate):>7}")
    return "\n".join(lines)


# ── Health / runs ─────────────────────────────────────────────────────────────


def format_run_summary(run: RunRecord) -> str:
    """One block per run: status, counters, and the first few errors."""
    lines = [
        "",
        f"=== Scrape Run [{run.status.upper()}] ===",
        f"  Run:          {run.run_slug}",
        f"  Started:      {_ts(run.started_at)}",
        f"  Completed:    {_ts(run.completed_at)}",
        f"  Combinations: {run.combination_count}",
        f"  Created:      {run.snapshots_created}",
        f"  Skipped:      {run.snapshots_skipped}",
        f"  Partial:      {run.partial_count}",
        f"  Errors:       {len(run.errors)}",
    ]
    if run.duration_ms is not None:
        lines.append(f"  Duration:     {run.duration_ms / 1000:.1f}s")
    if run.cancelled:
        lines.append("  Cancelled:    yes")
    for err in run.errors[:10]:
        lines.append(f"    - {err.combination}: {err.message}")
    if len(run.errors) > 10:
        lines.append(f"    ... and {len(run.errors) - 10} more")
    return "\n".join(lines)


def format_run_history(runs: list[RunRecord]) -> str:
    """Recent runs, newest first. A run that never wrote its terminal update
    (crashed or still in progress) is flagged ``unfinished``."""
    lines = ["", "=== Recent Scrape Runs ==="]
    if not runs:
        lines.append("  (no runs recorded)")
        return "\n".join(lines)

    header = (
        f"  {'Started':<20}  {'Status':<8}  {'Combos':>6}  {'Created':>7}  "
        f"{'Skipped':>7}  {'Errors':>6}  {'Duration':>8}  Note"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for run in runs:
        duration = f"{run.duration_ms / 1000:.1f}s" if run.duration_ms is not None else "--"
        if not run.is_terminal:
            note = "unfinished"
        elif run.cancelled:
            note = "cancelled"
        else:
            note = ""
        lines.append(
            f"  {_ts(run.started_at):<20}  {run.status:<8}  {run.combination_count:>6}  "
            f"{run.snapshots_created:>7}  {run.snapshots_skipped:>7}  {len(run.errors):>6}  "
            f"{duration:>8}  {note}".rstrip()
        )
    return "\n".join(lines)


def format_health(health: StoreHealth) -> str:
    lines = [
        "",
        "=== Store Health ===",
        f"  Snapshots:    {health.total_snapshots}",
        f"  Oldest:       {_ts(health.oldest_timestamp)}",
        f"  Newest:       {_ts(health.newest_timestamp)}",
        f"  Storage size: {_size(health.storage_size_bytes)}",
    ]
    if health.last_run is None:
        lines.append("  Last run:     (none recorded)")
    else:
        run = health.last_run
        lines.append(
            f"  Last run:     {run.status} @ {_ts(run.started_at)} "
            f"(created={run.snapshots_created}, skipped={run.snapshots_skipped}, "
            f"errors={len(run.errors)})"
        )
    return "\n".join(lines)
