"""
Hero Rate Tracker — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, scrape run, query, export).
  5. Report result to stdout.

Install and run::

    pip install -e .
    hero-tracker --help
    hero-tracker init-db
    hero-tracker validate-config
    hero-tracker scrape --mode competitive --region Europe --fixture
    hero-tracker top --mode competitive --input PC --region Europe --tier Gold
    hero-tracker compare --mode competitive --input PC --region Europe --tier Gold
    hero-tracker health
    hero-tracker runs --limit 5
    hero-tracker replay data/raw/rates/competitive/2026/10/19/<file>.json --persist
"""

from __future__ import annotations

import json
import signal
import threading
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="hero-tracker",
    help="Hero Rate Tracker — periodic hero pick/win rate snapshots.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from hero_tracker.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from hero_tracker.utils.logging import configure_logging
    configure_logging(config.logging)


def _open_store(config, db_path: Optional[str] = None):
    from hero_tracker.db.store import SnapshotStore
    return SnapshotStore.from_config(config.database, db_path=db_path)


def _combination_or_exit(mode: str, input_: str, region: str, tier: str, map_: str):
    """Build a Combination from CLI options, exiting with code 1 on bad values."""
    from pydantic import ValidationError

    from hero_tracker.models.combination import Combination

    try:
        return Combination(mode=mode, input=input_, region=region, tier=tier, map=map_)
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid combination: {exc}", err=True)
        raise typer.Exit(code=1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from hero_tracker.db.schema import ALL_TABLE_NAMES
    from hero_tracker.db.store import StoreError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = _open_store(config, db_path)
    typer.echo(f"Initializing database at: {store.db_path}")
    try:
        store.initialize()
    except StoreError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    sc = config.scrape
    n_combos = len(sc.modes) * len(sc.inputs) * len(sc.regions) * len(sc.tiers) * len(sc.maps)
    threshold = sc.materiality_threshold if sc.materiality_threshold is not None else "off (hash only)"

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Provider:         {config.provider.base_url}")
    typer.echo(f"  Fixture mode:     {config.provider.use_fixture}")
    typer.echo(f"  Combinations:     {n_combos}")
    typer.echo(f"  Request delay:    {sc.request_delay_ms} ms")
    typer.echo(f"  Retry:            {sc.max_attempts} attempts, base {sc.base_delay_ms} ms")
    typer.echo(f"  Materiality:      {threshold}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        _echo_json(config.model_dump())

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("scrape")
def scrape(
    modes: Optional[list[str]] = typer.Option(None, "--mode", help="Restrict to mode(s)."),
    inputs: Optional[list[str]] = typer.Option(None, "--input", help="Restrict to input(s)."),
    regions: Optional[list[str]] = typer.Option(None, "--region", help="Restrict to region(s)."),
    tiers: Optional[list[str]] = typer.Option(None, "--tier", help="Restrict to tier(s)."),
    maps: Optional[list[str]] = typer.Option(None, "--map", help="Restrict to map slug(s)."),
    all_maps: bool = typer.Option(
        False, "--all-maps", help="Scrape every known map in addition to the aggregate."
    ),
    fixture: bool = typer.Option(
        False, "--fixture", help="Use deterministic fixture data (no network)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the combination plan without fetching anything."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the run record as JSON."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run one scrape pass over the configured combination space.

    Exits with code 1 if every attempted combination failed.
    Ctrl-C stops the run after the current combination.
    """
    from pydantic import ValidationError

    from hero_tracker.ingestion.archive import RawArchive
    from hero_tracker.ingestion.rates_client import FixtureRatesClient, build_client
    from hero_tracker.models.combination import ALL_MAPS, build_combinations
    from hero_tracker.models.run import RUN_FAILED
    from hero_tracker.pipeline.orchestrator import ScrapeOrchestrator
    from hero_tracker.reporting.formatters import format_run_summary

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    sc = config.scrape

    map_list = list(maps) if maps else list(sc.maps)
    if all_maps:
        map_list = list(ALL_MAPS)

    try:
        combinations = build_combinations(
            modes or sc.modes,
            inputs or sc.inputs,
            regions or sc.regions,
            tiers or sc.tiers,
            map_list,
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid scrape filter: {exc}", err=True)
        raise typer.Exit(code=1)

    if dry_run:
        typer.echo(f"[DRY RUN] {len(combinations)} combination(s) would be scraped:")
        for combo in combinations:
            typer.echo(f"  {combo.label}")
        eta_s = max(len(combinations) - 1, 0) * sc.request_delay_ms / 1000
        typer.echo(f"  Minimum duration (request delay only): {eta_s:.0f}s")
        return

    store = _open_store(config, db_path)
    client = FixtureRatesClient() if fixture else build_client(config.provider)
    archive = RawArchive(config.data.raw_dir) if sc.archive_raw else None
    cancel_event = threading.Event()

    def _on_sigint(signum, frame):  # noqa: ANN001
        typer.echo("\nCancelling after the current combination ...", err=True)
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _on_sigint)
    try:
        orchestrator = ScrapeOrchestrator(
            store=store,
            client=client,
            config=config,
            cancel_event=cancel_event,
            archive=archive,
        )
        typer.echo(f"Scraping {len(combinations)} combination(s) into {store.db_path} ...")
        run = orchestrator.run(combinations)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        client.close()

    if as_json:
        _echo_json({**run.to_dict(), "outcomes": [o.to_dict() for o in run.outcomes]})
    else:
        typer.echo(format_run_summary(run))

    if run.status == RUN_FAILED:
        typer.echo("[ERROR] Scrape failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Scrape finished with status '{run.status}'.")


@app.command("snapshots")
def snapshots(
    mode: Optional[str] = typer.Option(None, "--mode"),
    input_: Optional[str] = typer.Option(None, "--input"),
    region: Optional[str] = typer.Option(None, "--region"),
    tier: Optional[str] = typer.Option(None, "--tier"),
    map_: Optional[str] = typer.Option(None, "--map"),
    limit: int = typer.Option(30, "--limit", help="Maximum rows (1-500)."),
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List snapshots, newest first, optionally filtered."""
    from pydantic import ValidationError

    from hero_tracker.models.combination import SnapshotFilter
    from hero_tracker.reporting.formatters import format_snapshot_list
    from hero_tracker.reporting.queries import HeroStatsQueries

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        snapshot_filter = SnapshotFilter(
            mode=mode, input=input_, region=region, tier=tier, map=map_, limit=limit,
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid filter: {exc}", err=True)
        raise typer.Exit(code=1)

    rows = HeroStatsQueries(_open_store(config, db_path)).list_snapshots(snapshot_filter)
    if as_json:
        _echo_json([r.to_dict() for r in rows])
    else:
        typer.echo(format_snapshot_list(rows))


@app.command("show-snapshot")
def show_snapshot(
    snapshot_id: int = typer.Argument(..., help="Snapshot id."),
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show one snapshot with all of its hero rows."""
    from hero_tracker.reporting.formatters import format_snapshot_detail
    from hero_tracker.reporting.queries import HeroStatsQueries

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    snapshot = HeroStatsQueries(_open_store(config, db_path)).get_snapshot(snapshot_id)
    if snapshot is None:
        typer.echo(f"[ERROR] Snapshot {snapshot_id} not found.", err=True)
        raise typer.Exit(code=1)
    if as_json:
        _echo_json(snapshot.to_dict())
    else:
        typer.echo(format_snapshot_detail(snapshot))


@app.command("top")
def top(
    mode: str = typer.Option(..., "--mode"),
    input_: str = typer.Option(..., "--input"),
    region: str = typer.Option(..., "--region"),
    tier: str = typer.Option("All", "--tier"),
    map_: str = typer.Option("all-maps", "--map"),
    metric: str = typer.Option("win_rate", "--metric", help="pick_rate or win_rate."),
    n: int = typer.Option(10, "--n", help="Number of heroes."),
    on_date: Optional[str] = typer.Option(
        None, "--date", help="Use the latest snapshot of this UTC day (YYYY-MM-DD)."
    ),
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Top heroes by pick rate or win rate in the latest snapshot."""
    from hero_tracker.reporting.formatters import format_top_heroes
    from hero_tracker.reporting.queries import HeroStatsQueries
    from hero_tracker.utils.time_utils import parse_date

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    combo = _combination_or_exit(mode, input_, region, tier, map_)

    try:
        day = parse_date(on_date) if on_date else None
        result = HeroStatsQueries(_open_store(config, db_path)).top_n(
            combo, metric, n=n, as_of_day=day
        )
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        _echo_json(result.to_dict())
    else:
        typer.echo(format_top_heroes(result, combo))


@app.command("compare")
def compare(
    mode: str = typer.Option(..., "--mode"),
    input_: str = typer.Option(..., "--input"),
    region: str = typer.Option(..., "--region"),
    tier: str = typer.Option("All", "--tier"),
    map_: str = typer.Option("all-maps", "--map"),
    from_time: Optional[str] = typer.Option(
        None, "--from", help="Window start (ISO date/datetime). Default: 7 days ago."
    ),
    to_time: Optional[str] = typer.Option(
        None, "--to", help="Window end (ISO date/datetime). Default: now."
    ),
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Compare the oldest and newest snapshots in a time window, per hero."""
    from hero_tracker.reporting.formatters import format_comparison
    from hero_tracker.reporting.queries import HeroStatsQueries
    from hero_tracker.utils.time_utils import parse_datetime

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    combo = _combination_or_exit(mode, input_, region, tier, map_)

    try:
        start = parse_datetime(from_time) if from_time else None
        end = parse_datetime(to_time) if to_time else None
        rows = HeroStatsQueries(_open_store(config, db_path)).compare(combo, start, end)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        _echo_json([r.to_dict() for r in rows])
    else:
        typer.echo(format_comparison(rows, combo, start, end))


@app.command("health")
def health(
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show store health: snapshot counts, time span, last run, size."""
    from hero_tracker.db.store import StoreError
    from hero_tracker.reporting.formatters import format_health
    from hero_tracker.reporting.queries import HeroStatsQueries

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = _open_store(config, db_path)
    try:
        store.initialize()
        report = HeroStatsQueries(store).health()
    except StoreError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        _echo_json(report.to_dict())
    else:
        typer.echo(format_health(report))


@app.command("runs")
def runs(
    limit: int = typer.Option(10, "--limit", min=1, max=200, help="Maximum runs to show."),
    as_json: bool = typer.Option(False, "--json"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List recent scrape runs, newest first."""
    from hero_tracker.db.store import StoreError
    from hero_tracker.reporting.formatters import format_run_history

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = _open_store(config, db_path)
    try:
        store.initialize()
        recent = store.recent_runs(limit)
    except StoreError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        _echo_json([r.to_dict() for r in recent])
    else:
        typer.echo(format_run_history(recent))


@app.command("replay")
def replay(
    archive_file: Path = typer.Argument(..., help="Raw archive JSON file written by scrape."),
    persist: bool = typer.Option(
        False, "--persist", help="Insert the table if the change detector accepts it."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Re-run an archived fetch through normalization and change detection.

    Without ``--persist`` only the decision is printed. With it, an accepted
    table is stored under its original fetch time.
    """
    from hero_tracker.db.store import DuplicateSnapshotError, StoreError
    from hero_tracker.ingestion.archive import load_archive
    from hero_tracker.ingestion.normalize import is_partial, normalize
    from hero_tracker.ingestion.rates_client import MalformedResponseError
    from hero_tracker.pipeline.change_detector import ChangeDetector
    from hero_tracker.utils.time_utils import utc_day

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        fetch = load_archive(archive_file)
        table = normalize(fetch.rows)
    except FileNotFoundError:
        typer.echo(f"[ERROR] Archive file not found: {archive_file}", err=True)
        raise typer.Exit(code=1)
    except (ValueError, KeyError, MalformedResponseError) as exc:
        typer.echo(f"[ERROR] Cannot replay {archive_file}: {exc}", err=True)
        raise typer.Exit(code=1)

    store = _open_store(config, db_path)
    detector = ChangeDetector(config.scrape.materiality_threshold)
    try:
        store.initialize()
        decision = detector.should_persist(table, store.latest(fetch.combination))
    except StoreError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Combination: {fetch.combination.label}")
    typer.echo(f"  Fetched at:  {fetch.fetched_at.isoformat()}")
    typer.echo(f"  Heroes:      {len(table)}")
    typer.echo(f"  Digest:      {table.digest[:16]}")
    if is_partial(table, config.scrape.min_heroes):
        typer.echo(f"  [WARN] fewer than {config.scrape.min_heroes} heroes; table may be partial.")
    typer.echo(f"  Decision:    {'persist' if decision.persist else 'skip'} ({decision.reason})")

    if not persist or not decision.persist:
        return
    try:
        snapshot_id = store.insert(
            fetch.combination, table.digest, table.hero_rates, captured_at=fetch.fetched_at
        )
    except DuplicateSnapshotError as exc:
        typer.echo(
            f"[SKIP] {fetch.combination.label} already has snapshot "
            f"{exc.existing_snapshot_id} on {utc_day(fetch.fetched_at)}."
        )
        return
    except StoreError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Stored snapshot {snapshot_id}.")


@app.command("export-latest")
def export_latest_cmd(
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", help="Override data.export_dir from config."
    ),
    as_csv: bool = typer.Option(False, "--csv", help="Write flat CSV rows instead of JSON."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Export the latest snapshot of every configured combination."""
    from hero_tracker.models.combination import build_combinations
    from hero_tracker.reporting.export import export_latest

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    sc = config.scrape

    combos = build_combinations(sc.modes, sc.inputs, sc.regions, sc.tiers, sc.maps)
    path = export_latest(
        _open_store(config, db_path),
        combos,
        export_dir=output_dir or config.data.export_dir,
        csv_rows=as_csv,
    )
    typer.echo(f"[OK] Exported {len(combos)} combination(s) to {path}")


@app.command("start-scheduler")
def start_scheduler(
    interval_hours: Optional[float] = typer.Option(
        None, "--interval-hours", help="Override scheduler.interval_hours."
    ),
    skip_initial: bool = typer.Option(
        False, "--skip-initial", help="Wait one interval before the first run."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run ``scrape`` periodically until interrupted (Ctrl-C / SIGTERM)."""
    from hero_tracker.scheduler import SchedulerDaemon

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        daemon = SchedulerDaemon(
            db_path=db_path or config.database.db_path,
            interval_hours=interval_hours or config.scheduler.interval_hours,
            config_path=config_path,
            skip_initial=skip_initial,
        )
    except RuntimeError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    daemon.start()


if __name__ == "__main__":
    app()
