"""
Snapshot store — the single owner of persisted snapshot and run state.

``SnapshotStore`` is constructed explicitly (from ``DatabaseConfig`` or a
bare path) and handed to the orchestrator and the query layer; there is no
module-level connection. Every public method opens its own short-lived
connection via ``get_connection()``, so one store instance is safe to share
between a writer and concurrent readers.

Failure semantics
-----------------
- Lock contention (SQLITE_BUSY / SQLITE_LOCKED) is retried internally up to
  ``lock_retries`` attempts, sleeping ``lock_retry_delay_ms`` between them.
  Exhausting the budget raises ``StoreUnavailableError``.
- ``insert()`` is atomic: the snapshot row and every hero row commit
  together or not at all. A second insert for the same combination on the
  same UTC day raises ``DuplicateSnapshotError`` — callers treat that as
  "already satisfied", not as a failure.
- The one-per-day invariant is a UNIQUE constraint in the schema; the
  pre-check inside the write transaction only classifies the outcome.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional, TypeVar

from hero_tracker.db.connection import get_connection, is_lock_error
from hero_tracker.db.repositories.run_repo import RunRecordRepository
from hero_tracker.db.repositories.snapshot_repo import SnapshotRepository
from hero_tracker.db.schema import apply_schema
from hero_tracker.models.combination import Combination, SnapshotFilter
from hero_tracker.models.run import RunRecord
from hero_tracker.models.snapshot import HeroRate, Snapshot, SnapshotSummary
from hero_tracker.utils.time_utils import ensure_utc, utc_day, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Errors ────────────────────────────────────────────────────────────────────

class StoreError(Exception):
    """Base class for snapshot store failures."""


class DuplicateSnapshotError(StoreError):
    """The combination already has a snapshot on this UTC day.

    Attributes:
        combination: Combination whose slot is taken.
        day: The UTC day.
        existing_snapshot_id: Id of the snapshot occupying the slot, if known.
    """

    def __init__(
        self,
        combination: Combination,
        day: date,
        existing_snapshot_id: Optional[int] = None,
    ) -> None:
        self.combination = combination
        self.day = day
        self.existing_snapshot_id = existing_snapshot_id
        super().__init__(
            f"Snapshot already exists for {combination.label} on {day.isoformat()} "
            f"(snapshot_id={existing_snapshot_id})."
        )


class StoreUnavailableError(StoreError):
    """Lock contention outlasted the store's retry budget."""


# ── Health ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StoreHealth:
    """Store-level health summary.

    Attributes:
        total_snapshots:    Number of committed snapshots.
        oldest_timestamp:   ``captured_at`` of the oldest snapshot (None if empty).
        newest_timestamp:   ``captured_at`` of the newest snapshot (None if empty).
        last_run:           Most recently started run, or None.
        storage_size_bytes: ``page_count × page_size`` of the main database file.
    """

    total_snapshots: int
    oldest_timestamp: Optional[datetime]
    newest_timestamp: Optional[datetime]
    last_run: Optional[RunRecord]
    storage_size_bytes: int

    def to_dict(self) -> dict:
        return {
            "total_snapshots": self.total_snapshots,
            "oldest_timestamp": self.oldest_timestamp.isoformat() if self.oldest_timestamp else None,
            "newest_timestamp": self.newest_timestamp.isoformat() if self.newest_timestamp else None,
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "storage_size_bytes": self.storage_size_bytes,
        }


# ── Store ─────────────────────────────────────────────────────────────────────

class SnapshotStore:
    """Durable record of snapshots, hero rows and run records.

    Args:
        db_path: SQLite file path. (``":memory:"`` is not useful here: each
            operation opens a fresh connection.)
        wal_mode: Enable WAL so readers and the writer do not block each other.
        busy_timeout_ms: SQLite's own wait on a lock before raising.
        lock_retries: Attempts per operation when the database is locked.
        lock_retry_delay_ms: Pause between lock retries.
        sleep: Suspension function used between lock retries (seconds).
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 2000,
        lock_retries: int = 5,
        lock_retry_delay_ms: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if lock_retries < 1:
            raise ValueError(f"lock_retries must be >= 1, got {lock_retries}.")
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.lock_retries = lock_retries
        self.lock_retry_delay_ms = lock_retry_delay_ms
        self._sleep = sleep

    @classmethod
    def from_config(cls, database_config, db_path: Optional[str] = None) -> "SnapshotStore":
        """Build a store from ``AppConfig.database`` (optionally overriding the path)."""
        return cls(
            db_path=db_path or database_config.db_path,
            wal_mode=database_config.wal_mode,
            busy_timeout_ms=database_config.busy_timeout_ms,
            lock_retries=database_config.lock_retries,
            lock_retry_delay_ms=database_config.lock_retry_delay_ms,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Create tables and indexes if missing. Idempotent."""
        def _op() -> None:
            with self._connect() as conn:
                apply_schema(conn)

        self._with_lock_retry(_op, "initialize")

    # ── Snapshot writes ───────────────────────────────────────────────────────

    def insert(
        self,
        combination: Combination,
        digest: str,
        hero_rates: Iterable[HeroRate],
        captured_at: Optional[datetime] = None,
    ) -> int:
        """Atomically insert a snapshot and its hero rows.

        Args:
            combination: Series being observed.
            digest: Content digest of the normalized table.
            hero_rates: Normalized hero rows; must not be empty.
            captured_at: Capture time (defaults to now, UTC).

        Returns:
            The new ``snapshot_id``.

        Raises:
            ValueError: If ``hero_rates`` is empty.
            DuplicateSnapshotError: If the combination already has a snapshot
                on the same UTC day. Nothing is written.
            StoreUnavailableError: If lock contention outlasts the retry budget.
        """
        rows = list(hero_rates)
        if not rows:
            raise ValueError(f"Empty hero table for {combination.label}; not persisted.")
        captured = ensure_utc(captured_at) if captured_at else utcnow()
        day = utc_day(captured)

        def _op() -> int:
            with self._connect(immediate=True) as conn:
                repo = SnapshotRepository(conn)
                existing = repo.find_id_for_day(combination, day)
                if existing is not None:
                    raise DuplicateSnapshotError(combination, day, existing)
                try:
                    return repo.insert_snapshot(combination, digest, rows, captured)
                except sqlite3.IntegrityError as exc:
                    if "snapshots." not in str(exc):
                        raise
                    raise DuplicateSnapshotError(
                        combination, day, repo.find_id_for_day(combination, day)
                    ) from exc

        snapshot_id = self._with_lock_retry(_op, f"insert {combination.label}")
        logger.debug(
            "Snapshot inserted: id=%d | %s | heroes=%d | digest=%s…",
            snapshot_id, combination.label, len(rows), digest[:12],
        )
        return snapshot_id

    # ── Snapshot reads ────────────────────────────────────────────────────────

    def exists(self, combination: Combination, digest: str, day: date) -> bool:
        """True if ``combination`` already has a snapshot with ``digest`` on ``day``."""
        return self._read(lambda repo: repo.exists(combination, digest, day))

    def latest(self, combination: Combination, day: Optional[date] = None) -> Optional[Snapshot]:
        """Most recent snapshot for ``combination`` (optionally on one UTC day)."""
        return self._read(lambda repo: repo.get_latest(combination, day))

    def range(
        self,
        combination: Combination,
        from_time: datetime,
        to_time: datetime,
    ) -> list[Snapshot]:
        """Snapshots captured in ``[from_time, to_time]``, ascending by time."""
        return self._read(lambda repo: repo.get_range(combination, from_time, to_time))

    def range_edges(
        self,
        combination: Combination,
        from_time: datetime,
        to_time: datetime,
    ) -> tuple[Optional[Snapshot], Optional[Snapshot]]:
        """Return ``(oldest, newest)`` snapshots inside the window."""
        def _edges(repo: SnapshotRepository) -> tuple[Optional[Snapshot], Optional[Snapshot]]:
            oldest = repo.get_range_edge(combination, from_time, to_time, newest=False)
            newest = repo.get_range_edge(combination, from_time, to_time, newest=True)
            return oldest, newest

        return self._read(_edges)

    def list_snapshots(self, snapshot_filter: SnapshotFilter) -> list[SnapshotSummary]:
        """Snapshot headers matching the filter, newest first, capped at ``limit``."""
        return self._read(lambda repo: repo.list_summaries(snapshot_filter))

    def get_snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        return self._read(lambda repo: repo.get_by_id(snapshot_id))

    # ── Run records ───────────────────────────────────────────────────────────

    def start_run(self, run: RunRecord) -> int:
        """Persist the initial ``running`` row and set ``run.run_id``."""
        def _op() -> int:
            with self._connect(immediate=True) as conn:
                return RunRecordRepository(conn).insert_run(run)

        run.run_id = self._with_lock_retry(_op, f"start run {run.run_slug}")
        return run.run_id

    def finish_run(self, run: RunRecord) -> None:
        """Write the single terminal update for ``run``.

        Raises:
            ValueError: If ``run`` still has a non-terminal status.
        """
        if not run.is_terminal:
            raise ValueError(
                f"Run {run.run_slug} has non-terminal status '{run.status}'; refusing to finish it."
            )

        def _op() -> None:
            with self._connect(immediate=True) as conn:
                RunRecordRepository(conn).update_run(run)

        self._with_lock_retry(_op, f"finish run {run.run_slug}")

    def last_run(self) -> Optional[RunRecord]:
        def _op() -> Optional[RunRecord]:
            with self._connect() as conn:
                return RunRecordRepository(conn).get_latest()

        return self._with_lock_retry(_op, "last run")

    def recent_runs(self, limit: int = 10) -> list[RunRecord]:
        def _op() -> list[RunRecord]:
            with self._connect() as conn:
                return RunRecordRepository(conn).get_recent(limit)

        return self._with_lock_retry(_op, "recent runs")

    # ── Health ────────────────────────────────────────────────────────────────

    def health(self) -> StoreHealth:
        def _op() -> StoreHealth:
            with self._connect() as conn:
                total, oldest, newest = SnapshotRepository(conn).stats()
                last_run = RunRecordRepository(conn).get_latest()
                page_count = conn.execute("PRAGMA page_count;").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size;").fetchone()[0]
            return StoreHealth(
                total_snapshots=total,
                oldest_timestamp=oldest,
                newest_timestamp=newest,
                last_run=last_run,
                storage_size_bytes=int(page_count) * int(page_size),
            )

        return self._with_lock_retry(_op, "health")

    # ── Internals ─────────────────────────────────────────────────────────────

    def _connect(self, immediate: bool = False):
        return get_connection(
            self.db_path,
            wal_mode=self.wal_mode,
            busy_timeout_ms=self.busy_timeout_ms,
            immediate=immediate,
        )

    def _read(self, fn: Callable[[SnapshotRepository], T]) -> T:
        def _op() -> T:
            with self._connect() as conn:
                return fn(SnapshotRepository(conn))

        return self._with_lock_retry(_op, "read")

    def _with_lock_retry(self, op: Callable[[], T], what: str) -> T:
        """Run ``op``, retrying on lock contention up to ``lock_retries`` times."""
        for attempt in range(1, self.lock_retries + 1):
            try:
                return op()
            except sqlite3.OperationalError as exc:
                if not is_lock_error(exc):
                    raise
                if attempt >= self.lock_retries:
                    logger.error(
                        "Store %s: database still locked after %d attempt(s).",
                        what, attempt,
                    )
                    raise StoreUnavailableError(
                        f"Database locked during {what} after {attempt} attempt(s): {exc}"
                    ) from exc
                logger.warning(
                    "Store %s: database locked (attempt %d/%d); retrying in %dms.",
                    what, attempt, self.lock_retries, self.lock_retry_delay_ms,
                )
                self._sleep(self.lock_retry_delay_ms / 1000)
        raise AssertionError("unreachable")
