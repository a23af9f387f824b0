"""
Scrape orchestration for the Hero Rate Tracker.

The ``ScrapeOrchestrator`` walks the configured combination space once, in a
deterministic, testable sequence:

  Step 1 — Pre-flight:  Apply schema (idempotent), insert RunRecord (running).
  Step 2 — Per combination (failures isolated per combination):
             Fetch (with retry) → archive raw (optional) → Normalize →
             Decide (change detector vs. latest snapshot) →
             same-day exists guard → Insert.
           Wait ``request_delay_ms`` before the next combination.
  Step 3 — Finalise:    Derive status, write the single terminal RunRecord
                         update.

Failure isolation
-----------------
- Provider / normalization / store failure for one combination: recorded in
  ``run.errors``, the run moves on to the next combination.
- ``DuplicateSnapshotError``: another writer filled today's slot first; the
  combination is *skipped* (``already_exists``), not failed.
- Raw archive write failure: logged, does not affect the combination.
- Pre-flight failure: nothing can be recorded; a ``failed`` RunRecord without
  ``run_id`` is returned.

Status
------
- ``partial`` — the run was cancelled (checked first, regardless of counts).
- ``failed``  — at least one failure and no successes (persisted + skipped).
- ``success`` — no failures and no partial tables.
- ``partial`` — everything else.

Cancellation
------------
Setting ``cancel_event`` stops the run before the next combination. The
combination in flight always runs to completion, retry backoff included, and
its outcome is recorded. Only the inter-request delay waits on the event, so a
signal arriving there ends the run without sleeping the delay out.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Optional
from uuid import uuid4

from hero_tracker.config import AppConfig
from hero_tracker.db.store import DuplicateSnapshotError, SnapshotStore
from hero_tracker.ingestion.archive import RawArchive
from hero_tracker.ingestion.normalize import is_partial, normalize
from hero_tracker.ingestion.rates_client import RatesClient
from hero_tracker.ingestion.retry import with_retry
from hero_tracker.models.combination import Combination, build_combinations
from hero_tracker.models.run import (
    OUTCOME_FAILED,
    OUTCOME_PERSISTED,
    OUTCOME_SKIPPED,
    RUN_FAILED,
    RUN_PARTIAL,
    RUN_SUCCESS,
    CombinationOutcome,
    RunError,
    RunRecord,
)
from hero_tracker.pipeline.change_detector import ChangeDetector
from hero_tracker.utils.logging import run_context
from hero_tracker.utils.time_utils import utc_day, utcnow

logger = logging.getLogger(__name__)

SKIP_ALREADY_EXISTS = "already_exists"


class RunCancelled(Exception):
    """Raised when the cancel event fires during the inter-request delay."""


def derive_status(failures: int, successes: int, partials: int, cancelled: bool) -> str:
    """Map run counters to a terminal status."""
    if cancelled:
        return RUN_PARTIAL
    if failures > 0 and successes == 0:
        return RUN_FAILED
    if failures == 0 and partials == 0:
        return RUN_SUCCESS
    return RUN_PARTIAL


class ScrapeOrchestrator:
    """Coordinates one pass over the combination space.

    Args:
        store: Snapshot store (already constructed; schema applied on run).
        client: Rate provider client.
        config: AppConfig for this run (``config.scrape`` drives pacing).
        sleep: Optional suspension function (seconds) for both the
            inter-request delay and retry backoff. When omitted, backoff uses
            ``time.sleep`` and the inter-request delay uses
            ``cancel_event.wait(timeout)`` so cancellation interrupts it.
        cancel_event: Event that, once set, stops the run cooperatively.
        archive: Optional raw archive; each fetched table is written to it.
    """

    def __init__(
        self,
        store: SnapshotStore,
        client: RatesClient,
        config: AppConfig,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        archive: Optional[RawArchive] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.archive = archive
        self._sleep = sleep
        self.detector = ChangeDetector(config.scrape.materiality_threshold)

    def plan(self) -> list[Combination]:
        """The configured combination space, in deterministic order."""
        sc = self.config.scrape
        return build_combinations(sc.modes, sc.inputs, sc.regions, sc.tiers, sc.maps)

    def run(self, combinations: Optional[Iterable[Combination]] = None) -> RunRecord:
        """Execute one scrape run.

        Args:
            combinations: Combinations to process. Defaults to ``plan()``.

        Returns:
            The terminal ``RunRecord``, with per-combination ``outcomes``.
        """
        combos = list(combinations) if combinations is not None else self.plan()
        started = time.monotonic()
        run = RunRecord(
            run_slug=str(uuid4()),
            started_at=utcnow(),
            combination_count=len(combos),
        )

        # ── Step 1: Pre-flight ────────────────────────────────────────────────
        ctx = run_context(run.run_slug)
        logger.info(
            "ScrapeOrchestrator | run_slug=%s | combinations=%d",
            run.run_slug, len(combos), extra=ctx,
        )
        try:
            self.store.initialize()
            self.store.start_run(run)
        except Exception as exc:
            logger.error("Pre-flight failed: %s", exc, extra=ctx)
            run.status = RUN_FAILED
            run.errors.append(RunError(combination="*", message=f"Pre-flight failed: {exc}"))
            run.completed_at = utcnow()
            run.duration_ms = int((time.monotonic() - started) * 1000)
            return run

        if self.archive is not None:
            self.archive.run_slug = run.run_slug

        # ── Step 2: Per-combination loop ──────────────────────────────────────
        for index, combo in enumerate(combos):
            if self.cancel_event.is_set():
                run.cancelled = True
                logger.warning(
                    "Run cancelled before %s (%d/%d done).", combo.label, index, len(combos),
                    extra=ctx,
                )
                break

            outcome = self._process(combo, run.run_slug)
            self._record(run, outcome)

            if index < len(combos) - 1:
                try:
                    self._pause(self.config.scrape.request_delay_ms / 1000)
                except RunCancelled:
                    run.cancelled = True
                    logger.warning("Run cancelled during inter-request delay.", extra=ctx)
                    break

        # ── Step 3: Finalise ──────────────────────────────────────────────────
        failures = sum(1 for o in run.outcomes if o.outcome == OUTCOME_FAILED)
        run.status = derive_status(
            failures=failures,
            successes=run.snapshots_created + run.snapshots_skipped,
            partials=run.partial_count,
            cancelled=run.cancelled,
        )
        run.completed_at = utcnow()
        run.duration_ms = int((time.monotonic() - started) * 1000)

        try:
            self.store.finish_run(run)
        except Exception as exc:
            logger.error(
                "Failed to write terminal run record %s: %s", run.run_slug, exc, extra=ctx
            )

        logger.info(
            "ScrapeOrchestrator finished | status=%s | created=%d | skipped=%d | "
            "failed=%d | partial=%d | cancelled=%s | %dms",
            run.status, run.snapshots_created, run.snapshots_skipped,
            failures, run.partial_count, run.cancelled, run.duration_ms,
            extra=ctx,
        )
        return run

    # ── Private helpers ───────────────────────────────────────────────────────

    def _process(self, combo: Combination, run_slug: str) -> CombinationOutcome:
        """Fetch → normalize → decide → insert for one combination.

        Never raises; every failure becomes a ``failed`` outcome. Cancellation
        is not checked here, so a combination that has started always
        produces an outcome.
        """
        sc = self.config.scrape
        label = combo.label
        ctx = run_context(run_slug, label)
        hero_count = 0
        partial = False

        try:
            raw = with_retry(
                lambda: self.client.fetch_rates(combo),
                max_attempts=sc.max_attempts,
                base_delay_ms=sc.base_delay_ms,
                sleep=self._backoff_wait,
                label=f"fetch {label}",
            )
            captured_at = utcnow()
            self._archive(combo, raw, captured_at, ctx)

            table = normalize(raw)
            hero_count = len(table)
            partial = is_partial(table, sc.min_heroes)
            if partial:
                logger.warning(
                    "%s: only %d heroes (expected >= %d); table may be partial.",
                    label, hero_count, sc.min_heroes, extra=ctx,
                )

            decision = self.detector.should_persist(table, self.store.latest(combo))
            if not decision.persist:
                logger.info("%s: skipped (%s).", label, decision.reason, extra=ctx)
                return CombinationOutcome(
                    combination=combo, outcome=OUTCOME_SKIPPED, reason=decision.reason,
                    hero_count=hero_count, partial=partial,
                )

            if self.store.exists(combo, table.digest, utc_day(captured_at)):
                logger.info("%s: skipped (%s).", label, SKIP_ALREADY_EXISTS, extra=ctx)
                return CombinationOutcome(
                    combination=combo, outcome=OUTCOME_SKIPPED, reason=SKIP_ALREADY_EXISTS,
                    hero_count=hero_count, partial=partial,
                )

            snapshot_id = self.store.insert(
                combo, table.digest, table.hero_rates, captured_at=captured_at
            )
            logger.info(
                "%s: snapshot %d persisted (%s, %d heroes).",
                label, snapshot_id, decision.reason, hero_count, extra=ctx,
            )
            return CombinationOutcome(
                combination=combo, outcome=OUTCOME_PERSISTED, reason=decision.reason,
                snapshot_id=snapshot_id, hero_count=hero_count, partial=partial,
            )

        except DuplicateSnapshotError as exc:
            logger.info(
                "%s: skipped (%s, snapshot_id=%s).",
                label, SKIP_ALREADY_EXISTS, exc.existing_snapshot_id, extra=ctx,
            )
            return CombinationOutcome(
                combination=combo, outcome=OUTCOME_SKIPPED, reason=SKIP_ALREADY_EXISTS,
                snapshot_id=exc.existing_snapshot_id, hero_count=hero_count, partial=partial,
            )
        except Exception as exc:
            logger.error("%s: failed: %s: %s", label, type(exc).__name__, exc, extra=ctx)
            return CombinationOutcome(
                combination=combo, outcome=OUTCOME_FAILED,
                error=f"{type(exc).__name__}: {exc}",
                hero_count=hero_count, partial=partial,
            )

    def _record(self, run: RunRecord, outcome: CombinationOutcome) -> None:
        run.outcomes.append(outcome)
        if outcome.partial:
            run.partial_count += 1
        if outcome.outcome == OUTCOME_PERSISTED:
            run.snapshots_created += 1
        elif outcome.outcome == OUTCOME_SKIPPED:
            run.snapshots_skipped += 1
        else:
            run.errors.append(
                RunError(combination=outcome.combination.label, message=outcome.error or "")
            )

    def _archive(self, combo: Combination, raw, captured_at, ctx: dict) -> None:
        if self.archive is None:
            return
        try:
            self.archive.save(combo, raw, fetched_at=captured_at)
        except OSError as exc:
            logger.warning("Raw archive write failed for %s: %s", combo.label, exc, extra=ctx)

    def _backoff_wait(self, seconds: float) -> None:
        """Retry backoff: always waits the full delay."""
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            time.sleep(seconds)

    def _pause(self, seconds: float) -> None:
        """Inter-request delay; raise ``RunCancelled`` if cancellation arrives."""
        if self.cancel_event.is_set():
            raise RunCancelled()
        if seconds <= 0:
            return
        if self._sleep is not None:
            self._sleep(seconds)
        elif self.cancel_event.wait(timeout=seconds):
            raise RunCancelled()
