"""
Run records — the observability backbone of the scrape pipeline.

``RunRecord`` is the audit log for one orchestration pass over the
combination space. It is written once when the run starts (status
``running``) and updated exactly once when it ends, with aggregate counts
and the list of per-combination errors.

``RunRecord`` is the **only** model in the system that is NOT frozen — its
counters and terminal fields are filled in by the orchestrator as the run
progresses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hero_tracker.models.combination import Combination

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_PARTIAL = "partial"
RUN_FAILED = "failed"

VALID_RUN_STATUSES = frozenset({RUN_RUNNING, RUN_SUCCESS, RUN_PARTIAL, RUN_FAILED})
TERMINAL_RUN_STATUSES = frozenset({RUN_SUCCESS, RUN_PARTIAL, RUN_FAILED})

OUTCOME_PERSISTED = "persisted"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


class RunError(BaseModel):
    """One failed combination within a run."""

    model_config = ConfigDict(frozen=True)

    combination: str
    message: str


class CombinationOutcome(BaseModel):
    """What happened to one combination during a run (not persisted).

    Attributes:
        combination: The combination processed.
        outcome: ``persisted``, ``skipped`` or ``failed``.
        reason: Skip reason (``duplicate_digest``, ``below_threshold``,
            ``already_exists``) or the persist reason.
        snapshot_id: Id of the inserted snapshot when persisted.
        hero_count: Rows in the normalized table (0 if it never got that far).
        partial: ``True`` when the table had fewer heroes than expected.
        error: Failure message when ``outcome == "failed"``.
    """

    model_config = ConfigDict(frozen=True)

    combination: Combination
    outcome: str
    reason: Optional[str] = None
    snapshot_id: Optional[int] = None
    hero_count: int = 0
    partial: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "combination": self.combination.label,
            "outcome": self.outcome,
            "reason": self.reason,
            "snapshot_id": self.snapshot_id,
            "hero_count": self.hero_count,
            "partial": self.partial,
            "error": self.error,
        }


class RunRecord(BaseModel):
    """Scrape run audit record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        status: ``running`` until the terminal update, then one of
            ``success``, ``partial``, ``failed``.
        started_at: UTC datetime when the run began.
        completed_at: UTC datetime when the run finished.
        combination_count: Number of combinations scheduled for this run.
        snapshots_created: Snapshots inserted.
        snapshots_skipped: Combinations legitimately unchanged (not failures).
        partial_count: Combinations whose table was suspiciously small.
        errors: Per-combination failures.
        duration_ms: Wall-clock duration of the run.
        cancelled: ``True`` if the run stopped early on a cancellation signal.
        outcomes: Per-combination outcomes of the run that produced this
            record. Kept in memory for the caller; never persisted.
    """

    # Not frozen: counters and terminal fields are updated during execution
    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    status: str = RUN_RUNNING
    started_at: datetime
    completed_at: Optional[datetime] = None
    combination_count: int = 0
    snapshots_created: int = 0
    snapshots_skipped: int = 0
    partial_count: int = 0
    errors: list[RunError] = []
    duration_ms: Optional[int] = None
    cancelled: bool = False
    outcomes: list[CombinationOutcome] = Field(default_factory=list, exclude=True)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.run_id,
            "run_slug": self.run_slug,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "combination_count": self.combination_count,
            "snapshots_created": self.snapshots_created,
            "snapshots_skipped": self.snapshots_skipped,
            "partial_count": self.partial_count,
            "errors": [e.model_dump() for e in self.errors],
            "duration_ms": self.duration_ms,
            "cancelled": self.cancelled,
        }
