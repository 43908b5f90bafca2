"""Result models for release transitions.

Pydantic models so reports can be rendered as tables by the CLI or dumped
with ``model_dump_json()`` for automation.

Key Concepts:
    Outcome: How a transition ended from the operator's point of view.
    MonitorVerdict: What the health monitor concluded.
    MonitorResult: Verdict plus every tick and the final instance table.
    TransitionReport: The complete record of one upgrade or rollback.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """Overall outcome of a transition."""

    SUCCEEDED = "SUCCEEDED"
    ABORTED = "ABORTED"  # operator declined a gate; not an error
    FAILED = "FAILED"
    PENDING = "PENDING"


class MonitorVerdict(str, Enum):
    """Health monitor conclusion."""

    CONVERGED = "CONVERGED"
    TIMED_OUT = "TIMED_OUT"


class InstanceStatus(BaseModel):
    """One workload instance as shown in the status table."""

    name: str
    ready: int
    desired: int
    phase: str
    restarts: int = 0
    age: str = ""

    @property
    def ready_column(self) -> str:
        return f"{self.ready}/{self.desired}"


class MonitorTick(BaseModel):
    """One poll of the namespace."""

    tick: int
    converged: bool = False
    instances: int = 0
    not_ready: list[str] = Field(default_factory=list)
    degraded: list[str] = Field(default_factory=list)
    error: str | None = None


class MonitorResult(BaseModel):
    """Outcome of a bounded health-monitoring run."""

    namespace: str
    verdict: MonitorVerdict = MonitorVerdict.TIMED_OUT
    ticks: list[MonitorTick] = Field(default_factory=list)
    final_instances: list[InstanceStatus] = Field(default_factory=list)
    # out-of-phase instances in the last successful sample
    degraded: list[str] = Field(default_factory=list)
    max_ticks: int = 0
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def tick_count(self) -> int:
        return len(self.ticks)

    @property
    def converged(self) -> bool:
        return self.verdict == MonitorVerdict.CONVERGED

    def mark_complete(self, verdict: MonitorVerdict) -> None:
        self.verdict = verdict
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()


class TransitionReport(BaseModel):
    """Complete record of one upgrade or rollback run."""

    run_id: str
    direction: str
    release: str
    namespace: str
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0

    # State machine
    states: list[str] = Field(default_factory=list)
    final_state: str | None = None
    outcome: Outcome = Outcome.PENDING

    # Classification
    tier: str | None = None
    schema_risk: bool | None = None
    reason: str | None = None
    database_restore_attested: bool = False

    # Versions
    source_app_version: str | None = None
    source_package_version: str | None = None
    source_revision: int | None = None
    target_app_version: str | None = None
    target_package_version: str | None = None
    target_revision: int | None = None
    new_revision: int | None = None

    # Artifacts
    backup_path: str | None = None
    override_path: str | None = None
    values_file: str | None = None

    # Execution
    dry_run_passed: bool | None = None
    dry_run_output: str = ""
    monitor: MonitorResult | None = None
    warnings: list[str] = Field(default_factory=list)
    recovery_hints: list[str] = Field(default_factory=list)
    error: str | None = None
    error_type: str | None = None
    summary: str = ""

    @property
    def exit_code(self) -> int:
        """0 on success or operator abort, 1 on any failure."""
        return 1 if self.outcome == Outcome.FAILED else 0

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def mark_complete(self, outcome: Outcome) -> None:
        """Finalize the report: timings, outcome, one-line summary."""
        self.outcome = outcome
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        move = f"{self.source_app_version or '?'} → {self.target_app_version or '?'}"
        parts = [f"{self.direction} {self.release} {move}: {outcome.value}"]
        if self.tier:
            parts.append(f"tier={self.tier}")
        if self.new_revision is not None:
            parts.append(f"revision={self.new_revision}")
        if self.monitor is not None:
            parts.append(f"health={self.monitor.verdict.value}")
        if self.error:
            parts.append(f"error={self.error_type or 'Error'}")
        self.summary = " ".join(parts)


__all__ = [
    "InstanceStatus",
    "MonitorResult",
    "MonitorTick",
    "MonitorVerdict",
    "Outcome",
    "TransitionReport",
]
