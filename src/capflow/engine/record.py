# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Execution records.

An ExecutionRecord holds the state of one run of a workflow. It is created
``pending``, becomes ``running`` once phase execution starts and ends in
exactly one of ``completed``, ``failed`` or ``cancelled``. Terminal records
are immutable: every mutator raises ProcessingError once the run has ended.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from capflow.engine.usage import UsageTracker
from capflow.exceptions import ProcessingError

ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Error log entries not tied to a single step use this id
WORKFLOW_ERROR_ID = "workflow"


def new_execution_id() -> str:
    """Generate an execution id of the form ``exec_<unix-ms>_<8 hex>``."""
    return f"exec_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class ErrorEntry:
    """One entry of a run's ordered error log."""

    step_id: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecutionMetrics:
    """Running counters of a run."""

    total_steps: int = 0
    completed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_duration: float = 0.0
    """Wall-clock seconds from start to end (or to now while running)."""
    avg_step_duration: float = 0.0
    """Mean elapsed seconds of completed steps."""
    cost_incurred: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "total_duration": self.total_duration,
            "avg_step_duration": self.avg_step_duration,
            "cost_incurred": self.cost_incurred,
        }


@dataclass
class ExecutionRecord:
    """State of one workflow run.

    ``completed_steps``, ``failed_steps`` and ``skipped_steps`` are pairwise
    disjoint and only ever grow. The engine is the sole writer while the
    run is in progress.
    """

    workflow_id: str
    id: str = field(default_factory=new_execution_id)
    status: ExecutionStatus = "pending"
    start_time: datetime | None = None
    end_time: datetime | None = None
    completed_steps: list[str] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    step_results: dict[str, Any] = field(default_factory=dict)
    errors: list[ErrorEntry] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    usage: UsageTracker = field(default_factory=UsageTracker, repr=False)
    _started_at: float | None = field(default=None, repr=False)
    _step_durations: list[float] = field(default_factory=list, repr=False)

    @property
    def is_terminal(self) -> bool:
        """Whether the run has ended."""
        return self.status in TERMINAL_STATUSES

    @property
    def settled_steps(self) -> set[str]:
        """Union of completed, failed and skipped step ids."""
        return set(self.completed_steps) | set(self.failed_steps) | set(self.skipped_steps)

    @property
    def satisfied_steps(self) -> set[str]:
        """Step ids that satisfy dependents: completed or skipped."""
        return set(self.completed_steps) | set(self.skipped_steps)

    @property
    def max_cost(self) -> float | None:
        """Cost budget of the run, if any."""
        return self.context.get("max_cost")

    @property
    def max_duration(self) -> float | None:
        """Duration budget of the run in seconds, if any."""
        return self.context.get("max_duration")

    def elapsed(self) -> float:
        """Seconds since the run started, frozen once it has ended."""
        if self._started_at is None:
            return 0.0
        if self.is_terminal:
            return self.metrics.total_duration
        return time.monotonic() - self._started_at

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise ProcessingError(
                f"Execution '{self.id}' is already {self.status} and cannot be modified",
                execution_id=self.id,
            )

    def _ensure_unsettled(self, step_id: str) -> None:
        if step_id in self.settled_steps:
            raise ProcessingError(
                f"Step '{step_id}' has already settled in execution '{self.id}'",
                step_id=step_id,
                execution_id=self.id,
            )

    def start(self) -> None:
        """Move the run from pending to running."""
        self._ensure_mutable()
        if self.status != "pending":
            raise ProcessingError(
                f"Execution '{self.id}' cannot start from status '{self.status}'",
                execution_id=self.id,
            )
        self.status = "running"
        self.start_time = datetime.now(UTC)
        self._started_at = time.monotonic()

    def record_success(self, step_id: str, result: Any, cost: float, duration: float) -> None:
        """Store a step result and attribute its cost."""
        self._ensure_mutable()
        self._ensure_unsettled(step_id)
        self.step_results[step_id] = result
        self.completed_steps.append(step_id)
        self._step_durations.append(duration)
        self.metrics.completed_count += 1
        self.metrics.cost_incurred += cost
        self.metrics.avg_step_duration = sum(self._step_durations) / len(self._step_durations)

    def record_failure(self, step_id: str, message: str) -> None:
        """Mark a step failed and log the failure."""
        self._ensure_mutable()
        self._ensure_unsettled(step_id)
        self.failed_steps.append(step_id)
        self.metrics.failed_count += 1
        self.errors.append(ErrorEntry(step_id=step_id, message=message))

    def record_skip(self, step_id: str) -> None:
        """Mark a step skipped. A skip satisfies dependents like a completion."""
        self._ensure_mutable()
        self._ensure_unsettled(step_id)
        self.skipped_steps.append(step_id)
        self.metrics.skipped_count += 1

    def add_error(self, step_id: str, message: str) -> None:
        """Append an entry to the error log."""
        self._ensure_mutable()
        self.errors.append(ErrorEntry(step_id=step_id, message=message))

    def finish(self, status: ExecutionStatus) -> None:
        """Move the run to a terminal status and freeze its duration."""
        self._ensure_mutable()
        if status not in TERMINAL_STATUSES:
            raise ProcessingError(
                f"'{status}' is not a terminal status", execution_id=self.id
            )
        if self._started_at is not None:
            self.metrics.total_duration = time.monotonic() - self._started_at
        self.status = status
        self.end_time = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable view of the record."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "completed_steps": list(self.completed_steps),
            "failed_steps": list(self.failed_steps),
            "skipped_steps": list(self.skipped_steps),
            "step_results": dict(self.step_results),
            "errors": [entry.to_dict() for entry in self.errors],
            "metrics": self.metrics.to_dict(),
        }
