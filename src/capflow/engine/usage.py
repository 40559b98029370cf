# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Per-step usage tracking for workflow execution.

This module provides classes for tracking provider attempts, attributed
cost and elapsed time across the steps of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

StepOutcome = Literal["completed", "failed", "skipped"]


@dataclass
class StepUsage:
    """Attempts, cost and time spent on a single step.

    Attributes:
        step_id: Id of the step.
        provider_type: Provider type the step was bound to.
        outcome: How the step settled.
        attempts: Provider calls made (0 for skipped or blocked steps).
        cost: Cost attributed to the step. Failed steps attribute nothing.
        elapsed_seconds: Wall-clock time from first attempt to settlement,
            including backoff waits.
    """

    step_id: str
    provider_type: str
    outcome: StepOutcome
    attempts: int = 0
    cost: float = 0.0
    elapsed_seconds: float = 0.0


@dataclass
class RunUsage:
    """Aggregated usage for one run.

    Attributes:
        steps: Per-step usage records in settlement order.
    """

    steps: list[StepUsage] = field(default_factory=list)

    @property
    def total_cost(self) -> float:
        """Total attributed cost across all steps."""
        return sum(s.cost for s in self.steps)

    @property
    def total_attempts(self) -> int:
        """Total provider calls across all steps."""
        return sum(s.attempts for s in self.steps)

    @property
    def retried_steps(self) -> list[str]:
        """Ids of steps that needed more than one attempt."""
        return [s.step_id for s in self.steps if s.attempts > 1]

    @property
    def total_elapsed_seconds(self) -> float:
        """Sum of per-step elapsed time.

        Note: For parallel steps, this sums individual times,
        not wall-clock time.
        """
        return sum(s.elapsed_seconds for s in self.steps)

    def by_provider(self) -> dict[str, float]:
        """Attributed cost grouped by provider type."""
        totals: dict[str, float] = {}
        for s in self.steps:
            totals[s.provider_type] = totals.get(s.provider_type, 0.0) + s.cost
        return totals


class UsageTracker:
    """Tracks per-step usage across a run.

    Example:
        >>> tracker = UsageTracker()
        >>> tracker.record("research", "market-research", "completed", attempts=2, cost=0.08)
        >>> tracker.get_summary().total_attempts
        2
    """

    def __init__(self) -> None:
        self._steps: list[StepUsage] = []

    def record(
        self,
        step_id: str,
        provider_type: str,
        outcome: StepOutcome,
        *,
        attempts: int = 0,
        cost: float = 0.0,
        elapsed_seconds: float = 0.0,
    ) -> StepUsage:
        """Record how a step settled.

        Returns:
            The StepUsage entry that was stored.
        """
        usage = StepUsage(
            step_id=step_id,
            provider_type=provider_type,
            outcome=outcome,
            attempts=attempts,
            cost=cost,
            elapsed_seconds=elapsed_seconds,
        )
        self._steps.append(usage)
        return usage

    def get(self, step_id: str) -> StepUsage | None:
        """Return the usage entry for a step, if it has settled."""
        for usage in self._steps:
            if usage.step_id == step_id:
                return usage
        return None

    def get_summary(self) -> RunUsage:
        """Get aggregated run usage."""
        return RunUsage(steps=self._steps.copy())

    def reset(self) -> None:
        """Clear all recorded usage data."""
        self._steps.clear()
