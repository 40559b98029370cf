# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Budget enforcement for workflow execution.

This module provides the BudgetEnforcer class for tracking and enforcing
cost and duration ceilings during a run. Budgets are checked between
phases; a tripped budget is a hard, non-retryable abort.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from capflow.exceptions import BudgetExceededError


@dataclass
class BudgetEnforcer:
    """Enforces cost and duration budgets on a run.

    Attributes:
        max_cost: Maximum cumulative cost. None means unlimited.
        max_duration: Maximum wall-clock seconds. None means unlimited.
        execution_id: Id of the guarded run, for error reporting.
        start_time: Run start timestamp (monotonic).

    Example:
        >>> enforcer = BudgetEnforcer(max_cost=0.25, max_duration=60)
        >>> enforcer.start()
        >>> enforcer.check(cost_incurred=0.20)  # OK
        >>> enforcer.check(cost_incurred=0.30)  # raises BudgetExceededError
    """

    max_cost: float | None = None
    """Maximum cumulative cost. None means unlimited."""

    max_duration: float | None = None
    """Maximum wall-clock seconds. None means unlimited."""

    execution_id: str | None = None
    """Id of the guarded run."""

    start_time: float | None = None
    """Run start timestamp."""

    def start(self) -> None:
        """Start the duration clock."""
        self.start_time = time.monotonic()

    def get_elapsed_time(self) -> float:
        """Get the elapsed time since start.

        Returns:
            Elapsed time in seconds, or 0 if not started.
        """
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time

    def get_remaining_duration(self) -> float | None:
        """Get the remaining time before the duration budget trips.

        Returns:
            Remaining seconds, or None if no duration budget is set.
        """
        if self.max_duration is None:
            return None
        return max(0.0, self.max_duration - self.get_elapsed_time())

    def check_cost(self, cost_incurred: float) -> None:
        """Raise if the cost incurred exceeds the cost budget.

        Reaching the budget exactly is allowed; only exceeding it trips.

        Raises:
            BudgetExceededError: If ``cost_incurred > max_cost``.
        """
        if self.max_cost is None:
            return
        if cost_incurred > self.max_cost:
            raise BudgetExceededError(
                f"Cost budget exceeded: {cost_incurred:.4f} > {self.max_cost:.4f}",
                limit_type="cost",
                limit=self.max_cost,
                actual=cost_incurred,
                execution_id=self.execution_id,
            )

    def check_duration(self) -> None:
        """Raise if the run has been going for longer than the duration budget.

        Raises:
            BudgetExceededError: If the elapsed time exceeds ``max_duration``.
        """
        if self.max_duration is None or self.start_time is None:
            return
        elapsed = self.get_elapsed_time()
        if elapsed > self.max_duration:
            raise BudgetExceededError(
                f"Duration budget exceeded: {elapsed:.2f}s > {self.max_duration:.2f}s",
                limit_type="duration",
                limit=self.max_duration,
                actual=elapsed,
                execution_id=self.execution_id,
            )

    def check(self, cost_incurred: float) -> None:
        """Check both budgets. Called after every phase settles."""
        self.check_cost(cost_incurred)
        self.check_duration()
