# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Dependency graph planning.

This module groups the steps of a validated workflow into execution
phases. Phase k holds exactly the steps whose dependencies are all placed
in phases 0..k-1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from capflow.config.schema import StepDef, WorkflowDefinition
from capflow.config.validator import validate_workflow
from capflow.exceptions import ProcessingError

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Ordered execution phases for a workflow.

    Each phase lists step ids in declaration order. Phases run strictly in
    sequence; steps within a phase share no dependencies.
    """

    workflow_id: str
    """Id of the planned workflow."""

    phases: list[list[str]] = field(default_factory=list)
    """Step ids per phase, in execution order."""

    @property
    def step_count(self) -> int:
        """Total number of planned steps."""
        return sum(len(phase) for phase in self.phases)

    def find_phase(self, step_id: str) -> int | None:
        """Return the index of the phase containing ``step_id``."""
        for index, phase in enumerate(self.phases):
            if step_id in phase:
                return index
        return None


def split_phase(steps: list[StepDef]) -> tuple[list[StepDef], list[StepDef]]:
    """Split a phase into its parallelizable and sequential subsets.

    Both subsets keep the declaration order of ``steps``.
    """
    parallel = [step for step in steps if step.parallelizable]
    sequential = [step for step in steps if not step.parallelizable]
    return parallel, sequential


def batched(steps: list[StepDef], size: int) -> list[list[StepDef]]:
    """Chunk steps into consecutive batches of at most ``size``."""
    return [steps[i : i + size] for i in range(0, len(steps), size)]


class DependencyPlanner:
    """Validates workflows and groups their steps into phases.

    Example:
        >>> planner = DependencyPlanner()
        >>> planner.validate(workflow)
        >>> planner.plan(workflow).phases
        [['A', 'B'], ['C']]
    """

    def validate(self, workflow: WorkflowDefinition) -> list[str]:
        """Validate a workflow definition.

        Returns:
            Non-fatal warnings.

        Raises:
            ValidationError: On missing ids, unknown dependencies or cycles.
        """
        return validate_workflow(workflow)

    def plan(self, workflow: WorkflowDefinition) -> ExecutionPlan:
        """Group the workflow's steps into execution phases.

        Performs a breadth-first topological grouping: each phase is the
        maximal set of unplaced steps whose dependencies are all placed.

        Args:
            workflow: A workflow that has passed validation.

        Returns:
            The ExecutionPlan.

        Raises:
            ProcessingError: If unplaced steps remain but none can be placed.
        """
        plan = ExecutionPlan(workflow_id=workflow.id)
        placed: set[str] = set()
        remaining = list(workflow.steps)

        while remaining:
            ready = [
                step for step in remaining if all(dep in placed for dep in step.dependencies)
            ]
            if not ready:
                blocked = ", ".join(step.id for step in remaining)
                raise ProcessingError(
                    f"Deadlock while planning workflow '{workflow.id}': "
                    f"no step can be scheduled among [{blocked}]",
                    suggestion="Check the workflow for circular or missing dependencies",
                )

            phase = [step.id for step in ready]
            plan.phases.append(phase)
            placed.update(phase)
            remaining = [step for step in remaining if step.id not in placed]

        logger.debug(
            "Planned workflow '%s' into %d phase(s): %s",
            workflow.id,
            len(plan.phases),
            plan.phases,
        )
        return plan
