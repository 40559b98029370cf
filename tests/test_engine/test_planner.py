"""Tests for the dependency planner.

Tests cover:
- Phase grouping for roots, chains and diamonds
- Declaration order within phases
- Empty workflows
- Deadlock detection on unvalidated input
- Phase splitting and batching helpers
"""

import pytest

from capflow.config.schema import StepDef, WorkflowDefinition
from capflow.engine.planner import DependencyPlanner, ExecutionPlan, batched, split_phase
from capflow.exceptions import ProcessingError, ValidationError


def _step(step_id: str, *deps: str, parallelizable: bool = False) -> StepDef:
    return StepDef(
        id=step_id,
        name=f"Step {step_id}",
        provider_type="echo",
        dependencies=list(deps),
        parallelizable=parallelizable,
    )


def _workflow(*steps: StepDef) -> WorkflowDefinition:
    return WorkflowDefinition(id="wf", name="Workflow", steps=list(steps))


class TestPlan:
    """Tests for DependencyPlanner.plan."""

    def test_independent_roots_share_a_phase(self) -> None:
        """Test that A and B run before C which depends on both."""
        plan = DependencyPlanner().plan(_workflow(_step("A"), _step("B"), _step("C", "A", "B")))
        assert plan.phases == [["A", "B"], ["C"]]

    def test_diamond(self) -> None:
        """Test a diamond dependency graph."""
        plan = DependencyPlanner().plan(
            _workflow(_step("A"), _step("B", "A"), _step("C", "A"), _step("D", "B", "C"))
        )
        assert plan.phases == [["A"], ["B", "C"], ["D"]]

    def test_chain(self) -> None:
        """Test that a chain yields one step per phase."""
        plan = DependencyPlanner().plan(_workflow(_step("A"), _step("B", "A"), _step("C", "B")))
        assert plan.phases == [["A"], ["B"], ["C"]]

    def test_declaration_order_within_phase(self) -> None:
        """Test that phases list steps in declaration order."""
        plan = DependencyPlanner().plan(_workflow(_step("Z"), _step("M"), _step("A")))
        assert plan.phases == [["Z", "M", "A"]]

    def test_dependency_declared_after_dependent(self) -> None:
        """Test that declaration order does not constrain phases."""
        plan = DependencyPlanner().plan(_workflow(_step("B", "A"), _step("A")))
        assert plan.phases == [["A"], ["B"]]

    def test_empty_workflow(self) -> None:
        """Test that an empty workflow has no phases."""
        plan = DependencyPlanner().plan(_workflow())
        assert plan.phases == []
        assert plan.step_count == 0

    def test_deadlock(self) -> None:
        """Test that an unvalidated cycle is reported as a deadlock."""
        with pytest.raises(ProcessingError, match="Deadlock"):
            DependencyPlanner().plan(_workflow(_step("A", "B"), _step("B", "A")))

    def test_validate_delegates(self) -> None:
        """Test that validate raises on structural violations."""
        with pytest.raises(ValidationError):
            DependencyPlanner().validate(_workflow(_step("A", "ghost")))


class TestExecutionPlan:
    """Tests for ExecutionPlan helpers."""

    def test_step_count_and_find_phase(self) -> None:
        """Test step counting and phase lookup."""
        plan = ExecutionPlan(workflow_id="wf", phases=[["A", "B"], ["C"]])
        assert plan.step_count == 3
        assert plan.find_phase("C") == 1
        assert plan.find_phase("missing") is None


class TestPhaseHelpers:
    """Tests for split_phase and batched."""

    def test_split_phase_keeps_order(self) -> None:
        """Test that both subsets keep declaration order."""
        steps = [
            _step("A", parallelizable=True),
            _step("B"),
            _step("C", parallelizable=True),
            _step("D"),
        ]
        parallel, sequential = split_phase(steps)
        assert [s.id for s in parallel] == ["A", "C"]
        assert [s.id for s in sequential] == ["B", "D"]

    def test_batched(self) -> None:
        """Test chunking into bounded batches."""
        steps = [_step(str(i)) for i in range(5)]
        batches = batched(steps, 2)
        assert [[s.id for s in batch] for batch in batches] == [["0", "1"], ["2", "3"], ["4"]]

    def test_batched_empty(self) -> None:
        """Test that nothing to batch yields no batches."""
        assert batched([], 3) == []
