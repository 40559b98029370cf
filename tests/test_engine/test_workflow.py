"""Tests for the WorkflowEngine.

Tests cover:
- End-to-end runs with dependency results passed as inputs
- Budget enforcement between phases
- fail-fast and continue-on-error failure handling
- Skipped steps for missing or unavailable providers
- Retries with backoff
- Cancellation
- Batch and per-provider concurrency limits
- Lifecycle events
- Workflow catalog and execution bookkeeping
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from capflow.config.schema import CapabilityDescriptor, RetryPolicy, StepDef, WorkflowDefinition
from capflow.engine.events import ANY_EVENT, WorkflowEvent
from capflow.engine.workflow import WorkflowEngine
from capflow.exceptions import (
    BudgetExceededError,
    ProcessingError,
    StepExecutionError,
    ValidationError,
)
from capflow.providers.base import CallableProvider, StepOutput
from capflow.providers.registry import CapabilityRegistry


class Recorder:
    """Async step handler that records calls and returns a fixed output."""

    def __init__(self, cost: float | None = 0.1) -> None:
        self.cost = cost
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, step_id: str, inputs: dict[str, Any]) -> StepOutput:
        self.calls.append((step_id, inputs))
        return StepOutput(output={"from": step_id}, cost_incurred=self.cost)

    @property
    def step_ids(self) -> list[str]:
        return [step_id for step_id, _ in self.calls]


async def _fail(step_id: str, inputs: dict[str, Any]) -> Any:
    raise RuntimeError(f"{step_id} exploded")


def _step(step_id: str, *deps: str, provider: str = "echo", **kwargs: Any) -> StepDef:
    return StepDef(
        id=step_id,
        name=f"Step {step_id}",
        provider_type=provider,
        dependencies=list(deps),
        **kwargs,
    )


def _workflow(*steps: StepDef, **kwargs: Any) -> WorkflowDefinition:
    return WorkflowDefinition(id="wf", name="Workflow", steps=list(steps), **kwargs)


def _engine(sleep=None, max_concurrency: int = 10, **handlers: Any) -> WorkflowEngine:
    registry = CapabilityRegistry()
    for provider_type, handler in handlers.items():
        registry.register(
            CapabilityDescriptor(
                provider_type=provider_type,
                cost_per_call=0.5,
                max_concurrency=max_concurrency,
            ),
            CallableProvider(handler),
        )
    if sleep is None:
        return WorkflowEngine(registry)
    return WorkflowEngine(registry, sleep=sleep)


class TestExecution:
    """Tests for successful runs."""

    @pytest.mark.asyncio
    async def test_end_to_end(self) -> None:
        """Test that dependency results reach dependents."""
        echo = Recorder()
        engine = _engine(echo=echo)
        engine.register_workflow(
            _workflow(
                _step("A", parallelizable=True),
                _step("B", parallelizable=True),
                _step("C", "A", "B", inputs={"format": "summary"}),
                max_concurrent_steps=2,
            )
        )

        record = await engine.execute_workflow("wf", {"market": "EU"})

        assert record.status == "completed"
        assert record.completed_steps == ["A", "B", "C"]
        assert record.step_results["C"] == {"from": "C"}
        _, c_inputs = echo.calls[-1]
        assert c_inputs["format"] == "summary"
        assert c_inputs["A_output"] == {"from": "A"}
        assert c_inputs["B_output"] == {"from": "B"}
        assert c_inputs["_context"] == {"market": "EU"}
        assert c_inputs["_execution_id"] == record.id
        assert record.metrics.cost_incurred == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_budgets_stored_in_context(self) -> None:
        """Test that budgets are visible to steps through the context."""
        echo = Recorder()
        engine = _engine(echo=echo)
        engine.register_workflow(_workflow(_step("A")))

        record = await engine.execute_workflow(
            "wf", {"market": "EU"}, max_cost=5.0, max_duration=60.0
        )

        assert record.context == {"market": "EU", "max_cost": 5.0, "max_duration": 60.0}
        assert echo.calls[0][1]["_context"]["max_cost"] == 5.0

    @pytest.mark.asyncio
    async def test_registry_cost_used_when_provider_reports_none(self) -> None:
        """Test cost attribution falls back to the per-call cost."""
        engine = _engine(echo=Recorder(cost=None))
        engine.register_workflow(_workflow(_step("A"), _step("B", "A")))

        record = await engine.execute_workflow("wf")

        assert record.metrics.cost_incurred == pytest.approx(1.0)
        assert record.usage.get("A").cost == 0.5  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_run_without_registering(self) -> None:
        """Test that run() executes an unregistered definition."""
        engine = _engine(echo=Recorder())
        record = await engine.run(_workflow(_step("A")))
        assert record.status == "completed"
        assert engine.list_workflows() == []
        assert engine.get_status(record.id) is record

    @pytest.mark.asyncio
    async def test_run_validates(self) -> None:
        """Test that run() rejects invalid definitions."""
        engine = _engine(echo=Recorder())
        with pytest.raises(ValidationError):
            await engine.run(_workflow(_step("A", "ghost")))

    @pytest.mark.asyncio
    async def test_empty_workflow(self) -> None:
        """Test that a workflow without steps completes immediately."""
        engine = _engine()
        record = await engine.run(_workflow())
        assert record.status == "completed"
        assert record.metrics.total_steps == 0


class TestBudgets:
    """Tests for budget enforcement."""

    @pytest.mark.asyncio
    async def test_cost_budget_stops_run(self) -> None:
        """Test that the run aborts after the phase that crosses the budget."""
        echo = Recorder(cost=0.1)
        engine = _engine(echo=echo)
        engine.register_workflow(
            _workflow(_step("A"), _step("B", "A"), _step("C", "B"), _step("D", "C"))
        )

        with pytest.raises(BudgetExceededError) as exc_info:
            await engine.execute_workflow("wf", max_cost=0.25)

        record = exc_info.value.record
        assert record is not None
        assert record.status == "failed"
        assert record.completed_steps == ["A", "B", "C"]
        assert echo.step_ids == ["A", "B", "C"]
        assert record.errors[-1].step_id == "workflow"
        assert "Cost budget exceeded" in record.errors[-1].message

    @pytest.mark.asyncio
    async def test_cost_budget_reached_exactly(self) -> None:
        """Test that spending exactly the budget is allowed."""
        engine = _engine(echo=Recorder(cost=0.25))
        engine.register_workflow(_workflow(_step("A")))
        record = await engine.execute_workflow("wf", max_cost=0.25)
        assert record.status == "completed"


class TestFailureHandling:
    """Tests for failure strategies."""

    @pytest.mark.asyncio
    async def test_fail_fast(self) -> None:
        """Test that a failure aborts the run under fail-fast."""
        echo = Recorder()
        engine = _engine(echo=echo, broken=_fail)
        engine.register_workflow(
            _workflow(_step("A", provider="broken", required=False), _step("B", "A"))
        )

        with pytest.raises(ProcessingError) as exc_info:
            await engine.execute_workflow("wf")

        error = exc_info.value
        assert isinstance(error.__cause__, StepExecutionError)
        assert error.step_id == "A"
        record = error.record
        assert record is not None
        assert record.status == "failed"
        assert record.failed_steps == ["A"]
        assert [entry.step_id for entry in record.errors] == ["A", "workflow"]
        assert echo.calls == []

    @pytest.mark.asyncio
    async def test_parallel_siblings_settle_before_abort(self) -> None:
        """Test that a failing batch member does not cancel its siblings."""
        echo = Recorder()
        engine = _engine(echo=echo, broken=_fail)
        engine.register_workflow(
            _workflow(
                _step("A", provider="broken", parallelizable=True),
                _step("B", parallelizable=True),
            )
        )

        with pytest.raises(ProcessingError) as exc_info:
            await engine.execute_workflow("wf")

        record = exc_info.value.record
        assert record is not None
        assert record.failed_steps == ["A"]
        assert record.completed_steps == ["B"]

    @pytest.mark.asyncio
    async def test_required_failure_aborts_under_continue_on_error(self) -> None:
        """Test that required steps still abort the run."""
        engine = _engine(broken=_fail)
        engine.register_workflow(
            _workflow(_step("A", provider="broken"), failure_strategy="continue-on-error")
        )
        with pytest.raises(ProcessingError, match="Step 'A' failed"):
            await engine.execute_workflow("wf")

    @pytest.mark.asyncio
    async def test_continue_on_error_blocks_dependents(self) -> None:
        """Test that dependents of a failed step fail without being called."""
        echo = Recorder()
        engine = _engine(echo=echo, broken=_fail)
        engine.register_workflow(
            _workflow(
                _step("A", provider="broken", required=False),
                _step("B", "A", required=False),
                _step("C", "B", required=False),
                _step("D"),
                failure_strategy="continue-on-error",
            )
        )

        record = await engine.execute_workflow("wf")

        assert record.status == "completed"
        assert record.failed_steps == ["A", "B", "C"]
        assert record.completed_steps == ["D"]
        assert echo.step_ids == ["D"]
        messages = {entry.step_id: entry.message for entry in record.errors}
        assert messages["B"] == "Blocked by failed dependencies: A"
        assert messages["C"] == "Blocked by failed dependencies: B"
        assert record.usage.get("B").attempts == 0  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_failed_steps_cost_nothing(self) -> None:
        """Test that failed steps contribute no cost."""
        engine = _engine(echo=Recorder(cost=0.1), broken=_fail)
        engine.register_workflow(
            _workflow(
                _step("A", provider="broken", required=False),
                _step("B"),
                failure_strategy="continue-on-error",
            )
        )
        record = await engine.execute_workflow("wf")
        assert record.metrics.cost_incurred == pytest.approx(0.1)
        assert record.usage.get_summary().by_provider() == pytest.approx(
            {"broken": 0.0, "echo": 0.1}
        )

    @pytest.mark.asyncio
    async def test_step_timeout(self) -> None:
        """Test that a hung provider call fails the step."""

        async def hang(step_id: str, inputs: dict[str, Any]) -> Any:
            await asyncio.sleep(5)

        engine = _engine(slow=hang)
        engine.register_workflow(_workflow(_step("A", provider="slow", timeout=0.05)))

        with pytest.raises(ProcessingError, match="timed out"):
            await engine.execute_workflow("wf")


class TestSkippedSteps:
    """Tests for steps whose provider cannot be dispatched."""

    @pytest.mark.asyncio
    async def test_missing_provider_skips_optional_step(self) -> None:
        """Test that a skip satisfies dependents."""
        echo = Recorder()
        engine = _engine(echo=echo)
        events: list[WorkflowEvent] = []
        engine.on("step:skipped", events.append)
        engine.register_workflow(
            _workflow(_step("A", provider="missing", required=False), _step("B", "A"))
        )

        record = await engine.execute_workflow("wf")

        assert record.status == "completed"
        assert record.skipped_steps == ["A"]
        assert record.completed_steps == ["B"]
        assert "A_output" not in echo.calls[0][1]
        assert events[0].payload["reason"] == "not registered"

    @pytest.mark.asyncio
    async def test_unavailable_provider_skips_optional_step(self) -> None:
        """Test that unavailable providers are never called."""
        echo = Recorder()
        engine = _engine(echo=echo)
        engine.registry.set_availability("echo", False)
        engine.register_workflow(_workflow(_step("A", required=False)))

        record = await engine.execute_workflow("wf")

        assert record.skipped_steps == ["A"]
        assert echo.calls == []

    @pytest.mark.asyncio
    async def test_missing_provider_for_required_step(self) -> None:
        """Test that a required step without a provider aborts the run."""
        engine = _engine()
        engine.register_workflow(_workflow(_step("A", provider="missing")))

        with pytest.raises(ProcessingError, match="provider 'missing' is not registered") as exc_info:
            await engine.execute_workflow("wf")

        assert exc_info.value.record is not None
        assert exc_info.value.record.status == "failed"


class TestRetries:
    """Tests for retry behaviour inside the engine."""

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self, sleep) -> None:
        """Test that a flaky provider succeeds after retries."""
        calls = 0

        async def flaky(step_id: str, inputs: dict[str, Any]) -> Any:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("reset by peer")
            return "ok"

        engine = _engine(sleep=sleep, flaky=flaky)
        engine.register_workflow(
            _workflow(
                _step(
                    "A",
                    provider="flaky",
                    retry=RetryPolicy(max_retries=2, backoff_seconds=0.1),
                )
            )
        )

        record = await engine.execute_workflow("wf")

        assert record.step_results["A"] == "ok"
        assert sleep.calls == pytest.approx([0.1, 0.2])
        assert record.usage.get("A").attempts == 3  # type: ignore[union-attr]
        assert record.usage.get_summary().retried_steps == ["A"]


class TestCancellation:
    """Tests for cancel_execution."""

    @pytest.mark.asyncio
    async def test_cancel_running_execution(self) -> None:
        """Test that cancellation stops scheduling and discards late results."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(step_id: str, inputs: dict[str, Any]) -> Any:
            started.set()
            await release.wait()
            return "late"

        echo = Recorder()
        engine = _engine(echo=echo, blocking=blocking)
        events: list[str] = []
        engine.on(ANY_EVENT, lambda event: events.append(event.name))
        engine.register_workflow(_workflow(_step("A", provider="blocking"), _step("B", "A")))

        task = asyncio.create_task(engine.execute_workflow("wf"))
        await started.wait()

        running = engine.get_running_executions()
        assert len(running) == 1
        assert engine.cancel_execution(running[0].id) is True
        release.set()
        record = await task

        assert record.status == "cancelled"
        assert record.completed_steps == []
        assert "B" not in record.settled_steps
        assert echo.calls == []
        assert "workflow:cancelled" in events
        assert "workflow:completed" not in events

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self) -> None:
        """Test that only running executions can be cancelled."""
        engine = _engine(echo=Recorder())
        engine.register_workflow(_workflow(_step("A")))
        record = await engine.execute_workflow("wf")

        assert engine.cancel_execution("exec_0_deadbeef") is False
        assert engine.cancel_execution(record.id) is False
        assert record.status == "completed"


class TestConcurrency:
    """Tests for concurrency limits."""

    @staticmethod
    def _tracking_handler(peak: list[int]) -> Any:
        active = 0

        async def handler(step_id: str, inputs: dict[str, Any]) -> Any:
            nonlocal active
            active += 1
            peak[0] = max(peak[0], active)
            await asyncio.sleep(0.01)
            active -= 1
            return step_id

        return handler

    @pytest.mark.asyncio
    async def test_batches_bounded_by_max_concurrent_steps(self) -> None:
        """Test that parallel steps run in batches."""
        peak = [0]
        engine = _engine(tracked=self._tracking_handler(peak))
        engine.register_workflow(
            _workflow(
                *(_step(s, provider="tracked", parallelizable=True) for s in "ABCDE"),
                max_concurrent_steps=2,
            )
        )

        record = await engine.execute_workflow("wf")

        assert sorted(record.completed_steps) == ["A", "B", "C", "D", "E"]
        assert peak[0] == 2

    @pytest.mark.asyncio
    async def test_provider_concurrency_limit(self) -> None:
        """Test that a provider's max_concurrency caps in-flight calls."""
        peak = [0]
        engine = _engine(max_concurrency=1, tracked=self._tracking_handler(peak))
        engine.register_workflow(
            _workflow(
                *(_step(s, provider="tracked", parallelizable=True) for s in "ABC"),
                max_concurrent_steps=3,
            )
        )

        await engine.execute_workflow("wf")

        assert peak[0] == 1

    @pytest.mark.asyncio
    async def test_sequential_steps_run_one_at_a_time(self) -> None:
        """Test that non-parallelizable phase members never overlap."""
        peak = [0]
        engine = _engine(tracked=self._tracking_handler(peak))
        engine.register_workflow(
            _workflow(*(_step(s, provider="tracked") for s in "ABC"), max_concurrent_steps=3)
        )

        await engine.execute_workflow("wf")

        assert peak[0] == 1


class TestEvents:
    """Tests for lifecycle events."""

    @pytest.mark.asyncio
    async def test_event_sequence(self) -> None:
        """Test the order of lifecycle events."""
        engine = _engine(echo=Recorder())
        events: list[WorkflowEvent] = []
        engine.on(ANY_EVENT, events.append)
        engine.register_workflow(
            _workflow(
                _step("A", parallelizable=True),
                _step("B", parallelizable=True),
                _step("C", "A", "B"),
            )
        )

        record = await engine.execute_workflow("wf")

        names = [event.name for event in events]
        assert names[0] == "workflow:started"
        assert names[-1] == "workflow:completed"
        assert names.count("phase:started") == 2
        assert names.count("step:started") == 3
        completed = [e.payload["step_id"] for e in events if e.name == "step:completed"]
        assert completed[-1] == "C"
        assert all(event.payload["workflow_id"] == "wf" for event in events)
        assert all(event.execution_id == record.id for event in events)

    @pytest.mark.asyncio
    async def test_failure_events(self) -> None:
        """Test step:failed and workflow:failed payloads."""
        engine = _engine(broken=_fail)
        failed: list[WorkflowEvent] = []
        engine.on("step:failed", failed.append)
        engine.on("workflow:failed", failed.append)
        engine.register_workflow(_workflow(_step("A", provider="broken")))

        with pytest.raises(ProcessingError):
            await engine.execute_workflow("wf")

        assert [event.name for event in failed] == ["step:failed", "workflow:failed"]
        assert failed[0].payload["attempts"] == 1
        assert failed[1].payload["step_id"] == "A"

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_run(self) -> None:
        """Test that a raising listener is isolated from the run."""

        def broken(event: WorkflowEvent) -> None:
            raise RuntimeError("listener bug")

        engine = _engine(echo=Recorder())
        engine.on("step:started", broken)
        engine.register_workflow(_workflow(_step("A")))

        record = await engine.execute_workflow("wf")

        assert record.status == "completed"

    def test_unknown_event_name(self) -> None:
        """Test that subscribing to an unknown event fails."""
        with pytest.raises(ValueError):
            _engine().on("step:teleported", lambda event: None)


class TestCatalog:
    """Tests for workflow registration and execution bookkeeping."""

    def test_register_rejects_invalid(self) -> None:
        """Test that invalid workflows are not registered."""
        engine = _engine()
        with pytest.raises(ValidationError):
            engine.register_workflow(_workflow(_step("A", "A")))
        assert engine.get_workflow("wf") is None

    def test_register_returns_warnings(self) -> None:
        """Test that validation warnings are returned."""
        assert _engine().register_workflow(_workflow()) == ["Workflow has no steps"]

    def test_register_copies_definition(self) -> None:
        """Test that later edits to the caller's object are not seen."""
        engine = _engine()
        definition = _workflow(_step("A"))
        engine.register_workflow(definition)
        definition.steps.append(_step("B"))

        assert engine.get_workflow("wf").step_ids == ["A"]  # type: ignore[union-attr]

    def test_get_plan(self) -> None:
        """Test planning a registered workflow."""
        engine = _engine()
        engine.register_workflow(_workflow(_step("A"), _step("B", "A")))
        assert engine.get_plan("wf").phases == [["A"], ["B"]]

    def test_register_long_chain(self) -> None:
        """Test registering and planning a long chain declared last-step first."""
        steps = [_step("s0")] + [_step(f"s{i}", f"s{i - 1}") for i in range(1, 1500)]
        steps.reverse()
        engine = _engine()

        assert engine.register_workflow(_workflow(*steps)) == []
        phases = engine.get_plan("wf").phases
        assert len(phases) == 1500
        assert phases[0] == ["s0"]
        assert phases[-1] == ["s1499"]

    @pytest.mark.asyncio
    async def test_unknown_workflow(self) -> None:
        """Test executing a workflow that was never registered."""
        with pytest.raises(ValidationError, match="Workflow not found: nope"):
            await _engine().execute_workflow("nope")

    @pytest.mark.asyncio
    async def test_execution_metrics(self) -> None:
        """Test metrics of a finished execution."""
        engine = _engine(echo=Recorder())
        engine.register_workflow(_workflow(_step("A"), _step("B", "A")))
        record = await engine.execute_workflow("wf")

        metrics = engine.get_execution_metrics(record.id)

        assert metrics is not None
        assert metrics.total_steps == 2
        assert metrics.completed_count == 2
        assert metrics.total_duration == record.metrics.total_duration
        assert engine.get_execution_metrics("exec_0_deadbeef") is None

    @pytest.mark.asyncio
    async def test_cleanup_old_executions(self) -> None:
        """Test that only old finished executions are forgotten."""
        engine = _engine(echo=Recorder())
        engine.register_workflow(_workflow(_step("A")))
        old = await engine.execute_workflow("wf")
        recent = await engine.execute_workflow("wf")
        old.end_time = datetime.now(UTC) - timedelta(hours=48)

        assert engine.cleanup_old_executions(older_than_hours=24) == 1
        assert engine.get_status(old.id) is None
        assert engine.get_status(recent.id) is recent
