# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Workflow execution engine.

This module provides the WorkflowEngine class that runs workflow
definitions phase by phase, dispatching each step to its capability
provider with retry and backoff, recording results, and enforcing cost
and duration budgets between phases.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from capflow.config.schema import StepDef, WorkflowDefinition
from capflow.engine.budget import BudgetEnforcer
from capflow.engine.events import EventEmitter, EventListener, EventName
from capflow.engine.planner import DependencyPlanner, ExecutionPlan, batched, split_phase
from capflow.engine.record import WORKFLOW_ERROR_ID, ExecutionMetrics, ExecutionRecord
from capflow.engine.step import SleepFunc, StepRunner, describe_error
from capflow.exceptions import ProcessingError, StepExecutionError, ValidationError
from capflow.providers.registry import CapabilityRegistry

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Runs workflow definitions against a capability registry.

    The WorkflowEngine manages the complete lifecycle of a run:
    1. Plan the workflow into dependency phases
    2. Run each phase: parallelizable steps in bounded concurrent batches,
       then the remaining steps one at a time
    3. Check cost and duration budgets after every phase
    4. Settle the run as completed, failed or cancelled

    Example:
        >>> engine = WorkflowEngine(registry)
        >>> engine.register_workflow(definition)
        >>> record = await engine.execute_workflow(definition.id, max_cost=1.0)
        >>> record.status
        'completed'
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the WorkflowEngine.

        Args:
            registry: Capability registry used to resolve step providers.
            sleep: Coroutine used for retry backoff waits.
        """
        self.registry = registry
        self.planner = DependencyPlanner()
        self._runner = StepRunner(sleep=sleep)
        self._events = EventEmitter()
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._executions: dict[str, ExecutionRecord] = {}

    # -- Events -----------------------------------------------------------

    def on(self, name: str, listener: EventListener) -> None:
        """Subscribe to an engine event (or ``"*"`` for all events)."""
        self._events.on(name, listener)

    def off(self, name: str, listener: EventListener) -> bool:
        """Unsubscribe from an engine event."""
        return self._events.off(name, listener)

    def _emit(self, name: EventName, record: ExecutionRecord, **payload: Any) -> None:
        self._events.emit(name, record.id, workflow_id=record.workflow_id, **payload)

    # -- Workflow catalog -------------------------------------------------

    def register_workflow(self, definition: WorkflowDefinition) -> list[str]:
        """Validate and store a workflow definition.

        The definition is copied, so later changes to the caller's object
        do not affect registered runs.

        Returns:
            Non-fatal validation warnings.

        Raises:
            ValidationError: If the definition is structurally invalid.
        """
        warnings = self.planner.validate(definition)
        for warning in warnings:
            logger.warning("Workflow '%s': %s", definition.id, warning)
        if definition.id in self._workflows:
            logger.info("Replacing registered workflow '%s'", definition.id)
        self._workflows[definition.id] = definition.model_copy(deep=True)
        return warnings

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        """Return a registered workflow, or None."""
        return self._workflows.get(workflow_id)

    def list_workflows(self) -> list[WorkflowDefinition]:
        """All registered workflows in registration order."""
        return list(self._workflows.values())

    def get_plan(self, workflow_id: str) -> ExecutionPlan:
        """Return the phase plan of a registered workflow.

        Raises:
            ValidationError: If the workflow is not registered.
        """
        return self.planner.plan(self._require_workflow(workflow_id))

    def _require_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            available = ", ".join(sorted(self._workflows)) or "(none)"
            raise ValidationError(
                f"Workflow not found: {workflow_id}",
                suggestion=f"Register the workflow first. Registered: {available}",
                workflow_id=workflow_id,
            )
        return workflow

    # -- Execution API ----------------------------------------------------

    async def execute_workflow(
        self,
        workflow_id: str,
        initial_context: dict[str, Any] | None = None,
        *,
        max_cost: float | None = None,
        max_duration: float | None = None,
    ) -> ExecutionRecord:
        """Run a registered workflow.

        Args:
            workflow_id: Id of a registered workflow.
            initial_context: Shared inputs visible to every step as ``_context``.
            max_cost: Optional cost budget.
            max_duration: Optional duration budget in seconds.

        Returns:
            The terminal ExecutionRecord (completed or cancelled).

        Raises:
            ValidationError: If the workflow is not registered.
            ProcessingError: If the run aborted. ``error.record`` holds the
                failed record.
        """
        workflow = self._require_workflow(workflow_id)
        return await self._execute(workflow, initial_context, max_cost, max_duration)

    async def run(
        self,
        workflow: WorkflowDefinition,
        initial_context: dict[str, Any] | None = None,
        *,
        max_cost: float | None = None,
        max_duration: float | None = None,
    ) -> ExecutionRecord:
        """Validate and run a workflow definition without registering it.

        Raises:
            ValidationError: If the definition is structurally invalid.
            ProcessingError: If the run aborted.
        """
        self.planner.validate(workflow)
        return await self._execute(workflow, initial_context, max_cost, max_duration)

    def cancel_execution(self, execution_id: str) -> bool:
        """Cancel a running execution.

        Cancellation is cooperative: no further steps or phases are
        scheduled, but provider calls already in flight are not
        interrupted. Their results are discarded.

        Returns:
            True if the execution was running and is now cancelled.
        """
        record = self._executions.get(execution_id)
        if record is None or record.status != "running":
            return False

        record.finish("cancelled")
        logger.info("Execution %s cancelled", execution_id)
        self._emit("workflow:cancelled", record)
        return True

    def get_status(self, execution_id: str) -> ExecutionRecord | None:
        """Return the record of an execution, or None."""
        return self._executions.get(execution_id)

    def get_running_executions(self) -> list[ExecutionRecord]:
        """Records of every execution currently running."""
        return [r for r in self._executions.values() if r.status == "running"]

    def get_execution_metrics(self, execution_id: str) -> ExecutionMetrics | None:
        """Metrics of an execution, with a live duration while it runs."""
        record = self._executions.get(execution_id)
        if record is None:
            return None
        return dataclasses.replace(record.metrics, total_duration=record.elapsed())

    def cleanup_old_executions(self, older_than_hours: float = 24) -> int:
        """Forget terminal executions that ended before the cutoff.

        Returns:
            Number of records removed.
        """
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        stale = [
            execution_id
            for execution_id, record in self._executions.items()
            if record.is_terminal and record.end_time is not None and record.end_time < cutoff
        ]
        for execution_id in stale:
            del self._executions[execution_id]
        if stale:
            logger.debug("Removed %d finished execution(s)", len(stale))
        return len(stale)

    # -- Run loop ---------------------------------------------------------

    async def _execute(
        self,
        workflow: WorkflowDefinition,
        initial_context: dict[str, Any] | None,
        max_cost: float | None,
        max_duration: float | None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(workflow_id=workflow.id)
        record.context = dict(initial_context or {})
        if max_cost is not None:
            record.context["max_cost"] = max_cost
        if max_duration is not None:
            record.context["max_duration"] = max_duration
        record.metrics.total_steps = len(workflow.steps)
        self._executions[record.id] = record

        budget = BudgetEnforcer(
            max_cost=record.max_cost,
            max_duration=record.max_duration,
            execution_id=record.id,
        )
        semaphores: dict[str, asyncio.Semaphore] = {}

        record.start()
        budget.start()
        logger.info(
            "Execution %s of workflow '%s' started (%d steps)",
            record.id,
            workflow.id,
            len(workflow.steps),
        )
        self._emit("workflow:started", record, total_steps=len(workflow.steps))

        try:
            plan = self.planner.plan(workflow)
            for index, phase in enumerate(plan.phases):
                if record.is_terminal:
                    break
                await self._run_phase(workflow, record, index, phase, semaphores)
                if record.is_terminal:
                    break
                budget.check(record.metrics.cost_incurred)
        except Exception as e:
            failure = self._fail(record, e)
            if failure is e:
                raise
            raise failure from e

        if record.status == "cancelled":
            logger.info(
                "Execution %s stopped after cancellation (%d step(s) settled)",
                record.id,
                len(record.settled_steps),
            )
            return record

        record.finish("completed")
        logger.info(
            "Execution %s completed: %d completed, %d failed, %d skipped, cost %.4f",
            record.id,
            record.metrics.completed_count,
            record.metrics.failed_count,
            record.metrics.skipped_count,
            record.metrics.cost_incurred,
        )
        self._emit("workflow:completed", record, metrics=record.metrics.to_dict())
        return record

    def _fail(self, record: ExecutionRecord, error: Exception) -> ProcessingError:
        """Settle a run as failed and return the error to raise."""
        if isinstance(error, ProcessingError):
            failure = error
        else:
            failure = ProcessingError(
                f"Workflow '{record.workflow_id}' failed: {describe_error(error)}",
                execution_id=record.id,
            )
        failure.execution_id = record.id
        failure.record = record

        if not record.is_terminal:
            record.add_error(WORKFLOW_ERROR_ID, failure.message)
            record.finish("failed")
            logger.error("Execution %s failed: %s", record.id, failure.message)
            self._emit(
                "workflow:failed",
                record,
                error=failure.message,
                step_id=failure.step_id,
            )
        return failure

    async def _run_phase(
        self,
        workflow: WorkflowDefinition,
        record: ExecutionRecord,
        index: int,
        phase: list[str],
        semaphores: dict[str, asyncio.Semaphore],
    ) -> None:
        steps = [step for step in workflow.steps if step.id in phase]
        parallel, sequential = split_phase(steps)

        logger.debug(
            "Execution %s phase %d: parallel=%s sequential=%s",
            record.id,
            index,
            [s.id for s in parallel],
            [s.id for s in sequential],
        )
        self._emit(
            "phase:started",
            record,
            phase=index,
            steps=list(phase),
            parallel=[s.id for s in parallel],
            sequential=[s.id for s in sequential],
        )

        for batch in batched(parallel, workflow.max_concurrent_steps):
            if record.is_terminal:
                return
            # Siblings are never cancelled by a failure; every step settles first
            results = await asyncio.gather(
                *(self._run_step(workflow, record, step, semaphores) for step in batch),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result

        for step in sequential:
            if record.is_terminal:
                return
            await self._run_step(workflow, record, step, semaphores)

    def _build_inputs(self, step: StepDef, record: ExecutionRecord) -> dict[str, Any]:
        inputs = dict(step.inputs)
        for dep in step.dependencies:
            if dep in record.step_results:
                inputs[f"{dep}_output"] = record.step_results[dep]
        inputs["_context"] = record.context
        inputs["_execution_id"] = record.id
        return inputs

    async def _run_step(
        self,
        workflow: WorkflowDefinition,
        record: ExecutionRecord,
        step: StepDef,
        semaphores: dict[str, asyncio.Semaphore],
    ) -> None:
        if record.is_terminal:
            return

        settled = record.settled_steps
        unmet = [dep for dep in step.dependencies if dep not in settled]
        if unmet:
            raise ProcessingError(
                f"Step '{step.id}' dispatched with unmet dependencies: {', '.join(unmet)}",
                step_id=step.id,
                execution_id=record.id,
            )

        failed_deps = [dep for dep in step.dependencies if dep in record.failed_steps]
        if failed_deps:
            self._settle_failure(
                workflow,
                record,
                step,
                f"Blocked by failed dependencies: {', '.join(failed_deps)}",
                attempts=0,
                elapsed=0.0,
            )
            return

        descriptor = self.registry.get(step.provider_type)
        provider = self.registry.get_provider(step.provider_type)
        if descriptor is None or provider is None or not descriptor.available:
            reason = "not registered" if descriptor is None else "unavailable"
            if step.required:
                raise ProcessingError(
                    f"Required step '{step.id}' cannot run: "
                    f"provider '{step.provider_type}' is {reason}",
                    suggestion=f"Register an available '{step.provider_type}' capability "
                    "or mark the step as not required",
                    step_id=step.id,
                    execution_id=record.id,
                )
            record.record_skip(step.id)
            record.usage.record(step.id, step.provider_type, "skipped")
            logger.info(
                "Step '%s' skipped: provider '%s' is %s", step.id, step.provider_type, reason
            )
            self._emit(
                "step:skipped",
                record,
                step_id=step.id,
                provider_type=step.provider_type,
                reason=reason,
            )
            return

        inputs = self._build_inputs(step, record)
        timeout = step.timeout or workflow.default_timeout
        semaphore = semaphores.setdefault(
            step.provider_type, asyncio.Semaphore(descriptor.max_concurrency)
        )

        self._emit("step:started", record, step_id=step.id, provider_type=step.provider_type)
        started = time.monotonic()
        try:
            async with semaphore:
                run = await self._runner.run(step, provider, inputs, timeout)
        except StepExecutionError as e:
            if record.is_terminal:
                logger.warning(
                    "Discarding failure of step '%s': execution %s is already %s",
                    step.id,
                    record.id,
                    record.status,
                )
                return
            self._settle_failure(
                workflow,
                record,
                step,
                e.message,
                attempts=e.attempts,
                elapsed=time.monotonic() - started,
                cause=e,
            )
            return

        if record.is_terminal:
            logger.warning(
                "Discarding result of step '%s': execution %s is already %s",
                step.id,
                record.id,
                record.status,
            )
            return

        cost = (
            run.output.cost_incurred
            if run.output.cost_incurred is not None
            else descriptor.cost_per_call
        )
        duration = run.output.latency if run.output.latency is not None else run.elapsed
        record.record_success(step.id, run.output.output, cost, duration)
        record.usage.record(
            step.id,
            step.provider_type,
            "completed",
            attempts=run.attempts,
            cost=cost,
            elapsed_seconds=run.elapsed,
        )
        logger.debug(
            "Step '%s' completed in %.3fs after %d attempt(s)", step.id, run.elapsed, run.attempts
        )
        self._emit(
            "step:completed",
            record,
            step_id=step.id,
            cost=cost,
            duration=duration,
            attempts=run.attempts,
        )

    def _settle_failure(
        self,
        workflow: WorkflowDefinition,
        record: ExecutionRecord,
        step: StepDef,
        message: str,
        *,
        attempts: int,
        elapsed: float,
        cause: BaseException | None = None,
    ) -> None:
        """Record a failed step and escalate it when the run cannot absorb it.

        Raises:
            ProcessingError: Under fail-fast, or when the step is required.
        """
        record.record_failure(step.id, message)
        record.usage.record(
            step.id, step.provider_type, "failed", attempts=attempts, elapsed_seconds=elapsed
        )
        self._emit(
            "step:failed",
            record,
            step_id=step.id,
            error=message,
            attempts=attempts,
            required=step.required,
        )

        if workflow.failure_strategy == "fail-fast" or step.required:
            raise ProcessingError(
                f"Step '{step.id}' failed: {message}",
                step_id=step.id,
                execution_id=record.id,
            ) from cause

        logger.warning(
            "Optional step '%s' failed; continuing (%s)", step.id, message
        )
