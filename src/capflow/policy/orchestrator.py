# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Orchestration policy.

This module turns a natural-language objective into a runnable workflow:
it selects a catalog template (classifier first, heuristic fallback),
customizes a private copy for the request's constraints and preferences,
computes plan-time estimates, registers the workflow with the engine and,
for full orchestration, runs and analyzes it.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from capflow.analysis.analyzer import AnalysisReport, ResultAnalyzer
from capflow.config.schema import StepDef, WorkflowDefinition
from capflow.engine.planner import batched, split_phase
from capflow.engine.record import ExecutionRecord
from capflow.engine.workflow import WorkflowEngine
from capflow.exceptions import ProcessingError, ProviderError, TemplateError
from capflow.policy.classifier import TemplateClassifier, heuristic_template_key
from capflow.policy.models import (
    OrchestrationPlan,
    OrchestrationRequest,
    StepEstimate,
    TemplateAlternative,
    WorkflowEstimate,
)
from capflow.policy.templates import EVALUATION, TEMPLATES, WorkflowTemplate

logger = logging.getLogger(__name__)

# Estimates for provider types missing from the registry
DEFAULT_STEP_COST = 0.05
DEFAULT_STEP_LATENCY = 30.0

# Customization knobs
SPEED_TIMEOUT_CEILING = 180.0
SPEED_MAX_RETRIES = 1
WORKFLOW_DEFAULT_TIMEOUT = 300.0
WORKFLOW_MAX_CONCURRENT_STEPS = 3


@dataclass
class OrchestrationResult:
    """Outcome of a full orchestration: plan, run and analysis."""

    success: bool
    execution_id: str
    workflow_id: str
    template_key: str
    actual_cost: float
    actual_duration: float
    quality_achieved: float
    results: dict[str, Any] = field(default_factory=dict)
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    report: AnalysisReport | None = None
    record: ExecutionRecord | None = None


class OrchestrationPolicy:
    """Selects, customizes, estimates and runs catalog workflows.

    Example:
        >>> policy = OrchestrationPolicy(engine, classifier=ClaudeTemplateClassifier())
        >>> plan = await policy.create_plan(OrchestrationRequest(objective="Pet-sitting app"))
        >>> plan.template_key
        'comprehensive-product-analysis'
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        *,
        classifier: TemplateClassifier | None = None,
        analyzer: ResultAnalyzer | None = None,
        templates: dict[str, WorkflowTemplate] | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            engine: Engine that customized workflows are registered with and run on.
            classifier: Optional external template classifier.
            analyzer: Result analyzer. Defaults to a ResultAnalyzer.
            templates: Template catalog. Defaults to the built-in catalog.
        """
        self.engine = engine
        self.classifier = classifier
        self.analyzer = analyzer or ResultAnalyzer()
        self.templates = templates if templates is not None else TEMPLATES

    def template_descriptions(self) -> dict[str, str]:
        """Catalog keys mapped to their descriptions."""
        return {key: template.description for key, template in self.templates.items()}

    # -- Selection --------------------------------------------------------

    async def select_template(
        self, request: OrchestrationRequest
    ) -> tuple[WorkflowTemplate, Literal["classifier", "heuristic"]]:
        """Pick the catalog template for a request.

        The classifier is consulted first. If there is none, it fails, or it
        answers with a key outside the catalog, the deterministic heuristic
        decides.

        Returns:
            The chosen template and which mechanism chose it.
        """
        if self.classifier is not None:
            try:
                key = await self.classifier.classify(request, self.template_descriptions())
            except (ProviderError, TemplateError) as e:
                logger.warning("Template classifier failed, using heuristic: %s", e.message)
            except Exception:
                # Any other classifier failure also leaves the choice to the heuristic
                logger.warning("Template classifier raised, using heuristic", exc_info=True)
            else:
                if key in self.templates:
                    logger.info("Classifier selected template '%s'", key)
                    return self.templates[key], "classifier"
                logger.warning("Classifier returned unknown template %r, using heuristic", key)

        key = heuristic_template_key(request)
        if key not in self.templates:
            # A custom catalog may lack the heuristic's choice
            key = next(iter(self.templates))
        logger.info("Heuristic selected template '%s'", key)
        return self.templates[key], "heuristic"

    # -- Customization ----------------------------------------------------

    def customize(
        self, template: WorkflowTemplate, request: OrchestrationRequest
    ) -> WorkflowDefinition:
        """Build a workflow definition from a private copy of a template.

        - speed preference: timeouts capped at 180s, retries capped at 1
        - cost preference: optional steps dropped, basic-tier inputs forced
        - provider allow-list: steps bound to other provider types dropped
        - every step receives the objective and the request context

        Dependencies on dropped steps are removed so the result stays valid.
        """
        steps = template.copy_steps()
        preferences = request.preferences

        if preferences.prioritize_speed:
            for step in steps:
                step.timeout = min(step.timeout or WORKFLOW_DEFAULT_TIMEOUT, SPEED_TIMEOUT_CEILING)
                step.retry.max_retries = min(step.retry.max_retries, SPEED_MAX_RETRIES)

        if preferences.prioritize_cost:
            steps = [step for step in steps if step.required]
            for step in steps:
                step.inputs["depth"] = "basic"
                step.inputs["fidelity"] = "low"

        allowed = request.constraints.available_providers
        if allowed is not None:
            steps = [step for step in steps if step.provider_type in allowed]

        kept = {step.id for step in steps}
        for step in steps:
            step.dependencies = [dep for dep in step.dependencies if dep in kept]
            step.inputs = {
                **step.inputs,
                "objective": request.objective,
                "context": request.context,
            }

        workflow_id = f"{template.key}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        return WorkflowDefinition(
            id=workflow_id,
            name=template.name,
            version="1.0",
            description=template.description,
            steps=steps,
            default_timeout=WORKFLOW_DEFAULT_TIMEOUT,
            max_concurrent_steps=WORKFLOW_MAX_CONCURRENT_STEPS,
            failure_strategy=(
                "fail-fast" if preferences.risk_tolerance == "low" else "continue-on-error"
            ),
            metadata={
                "template": template.key,
                "request": request.model_dump(),
                "created_at": datetime.now(UTC).isoformat(),
            },
        )

    # -- Estimates --------------------------------------------------------

    def _step_cost(self, step: StepDef) -> float:
        descriptor = self.engine.registry.get(step.provider_type)
        return descriptor.cost_per_call if descriptor is not None else DEFAULT_STEP_COST

    def _step_latency(self, step: StepDef) -> float:
        descriptor = self.engine.registry.get(step.provider_type)
        return descriptor.avg_latency if descriptor is not None else DEFAULT_STEP_LATENCY

    def estimate(self, workflow: WorkflowDefinition) -> WorkflowEstimate:
        """Compute plan-time estimates from the registry's cost and latency profiles.

        Cost is the worst case: every attempt of every step is paid for.
        Duration follows the engine's schedule: per phase, each concurrent
        batch takes its slowest step and sequential steps add up.
        """
        estimate = WorkflowEstimate()
        quality = 0.0
        risk = 0.0

        for step in workflow.steps:
            cost = self._step_cost(step) * (step.retry.max_retries + 1)
            estimate.cost += cost
            if step.required:
                quality += 20
                risk += 15 if step.retry.max_retries == 0 else 5
            else:
                quality += 10
                risk += 2
            estimate.steps.append(
                StepEstimate(
                    step_id=step.id,
                    name=step.name,
                    provider_type=step.provider_type,
                    estimated_cost=cost,
                    estimated_duration=self._step_latency(step),
                    dependencies=list(step.dependencies),
                    criticality="high" if step.required else "medium",
                )
            )

        plan = self.engine.planner.plan(workflow)
        for phase in plan.phases:
            steps = [step for step in workflow.steps if step.id in phase]
            parallel, sequential = split_phase(steps)
            for batch in batched(parallel, workflow.max_concurrent_steps):
                estimate.duration += max(self._step_latency(step) for step in batch)
            estimate.duration += sum(self._step_latency(step) for step in sequential)

        estimate.quality = min(100.0, quality)
        estimate.risk = min(100.0, risk)
        return estimate

    # -- Planning ---------------------------------------------------------

    async def create_plan(self, request: OrchestrationRequest) -> OrchestrationPlan:
        """Select, customize, estimate and register a workflow for a request.

        Raises:
            ValidationError: If the customized workflow is invalid.
        """
        template, selected_by = await self.select_template(request)
        workflow = self.customize(template, request)
        self.engine.register_workflow(workflow)
        estimate = self.estimate(workflow)

        logger.info(
            "Planned workflow '%s' from '%s': %d steps, est. cost %.2f, est. duration %.0fs",
            workflow.id,
            template.key,
            len(workflow.steps),
            estimate.cost,
            estimate.duration,
        )
        return OrchestrationPlan(
            workflow=workflow,
            template_key=template.key,
            selected_by=selected_by,
            estimate=estimate,
        )

    async def estimate_request(self, request: OrchestrationRequest) -> OrchestrationPlan:
        """Estimate a request without registering anything.

        The returned plan lists the other catalog templates, customized the
        same way, as alternatives.
        """
        template, selected_by = await self.select_template(request)
        workflow = self.customize(template, request)
        self.engine.planner.validate(workflow)

        alternatives: list[TemplateAlternative] = []
        for key, other in self.templates.items():
            if key == template.key:
                continue
            alternative = self.estimate(self.customize(other, request))
            alternatives.append(
                TemplateAlternative(
                    template_key=key, cost=alternative.cost, duration=alternative.duration
                )
            )

        return OrchestrationPlan(
            workflow=workflow,
            template_key=template.key,
            selected_by=selected_by,
            estimate=self.estimate(workflow),
            alternatives=alternatives,
        )

    # -- Orchestration ----------------------------------------------------

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        """Plan, run and analyze a request end to end.

        Returns:
            The OrchestrationResult of a completed or cancelled run.

        Raises:
            ProcessingError: If planning or execution fails. ``error.record``
                holds the failed execution record when a run was started.
        """
        logger.info("Starting orchestration: %s", request.objective)
        try:
            plan = await self.create_plan(request)
            record = await self.engine.execute_workflow(
                plan.workflow_id,
                request.context,
                max_cost=request.constraints.max_cost,
                max_duration=request.constraints.max_duration,
            )
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error("Orchestration failed: %s", message)
            error = ProcessingError(
                f"Orchestration failed: {message}",
                suggestion="Inspect the execution record's error log, relax the "
                "budgets, or retry the request",
                step_id=getattr(e, "step_id", None),
                execution_id=getattr(e, "execution_id", None),
            )
            error.record = getattr(e, "record", None)
            raise error from e

        evaluation_step = next(
            (step.id for step in plan.workflow.steps if step.provider_type == EVALUATION),
            None,
        )
        report = self.analyzer.analyze(record, plan.estimate, evaluation_step)

        logger.info(
            "Orchestration of '%s' finished: %s, cost %.2f, quality %.0f",
            plan.workflow_id,
            record.status,
            report.actual_cost,
            report.quality_score,
        )
        return OrchestrationResult(
            success=record.status == "completed",
            execution_id=record.id,
            workflow_id=plan.workflow_id,
            template_key=plan.template_key,
            actual_cost=report.actual_cost,
            actual_duration=report.actual_duration,
            quality_achieved=report.quality_score,
            results=dict(record.step_results),
            insights=[finding.message for finding in report.insights],
            recommendations=[finding.message for finding in report.recommendations],
            report=report,
            record=record,
        )
