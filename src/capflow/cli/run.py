# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Implementation of the 'capflow run', 'plan' and objective commands.

This module provides helper functions for building registries from runtime
configuration files, executing workflow files, and rendering plans,
estimates and execution records.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from capflow.config.loader import load_runtime_config, load_workflow
from capflow.config.schema import RuntimeConfig, WorkflowDefinition
from capflow.engine.events import ANY_EVENT, WorkflowEvent
from capflow.engine.planner import ExecutionPlan
from capflow.engine.record import ExecutionRecord
from capflow.engine.workflow import WorkflowEngine
from capflow.exceptions import ProviderError
from capflow.policy.classifier import TemplateClassifier, create_classifier
from capflow.policy.models import OrchestrationPlan, OrchestrationRequest, WorkflowEstimate
from capflow.policy.orchestrator import OrchestrationPolicy, OrchestrationResult
from capflow.policy.templates import DEFAULT_CAPABILITIES, list_templates
from capflow.providers.factory import build_registry
from capflow.providers.registry import CapabilityRegistry

# Verbose console for progress output (stderr)
_verbose_console = Console(stderr=True, highlight=False)


def verbose_log(message: str, style: str = "dim") -> None:
    """Log a message if verbose mode is enabled.

    Args:
        message: The message to log.
        style: Rich style for the message.
    """
    from capflow.cli.app import is_verbose

    if is_verbose():
        _verbose_console.print(f"[{style}]{message}[/{style}]")


def verbose_log_timing(operation: str, elapsed: float) -> None:
    """Log timing information if verbose mode is enabled.

    Args:
        operation: Description of the operation.
        elapsed: Elapsed time in seconds.
    """
    from capflow.cli.app import is_verbose

    if is_verbose():
        _verbose_console.print(f"[dim]⏱ {operation}: {elapsed:.2f}s[/dim]")


def log_event(event: WorkflowEvent) -> None:
    """Mirror an engine event as a progress line."""
    payload = event.payload
    step_id = payload.get("step_id")

    if event.name == "phase:started":
        verbose_log(f"┌─ Phase {payload['phase']}: {', '.join(payload['steps'])}", "cyan")
    elif event.name == "step:started":
        verbose_log(f"│  ▶ {step_id} [{payload['provider_type']}]")
    elif event.name == "step:completed":
        verbose_log(
            f"│  ✓ {step_id} ({payload['duration']:.2f}s, "
            f"{payload['attempts']} attempt(s), cost {payload['cost']:.4f})",
            "green",
        )
    elif event.name == "step:failed":
        verbose_log(f"│  ✗ {step_id}: {payload['error']}", "red")
    elif event.name == "step:skipped":
        verbose_log(f"│  ↷ {step_id} skipped (provider {payload['reason']})", "yellow")
    elif event.name == "workflow:completed":
        verbose_log("└─ Workflow completed", "green")
    elif event.name == "workflow:failed":
        verbose_log(f"└─ Workflow failed: {payload['error']}", "red")
    elif event.name == "workflow:cancelled":
        verbose_log("└─ Workflow cancelled", "yellow")


def parse_input_flags(raw_inputs: list[str]) -> dict[str, Any]:
    """Parse --input name=value flags into a dictionary.

    Supports type coercion for common types:
    - "true"/"false" -> bool
    - numeric strings -> int/float
    - JSON arrays/objects -> parsed JSON
    - everything else -> string

    Args:
        raw_inputs: List of "name=value" strings from CLI.

    Returns:
        Dictionary of parsed input name-value pairs.

    Raises:
        typer.BadParameter: If input format is invalid.
    """
    inputs: dict[str, Any] = {}

    for raw in raw_inputs:
        if "=" not in raw:
            raise typer.BadParameter(
                f"Invalid input format: '{raw}'. Expected format: name=value"
            )

        name, value = raw.split("=", 1)
        name = name.strip()
        if not name:
            raise typer.BadParameter(f"Empty input name in: '{raw}'")

        inputs[name] = coerce_value(value.strip())

    return inputs


def coerce_value(value: str) -> Any:
    """Coerce a string value to an appropriate Python type.

    Args:
        value: The string value to coerce.

    Returns:
        The coerced value (bool, None, int, float, list, dict, or str).
    """
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    if value.lower() == "null":
        return None

    if value.startswith(("[", "{")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value


def load_registry(
    capabilities_path: Path | None,
) -> tuple[CapabilityRegistry, RuntimeConfig | None]:
    """Build the capability registry for a command.

    With a runtime configuration file, every capability it declares is
    registered and bound to its provider. Without one, the built-in catalog
    descriptors are registered for estimation only: nothing can be
    dispatched to them.

    Returns:
        The registry and the loaded runtime configuration, if any.
    """
    if capabilities_path is None:
        registry = CapabilityRegistry()
        for descriptor in DEFAULT_CAPABILITIES:
            registry.register(descriptor)
        return registry, None

    load_start = time.time()
    from capflow.cli.app import configure_logging, is_full

    config = load_runtime_config(capabilities_path)
    if not is_full():
        configure_logging(config.runtime.log_level)
    registry = build_registry(config)
    verbose_log_timing("Capabilities loaded", time.time() - load_start)
    verbose_log(f"Capabilities: {', '.join(d.provider_type for d in registry.list_all())}")
    return registry, config


def build_workflow_plan(
    workflow_path: Path,
    capabilities_path: Path | None = None,
) -> tuple[WorkflowDefinition, ExecutionPlan, WorkflowEstimate]:
    """Plan and estimate a workflow file without running it."""
    workflow = load_workflow(workflow_path)
    registry, _ = load_registry(capabilities_path)
    engine = WorkflowEngine(registry)
    engine.register_workflow(workflow)
    plan = engine.get_plan(workflow.id)
    estimate = OrchestrationPolicy(engine).estimate(workflow)
    return workflow, plan, estimate


async def run_workflow_async(
    workflow_path: Path,
    capabilities_path: Path,
    inputs: dict[str, Any],
    *,
    max_cost: float | None = None,
    max_duration: float | None = None,
) -> ExecutionRecord:
    """Execute a workflow file against the configured capabilities.

    Budgets given on the command line take precedence over the runtime
    configuration's defaults.

    Returns:
        The terminal execution record.

    Raises:
        CapflowError: If loading fails or the run aborts.
    """
    start_time = time.time()

    verbose_log(f"Loading workflow: {workflow_path}")
    workflow = load_workflow(workflow_path)
    verbose_log(f"Workflow: {workflow.name} ({len(workflow.steps)} steps)")

    registry, config = load_registry(capabilities_path)
    if config is not None:
        max_cost = max_cost if max_cost is not None else config.runtime.max_cost
        max_duration = max_duration if max_duration is not None else config.runtime.max_duration

    async with registry:
        engine = WorkflowEngine(registry)
        engine.on(ANY_EVENT, log_event)
        engine.register_workflow(workflow)

        verbose_log("Starting workflow execution...")
        record = await engine.execute_workflow(
            workflow.id, inputs, max_cost=max_cost, max_duration=max_duration
        )

    verbose_log_timing("Total workflow execution", time.time() - start_time)
    return record


def load_classifier(config: RuntimeConfig | None) -> TemplateClassifier | None:
    """Create the configured template classifier, or None.

    A classifier that cannot be created (for example, a missing API key)
    is reported and left out; template selection then uses the heuristic.
    """
    if config is None:
        return None
    try:
        return create_classifier(config.runtime.classifier)
    except ProviderError as e:
        verbose_log(f"Template classifier disabled: {e.message}", "yellow")
        return None


def build_request(
    objective: str,
    *,
    max_cost: float | None = None,
    max_duration: float | None = None,
    required_quality: str | None = None,
    providers: list[str] | None = None,
    prioritize_speed: bool = False,
    prioritize_cost: bool = False,
    prioritize_quality: bool = False,
    risk_tolerance: str = "medium",
    context: dict[str, Any] | None = None,
) -> OrchestrationRequest:
    """Assemble an orchestration request from command-line options."""
    return OrchestrationRequest.model_validate(
        {
            "objective": objective,
            "constraints": {
                "max_cost": max_cost,
                "max_duration": max_duration,
                "required_quality": required_quality,
                "available_providers": providers or None,
            },
            "preferences": {
                "prioritize_speed": prioritize_speed,
                "prioritize_cost": prioritize_cost,
                "prioritize_quality": prioritize_quality,
                "risk_tolerance": risk_tolerance,
            },
            "context": context or {},
        }
    )


async def estimate_objective_async(
    request: OrchestrationRequest,
    capabilities_path: Path | None = None,
) -> OrchestrationPlan:
    """Select and estimate a template for an objective without running it."""
    registry, config = load_registry(capabilities_path)
    classifier = load_classifier(config)
    try:
        policy = OrchestrationPolicy(WorkflowEngine(registry), classifier=classifier)
        return await policy.estimate_request(request)
    finally:
        if classifier is not None:
            await classifier.close()
        await registry.close()


async def orchestrate_objective_async(
    request: OrchestrationRequest,
    capabilities_path: Path,
) -> OrchestrationResult:
    """Select, customize, run and analyze a template for an objective."""
    registry, config = load_registry(capabilities_path)
    classifier = load_classifier(config)

    async with registry:
        engine = WorkflowEngine(registry)
        engine.on(ANY_EVENT, log_event)
        policy = OrchestrationPolicy(engine, classifier=classifier)
        try:
            return await policy.orchestrate(request)
        finally:
            if classifier is not None:
                await classifier.close()


def record_to_json(record: ExecutionRecord) -> str:
    """Serialize an execution record, stringifying non-JSON step results."""
    return json.dumps(record.to_dict(), default=str)


def display_execution_plan(
    workflow: WorkflowDefinition,
    plan: ExecutionPlan,
    estimate: WorkflowEstimate,
    console: Console | None = None,
) -> None:
    """Display a workflow's phase plan and estimates with Rich formatting.

    Args:
        workflow: The planned workflow.
        plan: Its phase plan.
        estimate: Plan-time estimates.
        console: Optional Rich console. Creates one if not provided.
    """
    output_console = console if console is not None else Console()

    header_content = (
        f"[bold]Workflow:[/bold] {workflow.name} ({workflow.id})\n"
        f"[bold]Failure Strategy:[/bold] {workflow.failure_strategy}\n"
        f"[bold]Max Concurrent Steps:[/bold] {workflow.max_concurrent_steps}\n"
        f"[bold]Default Timeout:[/bold] {workflow.default_timeout:g}s"
    )
    output_console.print(Panel(header_content, title="[cyan]Execution Plan[/cyan]"))

    step_estimates = {s.step_id: s for s in estimate.steps}

    table = Table(title="Phases", show_lines=True)
    table.add_column("Phase", style="cyan", justify="right", width=6)
    table.add_column("Step", style="green")
    table.add_column("Provider", width=22)
    table.add_column("Mode", width=10)
    table.add_column("Est. Cost", justify="right")
    table.add_column("Est. Latency", justify="right")

    for index, phase in enumerate(plan.phases):
        for step_id in phase:
            step = workflow.get_step(step_id)
            if step is None:
                continue
            step_estimate = step_estimates.get(step_id)
            optional = "" if step.required else " [dim](optional)[/dim]"
            table.add_row(
                str(index),
                f"{step.id}{optional}",
                step.provider_type,
                "parallel" if step.parallelizable else "sequential",
                f"{step_estimate.estimated_cost:.2f}" if step_estimate else "-",
                f"{step_estimate.estimated_duration:.0f}s" if step_estimate else "-",
            )

    output_console.print(table)
    display_estimate(estimate, output_console)


def display_estimate(estimate: WorkflowEstimate, console: Console) -> None:
    """Print the summary line of a workflow estimate."""
    console.print()
    console.print(
        f"[dim]Est. cost:[/dim] {estimate.cost:.2f} | "
        f"[dim]Est. duration:[/dim] {estimate.duration:.0f}s | "
        f"[dim]Quality:[/dim] {estimate.quality:.0f} | "
        f"[dim]Risk:[/dim] {estimate.risk:.0f}"
    )


def display_orchestration_plan(plan: OrchestrationPlan, console: Console) -> None:
    """Display a selected template, its estimate and the alternatives."""
    console.print(
        Panel(
            f"[bold]Template:[/bold] {plan.template_key} "
            f"[dim](selected by {plan.selected_by})[/dim]\n"
            f"[bold]Steps:[/bold] {', '.join(plan.workflow.step_ids)}\n"
            f"[bold]Failure Strategy:[/bold] {plan.workflow.failure_strategy}",
            title="[cyan]Orchestration Plan[/cyan]",
        )
    )
    display_estimate(plan.estimate, console)

    if plan.alternatives:
        table = Table(title="Alternatives")
        table.add_column("Template", style="cyan")
        table.add_column("Est. Cost", justify="right")
        table.add_column("Est. Duration", justify="right")
        for alternative in plan.alternatives:
            table.add_row(
                alternative.template_key,
                f"{alternative.cost:.2f}",
                f"{alternative.duration:.0f}s",
            )
        console.print(table)


def display_record_summary(record: ExecutionRecord, console: Console) -> None:
    """Print a one-line summary of a terminal execution record."""
    metrics = record.metrics
    style = {"completed": "green", "failed": "red"}.get(record.status, "yellow")
    console.print(
        f"[{style}]{record.status}[/{style}] {record.id}: "
        f"{metrics.completed_count} completed, {metrics.failed_count} failed, "
        f"{metrics.skipped_count} skipped | cost {metrics.cost_incurred:.4f} | "
        f"{metrics.total_duration:.2f}s"
    )


def display_orchestration_result(result: OrchestrationResult, console: Console) -> None:
    """Print the analysis of an orchestrated run."""
    if result.record is not None:
        display_record_summary(result.record, console)
    console.print(f"[dim]Quality achieved:[/dim] {result.quality_achieved:.0f}")
    for insight in result.insights:
        console.print(f"[cyan]• {insight}[/cyan]")
    for recommendation in result.recommendations:
        console.print(f"[yellow]→ {recommendation}[/yellow]")


def display_templates(console: Console) -> None:
    """Display the workflow template catalog."""
    table = Table(title="Workflow Templates")
    table.add_column("Key", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Steps", justify="right")
    table.add_column("Description")

    for template in list_templates():
        table.add_row(template.key, template.name, str(len(template.steps)), template.description)

    console.print(table)
