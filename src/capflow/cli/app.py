# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Typer application definition for the capflow CLI.

This module defines the main Typer app, global options and commands.
"""

from __future__ import annotations

import contextvars
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

from capflow import __version__

if TYPE_CHECKING:
    from capflow.policy.models import OrchestrationRequest

# Create the main Typer app
app = typer.Typer(
    name="capflow",
    help="capflow - Run dependency-driven workflows over capability providers.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console(stderr=True)
output_console = Console()

# Context variable for progress output (default True - show progress lines)
verbose_mode: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "verbose_mode", default=True
)

# Context variable for full verbose mode (--verbose flag - debug logging)
full_mode: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "full_mode", default=False
)

WorkflowArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the workflow YAML file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
    ),
]


def is_verbose() -> bool:
    """Check if progress output is enabled (default True)."""
    return verbose_mode.get()


def is_full() -> bool:
    """Check if full verbose mode is enabled (--verbose flag)."""
    return full_mode.get()


def configure_logging(level: str) -> None:
    """Route capflow's log records to stderr through Rich.

    Replaces any handler installed by a previous call, so the level can be
    changed once a runtime configuration is loaded.
    """
    package_logger = logging.getLogger("capflow")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)

    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(level)


def format_error(error: Exception) -> Panel:
    """Format an exception for Rich console display.

    Creates a styled Panel with error type, message, location (if available),
    and suggestion (if available).

    Args:
        error: The exception to format.

    Returns:
        Rich Panel with formatted error content.
    """
    from capflow.exceptions import CapflowError, ValidationError

    content = Text()

    if isinstance(error, CapflowError):
        content.append(error.message, style="bold red")

        if isinstance(error, ValidationError) and len(error.errors) > 1:
            for item in error.errors:
                content.append(f"\n  • {item}", style="red")

        if error.file_path or error.line_number:
            content.append("\n\n")
            content.append("📍 Location: ", style="yellow")
            if error.file_path:
                content.append(error.file_path, style="cyan")
            if error.line_number:
                if error.file_path:
                    content.append(":", style="yellow")
                content.append(f"line {error.line_number}", style="cyan")

        # Field path for configuration errors
        field_path = getattr(error, "field_path", None)
        if field_path:
            content.append("\n")
            content.append("📋 Field: ", style="yellow")
            content.append(field_path, style="cyan")

        if error.suggestion:
            content.append("\n\n")
            content.append("💡 Suggestion: ", style="green")
            content.append(error.suggestion, style="white")

        error_type = error.error_type
    else:
        content.append(str(error).split("\n")[0], style="bold red")
        error_type = type(error).__name__

    return Panel(
        content,
        title=f"[bold red]❌ {error_type}[/bold red]",
        border_style="red",
        padding=(1, 2),
    )


def print_error(error: Exception) -> None:
    """Print a formatted error to stderr."""
    console.print(format_error(error))


def print_partial_record(error: Exception) -> None:
    """Print the record attached to an aborted run, if any, to stdout as JSON."""
    record = getattr(error, "record", None)
    if record is None:
        return

    from capflow.cli.run import record_to_json

    output_console.print_json(record_to_json(record))


def version_callback(value: bool) -> None:
    """Display version information and exit."""
    if value:
        output_console.print(f"capflow v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-V",
            help="Show debug logging from the engine and providers.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Hide progress output.",
        ),
    ] = False,
) -> None:
    """capflow - Run dependency-driven workflows over capability providers."""
    full_mode.set(verbose)
    verbose_mode.set(not quiet)
    configure_logging("DEBUG" if verbose else "WARNING")


@app.command()
def validate(workflow: WorkflowArgument) -> None:
    """Validate a workflow YAML file without executing it.

    Checks the workflow file for:
    - Valid YAML syntax
    - Valid schema structure
    - Unique step ids and known dependency references
    - Dependency cycles

    \b
    Examples:
        capflow validate workflow.yaml
    """
    from capflow.cli.validate import display_validation_success, validate_workflow_file

    is_valid, definition, warnings = validate_workflow_file(workflow, output_console)

    if is_valid and definition is not None:
        display_validation_success(definition, warnings, workflow, output_console)
    else:
        raise typer.Exit(code=1)


@app.command()
def plan(
    workflow: WorkflowArgument,
    capabilities: Annotated[
        Path | None,
        typer.Option(
            "--capabilities",
            "-c",
            help="Runtime YAML declaring capabilities. Defaults to the built-in catalog.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
) -> None:
    """Show a workflow's execution phases and estimates without running it.

    \b
    Examples:
        capflow plan workflow.yaml
        capflow plan workflow.yaml --capabilities capabilities.yaml
    """
    from capflow.cli.run import build_workflow_plan, display_execution_plan

    try:
        definition, execution_plan, estimate = build_workflow_plan(workflow, capabilities)
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    display_execution_plan(definition, execution_plan, estimate, output_console)


@app.command()
def run(
    workflow: WorkflowArgument,
    capabilities: Annotated[
        Path,
        typer.Option(
            "--capabilities",
            "-c",
            help="Runtime YAML declaring capabilities and their providers.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    raw_inputs: Annotated[
        list[str] | None,
        typer.Option(
            "--input",
            "-i",
            help="Shared context values in name=value format. Can be repeated.",
        ),
    ] = None,
    max_cost: Annotated[
        float | None,
        typer.Option("--max-cost", help="Cost budget for the run.", min=0.0),
    ] = None,
    max_duration: Annotated[
        float | None,
        typer.Option("--max-duration", help="Duration budget for the run, in seconds."),
    ] = None,
) -> None:
    """Run a workflow from a YAML file.

    Steps are dispatched to the providers declared in the capabilities file.
    The execution record is printed to stdout as JSON, including the partial
    record of a run that aborts.

    \b
    Examples:
        capflow run workflow.yaml -c capabilities.yaml
        capflow run workflow.yaml -c capabilities.yaml -i market=EU --max-cost 2.5
    """
    import asyncio

    from capflow.cli.run import (
        display_record_summary,
        parse_input_flags,
        record_to_json,
        run_workflow_async,
    )

    inputs = parse_input_flags(raw_inputs) if raw_inputs else {}

    try:
        record = asyncio.run(
            run_workflow_async(
                workflow,
                capabilities,
                inputs,
                max_cost=max_cost,
                max_duration=max_duration,
            )
        )
    except Exception as e:
        print_error(e)
        print_partial_record(e)
        raise typer.Exit(code=1) from None

    if is_verbose():
        display_record_summary(record, console)
    output_console.print_json(record_to_json(record))


@app.command()
def templates() -> None:
    """List the workflow templates available to objective planning.

    \b
    Examples:
        capflow templates
    """
    from capflow.cli.run import display_templates

    display_templates(output_console)


def _objective_request(
    objective: str,
    max_cost: float | None,
    max_duration: float | None,
    quality: str | None,
    providers: list[str] | None,
    speed: bool,
    cheap: bool,
    thorough: bool,
    risk: str,
) -> OrchestrationRequest:
    from capflow.cli.run import build_request

    return build_request(
        objective,
        max_cost=max_cost,
        max_duration=max_duration,
        required_quality=quality,
        providers=providers,
        prioritize_speed=speed,
        prioritize_cost=cheap,
        prioritize_quality=thorough,
        risk_tolerance=risk,
    )


MaxCostOption = Annotated[
    float | None, typer.Option("--max-cost", help="Cost budget.", min=0.0)
]
MaxDurationOption = Annotated[
    float | None, typer.Option("--max-duration", help="Duration budget in seconds.")
]
QualityOption = Annotated[
    str | None,
    typer.Option("--quality", help="Required quality: basic, good or excellent."),
]
ProvidersOption = Annotated[
    list[str] | None,
    typer.Option("--provider", "-p", help="Allowed provider type. Can be repeated."),
]
SpeedOption = Annotated[bool, typer.Option("--speed", help="Prioritize speed.")]
CheapOption = Annotated[bool, typer.Option("--cheap", help="Prioritize cost.")]
ThoroughOption = Annotated[bool, typer.Option("--thorough", help="Prioritize quality.")]
RiskOption = Annotated[
    str, typer.Option("--risk", help="Risk tolerance: low, medium or high.")
]


@app.command()
def estimate(
    objective: Annotated[str, typer.Argument(help="What the workflow should achieve.")],
    capabilities: Annotated[
        Path | None,
        typer.Option(
            "--capabilities",
            "-c",
            help="Runtime YAML with capability profiles and classifier settings.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    max_cost: MaxCostOption = None,
    max_duration: MaxDurationOption = None,
    quality: QualityOption = None,
    providers: ProvidersOption = None,
    speed: SpeedOption = False,
    cheap: CheapOption = False,
    thorough: ThoroughOption = False,
    risk: RiskOption = "medium",
) -> None:
    """Select a template for an objective and estimate it without running it.

    \b
    Examples:
        capflow estimate "Meal-kit subscription for students"
        capflow estimate "B2B invoicing tool" --max-duration 240 --cheap
    """
    import asyncio

    from capflow.cli.run import display_orchestration_plan, estimate_objective_async

    try:
        request = _objective_request(
            objective, max_cost, max_duration, quality, providers, speed, cheap, thorough, risk
        )
        orchestration_plan = asyncio.run(estimate_objective_async(request, capabilities))
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    display_orchestration_plan(orchestration_plan, output_console)


@app.command()
def orchestrate(
    objective: Annotated[str, typer.Argument(help="What the workflow should achieve.")],
    capabilities: Annotated[
        Path,
        typer.Option(
            "--capabilities",
            "-c",
            help="Runtime YAML declaring capabilities and their providers.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    max_cost: MaxCostOption = None,
    max_duration: MaxDurationOption = None,
    quality: QualityOption = None,
    providers: ProvidersOption = None,
    speed: SpeedOption = False,
    cheap: CheapOption = False,
    thorough: ThoroughOption = False,
    risk: RiskOption = "medium",
) -> None:
    """Plan, run and analyze a template workflow for an objective.

    The execution record is printed to stdout as JSON; insights and
    recommendations go to stderr.

    \b
    Examples:
        capflow orchestrate "Pet-sitting marketplace" -c capabilities.yaml
    """
    import asyncio

    from capflow.cli.run import (
        display_orchestration_result,
        orchestrate_objective_async,
        record_to_json,
    )

    try:
        request = _objective_request(
            objective, max_cost, max_duration, quality, providers, speed, cheap, thorough, risk
        )
        result = asyncio.run(orchestrate_objective_async(request, capabilities))
    except Exception as e:
        print_error(e)
        print_partial_record(e)
        raise typer.Exit(code=1) from None

    display_orchestration_result(result, console)
    if result.record is not None:
        output_console.print_json(record_to_json(result.record))
