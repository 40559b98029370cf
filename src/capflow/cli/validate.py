# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Implementation of the 'capflow validate' command.

This module provides functionality to validate workflow YAML files
without executing them, displaying detailed error information.
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from capflow.config.loader import load_workflow
from capflow.config.schema import WorkflowDefinition
from capflow.config.validator import validate_workflow
from capflow.exceptions import CapflowError, ValidationError


def validate_workflow_file(
    workflow_path: Path,
    console: Console | None = None,
) -> tuple[bool, WorkflowDefinition | None, list[str]]:
    """Validate a workflow YAML file.

    Loads the file (YAML syntax and schema) and then checks the step graph
    (identities, dependency references, cycles), reporting any errors
    encountered during the process.

    Args:
        workflow_path: Path to the workflow YAML file.
        console: Optional Rich console for output.

    Returns:
        A tuple of (is_valid, workflow_or_none, warnings).
    """
    output_console = console if console is not None else Console()

    try:
        workflow = load_workflow(workflow_path)
        warnings = validate_workflow(workflow)
        return True, workflow, warnings
    except CapflowError as e:
        display_validation_error(e, workflow_path, output_console)
        return False, None, []
    except Exception as e:
        output_console.print(
            Panel(
                f"[bold red]Unexpected Error[/bold red]\n\n{e}",
                title="[red]Validation Failed[/red]",
                border_style="red",
            )
        )
        return False, None, []


def display_validation_error(
    error: CapflowError,
    workflow_path: Path,
    console: Console,
) -> None:
    """Display a validation error with Rich formatting.

    Args:
        error: The CapflowError that occurred.
        workflow_path: Path to the workflow file.
        console: Rich console for output.
    """
    content = f"[bold red]{error.error_type}[/bold red]\n\n"
    content += f"[dim]File:[/dim] {workflow_path}\n\n"
    content += error.message

    if isinstance(error, ValidationError) and len(error.errors) > 1:
        content += "\n"
        for item in error.errors:
            content += f"\n  • {item}"

    if error.suggestion:
        content += f"\n\n[yellow]💡 Suggestion:[/yellow] {error.suggestion}"

    console.print(
        Panel(
            content,
            title="[red]Validation Failed[/red]",
            border_style="red",
        )
    )


def display_validation_success(
    workflow: WorkflowDefinition,
    warnings: list[str],
    workflow_path: Path,
    console: Console,
) -> None:
    """Display validation success with a workflow summary.

    Args:
        workflow: The validated workflow definition.
        warnings: Non-fatal validation warnings.
        workflow_path: Path to the workflow file.
        console: Rich console for output.
    """
    required_count = sum(1 for s in workflow.steps if s.required)
    parallel_count = sum(1 for s in workflow.steps if s.parallelizable)
    provider_types = sorted({s.provider_type for s in workflow.steps})

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("File", str(workflow_path))
    table.add_row("Workflow", f"{workflow.name} [dim]({workflow.id} v{workflow.version})[/dim]")
    if workflow.description:
        table.add_row("Description", workflow.description)
    table.add_row(
        "Steps",
        f"{len(workflow.steps)} ({required_count} required, {parallel_count} parallelizable)",
    )
    table.add_row("Providers", ", ".join(provider_types) or "[dim]none[/dim]")
    table.add_row("Failure Strategy", workflow.failure_strategy)
    table.add_row("Max Concurrent Steps", str(workflow.max_concurrent_steps))
    table.add_row("Default Timeout", f"{workflow.default_timeout:g}s")

    console.print(
        Panel(
            table,
            title="[green]Validation Successful[/green]",
            border_style="green",
        )
    )

    for warning in warnings:
        console.print(f"[yellow]⚠ Warning:[/yellow] {warning}")
