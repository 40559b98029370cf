# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Structural validation for workflow definitions.

This module provides checks beyond Pydantic schema validation: identifier
presence, step id uniqueness, dependency references and acyclicity of the
dependency relation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from capflow.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from capflow.config.schema import WorkflowDefinition


def validate_workflow(workflow: WorkflowDefinition) -> list[str]:
    """Validate the structure of a workflow definition.

    Every violation is collected before raising so that a single call
    reports all problems in the definition.

    Args:
        workflow: The WorkflowDefinition to validate.

    Returns:
        A list of warning messages (non-fatal issues).

    Raises:
        ValidationError: If any structural violation is found.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not workflow.id or not workflow.id.strip():
        errors.append("Workflow is missing an id")
    if not workflow.name or not workflow.name.strip():
        errors.append("Workflow is missing a name")
    if not workflow.steps:
        warnings.append("Workflow has no steps")

    errors.extend(_validate_step_identity(workflow))
    errors.extend(_validate_dependency_references(workflow))

    # Cycle detection only makes sense once every reference resolves
    if not errors:
        cycle = find_cycle(workflow)
        if cycle is not None:
            errors.append(f"Dependency cycle detected: {' -> '.join(cycle)}")

    warnings.extend(_check_required_after_optional(workflow))

    if errors:
        raise ValidationError(
            f"Workflow '{workflow.id or '<unnamed>'}' is invalid:\n  - " + "\n  - ".join(errors),
            suggestion="Fix the listed steps so that ids are unique, every dependency "
            "names a step in the same workflow, and no step depends on itself transitively",
            workflow_id=workflow.id or None,
            errors=errors,
        )

    return warnings


def _validate_step_identity(workflow: WorkflowDefinition) -> list[str]:
    """Check that every step has an id and a name, and that ids are unique."""
    errors: list[str] = []
    seen: set[str] = set()

    for index, step in enumerate(workflow.steps):
        if not step.id or not step.id.strip():
            errors.append(f"Step at position {index} is missing an id")
            continue
        if not step.name or not step.name.strip():
            errors.append(f"Step '{step.id}' is missing a name")
        if step.id in seen:
            errors.append(f"Duplicate step id '{step.id}'")
        seen.add(step.id)

    return errors


def _validate_dependency_references(workflow: WorkflowDefinition) -> list[str]:
    """Check that every dependency names another step of the workflow."""
    errors: list[str] = []
    known = set(workflow.step_ids)

    for step in workflow.steps:
        for dep in step.dependencies:
            if dep == step.id:
                errors.append(f"Step '{step.id}' depends on itself")
            elif dep not in known:
                errors.append(
                    f"Step '{step.id}' depends on unknown step '{dep}'. "
                    f"Available: {', '.join(sorted(known)) or '(none)'}"
                )

    return errors


def find_cycle(workflow: WorkflowDefinition) -> list[str] | None:
    """Find a dependency cycle using depth-first search.

    A node reached again while it is still on the recursion stack closes
    a cycle.

    Args:
        workflow: The workflow to inspect. References must already resolve.

    Returns:
        The cycle as a list of step ids (first id repeated at the end),
        or None if the dependency relation is acyclic.
    """
    dependencies = {step.id: step.dependencies for step in workflow.steps}
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def visit(root: str) -> list[str] | None:
        # Explicit stack of (step id, remaining dependencies) so long chains
        # do not hit the interpreter's recursion limit
        visited.add(root)
        on_stack.add(root)
        path.append(root)
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(dependencies.get(root, [])))]

        while stack:
            step_id, remaining = stack[-1]
            dep = next(remaining, None)
            if dep is None:
                stack.pop()
                on_stack.discard(step_id)
                path.pop()
                continue
            if dep in on_stack:
                return path[path.index(dep) :] + [dep]
            if dep not in visited:
                visited.add(dep)
                on_stack.add(dep)
                path.append(dep)
                stack.append((dep, iter(dependencies.get(dep, []))))

        return None

    for step_id in dependencies:
        if step_id not in visited:
            cycle = visit(step_id)
            if cycle is not None:
                return cycle

    return None


def _check_required_after_optional(workflow: WorkflowDefinition) -> list[str]:
    """Warn about required steps that depend on optional ones."""
    if workflow.failure_strategy != "continue-on-error":
        return []

    optional = {step.id for step in workflow.steps if not step.required}
    warnings: list[str] = []
    for step in workflow.steps:
        if not step.required:
            continue
        for dep in step.dependencies:
            if dep in optional:
                warnings.append(
                    f"Required step '{step.id}' depends on optional step '{dep}'; "
                    f"a failure of '{dep}' will abort the run"
                )
    return warnings
