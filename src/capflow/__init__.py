# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""capflow - Dependency-driven orchestration of capability providers.

capflow runs declarative workflows whose steps are dispatched to external
capability providers. Steps are grouped into dependency phases, retried with
backoff, and checked against cost and duration budgets between phases.

Example:
    Run a workflow from the command line::

        $ capflow run workflow.yaml --capabilities capabilities.yaml

    Or use the library programmatically::

        from capflow.config.loader import load_workflow
        from capflow.engine.workflow import WorkflowEngine
        from capflow.providers.registry import CapabilityRegistry

        registry = CapabilityRegistry()
        registry.register(descriptor, provider)
        engine = WorkflowEngine(registry)
        engine.register_workflow(load_workflow("workflow.yaml"))
        record = await engine.execute_workflow("my-workflow", max_cost=1.0)

Modules:
    config: Workflow and runtime schemas, YAML loading, structural validation.
    engine: Planner, execution engine, budgets, events and execution records.
    providers: Capability provider contract, registry and factory.
    policy: Template catalog, classification and workflow customization.
    analysis: Post-run comparison of estimates against actual results.
    cli: Command-line interface commands.
    exceptions: Custom exception hierarchy.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
