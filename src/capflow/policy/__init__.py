# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Orchestration policy module for capflow.

This module selects workflow templates for natural-language objectives,
customizes them for constraints and preferences, and estimates their
cost, duration, quality and risk before running them.
"""

from capflow.policy.classifier import (
    ClaudeTemplateClassifier,
    TemplateClassifier,
    create_classifier,
    heuristic_template_key,
)
from capflow.policy.models import (
    Constraints,
    OrchestrationPlan,
    OrchestrationRequest,
    Preferences,
    StepEstimate,
    TemplateAlternative,
    WorkflowEstimate,
)
from capflow.policy.orchestrator import OrchestrationPolicy, OrchestrationResult
from capflow.policy.templates import (
    DEFAULT_CAPABILITIES,
    TEMPLATES,
    WorkflowTemplate,
    get_template,
    list_templates,
)

__all__ = [
    # Classification
    "ClaudeTemplateClassifier",
    "TemplateClassifier",
    "create_classifier",
    "heuristic_template_key",
    # Models
    "Constraints",
    "OrchestrationPlan",
    "OrchestrationRequest",
    "Preferences",
    "StepEstimate",
    "TemplateAlternative",
    "WorkflowEstimate",
    # Policy
    "OrchestrationPolicy",
    "OrchestrationResult",
    # Catalog
    "DEFAULT_CAPABILITIES",
    "TEMPLATES",
    "WorkflowTemplate",
    "get_template",
    "list_templates",
]
