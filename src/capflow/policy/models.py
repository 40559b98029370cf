# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Request and plan models for the orchestration policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from capflow.config.schema import WorkflowDefinition


class Constraints(BaseModel):
    """Hard limits and availability constraints of a request."""

    max_cost: float | None = Field(None, ge=0.0)
    """Cost budget for the run."""

    max_duration: float | None = Field(None, gt=0)
    """Duration budget for the run, in seconds."""

    required_quality: Literal["basic", "good", "excellent"] | None = None
    """Minimum quality tier."""

    available_providers: list[str] | None = None
    """Allow-list of provider types. Steps bound to other types are dropped."""


class Preferences(BaseModel):
    """Soft preferences steering template selection and customization."""

    prioritize_speed: bool = False
    """Cap step timeouts and retries."""

    prioritize_cost: bool = False
    """Drop optional steps and request basic-tier work."""

    prioritize_quality: bool = False
    """Prefer the deep template."""

    risk_tolerance: Literal["low", "medium", "high"] = "medium"
    """'low' makes the workflow fail fast."""


class OrchestrationRequest(BaseModel):
    """A natural-language objective with constraints and preferences."""

    objective: str = Field(..., min_length=1)
    """What the run should achieve."""

    constraints: Constraints = Field(default_factory=Constraints)
    """Hard limits."""

    preferences: Preferences = Field(default_factory=Preferences)
    """Soft preferences."""

    context: dict[str, Any] = Field(default_factory=dict)
    """Shared context merged into every step's inputs and the run context."""


@dataclass
class StepEstimate:
    """Plan-time estimate for one step."""

    step_id: str
    name: str
    provider_type: str
    estimated_cost: float
    """Worst-case cost: per-call cost times (max_retries + 1)."""
    estimated_duration: float
    """Average latency of the provider, in seconds."""
    dependencies: list[str] = field(default_factory=list)
    criticality: Literal["high", "medium"] = "high"


@dataclass
class WorkflowEstimate:
    """Plan-time cost, duration, quality and risk estimates of a workflow."""

    cost: float = 0.0
    duration: float = 0.0
    """Estimated wall-clock seconds."""
    quality: float = 0.0
    """0-100, higher is better."""
    risk: float = 0.0
    """0-100, higher is riskier."""
    steps: list[StepEstimate] = field(default_factory=list)


@dataclass
class TemplateAlternative:
    """Estimate of a catalog template that was not selected."""

    template_key: str
    cost: float
    duration: float


@dataclass
class OrchestrationPlan:
    """A customized, registered workflow with its estimates."""

    workflow: WorkflowDefinition
    template_key: str
    selected_by: Literal["classifier", "heuristic"]
    estimate: WorkflowEstimate
    alternatives: list[TemplateAlternative] = field(default_factory=list)

    @property
    def workflow_id(self) -> str:
        return self.workflow.id
