# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Pydantic models for workflows and runtime configuration.

This module defines the Pydantic models used to parse workflow YAML files,
capability descriptors and the runtime configuration file. Structural
checks that span several steps (unique ids, dependency references, cycles)
live in :mod:`capflow.config.validator` so they surface as ValidationError.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

FailureStrategy = Literal["fail-fast", "continue-on-error"]


class RetryPolicy(BaseModel):
    """Retry behaviour for a single step."""

    max_retries: int = Field(0, ge=0, le=20)
    """Additional attempts after the first failure."""

    backoff_seconds: float = Field(1.0, ge=0.0)
    """Base wait before a retry, in seconds."""

    exponential: bool = True
    """Double the wait on every retry (base * 2^(k-1)) instead of a flat wait."""

    def delay_for(self, attempt: int) -> float:
        """Return the wait before retry number ``attempt`` (1-indexed)."""
        if not self.exponential:
            return self.backoff_seconds
        return self.backoff_seconds * (2 ** (attempt - 1))


class StepDef(BaseModel):
    """A unit of work bound to a capability provider type."""

    id: str
    """Step identifier, unique within its workflow."""

    name: str
    """Human-readable step name."""

    provider_type: str
    """Capability provider type that executes this step."""

    dependencies: list[str] = Field(default_factory=list)
    """Ids of steps that must settle before this one runs."""

    timeout: float | None = Field(None, gt=0)
    """Per-attempt timeout in seconds. Falls back to the workflow default."""

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    """Retry policy applied when the provider call fails."""

    required: bool = True
    """Whether a failure of this step aborts the run."""

    parallelizable: bool = False
    """Whether this step may share a concurrent batch with its phase siblings."""

    inputs: dict[str, Any] = Field(default_factory=dict)
    """Static inputs merged into the provider call."""


class WorkflowDefinition(BaseModel):
    """A declarative workflow: ordered steps plus execution settings."""

    id: str
    """Unique workflow identifier."""

    name: str
    """Human-readable workflow name."""

    version: str = "1.0"
    """Version string."""

    description: str | None = None
    """Human-readable workflow description."""

    steps: list[StepDef] = Field(default_factory=list)
    """Steps in declaration order."""

    default_timeout: float = Field(300.0, gt=0)
    """Per-attempt timeout in seconds for steps that do not set one."""

    max_concurrent_steps: int = Field(3, ge=1, le=100)
    """Maximum number of parallelizable steps dispatched together."""

    failure_strategy: FailureStrategy = "fail-fast"
    """
    Failure handling:
    - fail-fast: any step failure aborts the run
    - continue-on-error: failures of non-required steps are absorbed
    """

    metadata: dict[str, Any] = Field(default_factory=dict)
    """Free-form metadata."""

    @property
    def step_ids(self) -> list[str]:
        """Step ids in declaration order."""
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> StepDef | None:
        """Return the step with the given id, if any."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class CapabilityDescriptor(BaseModel):
    """Cost, latency and availability profile of a provider type."""

    provider_type: str
    """Provider type key referenced by steps."""

    cost_per_call: float = Field(0.0, ge=0.0)
    """Cost attributed to each successful call."""

    avg_latency: float = Field(0.0, ge=0.0)
    """Average call latency in seconds, used for estimates."""

    success_rate: float = Field(1.0, ge=0.0, le=1.0)
    """Historical success ratio."""

    max_concurrency: int = Field(1, ge=1)
    """Maximum simultaneous calls to this provider within a run."""

    available: bool = True
    """Whether the provider may currently be dispatched to."""

    capabilities: list[str] = Field(default_factory=list)
    """Capability tags this provider offers."""

    description: str | None = None
    """Human-readable description."""


class CapabilityDef(CapabilityDescriptor):
    """Capability entry of a runtime configuration file."""

    provider: str | None = None
    """Import path of the provider implementation ('package.module:attribute')."""

    options: dict[str, Any] = Field(default_factory=dict)
    """Keyword arguments passed when instantiating the provider class."""

    @field_validator("provider")
    @classmethod
    def validate_provider_path(cls, v: str | None) -> str | None:
        """Ensure the provider import path has a module and an attribute."""
        if v is None:
            return v
        module, sep, attribute = v.partition(":")
        if not sep or not module or not attribute:
            raise ValueError(
                f"provider must use the 'package.module:attribute' form, got '{v}'"
            )
        return v

    def to_descriptor(self) -> CapabilityDescriptor:
        """Strip the implementation fields and return the bare descriptor."""
        return CapabilityDescriptor.model_validate(
            self.model_dump(exclude={"provider", "options"})
        )


class ClassifierSettings(BaseModel):
    """External template classifier settings."""

    provider: Literal["none", "claude"] = "none"
    """Classifier backend. 'none' uses the deterministic heuristic only."""

    model: str = "claude-3-5-haiku-latest"
    """Model used by the Claude classifier."""

    timeout: float = Field(30.0, ge=1.0)
    """Request timeout in seconds."""

    max_tokens: int = Field(64, ge=1, le=4096)
    """Maximum output tokens for the classification reply."""


class RuntimeSettings(BaseModel):
    """Process-level settings."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    """Logging level used by the CLI."""

    max_cost: float | None = Field(None, ge=0.0)
    """Default cost budget for runs that do not pass one."""

    max_duration: float | None = Field(None, gt=0)
    """Default duration budget in seconds for runs that do not pass one."""

    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    """Template classifier settings."""


class RuntimeConfig(BaseModel):
    """Complete runtime configuration file."""

    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    """Process-level settings."""

    capabilities: list[CapabilityDef] = Field(default_factory=list)
    """Capability providers to register."""

    @field_validator("capabilities")
    @classmethod
    def validate_unique_provider_types(cls, v: list[CapabilityDef]) -> list[CapabilityDef]:
        """Ensure each provider type is declared once."""
        seen: set[str] = set()
        for capability in v:
            if capability.provider_type in seen:
                raise ValueError(f"Duplicate provider_type '{capability.provider_type}'")
            seen.add(capability.provider_type)
        return v
