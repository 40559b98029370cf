# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Built-in workflow templates and capability catalog.

This module holds the fixed catalog of product-analysis workflow templates
that the orchestration policy chooses from, and the default capability
profiles of the provider types those templates use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from capflow.config.schema import CapabilityDescriptor, RetryPolicy, StepDef

# Provider types referenced by the built-in templates
PROMPT_PROCESSOR = "prompt-processor"
MARKET_RESEARCH = "market-research"
COMPETITIVE_LANDSCAPE = "competitive-landscape"
DOCUMENT_PACKAGE = "document-package"
PROTOTYPE_GENERATOR = "prototype-generator"
PRICING = "pricing"
EVALUATION = "evaluation"

DEFAULT_TEMPLATE = "comprehensive-product-analysis"
RAPID_TEMPLATE = "rapid-market-validation"
DEEP_TEMPLATE = "deep-strategic-analysis"


@dataclass(frozen=True)
class WorkflowTemplate:
    """A reusable workflow shape selected before customization.

    Templates are shared catalog entries: callers must copy the steps
    (see :meth:`copy_steps`) before changing them.
    """

    key: str
    name: str
    description: str
    steps: tuple[StepDef, ...] = field(default_factory=tuple)

    def copy_steps(self) -> list[StepDef]:
        """Deep copies of the template's steps."""
        return [step.model_copy(deep=True) for step in self.steps]


def _step(
    step_id: str,
    name: str,
    provider_type: str,
    dependencies: list[str],
    *,
    timeout: float,
    retries: int,
    backoff: float,
    exponential: bool,
    required: bool = True,
    parallelizable: bool = False,
    inputs: dict[str, Any] | None = None,
) -> StepDef:
    return StepDef(
        id=step_id,
        name=name,
        provider_type=provider_type,
        dependencies=dependencies,
        timeout=timeout,
        retry=RetryPolicy(max_retries=retries, backoff_seconds=backoff, exponential=exponential),
        required=required,
        parallelizable=parallelizable,
        inputs=inputs or {},
    )


TEMPLATES: dict[str, WorkflowTemplate] = {
    DEFAULT_TEMPLATE: WorkflowTemplate(
        key=DEFAULT_TEMPLATE,
        name="Comprehensive Product Analysis",
        description="Full product analysis with prompt processing, market research, "
        "PRD generation, pricing and evaluation",
        steps=(
            _step(
                "prompt-processing",
                "User Prompt Processing & Concept Structuring",
                PROMPT_PROCESSOR,
                [],
                timeout=180,
                retries=2,
                backoff=3,
                exponential=True,
            ),
            _step(
                "market-research",
                "Market Research Analysis",
                MARKET_RESEARCH,
                ["prompt-processing"],
                timeout=300,
                retries=2,
                backoff=5,
                exponential=True,
                parallelizable=True,
            ),
            _step(
                "prd-generation",
                "Product Requirements Document Generation",
                DOCUMENT_PACKAGE,
                ["market-research"],
                timeout=400,
                retries=2,
                backoff=5,
                exponential=True,
            ),
            _step(
                "prototype-generation",
                "Prototype Specifications",
                PROTOTYPE_GENERATOR,
                ["prd-generation"],
                timeout=600,
                retries=1,
                backoff=10,
                exponential=False,
                required=False,
            ),
            _step(
                "pricing-analysis",
                "Pricing Strategy Analysis",
                PRICING,
                ["prd-generation"],
                timeout=300,
                retries=2,
                backoff=5,
                exponential=True,
            ),
            _step(
                "evaluation",
                "Multi-Model Evaluation",
                EVALUATION,
                ["market-research", "prd-generation", "pricing-analysis"],
                timeout=300,
                retries=1,
                backoff=5,
                exponential=False,
                required=False,
            ),
        ),
    ),
    RAPID_TEMPLATE: WorkflowTemplate(
        key=RAPID_TEMPLATE,
        name="Rapid Market Validation",
        description="Quick market validation with prompt processing and basic "
        "competitive analysis",
        steps=(
            _step(
                "prompt-processing",
                "Quick Prompt Processing",
                PROMPT_PROCESSOR,
                [],
                timeout=90,
                retries=1,
                backoff=2,
                exponential=False,
            ),
            _step(
                "quick-market-scan",
                "Quick Market Scan",
                MARKET_RESEARCH,
                ["prompt-processing"],
                timeout=120,
                retries=1,
                backoff=3,
                exponential=False,
                parallelizable=True,
                inputs={"depth": "basic"},
            ),
            _step(
                "competitor-overview",
                "Competitor Overview",
                COMPETITIVE_LANDSCAPE,
                ["prompt-processing"],
                timeout=120,
                retries=1,
                backoff=3,
                exponential=False,
                parallelizable=True,
                inputs={"depth": "basic"},
            ),
            _step(
                "quick-evaluation",
                "Quick Evaluation",
                EVALUATION,
                ["quick-market-scan", "competitor-overview"],
                timeout=180,
                retries=1,
                backoff=3,
                exponential=False,
            ),
        ),
    ),
    DEEP_TEMPLATE: WorkflowTemplate(
        key=DEEP_TEMPLATE,
        name="Deep Strategic Analysis",
        description="Comprehensive strategic analysis with prompt processing and "
        "multiple validation rounds",
        steps=(
            _step(
                "prompt-processing",
                "Advanced Prompt Processing",
                PROMPT_PROCESSOR,
                [],
                timeout=240,
                retries=2,
                backoff=5,
                exponential=True,
            ),
            _step(
                "comprehensive-market-research",
                "Comprehensive Market Research",
                MARKET_RESEARCH,
                ["prompt-processing"],
                timeout=600,
                retries=3,
                backoff=10,
                exponential=True,
                parallelizable=True,
                inputs={"depth": "comprehensive"},
            ),
            _step(
                "detailed-competitive-analysis",
                "Detailed Competitive Analysis",
                COMPETITIVE_LANDSCAPE,
                ["prompt-processing"],
                timeout=600,
                retries=3,
                backoff=10,
                exponential=True,
                parallelizable=True,
                inputs={"depth": "comprehensive"},
            ),
            _step(
                "advanced-prd-generation",
                "Advanced PRD Generation",
                DOCUMENT_PACKAGE,
                ["comprehensive-market-research", "detailed-competitive-analysis"],
                timeout=800,
                retries=2,
                backoff=10,
                exponential=True,
                inputs={"template": "enterprise", "include_financials": True},
            ),
            _step(
                "prototype-development",
                "Prototype Development",
                PROTOTYPE_GENERATOR,
                ["advanced-prd-generation"],
                timeout=1200,
                retries=2,
                backoff=15,
                exponential=True,
                required=False,
                inputs={"fidelity": "high", "include_interactions": True},
            ),
            _step(
                "multi-model-evaluation",
                "Multi-Model Evaluation",
                EVALUATION,
                [
                    "comprehensive-market-research",
                    "detailed-competitive-analysis",
                    "advanced-prd-generation",
                ],
                timeout=600,
                retries=2,
                backoff=10,
                exponential=True,
                inputs={"include_risk_analysis": True},
            ),
            _step(
                "advanced-pricing-analysis",
                "Advanced Pricing Strategy",
                PRICING,
                ["advanced-prd-generation"],
                timeout=400,
                retries=2,
                backoff=10,
                exponential=True,
            ),
            _step(
                "strategic-recommendations",
                "Strategic Recommendations",
                DOCUMENT_PACKAGE,
                ["multi-model-evaluation", "prototype-development", "advanced-pricing-analysis"],
                timeout=400,
                retries=1,
                backoff=10,
                exponential=False,
                inputs={"template": "executive-summary"},
            ),
        ),
    ),
}


DEFAULT_CAPABILITIES: tuple[CapabilityDescriptor, ...] = (
    CapabilityDescriptor(
        provider_type=MARKET_RESEARCH,
        cost_per_call=0.08,
        avg_latency=45,
        success_rate=0.95,
        max_concurrency=2,
        capabilities=["market-analysis", "trend-research", "tam-sam-som"],
    ),
    CapabilityDescriptor(
        provider_type=COMPETITIVE_LANDSCAPE,
        cost_per_call=0.06,
        avg_latency=35,
        success_rate=0.92,
        max_concurrency=2,
        capabilities=["competitor-analysis", "swot-analysis", "positioning"],
    ),
    CapabilityDescriptor(
        provider_type=DOCUMENT_PACKAGE,
        cost_per_call=0.10,
        avg_latency=60,
        success_rate=0.98,
        max_concurrency=1,
        capabilities=["prd-generation", "document-creation", "formatting"],
    ),
    CapabilityDescriptor(
        provider_type=PROTOTYPE_GENERATOR,
        cost_per_call=0.15,
        avg_latency=120,
        success_rate=0.85,
        max_concurrency=1,
        capabilities=["prototype-creation", "ui-generation", "mockups"],
    ),
    CapabilityDescriptor(
        provider_type=EVALUATION,
        cost_per_call=0.08,
        avg_latency=30,
        success_rate=0.98,
        max_concurrency=2,
        capabilities=["quality-assessment", "multi-model-evaluation", "scoring"],
    ),
    CapabilityDescriptor(
        provider_type=PRICING,
        cost_per_call=0.12,
        avg_latency=50,
        success_rate=0.94,
        max_concurrency=1,
        capabilities=["pricing-strategy", "value-metrics", "tier-analysis"],
    ),
    CapabilityDescriptor(
        provider_type=PROMPT_PROCESSOR,
        cost_per_call=0.05,
        avg_latency=25,
        success_rate=0.97,
        max_concurrency=2,
        capabilities=["prompt-analysis", "concept-extraction", "clarification-generation"],
    ),
)


def list_templates() -> list[WorkflowTemplate]:
    """All catalog templates in catalog order."""
    return list(TEMPLATES.values())


def get_template(key: str) -> WorkflowTemplate | None:
    """Return a catalog template by key, or None."""
    return TEMPLATES.get(key)
