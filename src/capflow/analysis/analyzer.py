# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Post-run result analysis.

This module compares a terminal execution record with the estimates made
when the workflow was planned, derives a success rate and quality score,
and turns the differences into ranked insights and recommendations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from capflow.exceptions import ProcessingError

if TYPE_CHECKING:
    from capflow.engine.record import ExecutionRecord
    from capflow.policy.models import WorkflowEstimate

logger = logging.getLogger(__name__)

Severity = Literal["critical", "warning", "info"]

SEVERITY_RANK: dict[str, int] = {"critical": 3, "warning": 2, "info": 1}

# Variance (percent) that produces an insight / an actionable recommendation
INSIGHT_VARIANCE = 20.0
RECOMMENDATION_VARIANCE = 50.0

QUALITY_THRESHOLD = 70.0
MAX_RECOMMENDATIONS = 8


@dataclass
class Finding:
    """An insight or recommendation produced by the analyzer."""

    category: Literal["cost", "duration", "reliability", "quality"]
    severity: Severity
    message: str
    confidence: float = 1.0
    """0-1 confidence used to order findings of equal severity."""


@dataclass
class AnalysisReport:
    """Outcome of analyzing one run against its estimate."""

    execution_id: str
    status: str
    actual_cost: float
    actual_duration: float
    cost_variance: float | None
    """Percent over (positive) or under (negative) the estimate. None if the estimate is 0."""
    duration_variance: float | None
    success_rate: float
    """Share of steps that did not fail, 0-1."""
    quality_score: float
    """0-100."""
    insights: list[Finding] = field(default_factory=list)
    recommendations: list[Finding] = field(default_factory=list)


def variance_percent(actual: float, estimated: float) -> float | None:
    """Return ``(actual - estimated) / estimated * 100``, or None when estimated is 0."""
    if estimated == 0:
        return None
    return (actual - estimated) / estimated * 100


def rank_findings(findings: list[Finding]) -> list[Finding]:
    """Order findings by severity (critical first), then by confidence."""
    return sorted(
        findings,
        key=lambda f: (SEVERITY_RANK[f.severity], f.confidence),
        reverse=True,
    )


def _reported_score(result: Any) -> float | None:
    if not isinstance(result, dict):
        return None
    for key in ("consensus_score", "score"):
        value = result.get(key)
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
    return None


class ResultAnalyzer:
    """Analyzes terminal execution records.

    Example:
        >>> report = ResultAnalyzer().analyze(record, plan.estimate)
        >>> [r.message for r in report.recommendations]
        ['Review failed steps (pricing-analysis) and improve their retry policies']
    """

    def __init__(self, max_recommendations: int = MAX_RECOMMENDATIONS) -> None:
        self.max_recommendations = max_recommendations

    def analyze(
        self,
        record: ExecutionRecord,
        estimate: WorkflowEstimate,
        evaluation_step_id: str | None = "evaluation",
    ) -> AnalysisReport:
        """Compare a run with its estimate.

        Args:
            record: A terminal execution record.
            estimate: The plan-time estimate of the same workflow.
            evaluation_step_id: Step whose reported score overrides the
                success-rate-based quality score when it completed.

        Returns:
            The AnalysisReport.

        Raises:
            ProcessingError: If the record has not reached a terminal status.
        """
        if not record.is_terminal:
            raise ProcessingError(
                f"Cannot analyze execution '{record.id}' while it is {record.status}",
                execution_id=record.id,
            )

        metrics = record.metrics
        insights: list[Finding] = []
        recommendations: list[Finding] = []

        cost_variance = variance_percent(metrics.cost_incurred, estimate.cost)
        duration_variance = variance_percent(metrics.total_duration, estimate.duration)

        self._check_variance(
            "cost",
            cost_variance,
            "Consider optimizing provider selection or using more cost-effective providers",
            insights,
            recommendations,
        )
        self._check_variance(
            "duration",
            duration_variance,
            "Consider parallelizing more steps or using faster providers",
            insights,
            recommendations,
        )

        total = metrics.total_steps
        failed = len(record.failed_steps)
        success_rate = (total - failed) / total if total else 1.0

        if failed:
            insights.append(
                Finding(
                    "reliability",
                    "warning",
                    f"{failed} out of {total} steps failed "
                    f"({success_rate * 100:.1f}% success rate)",
                )
            )
            recommendations.append(
                Finding(
                    "reliability",
                    "critical" if record.status == "failed" else "warning",
                    f"Review failed steps ({', '.join(record.failed_steps)}) "
                    "and improve their retry policies",
                    confidence=0.9,
                )
            )

        if record.skipped_steps:
            insights.append(
                Finding(
                    "reliability",
                    "info",
                    f"{len(record.skipped_steps)} optional step(s) skipped because their "
                    f"provider was unavailable: {', '.join(record.skipped_steps)}",
                )
            )

        if record.status == "cancelled":
            insights.append(
                Finding(
                    "reliability",
                    "info",
                    f"Run was cancelled after {len(record.settled_steps)} of {total} steps",
                )
            )

        quality_score = success_rate * 100
        if evaluation_step_id and evaluation_step_id in record.completed_steps:
            reported = _reported_score(record.step_results.get(evaluation_step_id))
            if reported is not None:
                quality_score = max(0.0, min(100.0, reported))

        if quality_score < QUALITY_THRESHOLD:
            recommendations.append(
                Finding(
                    "quality",
                    "warning",
                    "Quality score is below threshold - consider additional validation steps",
                    confidence=0.7,
                )
            )

        report = AnalysisReport(
            execution_id=record.id,
            status=record.status,
            actual_cost=metrics.cost_incurred,
            actual_duration=metrics.total_duration,
            cost_variance=cost_variance,
            duration_variance=duration_variance,
            success_rate=success_rate,
            quality_score=quality_score,
            insights=rank_findings(insights),
            recommendations=rank_findings(recommendations)[: self.max_recommendations],
        )
        logger.debug(
            "Analyzed execution %s: %d insight(s), %d recommendation(s)",
            record.id,
            len(report.insights),
            len(report.recommendations),
        )
        return report

    @staticmethod
    def _check_variance(
        category: Literal["cost", "duration"],
        variance: float | None,
        advice: str,
        insights: list[Finding],
        recommendations: list[Finding],
    ) -> None:
        if variance is None:
            return
        if abs(variance) > INSIGHT_VARIANCE:
            direction = "over" if variance > 0 else "under"
            insights.append(
                Finding(
                    category,
                    "info",
                    f"{category.capitalize()} variance: {variance:.1f}% {direction} estimate",
                    confidence=0.9,
                )
            )
        if variance > RECOMMENDATION_VARIANCE:
            recommendations.append(Finding(category, "warning", advice, confidence=0.8))
