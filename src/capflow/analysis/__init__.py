# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Post-run analysis of execution records against plan-time estimates."""

from capflow.analysis.analyzer import (
    AnalysisReport,
    Finding,
    ResultAnalyzer,
    rank_findings,
    variance_percent,
)

__all__ = [
    "AnalysisReport",
    "Finding",
    "ResultAnalyzer",
    "rank_findings",
    "variance_percent",
]
