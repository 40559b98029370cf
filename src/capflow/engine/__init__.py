# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Workflow engine module for capflow.

This module contains the dependency planner, the execution engine,
execution records, budget enforcement and event notifications.
"""

from capflow.engine.budget import BudgetEnforcer
from capflow.engine.events import EventEmitter, WorkflowEvent
from capflow.engine.planner import DependencyPlanner, ExecutionPlan
from capflow.engine.record import ExecutionMetrics, ExecutionRecord
from capflow.engine.step import StepRun, StepRunner
from capflow.engine.usage import RunUsage, StepUsage, UsageTracker
from capflow.engine.workflow import WorkflowEngine

__all__ = [
    "BudgetEnforcer",
    "DependencyPlanner",
    "EventEmitter",
    "ExecutionMetrics",
    "ExecutionPlan",
    "ExecutionRecord",
    "RunUsage",
    "StepRun",
    "StepRunner",
    "StepUsage",
    "UsageTracker",
    "WorkflowEngine",
    "WorkflowEvent",
]
