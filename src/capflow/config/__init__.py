# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Configuration module for capflow.

This module handles YAML parsing, Pydantic schema validation,
environment variable resolution and structural workflow validation.
"""

from capflow.config.loader import (
    ConfigLoader,
    load_runtime_config,
    load_runtime_config_string,
    load_workflow,
    load_workflow_string,
    resolve_env_vars,
)
from capflow.config.schema import (
    CapabilityDef,
    CapabilityDescriptor,
    ClassifierSettings,
    RetryPolicy,
    RuntimeConfig,
    RuntimeSettings,
    StepDef,
    WorkflowDefinition,
)
from capflow.config.validator import find_cycle, validate_workflow

__all__ = [
    # Loader
    "ConfigLoader",
    "load_runtime_config",
    "load_runtime_config_string",
    "load_workflow",
    "load_workflow_string",
    "resolve_env_vars",
    # Schema models
    "CapabilityDef",
    "CapabilityDescriptor",
    "ClassifierSettings",
    "RetryPolicy",
    "RuntimeConfig",
    "RuntimeSettings",
    "StepDef",
    "WorkflowDefinition",
    # Validator
    "find_cycle",
    "validate_workflow",
]
