# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Providers module for capflow.

This module defines the capability provider abstraction, the registry of
capability descriptors and the factory for config-driven providers.
"""

from capflow.providers.base import CallableProvider, CapabilityProvider, StepOutput
from capflow.providers.factory import build_registry, create_provider
from capflow.providers.registry import CapabilityRegistry

__all__ = [
    "CallableProvider",
    "CapabilityProvider",
    "CapabilityRegistry",
    "StepOutput",
    "build_registry",
    "create_provider",
]
