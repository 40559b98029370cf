# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Abstract base class for capability providers.

This module defines the CapabilityProvider ABC and the StepOutput dataclass
that every provider implementation returns, so the engine can dispatch
steps without knowing how a provider computes its result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class StepOutput:
    """Normalized result of one provider call.

    Attributes:
        output: The step result, stored under the step id in the record.
        cost_incurred: Cost reported by the provider. None means the
            registry's per-call cost is attributed instead.
        latency: Call latency in seconds as reported by the provider. None
            means the engine's own measurement is used.
    """

    output: Any
    """The step result."""

    cost_incurred: float | None = None
    """Cost reported by the provider for this call."""

    latency: float | None = None
    """Call latency in seconds."""


class CapabilityProvider(ABC):
    """Abstract base class for capability providers.

    A provider receives a step id, the merged step inputs and the per-attempt
    timeout, and either returns a StepOutput or raises. Any exception counts
    as a failed attempt and is subject to the step's retry policy.

    Example:
        >>> class EchoProvider(CapabilityProvider):
        ...     async def execute(self, step_id, inputs, timeout):
        ...         return StepOutput(output={"echo": inputs})
    """

    @abstractmethod
    async def execute(
        self,
        step_id: str,
        inputs: dict[str, Any],
        timeout: float,
    ) -> StepOutput:
        """Execute a step.

        Args:
            step_id: Id of the step being executed.
            inputs: Static inputs merged with dependency results and context.
            timeout: Per-attempt timeout in seconds enforced by the engine.

        Returns:
            The StepOutput for this call.

        Raises:
            Exception: Any error marks the attempt as failed.
        """
        ...

    async def close(self) -> None:
        """Release provider resources. The default implementation does nothing."""
        return None


StepHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]


class CallableProvider(CapabilityProvider):
    """Adapts an async function into a CapabilityProvider.

    The function receives ``(step_id, inputs)``. A returned StepOutput is
    passed through untouched; any other value becomes ``StepOutput(output=value)``.
    """

    def __init__(self, handler: StepHandler) -> None:
        self._handler = handler

    async def execute(
        self,
        step_id: str,
        inputs: dict[str, Any],
        timeout: float,
    ) -> StepOutput:
        result = await self._handler(step_id, inputs)
        if isinstance(result, StepOutput):
            return result
        return StepOutput(output=result)
