# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Single-step execution with timeout and retry.

This module provides the StepRunner, which invokes a capability provider
for one step, bounds every attempt with the step timeout and retries
failures with the step's backoff policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from capflow.config.schema import StepDef
from capflow.exceptions import StepExecutionError
from capflow.providers.base import CapabilityProvider, StepOutput

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class StepRun:
    """Outcome of a successful step execution.

    Attributes:
        output: The provider's StepOutput from the successful attempt.
        attempts: Number of provider calls made, including the successful one.
        elapsed: Seconds from the first attempt to success, including backoff.
    """

    output: StepOutput
    attempts: int
    elapsed: float


def describe_error(error: BaseException) -> str:
    """Render an attempt failure as a one-line message."""
    if isinstance(error, TimeoutError):
        return "timed out"
    message = str(error).split("\n")[0]
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class StepRunner:
    """Runs one step against its provider with timeout and retry.

    Attempt ``k`` after the first is preceded by a wait of
    ``backoff_seconds`` (flat) or ``backoff_seconds * 2^(k-1)`` (exponential).

    Example:
        >>> runner = StepRunner()
        >>> run = await runner.run(step, provider, {"query": "x"}, timeout=30)
        >>> run.attempts
        1
    """

    def __init__(self, sleep: SleepFunc = asyncio.sleep) -> None:
        """Initialize the runner.

        Args:
            sleep: Coroutine used for backoff waits. Tests inject a recorder.
        """
        self._sleep = sleep

    async def run(
        self,
        step: StepDef,
        provider: CapabilityProvider,
        inputs: dict[str, Any],
        timeout: float,
    ) -> StepRun:
        """Execute a step, retrying failed attempts.

        Args:
            step: The step definition, providing the retry policy.
            provider: The provider to call.
            inputs: Merged step inputs.
            timeout: Per-attempt timeout in seconds.

        Returns:
            The StepRun of the successful attempt.

        Raises:
            StepExecutionError: If every attempt failed.
        """
        policy = step.retry
        max_attempts = policy.max_retries + 1
        started = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            try:
                output = await asyncio.wait_for(
                    provider.execute(step.id, inputs, timeout), timeout=timeout
                )
            except Exception as e:
                if attempt >= max_attempts:
                    raise StepExecutionError(
                        f"Step '{step.id}' failed after {max_attempts} attempt(s): "
                        f"{describe_error(e)}",
                        step_id=step.id,
                        attempts=max_attempts,
                        last_error=e,
                        suggestion="Increase the step's retry.max_retries or timeout, "
                        "or check the provider",
                    ) from e
                delay = policy.delay_for(attempt)
                logger.warning(
                    "Step '%s' attempt %d/%d failed (%s); retrying in %.2fs",
                    step.id,
                    attempt,
                    max_attempts,
                    describe_error(e),
                    delay,
                )
                await self._sleep(delay)
                continue

            if not isinstance(output, StepOutput):
                output = StepOutput(output=output)
            return StepRun(output=output, attempts=attempt, elapsed=time.monotonic() - started)
