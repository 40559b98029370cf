"""Tests for StepRunner retry and timeout handling.

Tests cover:
- First-attempt success
- Exponential and flat backoff waits
- Exhausted retries
- Per-attempt timeouts
- Wrapping of raw provider return values
- Error descriptions
"""

import asyncio
from typing import Any

import pytest

from capflow.config.schema import RetryPolicy, StepDef
from capflow.engine.step import StepRunner, describe_error
from capflow.exceptions import StepExecutionError
from capflow.providers.base import CapabilityProvider, StepOutput


class FlakyProvider(CapabilityProvider):
    """Fails a fixed number of times before succeeding."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def execute(self, step_id: str, inputs: dict[str, Any], timeout: float) -> StepOutput:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return StepOutput(output={"step": step_id, "inputs": inputs}, cost_incurred=0.2)


class SlowProvider(CapabilityProvider):
    """Never finishes within a short timeout."""

    async def execute(self, step_id: str, inputs: dict[str, Any], timeout: float) -> StepOutput:
        await asyncio.sleep(10)
        return StepOutput(output=None)


class RawProvider(CapabilityProvider):
    """Returns a bare value instead of a StepOutput."""

    async def execute(self, step_id: str, inputs: dict[str, Any], timeout: float) -> Any:
        return {"raw": True}


def _step(max_retries: int = 0, backoff: float = 0.1, exponential: bool = True) -> StepDef:
    return StepDef(
        id="A",
        name="Step A",
        provider_type="echo",
        retry=RetryPolicy(
            max_retries=max_retries, backoff_seconds=backoff, exponential=exponential
        ),
    )


class TestStepRunner:
    """Tests for StepRunner.run."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, sleep) -> None:
        """Test that a healthy provider is called once without waiting."""
        provider = FlakyProvider(failures=0)
        run = await StepRunner(sleep=sleep).run(_step(), provider, {"q": 1}, timeout=5)

        assert run.attempts == 1
        assert run.output.output == {"step": "A", "inputs": {"q": 1}}
        assert run.output.cost_incurred == 0.2
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_exponential_backoff(self, sleep) -> None:
        """Test that waits double between attempts."""
        provider = FlakyProvider(failures=2)
        run = await StepRunner(sleep=sleep).run(_step(max_retries=2), provider, {}, timeout=5)

        assert run.attempts == 3
        assert sleep.calls == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_flat_backoff(self, sleep) -> None:
        """Test constant waits when exponential backoff is off."""
        provider = FlakyProvider(failures=3)
        step = _step(max_retries=3, backoff=0.5, exponential=False)
        run = await StepRunner(sleep=sleep).run(step, provider, {}, timeout=5)

        assert run.attempts == 4
        assert sleep.calls == [0.5, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, sleep) -> None:
        """Test the error raised once every attempt has failed."""
        provider = FlakyProvider(failures=10)
        with pytest.raises(StepExecutionError) as exc_info:
            await StepRunner(sleep=sleep).run(
                _step(max_retries=2, backoff=0.1, exponential=True), provider, {}, timeout=5
            )

        error = exc_info.value
        assert provider.calls == 3
        assert error.attempts == 3
        assert error.step_id == "A"
        assert isinstance(error.last_error, ConnectionError)
        assert "attempt 3 failed" in error.message
        assert "after 3 attempt(s)" in error.message
        assert sleep.calls == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_timeout(self, sleep) -> None:
        """Test that a hung attempt is abandoned after the timeout."""
        with pytest.raises(StepExecutionError) as exc_info:
            await StepRunner(sleep=sleep).run(_step(), SlowProvider(), {}, timeout=0.05)

        assert "timed out" in exc_info.value.message
        assert isinstance(exc_info.value.last_error, TimeoutError)

    @pytest.mark.asyncio
    async def test_raw_output_is_wrapped(self, sleep) -> None:
        """Test that non-StepOutput values are wrapped."""
        run = await StepRunner(sleep=sleep).run(_step(), RawProvider(), {}, timeout=5)
        assert isinstance(run.output, StepOutput)
        assert run.output.output == {"raw": True}
        assert run.output.cost_incurred is None


class TestDescribeError:
    """Tests for describe_error."""

    def test_timeout(self) -> None:
        """Test that timeouts are described plainly."""
        assert describe_error(TimeoutError()) == "timed out"

    def test_first_line_only(self) -> None:
        """Test that multi-line messages are truncated."""
        assert describe_error(ValueError("bad value\ntraceback noise")) == "ValueError: bad value"

    def test_empty_message(self) -> None:
        """Test errors without a message."""
        assert describe_error(KeyError()) == "KeyError"
