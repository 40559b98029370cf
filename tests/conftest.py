"""Pytest configuration and shared fixtures for capflow tests.

This module contains fixtures used across multiple test modules.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

PROVIDER_MODULE = "capflow_test_providers"

PROVIDER_SOURCE = '''\
from capflow.providers.base import CapabilityProvider, StepOutput


class EchoProvider(CapabilityProvider):
    """Echoes the step id and reports a fixed cost."""

    def __init__(self, cost: float = 0.1) -> None:
        self.cost = cost

    async def execute(self, step_id, inputs, timeout):
        return StepOutput(
            output={"step": step_id, "keys": sorted(inputs)},
            cost_incurred=self.cost,
        )


class FailingProvider(CapabilityProvider):
    """Fails every call."""

    async def execute(self, step_id, inputs, timeout):
        raise RuntimeError(f"{step_id} exploded")


class ScoringProvider(CapabilityProvider):
    """Reports a fixed evaluation score."""

    async def execute(self, step_id, inputs, timeout):
        return {"consensus_score": 88}


echo = EchoProvider(cost=0.05)
'''


class RecordingSleep:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def sleep() -> RecordingSleep:
    """Return a sleep recorder for retry backoff assertions."""
    return RecordingSleep()


@pytest.fixture(autouse=True)
def reset_capflow_logger() -> Iterator[None]:
    """Undo logging configuration applied by CLI invocations."""
    yield
    package_logger = logging.getLogger("capflow")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def sample_workflow_yaml() -> str:
    """Return a valid three-step workflow YAML: A and B feed C."""
    return """\
id: sample
name: Sample Workflow
description: Two independent steps feeding a third
max_concurrent_steps: 2
failure_strategy: fail-fast
steps:
  - id: A
    name: Step A
    provider_type: echo
    parallelizable: true
  - id: B
    name: Step B
    provider_type: echo
    parallelizable: true
  - id: C
    name: Step C
    provider_type: echo
    dependencies: [A, B]
    inputs:
      format: summary
"""


@pytest.fixture
def tmp_workflow_file(tmp_path: Path, sample_workflow_yaml: str) -> Path:
    """Create a temporary workflow YAML file."""
    workflow_file = tmp_path / "sample.yaml"
    workflow_file.write_text(sample_workflow_yaml)
    return workflow_file


@pytest.fixture
def provider_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Write an importable module of test providers and return its name."""
    module_dir = tmp_path / "providers"
    module_dir.mkdir()
    (module_dir / f"{PROVIDER_MODULE}.py").write_text(PROVIDER_SOURCE)
    monkeypatch.syspath_prepend(str(module_dir))
    return PROVIDER_MODULE


@pytest.fixture
def tmp_capabilities_file(tmp_path: Path, provider_module: str) -> Path:
    """Create a runtime configuration binding 'echo' to EchoProvider."""
    capabilities_file = tmp_path / "capabilities.yaml"
    capabilities_file.write_text(
        f"""\
runtime:
  log_level: INFO
capabilities:
  - provider_type: echo
    cost_per_call: 0.1
    avg_latency: 5
    max_concurrency: 2
    provider: "{provider_module}:EchoProvider"
    options:
      cost: 0.1
"""
    )
    return capabilities_file
