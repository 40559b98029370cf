"""Tests for the CapabilityRegistry.

Tests cover:
- Registration, replacement and removal
- Descriptor copies
- Availability and dispatchability
- Capability tag lookup
- Provider lifecycle on close
"""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from capflow.config.schema import CapabilityDescriptor
from capflow.providers.base import CapabilityProvider, StepOutput
from capflow.providers.registry import CapabilityRegistry


class StubProvider(CapabilityProvider):
    """Provider that returns nothing and tracks close calls."""

    def __init__(self, close_error: Exception | None = None) -> None:
        self.closed = False
        self.close_error = close_error

    async def execute(self, step_id: str, inputs: dict[str, Any], timeout: float) -> StepOutput:
        return StepOutput(output=None)

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


def _descriptor(provider_type: str, **kwargs: Any) -> CapabilityDescriptor:
    return CapabilityDescriptor(provider_type=provider_type, **kwargs)


class TestRegistration:
    """Tests for register, get and unregister."""

    def test_register_and_get(self) -> None:
        """Test storing a descriptor with its provider."""
        registry = CapabilityRegistry()
        provider = StubProvider()
        registry.register(_descriptor("search", cost_per_call=0.02), provider)

        assert len(registry) == 1
        assert "search" in registry
        assert registry.get("search").cost_per_call == 0.02  # type: ignore[union-attr]
        assert registry.get_provider("search") is provider
        assert registry.get("missing") is None

    def test_register_stores_copy(self) -> None:
        """Test that later edits to the caller's descriptor are not seen."""
        registry = CapabilityRegistry()
        descriptor = _descriptor("search", cost_per_call=0.02)
        registry.register(descriptor)
        descriptor.cost_per_call = 9.0
        assert registry.get("search").cost_per_call == 0.02  # type: ignore[union-attr]

    def test_replace(self) -> None:
        """Test that re-registering replaces the entry and its provider."""
        registry = CapabilityRegistry()
        registry.register(_descriptor("search", cost_per_call=0.02), StubProvider())
        registry.register(_descriptor("search", cost_per_call=0.05))

        assert len(registry) == 1
        assert registry.get("search").cost_per_call == 0.05  # type: ignore[union-attr]
        assert registry.get_provider("search") is None

    def test_unregister(self) -> None:
        """Test removing a capability."""
        registry = CapabilityRegistry()
        registry.register(_descriptor("search"), StubProvider())

        assert registry.unregister("search") is True
        assert registry.unregister("search") is False
        assert registry.get_provider("search") is None

    def test_list_order(self) -> None:
        """Test that listings keep registration order."""
        registry = CapabilityRegistry()
        for name in ("b", "a", "c"):
            registry.register(_descriptor(name))
        assert [d.provider_type for d in registry.list_all()] == ["b", "a", "c"]


class TestAvailability:
    """Tests for availability handling."""

    def test_set_availability(self) -> None:
        """Test flipping availability."""
        registry = CapabilityRegistry()
        registry.register(_descriptor("search"), StubProvider())

        assert registry.is_dispatchable("search") is True
        assert registry.set_availability("search", False) is True
        assert registry.is_dispatchable("search") is False
        assert registry.list_available() == []
        assert registry.set_availability("missing", True) is False

    def test_descriptor_without_provider_not_dispatchable(self) -> None:
        """Test that estimate-only entries cannot be dispatched."""
        registry = CapabilityRegistry()
        registry.register(_descriptor("search"))
        assert registry.is_dispatchable("search") is False
        assert registry.is_dispatchable("missing") is False

    def test_find_by_capability(self) -> None:
        """Test that tag lookup returns the first available match."""
        registry = CapabilityRegistry()
        registry.register(_descriptor("primary", capabilities=["search"], available=False))
        registry.register(_descriptor("secondary", capabilities=["search", "ranking"]))
        registry.register(_descriptor("tertiary", capabilities=["search"]))

        found = registry.find_by_capability("search")
        assert found is not None
        assert found.provider_type == "secondary"
        assert registry.find_by_capability("translation") is None


class TestLifecycle:
    """Tests for closing providers."""

    @pytest.mark.asyncio
    async def test_close_all(self) -> None:
        """Test that every bound provider is closed."""
        registry = CapabilityRegistry()
        first, second = StubProvider(), StubProvider()
        registry.register(_descriptor("a"), first)
        registry.register(_descriptor("b"), second)

        await registry.close()

        assert first.closed and second.closed

    @pytest.mark.asyncio
    async def test_close_continues_after_error(self) -> None:
        """Test that one failing close does not prevent the others."""
        registry = CapabilityRegistry()
        failing = StubProvider(close_error=RuntimeError("close failed"))
        healthy = StubProvider()
        registry.register(_descriptor("a"), failing)
        registry.register(_descriptor("b"), healthy)

        with pytest.raises(RuntimeError, match="close failed"):
            await registry.close()

        assert healthy.closed

    @pytest.mark.asyncio
    async def test_async_context_manager(self) -> None:
        """Test that leaving the context closes providers."""
        provider = StubProvider()
        provider.close = AsyncMock()  # type: ignore[method-assign]

        async with CapabilityRegistry() as registry:
            registry.register(_descriptor("a"), provider)

        provider.close.assert_awaited_once()
