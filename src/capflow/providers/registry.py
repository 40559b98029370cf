# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Capability registry.

This module provides the CapabilityRegistry class, a lookup table of
capability descriptors keyed by provider type, with the provider
implementation bound to each entry.
"""

from __future__ import annotations

import logging
from typing import Any

from capflow.config.schema import CapabilityDescriptor
from capflow.providers.base import CapabilityProvider

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """Holds capability descriptors and their provider implementations.

    The registry is owned by the caller and passed to the engine at
    construction. Registration happens before runs start; descriptors are
    only read during execution.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.register(CapabilityDescriptor(provider_type="search"), provider)
        >>> registry.get("search").cost_per_call
        0.0

    Key behaviors:
    - **Replace on re-register**: registering a known provider type swaps it
    - **Availability**: unavailable entries are kept but never dispatched to
    - **Lifecycle management**: ``close()`` closes every bound provider
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._descriptors: dict[str, CapabilityDescriptor] = {}
        self._providers: dict[str, CapabilityProvider] = {}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, provider_type: object) -> bool:
        return provider_type in self._descriptors

    def register(
        self,
        descriptor: CapabilityDescriptor,
        provider: CapabilityProvider | None = None,
    ) -> None:
        """Register or replace a capability.

        Args:
            descriptor: The capability profile. Stored as a copy.
            provider: Implementation to dispatch steps to. A descriptor without
                a provider can still be used for estimates.
        """
        provider_type = descriptor.provider_type
        if provider_type in self._descriptors:
            logger.info("Replacing capability '%s'", provider_type)
        self._descriptors[provider_type] = descriptor.model_copy(deep=True)
        if provider is not None:
            self._providers[provider_type] = provider
        else:
            self._providers.pop(provider_type, None)

    def unregister(self, provider_type: str) -> bool:
        """Remove a capability.

        Returns:
            True if the provider type was registered.
        """
        self._providers.pop(provider_type, None)
        return self._descriptors.pop(provider_type, None) is not None

    def get(self, provider_type: str) -> CapabilityDescriptor | None:
        """Return the descriptor for a provider type, or None."""
        return self._descriptors.get(provider_type)

    def get_provider(self, provider_type: str) -> CapabilityProvider | None:
        """Return the implementation bound to a provider type, or None."""
        return self._providers.get(provider_type)

    def is_dispatchable(self, provider_type: str) -> bool:
        """Whether a step bound to ``provider_type`` can be dispatched now."""
        descriptor = self._descriptors.get(provider_type)
        return (
            descriptor is not None
            and descriptor.available
            and provider_type in self._providers
        )

    def set_availability(self, provider_type: str, available: bool) -> bool:
        """Flip the availability flag of a registered capability.

        Returns:
            True if the provider type was registered.
        """
        descriptor = self._descriptors.get(provider_type)
        if descriptor is None:
            return False
        descriptor.available = available
        return True

    def list_all(self) -> list[CapabilityDescriptor]:
        """All descriptors in registration order."""
        return list(self._descriptors.values())

    def list_available(self) -> list[CapabilityDescriptor]:
        """Available descriptors in registration order."""
        return [d for d in self._descriptors.values() if d.available]

    def find_by_capability(self, capability: str) -> CapabilityDescriptor | None:
        """Return the first available descriptor offering a capability tag."""
        for descriptor in self._descriptors.values():
            if descriptor.available and capability in descriptor.capabilities:
                return descriptor
        return None

    async def close(self) -> None:
        """Close every bound provider.

        Errors are collected so that every provider gets closed; the first
        one is re-raised afterwards.
        """
        errors: list[Exception] = []
        for provider_type, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.warning("Failed to close provider '%s': %s", provider_type, e)
                errors.append(e)

        if errors:
            raise errors[0]

    async def __aenter__(self) -> CapabilityRegistry:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit - closes all providers."""
        await self.close()
