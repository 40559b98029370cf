# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Factory for creating capability providers from configuration.

Providers are referenced in runtime configuration files by import path
(``package.module:attribute``). The attribute may be a CapabilityProvider
subclass, which is instantiated with the entry's options, or a ready-made
provider instance.
"""

from __future__ import annotations

import importlib
import inspect
from typing import Any

from capflow.config.schema import RuntimeConfig
from capflow.exceptions import ConfigurationError
from capflow.providers.base import CapabilityProvider
from capflow.providers.registry import CapabilityRegistry


def create_provider(path: str, options: dict[str, Any] | None = None) -> CapabilityProvider:
    """Import and instantiate a capability provider.

    Args:
        path: Import path in the ``package.module:attribute`` form.
        options: Keyword arguments for the provider class constructor.

    Returns:
        The CapabilityProvider instance.

    Raises:
        ConfigurationError: If the path cannot be imported or does not name
            a CapabilityProvider.

    Example:
        >>> provider = create_provider("myproviders.search:SearchProvider", {"top_k": 5})
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            f"Invalid provider import path '{path}'",
            suggestion="Use the 'package.module:attribute' form",
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import provider module '{module_name}': {e}",
            suggestion="Check that the module is installed and on PYTHONPATH",
        ) from e

    try:
        target = getattr(module, attribute)
    except AttributeError:
        raise ConfigurationError(
            f"Module '{module_name}' has no attribute '{attribute}'",
            suggestion="Check the provider import path for typos",
        ) from None

    if inspect.isclass(target) and issubclass(target, CapabilityProvider):
        try:
            return target(**(options or {}))
        except TypeError as e:
            raise ConfigurationError(
                f"Cannot instantiate provider '{path}': {e}",
                suggestion="Check the 'options' given for this capability",
            ) from e

    if isinstance(target, CapabilityProvider):
        if options:
            raise ConfigurationError(
                f"Provider '{path}' is an instance; 'options' cannot be applied",
                suggestion="Remove 'options' or point to the provider class instead",
            )
        return target

    raise ConfigurationError(
        f"'{path}' is not a CapabilityProvider",
        suggestion="Point to a CapabilityProvider subclass or instance",
    )


def build_registry(config: RuntimeConfig) -> CapabilityRegistry:
    """Create a registry holding every capability of a runtime configuration.

    Capabilities without a ``provider`` path are registered for estimates
    only and are treated as unavailable at dispatch time.
    """
    registry = CapabilityRegistry()
    for capability in config.capabilities:
        provider = (
            create_provider(capability.provider, capability.options)
            if capability.provider
            else None
        )
        registry.register(capability.to_descriptor(), provider)
    return registry
