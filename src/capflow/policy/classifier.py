# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Workflow template classification.

This module defines the pluggable TemplateClassifier interface, a
Claude-backed implementation using the Anthropic SDK, and the deterministic
heuristic that template selection falls back on whenever a classifier is
missing, fails, or answers with an unknown key.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from capflow.config.schema import ClassifierSettings
from capflow.exceptions import ProviderError
from capflow.policy.models import OrchestrationRequest
from capflow.policy.prompt import CLASSIFIER_PROMPT, TemplateRenderer
from capflow.policy.templates import DEEP_TEMPLATE, DEFAULT_TEMPLATE, RAPID_TEMPLATE

logger = logging.getLogger(__name__)

# Requests with a duration budget below this many seconds get the rapid template
RAPID_DURATION_THRESHOLD = 300.0


def heuristic_template_key(request: OrchestrationRequest) -> str:
    """Choose a template key from constraints and preferences alone.

    A tight duration budget selects the rapid template; a quality
    preference or an "excellent" quality requirement selects the deep
    template; anything else gets the default template.
    """
    max_duration = request.constraints.max_duration
    if max_duration is not None and max_duration < RAPID_DURATION_THRESHOLD:
        return RAPID_TEMPLATE
    if request.preferences.prioritize_quality or request.constraints.required_quality == "excellent":
        return DEEP_TEMPLATE
    return DEFAULT_TEMPLATE


class TemplateClassifier(ABC):
    """Maps an orchestration request to a template key.

    Implementations may consult external services. Returning None, raising
    ProviderError, or returning a key outside ``templates`` all make the
    caller fall back to :func:`heuristic_template_key`.
    """

    @abstractmethod
    async def classify(
        self,
        request: OrchestrationRequest,
        templates: dict[str, str],
    ) -> str | None:
        """Return the best matching template key.

        Args:
            request: The orchestration request.
            templates: Catalog keys mapped to their descriptions.

        Returns:
            A template key, or None when no recommendation is available.

        Raises:
            ProviderError: If the backing service fails.
        """
        ...

    async def close(self) -> None:
        """Release classifier resources."""
        return None


class ClaudeTemplateClassifier(TemplateClassifier):
    """Template classifier backed by Anthropic's Messages API.

    Example:
        >>> classifier = ClaudeTemplateClassifier(model="claude-3-5-haiku-latest")
        >>> await classifier.classify(request, {"rapid-market-validation": "..."})
        'rapid-market-validation'
    """

    def __init__(
        self,
        model: str = "claude-3-5-haiku-latest",
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_tokens: int = 64,
        client: Any | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            model: Claude model identifier.
            api_key: API key. Defaults to the ANTHROPIC_API_KEY environment variable.
            timeout: Request timeout in seconds.
            max_tokens: Maximum output tokens of the reply.
            client: Pre-built AsyncAnthropic-compatible client.

        Raises:
            ProviderError: If the Anthropic client cannot be created.
        """
        self._model = model
        self._max_tokens = max_tokens
        self._renderer = TemplateRenderer()
        if client is not None:
            self._client = client
        else:
            if not (api_key or os.environ.get("ANTHROPIC_API_KEY")):
                raise ProviderError(
                    "No Anthropic API key configured for the template classifier",
                    suggestion="Set ANTHROPIC_API_KEY or set runtime.classifier.provider to 'none'",
                    provider_type="claude",
                )
            try:
                self._client = AsyncAnthropic(api_key=api_key, timeout=timeout)
            except anthropic.AnthropicError as e:
                raise ProviderError(
                    f"Failed to initialize Anthropic client: {e}",
                    suggestion="Set ANTHROPIC_API_KEY or disable the classifier",
                    provider_type="claude",
                ) from e

    @classmethod
    def from_settings(cls, settings: ClassifierSettings) -> ClaudeTemplateClassifier:
        """Create a classifier from runtime classifier settings."""
        return cls(
            model=settings.model,
            timeout=settings.timeout,
            max_tokens=settings.max_tokens,
        )

    def build_prompt(self, request: OrchestrationRequest, templates: dict[str, str]) -> str:
        """Render the classification prompt for a request."""
        return self._renderer.render(
            CLASSIFIER_PROMPT,
            {
                "objective": request.objective,
                "constraints": request.constraints.model_dump(exclude_none=True),
                "preferences": request.preferences.model_dump(),
                "templates": templates,
            },
        )

    async def classify(
        self,
        request: OrchestrationRequest,
        templates: dict[str, str],
    ) -> str | None:
        prompt = self.build_prompt(request, templates)

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.0,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"Claude template classification failed: {e.message}",
                status_code=e.status_code,
                provider_type="claude",
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(
                f"Claude connection error: {e}",
                provider_type="claude",
                is_retryable=True,
            ) from e
        except anthropic.AnthropicError as e:
            raise ProviderError(
                f"Claude template classification failed: {e}",
                provider_type="claude",
            ) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            return None

        key = text.splitlines()[0].strip().strip("`'\".").strip()
        logger.debug("Claude recommended template '%s'", key)
        return key or None

    async def close(self) -> None:
        await self._client.close()


def create_classifier(settings: ClassifierSettings) -> TemplateClassifier | None:
    """Create the classifier configured in runtime settings, or None."""
    if settings.provider == "claude":
        return ClaudeTemplateClassifier.from_settings(settings)
    return None
