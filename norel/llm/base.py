"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from norel.models import LLMResponse


class ProviderError(RuntimeError):
    """Raised when the provider transport fails or returns an unusable reply."""


class LLMProvider(ABC):
    """Abstract model provider used by the orchestrator and the compactor."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Generate a model response.

        Raises:
            ProviderError: on any transport, HTTP or payload-shape failure.
        """
