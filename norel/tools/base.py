"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from norel.models import ToolContext, ToolResult


class Tool(ABC):
    """Base class for all assistant tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]
    # Accepted spellings per schema property, checked in order.
    aliases: ClassVar[dict[str, tuple[str, ...]]] = {}

    @abstractmethod
    async def run(self, context: ToolContext, **kwargs: Any) -> str | ToolResult:
        """Execute tool with validated arguments."""
