"""DuckDuckGo web search tool."""

from __future__ import annotations

import asyncio
from typing import Any

from ddgs import DDGS

from norel.models import ToolContext
from norel.tools.base import Tool


class SearchWebTool(Tool):
    """Search the web using DuckDuckGo (no API key required)."""

    name = "search_web"
    description = "Search the internet for current events, facts, or specific information."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query."},
            "limit": {
                "type": "integer",
                "description": "Max results to return (default 5, max 10).",
            },
        },
        "required": ["query"],
    }
    aliases = {"query": ("query", "keyword", "q")}

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        query = str(kwargs["query"]).strip()
        limit = min(int(kwargs.get("limit") or 5), 10)
        if not query:
            return "Error: empty search query."

        results = await asyncio.to_thread(
            lambda: DDGS().text(query, max_results=limit, backend="duckduckgo")
        )

        if not results:
            return f"No results found for: {query}"

        entries = [
            f"**{r.get('title', '')}**\n{r.get('href', '')}\n{r.get('body', '')}"
            for r in results
        ]
        header = f"Search results for: {query}\n\n"
        return header + "\n\n---\n\n".join(entries)
