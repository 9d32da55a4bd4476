"""Jina Reader URL content extraction tool."""

from __future__ import annotations

from typing import Any

import httpx

from norel.models import ToolContext
from norel.tools.base import Tool

JINA_BASE_URL = "https://r.jina.ai"


class ExtractUrlContentTool(Tool):
    """Fetch a web page and return it as clean markdown."""

    name = "extract_url_content"
    description = (
        "Extract and summarize content from a webpage URL. Useful for getting "
        "information from articles, news, or any web page."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to extract content from."},
        },
        "required": ["url"],
    }
    aliases = {"url": ("url", "link")}

    def __init__(self, api_key: str = "", max_tokens: int = 5000) -> None:
        self._api_key = api_key
        self._max_tokens = max_tokens

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        url = str(kwargs["url"]).strip()
        if not url.startswith(("http://", "https://")):
            return f"Error: not a web URL: {url}"

        headers = {
            "Accept": "application/json",
            "X-Retain-Images": "none",
            "X-Remove-Selector": "nav, footer, .sidebar, .ads",
            "X-Token-Budget": str(self._max_tokens),
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{JINA_BASE_URL}/{url}",
                headers=headers,
                timeout=20.0,
            )
            if resp.status_code != 200:
                return f"Failed to read URL (HTTP {resp.status_code}): {url}"
            data = resp.json()

        content = data.get("data", {})
        title = content.get("title", "Untitled")
        body = content.get("content", "")

        return f"# {title}\nSource: {url}\n\n{body}"
