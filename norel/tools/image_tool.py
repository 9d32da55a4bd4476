"""Funny image lookup tool."""

from __future__ import annotations

import random
from typing import Any

import httpx

from norel.models import ToolContext, ToolResult
from norel.tools.base import Tool

CAT_IMAGE_URL = "https://cataas.com/cat"
DOG_API_URL = "https://dog.ceo/api/breeds/image/random"
PICSUM_URL = "https://picsum.photos/400/300?random={seed}"


class GetFunnyImageTool(Tool):
    """Pick a picture for a keyword and hand it back as an attachment."""

    name = "get_funny_image"
    description = (
        "Get a funny image, meme, gif, or picture. Use this when the user asks for memes, "
        "pictures, images, gifs, or wants something visual or funny."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "keyword": {
                "type": "string",
                "description": "Keyword for the image (e.g. 'cat', 'fail', 'morning', 'meme').",
            },
        },
        "required": [],
    }
    aliases = {"keyword": ("keyword", "query", "q")}

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult | str:
        keyword = str(kwargs.get("keyword") or "funny").strip().lower()

        if "cat" in keyword:
            return ToolResult.of_attachment(CAT_IMAGE_URL, caption=keyword)
        if "dog" in keyword:
            async with httpx.AsyncClient() as client:
                resp = await client.get(DOG_API_URL, timeout=10.0)
                if resp.status_code != 200:
                    return f"Failed to fetch a dog picture (HTTP {resp.status_code})."
                data = resp.json()
            url = data.get("message")
            if data.get("status") != "success" or not url:
                return "Failed to fetch a dog picture."
            return ToolResult.of_attachment(url, caption=keyword)

        return ToolResult.of_attachment(PICSUM_URL.format(seed=self._rng.randint(0, 999)), caption=keyword)
