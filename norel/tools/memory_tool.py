"""Fact memory tools backed by the store."""

from __future__ import annotations

from typing import Any

from norel.db import Database
from norel.models import ToolContext
from norel.tools.base import Tool

_FACT_ALIASES = ("fact", "memory", "text")


class SaveMemoryTool(Tool):
    """Remember a fact about the user who triggered the turn."""

    name = "save_memory"
    description = (
        "Save a specific fact about the user. Decide how long to remember it: omit ttl_seconds "
        "for permanent things (name, personality); set ttl_seconds for temporary things "
        "(plans for tonight, current mood), e.g. 3600 for an hour or 86400 for a day."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "fact": {"type": "string", "description": "The clear, concise fact to remember."},
            "ttl_seconds": {
                "type": "number",
                "description": "How long to remember this in seconds. Omit for permanent storage.",
            },
        },
        "required": ["fact"],
    }
    aliases = {"fact": _FACT_ALIASES, "ttl_seconds": ("ttl_seconds", "ttl", "duration")}

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        if context.user_id is None:
            return "Error: no user to remember this for."
        fact = str(kwargs["fact"]).strip()
        ttl = kwargs.get("ttl_seconds")
        if ttl is not None and ttl <= 0:
            ttl = None
        self._db.add_fact(context.user_id, fact, ttl_seconds=ttl)
        return f"Memory saved: {fact} (TTL: {int(ttl) if ttl else 'inf'})"


class DeleteMemoryTool(Tool):
    """Forget a fact about the user who triggered the turn."""

    name = "delete_memory"
    description = (
        "Delete a specific fact about the user from memory. Use this if the information is "
        "outdated, incorrect, or the user asks to forget it."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "fact": {"type": "string", "description": "The exact fact to delete (as it was saved)."},
        },
        "required": ["fact"],
    }
    aliases = {"fact": _FACT_ALIASES}

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        if context.user_id is None:
            return "Error: no user to forget this for."
        fact = str(kwargs["fact"]).strip()
        deleted = self._db.delete_fact(context.user_id, fact)
        if not deleted:
            return f"No such memory: {fact}"
        return f"Memory deleted: {fact}"
