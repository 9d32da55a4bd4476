"""Reminder scheduling tool."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from norel.db import Database
from norel.models import ToolContext
from norel.tools.base import Tool


class SetReminderTool(Tool):
    """Store a reminder that the poller delivers later."""

    name = "set_reminder"
    description = (
        "Set a reminder for the user. Use VERY sparingly, only for truly important things. "
        "'text' must be the natural, casual message you will send later "
        "(e.g. 'Yo, how did the project go?'), not a description."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "seconds": {"type": "number", "description": "Delay in seconds (minimum 3600 = 1 hour)."},
            "text": {"type": "string", "description": "The casual message to send later (1-2 sentences max)."},
        },
        "required": ["seconds", "text"],
    }
    aliases = {
        "seconds": ("seconds", "time", "delay"),
        "text": ("text", "message", "reminder"),
    }

    def __init__(self, db: Database, min_delay_seconds: int = 3600) -> None:
        self._db = db
        self._min_delay_seconds = min_delay_seconds

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        seconds = float(kwargs["seconds"])
        text = str(kwargs["text"]).strip()
        if seconds < self._min_delay_seconds:
            return (
                f"Error: Minimum reminder time is {self._min_delay_seconds} seconds. "
                f"Got: {seconds:g}"
            )
        if not text:
            return "Error: reminder text is empty."

        due_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        self._db.add_reminder(context.chat_id, context.user_id, text, due_at)
        return f"Reminder set for {seconds / 3600:.1f} hours."
