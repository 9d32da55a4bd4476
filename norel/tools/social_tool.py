"""Reputation and relationship bookkeeping tools."""

from __future__ import annotations

import json
from typing import Any

from norel.db import Database
from norel.models import ToolContext
from norel.tools.base import Tool


def _parse_user_id(raw: Any) -> int | None:
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


class ChangeUserReputationTool(Tool):
    name = "change_user_reputation"
    description = "Change a user's reputation (loyalty/friendship with the bot)."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "user_id": {"type": "string", "description": "The ID of the user."},
            "amount": {"type": "number", "description": "Amount to change (e.g. +5, -10)."},
            "reason": {"type": "string", "description": "Reason for the change."},
        },
        "required": ["user_id", "amount"],
    }
    aliases = {
        "user_id": ("user_id", "userId", "id"),
        "amount": ("amount", "delta", "change"),
        "reason": ("reason", "why"),
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        target_id = _parse_user_id(kwargs["user_id"])
        if target_id is None:
            return f"Error: user_id must be a numeric string. Got: {kwargs['user_id']}"
        amount = int(kwargs["amount"])
        reputation = self._db.change_reputation(target_id, amount)
        reason = kwargs.get("reason") or "no reason given"
        return f"Reputation of user {target_id} changed by {amount} (now {reputation}). Reason: {reason}"


class UpdateRelationshipTool(Tool):
    name = "update_relationship"
    description = (
        "Update the relationship/affection between two users in the chat. "
        "Observe their interaction and update it."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "user_id_1": {"type": "string", "description": "First user's ID."},
            "user_id_2": {"type": "string", "description": "Second user's ID."},
            "affection_delta": {"type": "number", "description": "Change in affection (-20 to 20)."},
            "status": {
                "type": "string",
                "description": "New status description (optional, e.g. 'crush', 'rivals').",
            },
        },
        "required": ["user_id_1", "user_id_2", "affection_delta"],
    }
    aliases = {"affection_delta": ("affection_delta", "delta", "affection")}

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        first = _parse_user_id(kwargs["user_id_1"])
        second = _parse_user_id(kwargs["user_id_2"])
        if first is None or second is None:
            return "Error: user_id_1 and user_id_2 must be numeric strings."
        if first == second:
            return "Error: a relationship needs two different users."
        delta = int(kwargs["affection_delta"])
        rel = self._db.update_relationship(context.chat_id, first, second, delta, kwargs.get("status"))
        return f"Relationship between {first} and {second} updated (delta: {delta}, now {rel.affection})."


class GetChatInfoTool(Tool):
    name = "get_chat_info"
    description = "Get information about all users in the chat and their relationships."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {}}

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        users = self._db.get_users_in_chat(context.chat_id)
        rels = self._db.get_relationships(context.chat_id)
        return json.dumps(
            {
                "users": [
                    {"id": u.id, "name": u.first_name, "username": u.username, "reputation": u.reputation}
                    for u in users
                ],
                "relationships": [
                    {"user1": r.user_id_1, "user2": r.user_id_2, "affection": r.affection, "status": r.status}
                    for r in rels
                ],
            },
            ensure_ascii=False,
        )
