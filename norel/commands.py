"""Command dispatcher for /-prefixed messages.

Commands bypass the LLM and answer from the store directly.
An unrecognised /command returns None, letting it fall through to the LLM.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from norel.models import InboundMessage, Relationship
from norel.prompts import MOOD_PROMPTS

if TYPE_CHECKING:
    from norel.db import Database
    from norel.triggers import IdleWakeScheduler

LOGGER = logging.getLogger(__name__)

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

HELP_TEXT = (
    "🍩 *What I can do:*\n\n"
    "I'm Norel, your AI chat buddy.\n"
    "• Just talk to me.\n"
    "• Commands: /commands for the full list.\n"
    "• Settings: /settings.\n"
    "• Your stats: /me.\n"
    "• Relationships in the chat: /rel."
)

COMMANDS_TEXT = (
    "📜 *Commands:*\n\n"
    "👤 *User:*\n"
    "/me - your reputation and what I remember about you.\n"
    "/rel - relationships between people in this chat.\n\n"
    "⚙️ *Chat settings:*\n"
    "/settings - current chat settings.\n"
    "/set\\_temp <0.0-2.0> - craziness level.\n"
    "/set\\_mood <mood> - my mood (neutral, playful, flirty, angry, toxic, sad).\n"
    "/clear - forget this chat's history.\n\n"
    "🆘 *Help:*\n"
    "/help - short help.\n"
    "/start - restart and intro."
)

WELCOME_TEXT = (
    "👋 *Yo! I'm Norel.*\n\n"
    "Not just a bot, an AI buddy with character.\n\n"
    "🤖 *How to talk to me:*\n"
    "• In private chat just write.\n"
    "• In groups I answer when you mention me or reply to my message.\n"
    "• Sometimes I chime in on my own.\n\n"
    "✨ *What else:*\n"
    "• I remember facts about you.\n"
    "• I search the web.\n"
    "• I send memes and pictures.\n\n"
    "Forgot something? Type /help."
)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    A ``/cmd@botname`` suffix is dropped.

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    command = parts[0].split("@", 1)[0].lower()
    if not command:
        return None
    return command, parts[1:]


def reputation_status(reputation: int) -> str:
    if reputation >= 50:
        return "Best friend 💎"
    if reputation >= 20:
        return "Buddy 👋"
    if reputation >= 10:
        return "Acquaintance 👀"
    if reputation < 0:
        return "Enemy 💀"
    return "Stranger 👤"


def affection_heart(affection: int) -> str:
    if affection > 50:
        return "💖"
    if affection > 20:
        return "💕"
    if affection < -50:
        return "🖤"
    if affection < 0:
        return "💔"
    return "❤️"


class CommandDispatcher:
    """Routes /-prefixed messages to handlers, bypassing the LLM.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(self, db: Database, idle: IdleWakeScheduler | None = None) -> None:
        self._db = db
        self._idle = idle

    async def dispatch(self, message: InboundMessage) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(message.text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("[%s] Command dispatch: command=%r args=%r", message.chat_id, command, args)
        if command == "start":
            if self._idle is not None:
                self._idle.reset(message.chat_id)
            return WELCOME_TEXT
        if command == "help":
            return HELP_TEXT
        if command == "commands":
            return COMMANDS_TEXT
        if command == "settings":
            return self._handle_settings(message.chat_id)
        if command == "set_temp":
            return self._handle_set_temp(message.chat_id, args)
        if command == "set_mood":
            return self._handle_set_mood(message.chat_id, args)
        if command == "me":
            return self._handle_me(message)
        if command == "rel":
            return self._handle_rel(message.chat_id, args)
        if command == "clear":
            self._db.clear_history(message.chat_id)
            return "Conversation history cleared."
        return None

    def _handle_settings(self, chat_id: int) -> str:
        settings = self._db.get_chat_settings(chat_id)
        return (
            "⚙️ *Chat settings:*\n\n"
            f"🌡 *Temperature:* {settings.temperature}\n"
            f"🎭 *Mood:* {settings.mood}\n\n"
            "Change with /set\\_temp or /set\\_mood"
        )

    def _handle_set_temp(self, chat_id: int, args: list[str]) -> str:
        if not args:
            return f"Usage: /set_temp <{MIN_TEMPERATURE} - {MAX_TEMPERATURE}>"
        try:
            temperature = float(args[0].replace(",", "."))
        except ValueError:
            return f"Give me a number from {MIN_TEMPERATURE} to {MAX_TEMPERATURE}"
        if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
            return f"Give me a number from {MIN_TEMPERATURE} to {MAX_TEMPERATURE}"
        settings = self._db.get_chat_settings(chat_id)
        self._db.upsert_chat_settings(chat_id, temperature, settings.mood)
        return f"Temperature set to {temperature}."

    def _handle_set_mood(self, chat_id: int, args: list[str]) -> str:
        available = ", ".join(MOOD_PROMPTS)
        if not args:
            return f"Usage: /set_mood <mood>\nAvailable: {available}"
        mood = args[0].strip().lower()
        if mood not in MOOD_PROMPTS:
            return f"I don't know that mood. Available: {available}"
        settings = self._db.get_chat_settings(chat_id)
        self._db.upsert_chat_settings(chat_id, settings.temperature, mood)
        return f"Mood changed to: {mood}"

    def _handle_me(self, message: InboundMessage) -> str:
        reputation = self._db.get_reputation(message.sender_id)
        facts = self._db.get_facts(message.sender_id)
        text = (
            f"👤 *Profile: {message.display_name}*\n\n"
            f"🏆 *Reputation:* {reputation} ({reputation_status(reputation)})\n"
        )
        if facts:
            text += "\n🧠 *What I remember about you:*\n" + "\n".join(f"• {fact}" for fact in facts)
        else:
            text += "\n🧠 I don't remember anything about you yet."
        return text

    def _handle_rel(self, chat_id: int, args: list[str]) -> str:
        rels = self._db.get_relationships(chat_id)
        if not rels:
            return "💔 No relationships recorded in this chat yet. Talk more!"

        usernames = {a.lstrip("@").lower() for a in args if a.startswith("@")}
        if usernames:
            rels = [rel for rel in rels if self._involves(rel, usernames)]
            if not rels:
                return "🔍 Found nothing for these users."

        lines = []
        for rel in rels:
            name1 = self._name(rel.user_id_1)
            name2 = self._name(rel.user_id_2)
            status = f" ({rel.status})" if rel.status else ""
            lines.append(f"{name1} {affection_heart(rel.affection)} {name2}: {rel.affection}%{status}")
        return "💞 *Relationships in this chat:*\n\n" + "\n".join(lines)

    def _involves(self, rel: Relationship, usernames: set[str]) -> bool:
        for user_id in (rel.user_id_1, rel.user_id_2):
            user = self._db.get_user(user_id)
            if user and user.username and user.username.lower() in usernames:
                return True
        return False

    def _name(self, user_id: int) -> str:
        user = self._db.get_user(user_id)
        return user.first_name if user and user.first_name else f"ID:{user_id}"
