"""Tests for the /command dispatch system."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from norel.commands import (
    COMMANDS_TEXT,
    HELP_TEXT,
    WELCOME_TEXT,
    CommandDispatcher,
    affection_heart,
    parse_command,
    reputation_status,
)
from norel.db import Database
from norel.models import InboundMessage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _msg(text: str, sender_id: int = 10, first_name: str | None = "Ann") -> InboundMessage:
    return InboundMessage(
        chat_id=100,
        sender_id=sender_id,
        text=text,
        timestamp=datetime.now(timezone.utc),
        sender_first_name=first_name,
        sender_username="ann",
    )


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "norel.db")
    database.initialize()
    return database


# ===========================================================================
# parse_command
# ===========================================================================


class TestParseCommand:
    def test_regular_text_returns_none(self):
        assert parse_command("hello world") is None

    def test_empty_string_returns_none(self):
        assert parse_command("") is None

    def test_slash_alone_returns_none(self):
        assert parse_command("/") is None

    def test_command_with_no_args(self):
        assert parse_command("/help") == ("help", [])

    def test_command_with_args(self):
        assert parse_command("/set_temp 1.2") == ("set_temp", ["1.2"])

    def test_bot_suffix_is_dropped(self):
        assert parse_command("/Settings@NorelBot") == ("settings", [])

    def test_args_case_preserved(self):
        assert parse_command("/rel @Bob") == ("rel", ["@Bob"])


# ===========================================================================
# helpers
# ===========================================================================


@pytest.mark.parametrize(
    ("reputation", "status"),
    [(60, "Best friend 💎"), (20, "Buddy 👋"), (10, "Acquaintance 👀"), (0, "Stranger 👤"), (-1, "Enemy 💀")],
)
def test_reputation_status(reputation, status):
    assert reputation_status(reputation) == status


@pytest.mark.parametrize(
    ("affection", "heart"),
    [(51, "💖"), (21, "💕"), (0, "❤️"), (-10, "💔"), (-51, "🖤")],
)
def test_affection_heart(affection, heart):
    assert affection_heart(affection) == heart


# ===========================================================================
# CommandDispatcher
# ===========================================================================


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_command_falls_through(self, db):
        assert await CommandDispatcher(db).dispatch(_msg("/dance")) is None

    @pytest.mark.asyncio
    async def test_plain_text_falls_through(self, db):
        assert await CommandDispatcher(db).dispatch(_msg("hello")) is None

    @pytest.mark.asyncio
    async def test_static_texts(self, db):
        dispatcher = CommandDispatcher(db)
        assert await dispatcher.dispatch(_msg("/help")) == HELP_TEXT
        assert await dispatcher.dispatch(_msg("/commands")) == COMMANDS_TEXT

    @pytest.mark.asyncio
    async def test_start_resets_idle_timer(self, db):
        idle = MagicMock()
        reply = await CommandDispatcher(db, idle=idle).dispatch(_msg("/start"))

        assert reply == WELCOME_TEXT
        idle.reset.assert_called_once_with(100)

    @pytest.mark.asyncio
    async def test_settings_shows_defaults(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/settings"))
        assert "0.7" in reply
        assert "neutral" in reply

    @pytest.mark.asyncio
    async def test_set_temp_accepts_comma_decimal(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/set_temp 1,5"))

        assert reply == "Temperature set to 1.5."
        assert db.get_chat_settings(100).temperature == pytest.approx(1.5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arg", ["2.5", "-0.1", "hot"])
    async def test_set_temp_rejects_out_of_range(self, db, arg):
        reply = await CommandDispatcher(db).dispatch(_msg(f"/set_temp {arg}"))

        assert reply.startswith("Give me a number")
        assert db.get_chat_settings(100).temperature == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_set_temp_without_args_shows_usage(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/set_temp"))
        assert reply.startswith("Usage:")

    @pytest.mark.asyncio
    async def test_set_mood_keeps_temperature(self, db):
        db.upsert_chat_settings(100, 1.1, "neutral")

        reply = await CommandDispatcher(db).dispatch(_msg("/set_mood Playful"))

        assert reply == "Mood changed to: playful"
        settings = db.get_chat_settings(100)
        assert settings.mood == "playful"
        assert settings.temperature == pytest.approx(1.1)

    @pytest.mark.asyncio
    async def test_set_mood_rejects_unknown(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/set_mood sleepy"))

        assert reply.startswith("I don't know that mood")
        assert db.get_chat_settings(100).mood == "neutral"

    @pytest.mark.asyncio
    async def test_me_shows_reputation_and_facts(self, db):
        db.change_reputation(10, 25)
        db.add_fact(10, "plays chess")

        reply = await CommandDispatcher(db).dispatch(_msg("/me"))

        assert "Profile: Ann" in reply
        assert "25 (Buddy 👋)" in reply
        assert "• plays chess" in reply

    @pytest.mark.asyncio
    async def test_me_without_facts(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/me"))
        assert "don't remember anything" in reply

    @pytest.mark.asyncio
    async def test_rel_lists_relationships(self, db):
        db.upsert_user(1, "bob", "Bob")
        db.upsert_user(2, "eve", "Eve")
        db.update_relationship(100, 1, 2, 30, "friends")

        reply = await CommandDispatcher(db).dispatch(_msg("/rel"))

        assert "Bob 💕 Eve: 30% (friends)" in reply

    @pytest.mark.asyncio
    async def test_rel_filters_by_username(self, db):
        db.upsert_user(1, "bob", "Bob")
        db.upsert_user(2, "eve", "Eve")
        db.upsert_user(3, "max", "Max")
        db.update_relationship(100, 1, 2, 5)
        db.update_relationship(100, 2, 3, -5)

        reply = await CommandDispatcher(db).dispatch(_msg("/rel @MAX"))

        assert "Max" in reply
        assert "Bob" not in reply

    @pytest.mark.asyncio
    async def test_rel_filter_without_matches(self, db):
        db.update_relationship(100, 1, 2, 5)
        reply = await CommandDispatcher(db).dispatch(_msg("/rel @ghost"))
        assert reply.startswith("🔍")

    @pytest.mark.asyncio
    async def test_rel_empty_chat(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/rel"))
        assert reply.startswith("💔")

    @pytest.mark.asyncio
    async def test_clear_wipes_history(self, db):
        db.add_message(100, "user", "hello")
        db.save_summary(100, "summary")

        reply = await CommandDispatcher(db).dispatch(_msg("/clear"))

        assert reply == "Conversation history cleared."
        assert db.get_history(100, limit=10) == []
        assert db.get_summary(100) is None
