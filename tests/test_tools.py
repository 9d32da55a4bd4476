import json
import random
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from norel.db import Database
from norel.models import ToolContext, ToolInvocation
from norel.tools.image_tool import CAT_IMAGE_URL, GetFunnyImageTool
from norel.tools.memory_tool import DeleteMemoryTool, SaveMemoryTool
from norel.tools.registry import ToolRegistry
from norel.tools.reminder_tool import SetReminderTool
from norel.tools.social_tool import ChangeUserReputationTool, GetChatInfoTool, UpdateRelationshipTool

CTX = ToolContext(chat_id=100, user_id=7)


def _db(tmp_path) -> Database:
    db = Database(tmp_path / "norel.db")
    db.initialize()
    return db


def _mock_client(data: dict, status_code: int = 200) -> AsyncMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.get = AsyncMock(return_value=resp)
    return client


@pytest.mark.asyncio
async def test_save_and_delete_memory_through_registry(tmp_path):
    db = _db(tmp_path)
    registry = ToolRegistry(db)
    registry.register(SaveMemoryTool(db))
    registry.register(DeleteMemoryTool(db))

    saved = await registry.dispatch(ToolInvocation(name="save_memory", arguments={"memory": "likes jazz"}), CTX)
    assert saved.text == "Memory saved: likes jazz (TTL: inf)"
    assert db.get_facts(7) == ["likes jazz"]

    deleted = await registry.dispatch(ToolInvocation(name="delete_memory", arguments={"text": "likes jazz"}), CTX)
    assert deleted.text == "Memory deleted: likes jazz"
    assert db.get_facts(7) == []

    missing = await registry.dispatch(ToolInvocation(name="delete_memory", arguments={"fact": "nope"}), CTX)
    assert missing.text == "No such memory: nope"


@pytest.mark.asyncio
async def test_save_memory_with_ttl(tmp_path):
    db = _db(tmp_path)
    result = await SaveMemoryTool(db).run(CTX, fact="going to the gym tonight", ttl_seconds=3600.0)
    assert result == "Memory saved: going to the gym tonight (TTL: 3600)"


@pytest.mark.asyncio
async def test_save_memory_requires_a_user(tmp_path):
    db = _db(tmp_path)
    result = await SaveMemoryTool(db).run(ToolContext(chat_id=1), fact="x")
    assert result.startswith("Error:")


@pytest.mark.asyncio
async def test_reminder_below_minimum_is_rejected(tmp_path):
    db = _db(tmp_path)
    result = await SetReminderTool(db).run(CTX, seconds=60.0, text="drink water")

    assert result == "Error: Minimum reminder time is 3600 seconds. Got: 60"
    assert db.get_pending_reminders(datetime(2100, 1, 1, tzinfo=timezone.utc)) == []


@pytest.mark.asyncio
async def test_reminder_is_stored_via_aliases(tmp_path):
    db = _db(tmp_path)
    registry = ToolRegistry(db)
    registry.register(SetReminderTool(db))

    result = await registry.dispatch(
        ToolInvocation(name="set_reminder", arguments={"delay": 7200, "message": "How did the exam go?"}), CTX
    )

    assert result.text == "Reminder set for 2.0 hours."
    pending = db.get_pending_reminders(datetime(2100, 1, 1, tzinfo=timezone.utc))
    assert len(pending) == 1
    assert pending[0].chat_id == 100
    assert pending[0].user_id == 7
    assert pending[0].text == "How did the exam go?"


@pytest.mark.asyncio
async def test_change_reputation(tmp_path):
    db = _db(tmp_path)
    tool = ChangeUserReputationTool(db)

    result = await tool.run(CTX, user_id="42", amount=5.0, reason="helpful")

    assert "now 5" in result
    assert db.get_reputation(42) == 5


@pytest.mark.asyncio
async def test_change_reputation_rejects_non_numeric_id(tmp_path):
    db = _db(tmp_path)
    result = await ChangeUserReputationTool(db).run(CTX, user_id="@bob", amount=5.0)
    assert result == "Error: user_id must be a numeric string. Got: @bob"


@pytest.mark.asyncio
async def test_update_relationship(tmp_path):
    db = _db(tmp_path)
    tool = UpdateRelationshipTool(db)

    result = await tool.run(CTX, user_id_1="2", user_id_2="1", affection_delta=10.0, status="crush")

    assert "now 10" in result
    rels = db.get_relationships(100)
    assert len(rels) == 1
    assert (rels[0].user_id_1, rels[0].user_id_2, rels[0].status) == (1, 2, "crush")


@pytest.mark.asyncio
async def test_update_relationship_rejects_same_user(tmp_path):
    db = _db(tmp_path)
    result = await UpdateRelationshipTool(db).run(CTX, user_id_1="1", user_id_2="1", affection_delta=1.0)
    assert result.startswith("Error:")
    assert db.get_relationships(100) == []


@pytest.mark.asyncio
async def test_get_chat_info(tmp_path):
    db = _db(tmp_path)
    db.upsert_user(1, "ann", "Ann")
    db.add_message(100, "user", "hi", name="Ann", user_id=1)
    db.update_relationship(100, 1, 2, 4)

    data = json.loads(await GetChatInfoTool(db).run(CTX))

    assert data["users"] == [{"id": 1, "name": "Ann", "username": "ann", "reputation": 0}]
    assert data["relationships"][0]["affection"] == 4


@pytest.mark.asyncio
async def test_funny_image_cat():
    result = await GetFunnyImageTool().run(CTX, keyword="Cat")
    assert result.attachment.url == CAT_IMAGE_URL
    assert result.text == "[image attached: cat]"


@pytest.mark.asyncio
async def test_funny_image_dog_uses_api():
    client = _mock_client({"status": "success", "message": "https://images.dog.ceo/a.jpg"})
    with patch("norel.tools.image_tool.httpx.AsyncClient", return_value=client):
        result = await GetFunnyImageTool().run(CTX, keyword="dog")

    assert result.attachment.url == "https://images.dog.ceo/a.jpg"


@pytest.mark.asyncio
async def test_funny_image_dog_api_failure():
    client = _mock_client({}, status_code=500)
    with patch("norel.tools.image_tool.httpx.AsyncClient", return_value=client):
        result = await GetFunnyImageTool().run(CTX, keyword="dog")

    assert result == "Failed to fetch a dog picture (HTTP 500)."


@pytest.mark.asyncio
async def test_funny_image_default_is_random_picture():
    result = await GetFunnyImageTool(rng=random.Random(1)).run(CTX)
    assert result.attachment.url.startswith("https://picsum.photos/")
    assert result.attachment.caption == "funny"
