import logging
from unittest.mock import AsyncMock

import pytest

from norel.compactor import ContextCompactor, serialized_size
from norel.db import Database
from norel.llm.base import ProviderError
from norel.models import ConversationMessage, LLMResponse, ToolInvocation


def _db(tmp_path) -> Database:
    db = Database(tmp_path / "norel.db")
    db.initialize()
    return db


def _conversation(count: int, size: int = 100) -> list[ConversationMessage]:
    messages = [ConversationMessage.system("persona")]
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        messages.append(ConversationMessage(role=role, content=f"{i}:" + "x" * size))
    return messages


@pytest.mark.asyncio
async def test_under_budget_is_untouched(tmp_path):
    llm = AsyncMock()
    compactor = ContextCompactor(llm, _db(tmp_path), hard_char_ceiling=10_000, soft_summarize_threshold=20_000)
    messages = _conversation(5)

    result = await compactor.compact(1, messages)

    assert result == messages
    llm.generate.assert_not_called()


@pytest.mark.asyncio
async def test_truncation_keeps_system_and_newest(tmp_path):
    llm = AsyncMock()
    compactor = ContextCompactor(llm, _db(tmp_path), hard_char_ceiling=1_000, soft_summarize_threshold=100_000)
    messages = _conversation(30)

    result = await compactor.compact(1, messages)

    assert serialized_size(result) <= 1_000
    assert result[0].role == "system"
    assert result[-1] is messages[-1]
    assert len(result) < len(messages)
    kept = result[1:]
    assert kept == messages[len(messages) - len(kept) :]
    llm.generate.assert_not_called()


@pytest.mark.asyncio
async def test_truncation_drops_orphaned_tool_results(tmp_path):
    call = ToolInvocation(name="search_web", arguments={"query": "q"}, id="call_1")
    messages = [
        ConversationMessage.system("persona"),
        ConversationMessage(role="user", content="u" * 400),
        ConversationMessage(role="assistant", content=None, tool_calls=[call]),
        ConversationMessage(role="tool", content="r" * 50, tool_call_id="call_1"),
        ConversationMessage(role="user", content="latest"),
    ]
    # Room for the tool result and the newest message but not the assistant call before them.
    ceiling = serialized_size([messages[0], messages[3], messages[4]]) + 5
    compactor = ContextCompactor(AsyncMock(), _db(tmp_path), hard_char_ceiling=ceiling, soft_summarize_threshold=100_000)

    result = await compactor.compact(1, messages)

    assert [m.role for m in result] == ["system", "user"]
    assert result[-1].content == "latest"


@pytest.mark.asyncio
async def test_summarization_above_soft_threshold(tmp_path):
    db = _db(tmp_path)
    llm = AsyncMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="  they talked about cats  "))
    compactor = ContextCompactor(llm, db, hard_char_ceiling=100_000, soft_summarize_threshold=2_000, keep_recent=4)
    messages = _conversation(40)

    result = await compactor.compact(1, messages)

    assert db.get_summary(1) == "they talked about cats"
    assert len(result) == 5
    assert result[0].role == "system"
    assert result[1:] == messages[-4:]

    sent = llm.generate.call_args.args[0]
    assert sent[-1]["role"] == "system"
    assert len(sent) == len(messages)
    assert llm.generate.call_args.kwargs["temperature"] == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_failed_summarization_falls_back_to_truncation(tmp_path):
    db = _db(tmp_path)
    llm = AsyncMock()
    llm.generate = AsyncMock(side_effect=ProviderError("down"))
    compactor = ContextCompactor(llm, db, hard_char_ceiling=1_500, soft_summarize_threshold=2_000)
    messages = _conversation(40)

    result = await compactor.compact(1, messages)

    assert db.get_summary(1) is None
    assert serialized_size(result) <= 1_500
    assert result[0].role == "system"


@pytest.mark.asyncio
async def test_empty_summary_is_not_saved(tmp_path):
    db = _db(tmp_path)
    llm = AsyncMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="   "))
    compactor = ContextCompactor(llm, db)

    assert await compactor.summarize(1, _conversation(3)) is False
    assert db.get_summary(1) is None


@pytest.mark.asyncio
async def test_summarization_drops_tool_result_split_from_its_call(tmp_path):
    db = _db(tmp_path)
    llm = AsyncMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="earlier chatter"))
    call = ToolInvocation(name="search_web", arguments={"query": "q"}, id="call_1")
    messages = [
        *_conversation(30),
        ConversationMessage(role="assistant", content=None, tool_calls=[call]),
        ConversationMessage(role="tool", content="result", tool_call_id="call_1"),
        ConversationMessage(role="user", content="latest"),
    ]
    compactor = ContextCompactor(llm, db, hard_char_ceiling=100_000, soft_summarize_threshold=2_000, keep_recent=2)

    result = await compactor.compact(1, messages)

    assert [m.role for m in result] == ["system", "user"]
    assert result[-1].content == "latest"


@pytest.mark.asyncio
async def test_oversized_system_prompt_is_kept_with_warning(tmp_path, caplog):
    messages = [ConversationMessage.system("p" * 500), ConversationMessage(role="user", content="hi")]
    compactor = ContextCompactor(AsyncMock(), _db(tmp_path), hard_char_ceiling=100, soft_summarize_threshold=100_000)

    with caplog.at_level(logging.WARNING, logger="norel.compactor"):
        result = await compactor.compact(1, messages)

    assert result == messages[:1]
    assert any("exceeds the context ceiling" in r.getMessage() for r in caplog.records)
