"""Tests for conversation title generation and the title task body."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from doggo.db.models import Conversation, UsageEvent
from doggo.services.llm.errors import LLMError, LLMErrorClass
from doggo.services.title import (
    TITLE_MESSAGE_COUNT,
    build_title_request,
    clean_title,
    enqueue_title_generation,
)
from doggo.tasks.generate_title import generate_title_for_conversation
from tests.factories import add_exchange, create_conversation


class TestCleanTitle:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ('"Planning a trip to Lisbon."', "Planning a trip to Lisbon"),
            ("  Puppy   training tips!!  ", "Puppy training tips"),
            ("“Curly quotes”", "Curly quotes"),
            ("Is this a question?", "Is this a question"),
        ],
    )
    def test_cleaned(self, raw, expected):
        assert clean_title(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", '""', "..."])
    def test_nothing_left(self, raw):
        assert clean_title(raw) is None

    def test_long_title_truncated(self):
        title = clean_title("word " * 30)

        assert len(title) == 60
        assert title.endswith("...")


class TestTitleRequest:
    def test_uses_first_exchanges_only(self, db_session, conversation):
        messages = add_exchange(db_session, conversation.id, 6)

        request = build_title_request(messages)

        prompt = request.turns[0].text_content
        assert "User: message 1" in prompt
        assert f"Assistant: message {TITLE_MESSAGE_COUNT}" in prompt
        assert "message 5" not in prompt


class TestGenerateTitleTask:
    @pytest.mark.asyncio
    async def test_titles_conversation(self, db_session, conversation, llm_router, anthropic_adapter):
        add_exchange(db_session, conversation.id, 2)
        anthropic_adapter.text = '"Walking the dog."'

        result = await generate_title_for_conversation(db_session, conversation.id, llm_router)

        assert result == {"status": "titled", "title_chars": len("Walking the dog")}
        db_session.expire_all()
        assert db_session.get(Conversation, conversation.id).title == "Walking the dog"

        request = anthropic_adapter.requests[0]
        assert request.model_name == "claude-3-haiku-20240307"
        assert request.temperature == 0.7
        assert request.max_tokens == 100

        events = list(db_session.scalars(select(UsageEvent)).all())
        assert [e.event_type for e in events] == ["title"]

    @pytest.mark.asyncio
    async def test_already_titled(self, db_session, agent, llm_router, anthropic_adapter):
        titled = create_conversation(db_session, agent, title="Existing")
        add_exchange(db_session, titled.id, 2)

        result = await generate_title_for_conversation(db_session, titled.id, llm_router)

        assert result == {"status": "skipped", "reason": "already_titled"}
        assert anthropic_adapter.requests == []

    @pytest.mark.asyncio
    async def test_missing_conversation(self, db_session, llm_router):
        result = await generate_title_for_conversation(db_session, uuid4(), llm_router)

        assert result == {"status": "skipped", "reason": "conversation_not_found"}

    @pytest.mark.asyncio
    async def test_no_messages(self, db_session, conversation, llm_router):
        result = await generate_title_for_conversation(db_session, conversation.id, llm_router)

        assert result == {"status": "skipped", "reason": "no_messages"}

    @pytest.mark.asyncio
    async def test_completion_failure(self, db_session, conversation, llm_router, anthropic_adapter):
        add_exchange(db_session, conversation.id, 2)
        anthropic_adapter.error = LLMError(LLMErrorClass.PROVIDER_DOWN, "down", "anthropic")

        result = await generate_title_for_conversation(db_session, conversation.id, llm_router)

        assert result == {"status": "skipped", "reason": "completion_failed"}
        db_session.expire_all()
        assert db_session.get(Conversation, conversation.id).title is None
        assert list(db_session.scalars(select(UsageEvent)).all()) == []

    @pytest.mark.asyncio
    async def test_empty_title(self, db_session, conversation, llm_router, anthropic_adapter):
        add_exchange(db_session, conversation.id, 2)
        anthropic_adapter.text = '"."'

        result = await generate_title_for_conversation(db_session, conversation.id, llm_router)

        assert result == {"status": "skipped", "reason": "empty_title"}


def test_enqueue_skipped_in_test_environment():
    assert enqueue_title_generation(uuid4()) is False
