"""Integration tests for conversation and message routes.

Tests cover:
- Creating conversations for the viewer's own agents only
- Owner-only reads (other viewers get 404, never 403)
- Message listing in seq order with a limit
- One-shot send: success, provider error turn, validation, quota
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from doggo.services.llm.errors import LLMError, LLMErrorClass
from tests.factories import (
    add_exchange,
    create_agent,
    create_attachment,
    create_conversation,
    create_usage_event,
)
from tests.helpers import viewer_headers


class TestCreateConversation:
    def test_create(self, client, agent):
        response = client.post(
            "/conversations",
            json={"agent_id": str(agent.id), "title": "Puppy plans"},
            headers=viewer_headers(agent.user_id),
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["agent_id"] == str(agent.id)
        assert data["title"] == "Puppy plans"

    def test_title_optional(self, client, agent):
        response = client.post(
            "/conversations", json={"agent_id": str(agent.id)}, headers=viewer_headers(agent.user_id)
        )

        assert response.json()["data"]["title"] is None

    def test_someone_elses_agent(self, client, db_session, test_user_id):
        stranger_agent = create_agent(db_session, uuid4())

        response = client.post(
            "/conversations",
            json={"agent_id": str(stranger_agent.id)},
            headers=viewer_headers(test_user_id),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_AGENT_NOT_FOUND"


class TestReadConversation:
    def test_owner_reads(self, client, conversation):
        response = client.get(
            f"/conversations/{conversation.id}", headers=viewer_headers(conversation.user_id)
        )

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(conversation.id)

    def test_other_viewer_gets_404(self, client, conversation):
        response = client.get(f"/conversations/{conversation.id}", headers=viewer_headers(uuid4()))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_CONVERSATION_NOT_FOUND"

    def test_messages_in_seq_order(self, client, db_session, conversation):
        add_exchange(db_session, conversation.id, 6)

        response = client.get(
            f"/conversations/{conversation.id}/messages?limit=4",
            headers=viewer_headers(conversation.user_id),
        )

        messages = response.json()["data"]
        assert [m["seq"] for m in messages] == [3, 4, 5, 6]
        assert messages[1]["role"] == "assistant"
        assert messages[1]["model_used"] == "claude-3-haiku-20240307"

    def test_messages_limit_bounds(self, client, conversation):
        response = client.get(
            f"/conversations/{conversation.id}/messages?limit=0",
            headers=viewer_headers(conversation.user_id),
        )

        assert response.status_code == 400


class TestSendMessage:
    def _send(self, client, conversation, body, user_id=None):
        return client.post(
            f"/conversations/{conversation.id}/messages",
            json=body,
            headers=viewer_headers(user_id or conversation.user_id),
        )

    def test_success(self, client, conversation, title_dispatcher):
        response = self._send(client, conversation, {"content": "Hello"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["conversation_id"] == str(conversation.id)
        assert data["user_message"]["seq"] == 1
        assert data["user_message"]["content"] == "Hello"
        assert data["assistant_message"]["seq"] == 2
        assert data["assistant_message"]["content"] == "Hello from Claude"
        assert data["assistant_message"]["status"] == "complete"
        assert data["skipped_attachments"] == []
        assert len(title_dispatcher.calls) == 1

    def test_provider_error_is_not_an_http_error(self, client, conversation, anthropic_adapter):
        anthropic_adapter.error = LLMError(LLMErrorClass.CONTEXT_TOO_LARGE, "too long", "anthropic")

        response = self._send(client, conversation, {"content": "Hello"})

        assert response.status_code == 200
        assistant = response.json()["data"]["assistant_message"]
        assert assistant["status"] == "error"
        assert assistant["error_code"] == "E_LLM_CONTEXT_TOO_LARGE"

    def test_attachment_only_send(self, client, db_session, conversation, anthropic_adapter):
        pdf = create_attachment(db_session, conversation, extracted_text="Report body")

        response = self._send(
            client, conversation, {"content": "", "attachment_ids": [str(pdf.id)]}
        )

        assert response.status_code == 200
        assert response.json()["data"]["user_message"]["content"] == "Analyze the provided file(s)"
        assert "Report body" in anthropic_adapter.requests[0].turns[-1].text_content

    def test_skipped_attachments_reported(self, client, conversation):
        missing = uuid4()

        response = self._send(
            client, conversation, {"content": "Hi", "attachment_ids": [str(missing)]}
        )

        assert response.json()["data"]["skipped_attachments"] == [
            {"id": str(missing), "reason": "not_found"}
        ]

    @pytest.mark.parametrize(
        "body,code",
        [
            ({"content": "   "}, "E_MESSAGE_EMPTY"),
            ({"content": "x" * 20001}, "E_INVALID_REQUEST"),
            (
                {"content": "hi", "attachment_ids": [str(uuid4()) for _ in range(11)]},
                "E_TOO_MANY_ATTACHMENTS",
            ),
            ({"attachment_ids": ["nope"]}, "E_INVALID_REQUEST"),
        ],
    )
    def test_validation(self, client, conversation, body, code):
        response = self._send(client, conversation, body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    def test_other_viewer(self, client, conversation):
        response = self._send(client, conversation, {"content": "Hi"}, user_id=uuid4())

        assert response.status_code == 404

    def test_quota_exceeded(self, client, db_session, conversation, anthropic_adapter):
        create_usage_event(db_session, conversation.user_id, cost_usd=Decimal("6"))

        response = self._send(client, conversation, {"content": "Hi"})

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "E_QUOTA_EXCEEDED"
        assert anthropic_adapter.requests == []

    def test_agent_model_routes_provider(self, client, db_session, test_user_id, openai_adapter):
        gpt_agent = create_agent(db_session, test_user_id, model="gpt-4o-mini")
        gpt_conversation = create_conversation(db_session, gpt_agent)

        response = self._send(client, gpt_conversation, {"content": "Hi"})

        assert response.json()["data"]["assistant_message"]["content"] == "Hello from GPT"
        assert openai_adapter.requests[0].model_name == "gpt-4o-mini"
