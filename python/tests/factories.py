"""Test data factories.

Centralizes helper functions that create database rows for tests.
Each factory knows the full schema requirements for its table,
so individual tests don't need to track NOT NULL and CHECK constraints.

When a column is added or a constraint changes, update the
relevant factory here, not in N test files.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from doggo.db.models import (
    Agent,
    Attachment,
    AttachmentKind,
    Conversation,
    Message,
    MessageRole,
    UsageEvent,
    UsageEventType,
)
from doggo.services.conversations import append_message

# =============================================================================
# Agents and conversations
# =============================================================================


def create_agent(
    session: Session,
    user_id: UUID,
    *,
    model: str = "haiku",
    system_prompt: str = "You are a helpful dog.",
    temperature: float = 0.5,
    max_tokens: int = 1024,
) -> Agent:
    agent = Agent(
        user_id=user_id,
        name="Test Agent",
        system_prompt=system_prompt,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    session.add(agent)
    session.commit()
    return agent


def create_conversation(session: Session, agent: Agent, *, title: str | None = None) -> Conversation:
    conversation = Conversation(user_id=agent.user_id, agent_id=agent.id, title=title)
    session.add(conversation)
    session.commit()
    return conversation


# =============================================================================
# Messages
# =============================================================================


def add_message(session: Session, conversation_id: UUID, role: str, content: str) -> Message:
    """Append a complete message at the next seq.

    Assistant rows get the model fields the schema expects of them.
    """
    if role == MessageRole.assistant.value:
        message = append_message(
            session,
            conversation_id,
            MessageRole.assistant,
            content,
            model_used="claude-3-haiku-20240307",
            tokens_used=10,
            latency_ms=5,
        )
    else:
        message = append_message(session, conversation_id, MessageRole.user, content)
    session.commit()
    return message


def add_exchange(session: Session, conversation_id: UUID, count: int) -> list[Message]:
    """``count`` alternating user/assistant messages numbered from 1."""
    messages = []
    for i in range(1, count + 1):
        role = "user" if i % 2 else "assistant"
        messages.append(add_message(session, conversation_id, role, f"message {i}"))
    return messages


# =============================================================================
# Attachments
# =============================================================================


def create_attachment(
    session: Session,
    conversation: Conversation,
    *,
    kind: AttachmentKind = AttachmentKind.pdf,
    file_name: str = "report.pdf",
    file_type: str = "application/pdf",
    extracted_text: str | None = None,
    storage_path: str | None = None,
    metadata: dict | None = None,
    user_id: UUID | None = None,
    message_id: UUID | None = None,
) -> Attachment:
    """Insert an attachment row; the blob is the caller's business."""
    attachment = Attachment(
        conversation_id=conversation.id,
        message_id=message_id,
        user_id=user_id or conversation.user_id,
        kind=kind.value,
        file_name=file_name,
        file_type=file_type,
        file_size=123,
        storage_path=storage_path
        or f"{conversation.user_id}/{conversation.id}/documents/{uuid4().hex}_{file_name}",
        extracted_text=extracted_text,
        meta=metadata or {},
    )
    session.add(attachment)
    session.commit()
    return attachment


# =============================================================================
# Usage
# =============================================================================


def create_usage_event(
    session: Session,
    user_id: UUID,
    *,
    cost_usd: Decimal,
    model_used: str = "claude-3-haiku-20240307",
    tokens: int = 100,
    created_at: datetime | None = None,
    event_type: UsageEventType = UsageEventType.message,
) -> UsageEvent:
    event = UsageEvent(
        user_id=user_id,
        event_type=event_type.value,
        model_used=model_used,
        input_tokens=tokens,
        output_tokens=0,
        tokens_used=tokens,
        cost_usd=cost_usd,
    )
    if created_at is not None:
        event.created_at = created_at
    session.add(event)
    session.commit()
    return event
