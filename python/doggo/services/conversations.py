"""Conversation and Message persistence helpers.

All operations:
- Enforce owner-only access
- Use E_CONVERSATION_NOT_FOUND for both "missing" and "not yours" (prevent probing)
- Never commit; callers own the transaction boundary

Messages are append-only. The only mutation on a conversation besides
``next_seq`` is the title (set once by the title task) and ``updated_at``.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from doggo.db.models import (
    Agent,
    Conversation,
    Message,
    MessageRole,
    MessageStatus,
    utcnow,
)
from doggo.errors import ApiErrorCode, NotFoundError
from doggo.logging import get_logger
from doggo.services.seq import assign_next_message_seq

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20


def get_conversation_for_viewer_or_404(
    db: Session, viewer_id: UUID, conversation_id: UUID
) -> Conversation:
    """Load conversation and verify ownership.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If conversation doesn't exist
            OR viewer is not the owner.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or conversation.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    return conversation


def get_agent_for_conversation(db: Session, conversation: Conversation) -> Agent:
    """Agent serving a conversation; must belong to the same user.

    Raises:
        NotFoundError(E_AGENT_NOT_FOUND)
    """
    agent = db.get(Agent, conversation.agent_id)
    if agent is None or agent.user_id != conversation.user_id:
        raise NotFoundError(ApiErrorCode.E_AGENT_NOT_FOUND, "Agent not found")
    return agent


def get_message_for_viewer_or_404(db: Session, viewer_id: UUID, message_id: UUID) -> Message:
    """Load a message whose conversation the viewer owns.

    Raises:
        NotFoundError(E_NOT_FOUND)
    """
    message = db.get(Message, message_id)
    if message is None or message.conversation.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "Message not found")
    return message


def create_conversation(
    db: Session, viewer_id: UUID, agent_id: UUID, title: str | None = None
) -> Conversation:
    """Create an empty conversation served by one of the viewer's agents.

    Raises:
        NotFoundError(E_AGENT_NOT_FOUND): If the agent is missing or not the viewer's.
    """
    agent = db.get(Agent, agent_id)
    if agent is None or agent.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_AGENT_NOT_FOUND, "Agent not found")

    conversation = Conversation(user_id=viewer_id, agent_id=agent_id, title=title, next_seq=1)
    db.add(conversation)
    db.flush()
    return conversation


def list_recent_messages(
    db: Session, conversation_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT
) -> list[Message]:
    """Last ``limit`` messages of a conversation, in chronological order."""
    if limit <= 0:
        return []
    rows = db.scalars(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.seq.desc())
        .limit(limit)
    ).all()
    return list(reversed(rows))


def list_first_messages(db: Session, conversation_id: UUID, limit: int) -> list[Message]:
    """First ``limit`` messages of a conversation, oldest first."""
    return list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.seq.asc())
            .limit(limit)
        ).all()
    )


def append_message(
    db: Session,
    conversation_id: UUID,
    role: MessageRole,
    content: str,
    *,
    status: MessageStatus = MessageStatus.complete,
    error_code: str | None = None,
    model_used: str | None = None,
    tokens_used: int | None = None,
    latency_ms: int | None = None,
) -> Message:
    """Append a message at the next seq. Flushes, does not commit."""
    seq = assign_next_message_seq(db, conversation_id)
    message = Message(
        conversation_id=conversation_id,
        seq=seq,
        role=role.value,
        content=content,
        status=status.value,
        error_code=error_code,
        model_used=model_used,
        tokens_used=tokens_used,
        latency_ms=latency_ms,
    )
    db.add(message)
    db.flush()
    return message


def touch_conversation(db: Session, conversation_id: UUID) -> None:
    db.execute(
        update(Conversation).where(Conversation.id == conversation_id).values(updated_at=utcnow())
    )


def set_title_if_empty(db: Session, conversation_id: UUID, title: str) -> bool:
    """Set the title unless one was written meanwhile.

    Returns:
        True if the row was updated.
    """
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id, Conversation.title.is_(None))
        .values(title=title)
    )
    return result.rowcount > 0
