"""Sequence assignment helper for message ordering.

Each conversation carries a ``next_seq`` counter (starts at 1). Assigning a
seq locks the conversation row (FOR UPDATE on PostgreSQL; SQLite serializes
writers anyway), reads next_seq and increments it. ``seq`` is the replay
order for context building.

Must be called within an existing transaction context.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from doggo.db.models import Conversation, utcnow
from doggo.logging import get_logger

logger = get_logger(__name__)


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Atomically assign the next message sequence number for a conversation.

    Does NOT open or commit its own transaction.

    Returns:
        The sequence number to use for the new message

    Raises:
        ValueError: If the conversation does not exist
    """
    current_seq = db.scalar(
        select(Conversation.next_seq)
        .where(Conversation.id == conversation_id)
        .with_for_update()
    )
    if current_seq is None:
        raise ValueError(f"Conversation {conversation_id} not found")

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(next_seq=Conversation.next_seq + 1, updated_at=utcnow())
    )

    logger.debug("assigned_message_seq", conversation_id=str(conversation_id), seq=current_seq)
    return current_seq
