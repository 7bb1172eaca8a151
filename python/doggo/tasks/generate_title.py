"""Celery task for conversation title generation.

This task:
1. Loads the conversation; exits if it is gone or already titled
2. Reads the first 4 messages
3. Asks the title model (haiku, temperature 0.7, max_tokens 100)
4. Writes the cleaned title only if the conversation is still untitled
5. Records a ``title`` usage event

Dispatched after the first exchange and never awaited by the request.
A second message sent before the task finishes is not ordered against it;
the conditional write keeps whichever title lands first.

max_retries=0: a missing title is cosmetic.
"""

import asyncio
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from doggo.celery import celery_app
from doggo.config import get_settings
from doggo.db.models import Conversation, UsageEventType
from doggo.db.session import session_scope, transaction
from doggo.logging import clear_task_context, configure_task_logging, get_logger
from doggo.services.conversations import list_first_messages, set_title_if_empty
from doggo.services.llm.router import LLMRouter
from doggo.services.title import TITLE_MESSAGE_COUNT, generate_title
from doggo.services.usage import record_usage

logger = get_logger(__name__)


@celery_app.task(bind=True, max_retries=0, name="generate_conversation_title")
def generate_conversation_title(
    self,
    conversation_id: str,
    request_id: str | None = None,
) -> dict:
    """Generate and store a title for a conversation.

    Args:
        conversation_id: UUID of the conversation.
        request_id: Optional request ID for log correlation.

    Returns:
        Dict with result status.
    """
    configure_task_logging(
        request_id=request_id, task_name="generate_conversation_title", task_id=self.request.id
    )
    logger.info("generate_title_started", conversation_id=conversation_id)

    try:
        with session_scope() as db:
            result = asyncio.run(_run_with_router(db, UUID(conversation_id)))
        logger.info("generate_title_completed", conversation_id=conversation_id, **result)
        return result
    except Exception as e:
        logger.error(
            "generate_title_failed", conversation_id=conversation_id, error=type(e).__name__
        )
        raise
    finally:
        clear_task_context()


async def _run_with_router(db: Session, conversation_id: UUID) -> dict:
    settings = get_settings()
    async with httpx.AsyncClient() as client:
        router = LLMRouter.from_settings(client, settings)
        return await generate_title_for_conversation(db, conversation_id, router)


async def generate_title_for_conversation(
    db: Session, conversation_id: UUID, router: LLMRouter
) -> dict:
    """Task body; runs inside the worker's event loop (or a test's)."""
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return {"status": "skipped", "reason": "conversation_not_found"}
    if conversation.title:
        return {"status": "skipped", "reason": "already_titled"}

    messages = list_first_messages(db, conversation_id, TITLE_MESSAGE_COUNT)
    if not messages:
        return {"status": "skipped", "reason": "no_messages"}

    title, completion = await generate_title(
        router, messages, conversation_id=str(conversation_id)
    )

    record_usage(
        db,
        user_id=conversation.user_id,
        agent_id=conversation.agent_id,
        conversation_id=conversation_id,
        result=completion,
        event_type=UsageEventType.title,
    )

    if title is None:
        reason = "completion_failed" if not completion.success else "empty_title"
        return {"status": "skipped", "reason": reason}

    with transaction(db):
        updated = set_title_if_empty(db, conversation_id, title)
    if not updated:
        return {"status": "skipped", "reason": "already_titled"}
    return {"status": "titled", "title_chars": len(title)}
