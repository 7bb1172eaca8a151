"""Conversation title generation.

Runs in the worker after the first exchange. Uses the first two exchanges
(4 messages) with the cheap model; the cleaned title is at most 60 chars.
"""

import re
from collections.abc import Sequence
from uuid import UUID

from doggo.config import Environment, get_settings
from doggo.logging import get_logger
from doggo.services.context_builder import HistoryTurn
from doggo.services.llm.router import LLMRouter
from doggo.services.llm.types import (
    CompletionParams,
    CompletionResult,
    LLMCallContext,
    LLMOperation,
    Turn,
    UnifiedRequest,
)

logger = get_logger(__name__)

TITLE_MODEL = "haiku"
TITLE_MESSAGE_COUNT = 4
TITLE_PARAMS = CompletionParams(temperature=0.7, max_tokens=100)
MAX_TITLE_LENGTH = 60

TITLE_SYSTEM_PROMPT = "You write short, specific titles for conversations."

_SURROUNDING_QUOTES = re.compile(r"^[\"'«“]+|[\"'»”]+$")
_TRAILING_PUNCTUATION = re.compile(r"[.!?]+$")


def build_title_request(messages: Sequence[HistoryTurn]) -> UnifiedRequest:
    transcript = "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
        for m in messages[:TITLE_MESSAGE_COUNT]
    )
    prompt = (
        "Write a concise title (at most 50 characters) summarizing this conversation. "
        "Capture the essence of the user's main request.\n\n"
        f"Conversation:\n{transcript}\n\n"
        "Reply with the title ONLY: no quotes, no closing punctuation, no other text."
    )
    return UnifiedRequest(system=TITLE_SYSTEM_PROMPT, turns=(Turn.text("user", prompt),))


def clean_title(raw: str) -> str | None:
    """Strip quotes and trailing punctuation, cap the length. None if nothing is left.

    Example:
        >>> clean_title('"Planning a trip to Lisbon."')
        'Planning a trip to Lisbon'
    """
    title = " ".join(raw.split())
    title = _SURROUNDING_QUOTES.sub("", title).strip()
    title = _TRAILING_PUNCTUATION.sub("", title).strip()
    if not title:
        return None
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3] + "..."
    return title


async def generate_title(
    router: LLMRouter, messages: Sequence[HistoryTurn], *, conversation_id: str | None = None
) -> tuple[str | None, CompletionResult]:
    """Ask the title model for a title.

    Returns:
        (title or None, the completion result for usage recording)
    """
    result = await router.complete(
        build_title_request(messages),
        TITLE_MODEL,
        TITLE_PARAMS,
        call_context=LLMCallContext(
            operation=LLMOperation.TITLE, conversation_id=conversation_id
        ),
    )
    if not result.success:
        return None, result
    return clean_title(result.content), result


def enqueue_title_generation(conversation_id: UUID, request_id: str | None = None) -> bool:
    """Queue the title task; never raises.

    Returns:
        True if the task was enqueued.
    """
    settings = get_settings()

    # In test environment, don't enqueue - tests call the task body directly
    if settings.doggo_env == Environment.TEST:
        logger.debug("skipping_task_enqueue", reason="test_environment")
        return False

    try:
        from doggo.tasks import generate_conversation_title

        generate_conversation_title.apply_async(
            args=[str(conversation_id)],
            kwargs={"request_id": request_id},
            queue="titles",
        )
    except Exception as e:
        logger.warning(
            "title_task_enqueue_failed",
            conversation_id=str(conversation_id),
            error=type(e).__name__,
        )
        return False

    logger.info("title_task_enqueued", conversation_id=str(conversation_id))
    return True
