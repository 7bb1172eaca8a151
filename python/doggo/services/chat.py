"""Chat pipeline: one user send -> one assistant turn.

Per request, in order:
1. Validate input (text or attachments required, attachment ceiling)
2. Load conversation + agent, enforce the monthly quota, read history
3. Resolve attachments (concurrent, best-effort)
4. Build the unified request (deterministic order)
5. Persist the user turn and link its attachments
6. Exactly one provider call through the router
7. Persist the assistant turn (or an error turn), touch the conversation
8. Record usage (best-effort) and dispatch title generation (first exchange)

A provider failure never raises out of this module: it becomes an assistant
turn with status=error carrying the user-facing message for its class.

Two entry points share steps 1-5 and 7-8:
- send_message: one-shot, returns the outcome
- stream_message: async generator of SSE events (meta, delta, done | error)

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import json
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.config import Settings
from doggo.db.models import Agent, Conversation, Message, MessageRole, MessageStatus
from doggo.db.session import transaction
from doggo.errors import ApiError, ApiErrorCode, InvalidRequestError
from doggo.logging import get_logger, get_request_id, set_conversation_id
from doggo.services.attachments import link_attachments_to_message
from doggo.services.context_builder import DEFAULT_ATTACHMENT_PROMPT, BuildResult, ContextBuilder
from doggo.services.conversations import (
    append_message,
    get_agent_for_conversation,
    get_conversation_for_viewer_or_404,
    list_recent_messages,
    touch_conversation,
)
from doggo.services.llm.errors import LLMErrorClass, user_message_for
from doggo.services.llm.router import LLMRouter
from doggo.services.llm.types import (
    CompletionDelta,
    CompletionParams,
    CompletionResult,
    LLMCallContext,
    LLMOperation,
)
from doggo.services.redact import safe_kv
from doggo.services.resolver import AttachmentResolver, SkippedAttachment
from doggo.services.title import enqueue_title_generation
from doggo.services.usage import enforce_usage_quota, record_usage
from doggo.storage.client import StorageClientBase

logger = get_logger(__name__)

MAX_MESSAGE_CHARS = 20000

TitleDispatcher = Callable[[UUID, str | None], bool]


def format_sse_event(event: str, data: dict) -> str:
    """Format data as an SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@dataclass
class ChatOutcome:
    conversation_id: UUID
    user_message: Message
    assistant_message: Message
    result: CompletionResult
    skipped: list[SkippedAttachment] = field(default_factory=list)


@dataclass
class _Loaded:
    conversation: Conversation
    agent: Agent
    history: list[Message]
    needs_title: bool


@dataclass
class _Prepared:
    loaded: _Loaded
    user_message: Message
    build: BuildResult
    skipped: list[SkippedAttachment]

    @property
    def conversation_id(self) -> UUID:
        return self.loaded.conversation.id

    @property
    def params(self) -> CompletionParams:
        agent = self.loaded.agent
        return CompletionParams(temperature=agent.temperature, max_tokens=agent.max_tokens)


class ChatService:
    """Wires resolver, context builder, router and persistence for chat sends."""

    def __init__(
        self,
        router: LLMRouter,
        storage: StorageClientBase,
        settings: Settings,
        *,
        title_dispatcher: TitleDispatcher = enqueue_title_generation,
    ):
        self._router = router
        self._settings = settings
        self._resolver = AttachmentResolver(
            storage, fetch_timeout_s=settings.attachment_fetch_timeout_s
        )
        self._builder = ContextBuilder(
            storage,
            history_limit=settings.history_limit,
            image_fetch_timeout_s=settings.attachment_fetch_timeout_s,
        )
        self._title_dispatcher = title_dispatcher

    # -------------------------------------------------------------------------
    # Shared phases
    # -------------------------------------------------------------------------

    def validate(self, content: str, attachment_ids: Sequence[UUID]) -> None:
        """Raises InvalidRequestError before anything is read or written."""
        if not content.strip() and not attachment_ids:
            raise InvalidRequestError(
                ApiErrorCode.E_MESSAGE_EMPTY, "Message text or attachments are required"
            )
        if len(content) > MAX_MESSAGE_CHARS:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_REQUEST,
                f"Message exceeds {MAX_MESSAGE_CHARS} characters",
            )
        if len(set(attachment_ids)) > self._settings.max_attachments_per_message:
            raise InvalidRequestError(
                ApiErrorCode.E_TOO_MANY_ATTACHMENTS,
                f"At most {self._settings.max_attachments_per_message} attachments per message",
            )

    def _load(self, db: Session, viewer_id: UUID, conversation_id: UUID) -> _Loaded:
        conversation = get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)
        agent = get_agent_for_conversation(db, conversation)
        enforce_usage_quota(db, viewer_id, self._settings.monthly_doggo_limit)
        history = list_recent_messages(db, conversation_id, self._settings.history_limit)
        return _Loaded(
            conversation=conversation,
            agent=agent,
            history=history,
            needs_title=conversation.title is None,
        )

    def _persist_user_turn(
        self,
        db: Session,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID],
    ) -> Message:
        with transaction(db):
            message = append_message(db, conversation_id, MessageRole.user, content)
            linked = link_attachments_to_message(db, conversation_id, message.id, attachment_ids)
        logger.info(
            "chat.user_message_saved",
            message_id=str(message.id),
            seq=message.seq,
            linked_attachment_count=linked,
        )
        return message

    async def _prepare(
        self,
        db: Session,
        viewer_id: UUID,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID],
    ) -> _Prepared:
        self.validate(content, attachment_ids)
        set_conversation_id(str(conversation_id))

        loaded = await run_in_threadpool(self._load, db, viewer_id, conversation_id)
        resolved = await self._resolver.resolve(
            db, viewer_id=viewer_id, conversation_id=conversation_id, ids=attachment_ids
        )
        build = await self._builder.build(
            loaded.agent.system_prompt, loaded.history, content, resolved.resolved,
            attachments_requested=bool(attachment_ids),
        )

        stored_text = content if content.strip() else DEFAULT_ATTACHMENT_PROMPT
        user_message = await run_in_threadpool(
            self._persist_user_turn, db, conversation_id, stored_text, resolved.resolved_ids
        )
        return _Prepared(
            loaded=loaded,
            user_message=user_message,
            build=build,
            skipped=[*resolved.skipped, *build.dropped],
        )

    def _persist_assistant_turn(
        self, db: Session, conversation_id: UUID, result: CompletionResult
    ) -> Message:
        with transaction(db):
            if result.success:
                message = append_message(
                    db,
                    conversation_id,
                    MessageRole.assistant,
                    result.content,
                    model_used=result.model,
                    tokens_used=result.usage.total_tokens,
                    latency_ms=result.latency_ms,
                )
            else:
                error_code = result.error_class or LLMErrorClass.PROVIDER_DOWN.value
                message = append_message(
                    db,
                    conversation_id,
                    MessageRole.assistant,
                    user_message_for(error_code),
                    status=MessageStatus.error,
                    error_code=error_code,
                    model_used=result.model,
                    tokens_used=0,
                    latency_ms=result.latency_ms,
                )
            touch_conversation(db, conversation_id)
        return message

    def _after_completion(
        self, db: Session, viewer_id: UUID, prepared: _Prepared, result: CompletionResult
    ) -> None:
        record_usage(
            db,
            user_id=viewer_id,
            agent_id=prepared.loaded.agent.id,
            conversation_id=prepared.conversation_id,
            result=result,
        )
        if prepared.loaded.needs_title and result.success:
            self._title_dispatcher(prepared.conversation_id, get_request_id())

    def _log_outcome(self, prepared: _Prepared, result: CompletionResult, streaming: bool) -> None:
        logger.info(
            "chat.completed",
            **safe_kv(
                conversation_id=str(prepared.conversation_id),
                streaming=streaming,
                success=result.success,
                error_class=result.error_class,
                model_used=result.model,
                tokens_input=result.usage.input_tokens,
                tokens_output=result.usage.output_tokens,
                latency_ms=result.latency_ms,
                skipped_attachment_count=len(prepared.skipped),
            ),
        )

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        db: Session,
        *,
        viewer_id: UUID,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID] = (),
    ) -> ChatOutcome:
        """One-shot send.

        Raises:
            ApiError: Validation, not-found and quota errors (before any provider call).
        """
        prepared = await self._prepare(db, viewer_id, conversation_id, content, attachment_ids)

        result = await self._router.complete(
            prepared.build.request,
            prepared.loaded.agent.model,
            prepared.params,
            call_context=LLMCallContext(
                operation=LLMOperation.CHAT_SEND, conversation_id=str(conversation_id)
            ),
        )

        assistant = await run_in_threadpool(
            self._persist_assistant_turn, db, conversation_id, result
        )
        await run_in_threadpool(self._after_completion, db, viewer_id, prepared, result)
        self._log_outcome(prepared, result, streaming=False)

        return ChatOutcome(
            conversation_id=conversation_id,
            user_message=prepared.user_message,
            assistant_message=assistant,
            result=result,
            skipped=prepared.skipped,
        )

    async def stream_message(
        self,
        db_factory: Callable[[], Session],
        *,
        viewer_id: UUID,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID] = (),
    ) -> AsyncIterator[str]:
        """Streaming send; yields SSE-formatted events.

        Events:
        - meta: conversation_id, user_message_id, model, provider, skipped_attachment_ids
        - delta: {"delta": "text chunk"}
        - done: assistant_message_id, final_chars, tokens_used
        - error: code, message (and assistant_message_id once a turn was written)

        A client disconnect before the terminal event still writes an
        error turn so the conversation keeps alternating roles.
        """
        db = db_factory()
        prepared: _Prepared | None = None
        finalized = False
        try:
            try:
                prepared = await self._prepare(
                    db, viewer_id, conversation_id, content, attachment_ids
                )
            except ApiError as e:
                yield format_sse_event("error", {"code": e.code.value, "message": e.message})
                return

            route = self._router.route(prepared.loaded.agent.model)
            yield format_sse_event(
                "meta",
                {
                    "conversation_id": str(conversation_id),
                    "user_message_id": str(prepared.user_message.id),
                    "model": route.model_id,
                    "provider": route.provider.value,
                    "skipped_attachment_ids": [str(s.id) for s in prepared.skipped],
                },
            )

            result: CompletionResult | None = None
            async for item in self._router.stream(
                prepared.build.request,
                prepared.loaded.agent.model,
                prepared.params,
                call_context=LLMCallContext(
                    operation=LLMOperation.CHAT_STREAM, conversation_id=str(conversation_id)
                ),
            ):
                if isinstance(item, CompletionDelta):
                    yield format_sse_event("delta", {"delta": item.text})
                else:
                    result = item

            if result is None:
                result = CompletionResult.failure(
                    model=route.model_id,
                    provider=route.provider.value,
                    error_class=LLMErrorClass.PROVIDER_DOWN.value,
                    error_message="Stream ended without a result",
                )

            assistant = await run_in_threadpool(
                self._persist_assistant_turn, db, conversation_id, result
            )
            finalized = True
            await run_in_threadpool(self._after_completion, db, viewer_id, prepared, result)
            self._log_outcome(prepared, result, streaming=True)

            if result.success:
                yield format_sse_event(
                    "done",
                    {
                        "assistant_message_id": str(assistant.id),
                        "final_chars": len(result.content),
                        "tokens_used": result.usage.total_tokens,
                    },
                )
            else:
                yield format_sse_event(
                    "error",
                    {
                        "code": assistant.error_code,
                        "message": assistant.content,
                        "assistant_message_id": str(assistant.id),
                    },
                )
        finally:
            if prepared is not None and not finalized:
                await run_in_threadpool(self._finalize_interrupted, db, conversation_id, prepared)
            await run_in_threadpool(db.close)

    def _finalize_interrupted(self, db: Session, conversation_id: UUID, prepared: _Prepared) -> None:
        """Write an error turn for a stream that ended before its terminal event."""
        route = self._router.route(prepared.loaded.agent.model)
        interrupted = CompletionResult.failure(
            model=route.model_id,
            provider=route.provider.value,
            error_class=LLMErrorClass.PROVIDER_DOWN.value,
            error_message="Stream interrupted",
            latency_ms=0,
        )
        try:
            self._persist_assistant_turn(db, conversation_id, interrupted)
        except Exception as e:
            logger.error(
                "chat.stream_finalize_failed",
                conversation_id=str(conversation_id),
                error=type(e).__name__,
            )
        logger.warning("chat.stream_interrupted", conversation_id=str(conversation_id))


