"""Conversation and Message Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(BaseModel):
    """A conversation; owned by exactly one user and served by one agent."""

    id: UUID
    agent_id: UUID
    title: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """Response schema for a message.

    Messages are immutable and ordered by seq within a conversation.
    Assistant messages carry model_used/tokens_used/latency_ms; an error
    turn has status="error" and the normalized error class in error_code.
    """

    id: UUID
    conversation_id: UUID
    seq: int
    role: str  # "user" | "assistant"
    content: str
    status: str  # "complete" | "error"
    error_code: str | None = None
    model_used: str | None = None
    tokens_used: int | None = None
    latency_ms: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SkippedAttachmentOut(BaseModel):
    """An attachment that was referenced but left out of the model request."""

    id: UUID
    reason: str


# =============================================================================
# Request Schemas
# =============================================================================


class CreateConversationRequest(BaseModel):
    agent_id: UUID
    title: str | None = Field(default=None, max_length=200)


class SendMessageRequest(BaseModel):
    """Request schema for sending a message.

    Either content or attachment_ids must be non-empty; with attachments
    only, the default analysis prompt is used.
    """

    content: str = ""
    attachment_ids: list[UUID] = []

    model_config = ConfigDict(str_strip_whitespace=True)


class SendMessageResponse(BaseModel):
    """Response schema for a one-shot send."""

    conversation_id: UUID
    user_message: MessageOut
    assistant_message: MessageOut
    skipped_attachments: list[SkippedAttachmentOut] = []
