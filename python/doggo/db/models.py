"""SQLAlchemy ORM models for Doggo.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable (PostgreSQL in deployment, SQLite in tests):
JSON columns become JSONB on PostgreSQL.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, PyEnum):
    """Roles for messages in a conversation."""

    user = "user"
    assistant = "assistant"


class MessageStatus(str, PyEnum):
    """Status of a message.

    Assistant turns written after a provider failure carry ``error`` plus
    an error_code; everything else is ``complete``.
    """

    complete = "complete"
    error = "error"


class AttachmentKind(str, PyEnum):
    """What an attachment holds.

    image: binary image blob (+ thumbnail); never has extracted_text
    pdf: PDF blob; extracted_text filled at upload or lazily on resolve
    text: plain-text document or scraped page (markdown)
    websearch: markdown digest of search results
    """

    image = "image"
    pdf = "pdf"
    text = "text"
    websearch = "websearch"

    @property
    def is_document(self) -> bool:
        return self is not AttachmentKind.image


class UsageEventType(str, PyEnum):
    """Kinds of billable events."""

    message = "message"
    title = "title"
    scrape = "scrape"
    websearch = "websearch"


# =============================================================================
# Models
# =============================================================================


class Agent(Base):
    """A user-configured persona: system prompt, abstract model id, generation params."""

    __tablename__ = "agents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    model: Mapped[str] = mapped_column(Text, nullable=False, default="haiku")
    temperature: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    max_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=4096)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("temperature >= 0 AND temperature <= 2", name="ck_agents_temperature"),
        CheckConstraint("max_tokens > 0", name="ck_agents_max_tokens_positive"),
    )


class Conversation(Base):
    """Conversation model - a thread of messages owned by one user, served by one agent."""

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    agent_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),)

    # Relationships
    agent: Mapped["Agent"] = relationship("Agent")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.seq",
    )
    attachments: Mapped[list["Attachment"]] = relationship(
        "Attachment", back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(Base):
    """A single conversation turn.

    Only flattened text is stored; the multimodal request is rebuilt from
    attachments on every send. ``seq`` is the replay order.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=MessageStatus.complete.value)
    error_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        CheckConstraint("status IN ('complete', 'error')", name="ck_messages_status"),
        CheckConstraint(
            "(role = 'assistant' OR (model_used IS NULL AND tokens_used IS NULL"
            " AND latency_ms IS NULL))",
            name="ck_messages_llm_fields_assistant_only",
        ),
        UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class Attachment(Base):
    """A normalized, persisted unit of non-chat content linked to a conversation.

    Immutable once created except for ``message_id`` (late binding to the
    message that referenced it) and ``metadata``.
    """

    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    message_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "kind IN ('image', 'pdf', 'text', 'websearch')",
            name="ck_attachments_kind",
        ),
        CheckConstraint("file_size >= 0", name="ck_attachments_file_size"),
        CheckConstraint(
            "(kind = 'image' OR thumbnail_path IS NULL)",
            name="ck_attachments_thumbnail_images_only",
        ),
        CheckConstraint(
            "(kind != 'image' OR extracted_text IS NULL)",
            name="ck_attachments_text_documents_only",
        ),
        Index("ix_attachments_conversation_created", "conversation_id", "created_at"),
        Index("ix_attachments_message", "message_id"),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="attachments"
    )

    @property
    def attachment_kind(self) -> AttachmentKind:
        return AttachmentKind(self.kind)


class UsageEvent(Base):
    """Append-only record of one billable provider call."""

    __tablename__ = "usage_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    agent_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    conversation_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    model_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 6), nullable=False, default=Decimal("0")
    )
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('message', 'title', 'scrape', 'websearch')",
            name="ck_usage_events_event_type",
        ),
        CheckConstraint(
            "input_tokens >= 0 AND output_tokens >= 0 AND tokens_used >= 0",
            name="ck_usage_events_tokens",
        ),
        CheckConstraint("cost_usd >= 0", name="ck_usage_events_cost"),
        Index("ix_usage_events_user_created", "user_id", "created_at"),
    )
