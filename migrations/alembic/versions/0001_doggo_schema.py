"""Doggo schema - agents, conversations, messages, attachments, usage_events

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Owners are upstream user ids (no users table); ownership is enforced by
the service layer through user_id columns.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def _id() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # agents table
    # ==========================================================================
    op.create_table(
        "agents",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("system_prompt", sa.Text(), server_default="", nullable=False),
        sa.Column("model", sa.Text(), server_default="haiku", nullable=False),
        sa.Column("temperature", sa.Float(), server_default="1.0", nullable=False),
        sa.Column("max_tokens", sa.Integer(), server_default="4096", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("temperature >= 0 AND temperature <= 2", name="ck_agents_temperature"),
        sa.CheckConstraint("max_tokens > 0", name="ck_agents_max_tokens_positive"),
    )
    op.create_index("ix_agents_user_id", "agents", ["user_id"])

    # ==========================================================================
    # conversations table
    # ==========================================================================
    op.create_table(
        "conversations",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
    )
    op.create_index("ix_conversations_user_id", "conversations", ["user_id"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        _id(),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="complete", nullable=False),
        sa.Column("error_code", sa.Text(), nullable=True),
        sa.Column("model_used", sa.Text(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        sa.CheckConstraint("status IN ('complete', 'error')", name="ck_messages_status"),
        # Only assistant turns carry LLM bookkeeping
        sa.CheckConstraint(
            "(role = 'assistant' OR (model_used IS NULL AND tokens_used IS NULL"
            " AND latency_ms IS NULL))",
            name="ck_messages_llm_fields_assistant_only",
        ),
    )

    # ==========================================================================
    # attachments table
    # ==========================================================================
    op.create_table(
        "attachments",
        _id(),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=True),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("thumbnail_path", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("storage_path", name="uix_attachments_storage_path"),
        sa.CheckConstraint(
            "kind IN ('image', 'pdf', 'text', 'websearch')", name="ck_attachments_kind"
        ),
        sa.CheckConstraint("file_size >= 0", name="ck_attachments_file_size"),
        sa.CheckConstraint(
            "(kind = 'image' OR thumbnail_path IS NULL)",
            name="ck_attachments_thumbnail_images_only",
        ),
        sa.CheckConstraint(
            "(kind != 'image' OR extracted_text IS NULL)",
            name="ck_attachments_text_documents_only",
        ),
    )
    op.create_index(
        "ix_attachments_conversation_created", "attachments", ["conversation_id", "created_at"]
    )
    op.create_index("ix_attachments_message", "attachments", ["message_id"])

    # ==========================================================================
    # usage_events table (append-only)
    # ==========================================================================
    op.create_table(
        "usage_events",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("agent_id", sa.UUID(), nullable=True),
        sa.Column("conversation_id", sa.UUID(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("model_used", sa.Text(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("output_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost_usd", sa.Numeric(12, 6), server_default="0", nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "event_type IN ('message', 'title', 'scrape', 'websearch')",
            name="ck_usage_events_event_type",
        ),
        sa.CheckConstraint(
            "input_tokens >= 0 AND output_tokens >= 0 AND tokens_used >= 0",
            name="ck_usage_events_tokens",
        ),
        sa.CheckConstraint("cost_usd >= 0", name="ck_usage_events_cost"),
    )
    op.create_index("ix_usage_events_user_created", "usage_events", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_usage_events_user_created", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_attachments_message", table_name="attachments")
    op.drop_index("ix_attachments_conversation_created", table_name="attachments")
    op.drop_table("attachments")
    op.drop_table("messages")
    op.drop_index("ix_conversations_user_id", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_agents_user_id", table_name="agents")
    op.drop_table("agents")
