"""Attachment Pydantic schemas.

extracted_text is never returned; clients read documents through the
signed URL. `metadata` is the kind-specific JSON stored on the row.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AttachmentOut(BaseModel):
    id: UUID
    conversation_id: UUID
    message_id: UUID | None = None
    kind: str  # "image" | "pdf" | "text" | "websearch"
    file_name: str
    file_type: str
    file_size: int
    has_thumbnail: bool = False
    has_extracted_text: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_row(cls, attachment) -> "AttachmentOut":
        return cls(
            id=attachment.id,
            conversation_id=attachment.conversation_id,
            message_id=attachment.message_id,
            kind=attachment.kind,
            file_name=attachment.file_name,
            file_type=attachment.file_type,
            file_size=attachment.file_size,
            has_thumbnail=attachment.thumbnail_path is not None,
            has_extracted_text=attachment.extracted_text is not None,
            metadata=dict(attachment.meta or {}),
            created_at=attachment.created_at,
        )


class AttachmentDetailOut(AttachmentOut):
    """Single attachment with short-lived download URLs."""

    signed_url: str | None = None
    thumbnail_url: str | None = None
    expires_in: int
