"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from doggo.schemas.attachment import AttachmentDetailOut, AttachmentOut
from doggo.schemas.collaborators import (
    ScrapeErrorOut,
    ScrapeRequest,
    ScrapeResponse,
    WebSearchRequest,
)
from doggo.schemas.conversation import (
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    SendMessageRequest,
    SendMessageResponse,
    SkippedAttachmentOut,
)
from doggo.schemas.usage import ModelUsageOut, QuotaOut, UsageSummaryOut

__all__ = [
    "AttachmentOut",
    "AttachmentDetailOut",
    "ScrapeRequest",
    "ScrapeResponse",
    "ScrapeErrorOut",
    "WebSearchRequest",
    "ConversationOut",
    "CreateConversationRequest",
    "MessageOut",
    "SendMessageRequest",
    "SendMessageResponse",
    "SkippedAttachmentOut",
    "QuotaOut",
    "ModelUsageOut",
    "UsageSummaryOut",
]
