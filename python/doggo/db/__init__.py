"""Database module for Doggo.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from doggo.db.engine import create_db_engine, get_engine
from doggo.db.models import (
    Agent,
    Attachment,
    AttachmentKind,
    Base,
    Conversation,
    Message,
    MessageRole,
    MessageStatus,
    UsageEvent,
    UsageEventType,
)
from doggo.db.session import get_db, get_session_factory, session_scope, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "get_session_factory",
    "session_scope",
    "transaction",
    # Base
    "Base",
    # Enums
    "AttachmentKind",
    "MessageRole",
    "MessageStatus",
    "UsageEventType",
    # Models
    "Agent",
    "Conversation",
    "Message",
    "Attachment",
    "UsageEvent",
]
