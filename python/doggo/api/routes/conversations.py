"""Conversations and Messages API routes.

Routes are transport-only: each calls exactly one service function.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from doggo.api.deps import Viewer, get_chat_service, get_db, get_viewer
from doggo.db.session import transaction
from doggo.responses import success_response
from doggo.schemas.conversation import (
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    SendMessageRequest,
    SendMessageResponse,
    SkippedAttachmentOut,
)
from doggo.services import conversations as conversations_service
from doggo.services.chat import ChatService

router = APIRouter(tags=["conversations"])


@router.post("/conversations", status_code=201)
def create_conversation(
    body: CreateConversationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create an empty conversation served by one of the viewer's agents.

    Errors:
        E_AGENT_NOT_FOUND (404): Agent doesn't exist or belongs to someone else.
    """
    with transaction(db):
        conversation = conversations_service.create_conversation(
            db, viewer.user_id, body.agent_id, body.title
        )
    return success_response(ConversationOut.model_validate(conversation).model_dump(mode="json"))


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a conversation by ID.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist or viewer is not owner.
    """
    conversation = conversations_service.get_conversation_for_viewer_or_404(
        db, viewer.user_id, conversation_id
    )
    return success_response(ConversationOut.model_validate(conversation).model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=200, description="Most recent N messages"),
) -> dict:
    """Most recent messages, oldest first (chat order)."""
    conversations_service.get_conversation_for_viewer_or_404(db, viewer.user_id, conversation_id)
    messages = conversations_service.list_recent_messages(db, conversation_id, limit)
    return success_response(
        [MessageOut.model_validate(m).model_dump(mode="json") for m in messages]
    )


@router.post("/conversations/{conversation_id}/messages", status_code=200)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> dict:
    """Send a message and return the assistant turn.

    A provider failure is not an HTTP error: the assistant message comes
    back with status="error" and a user-facing explanation.

    Errors:
        E_MESSAGE_EMPTY (400): No text and no attachments.
        E_INVALID_REQUEST (400): Message exceeds 20,000 characters.
        E_TOO_MANY_ATTACHMENTS (400): Attachment ceiling exceeded.
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist or viewer is not owner.
        E_AGENT_NOT_FOUND (404): Conversation's agent is gone.
        E_QUOTA_EXCEEDED (429): Monthly doggo allowance spent.
    """
    outcome = await chat.send_message(
        db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        content=body.content,
        attachment_ids=body.attachment_ids,
    )
    response = SendMessageResponse(
        conversation_id=outcome.conversation_id,
        user_message=MessageOut.model_validate(outcome.user_message),
        assistant_message=MessageOut.model_validate(outcome.assistant_message),
        skipped_attachments=[
            SkippedAttachmentOut(id=s.id, reason=s.reason.value) for s in outcome.skipped
        ],
    )
    return success_response(response.model_dump(mode="json"))
