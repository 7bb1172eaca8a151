"""Streaming API routes under /stream/*.

- POST /stream/conversations/{id}/messages: same body and pipeline as the
  one-shot send; the response is an SSE stream of meta, delta, done | error

Validation and not-found failures are reported as a single SSE `error`
event, since headers are already sent when the pipeline starts.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from doggo.api.deps import Viewer, get_chat_service, get_session_factory, get_viewer
from doggo.schemas.conversation import SendMessageRequest
from doggo.services.chat import ChatService

router = APIRouter(prefix="/stream", tags=["streaming"])


@router.post("/conversations/{conversation_id}/messages")
async def stream_send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> StreamingResponse:
    """Send a message with SSE streaming in an existing conversation."""
    return StreamingResponse(
        chat.stream_message(
            get_session_factory(),
            viewer_id=viewer.user_id,
            conversation_id=conversation_id,
            content=body.content,
            attachment_ids=body.attachment_ids,
        ),
        media_type="text/event-stream; charset=utf-8",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
        },
    )
