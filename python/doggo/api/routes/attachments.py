"""Attachment routes.

Routes are transport-only:
- Identify the viewer
- Call exactly one service function
- Return success(...) or raise ApiError

Uploads are multipart (python-multipart); the file is read into memory
and rejected above MAX_UPLOAD_BYTES before any blob is written.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Response, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.api.deps import Viewer, get_db, get_storage, get_viewer
from doggo.config import get_settings
from doggo.responses import success_response
from doggo.schemas.attachment import AttachmentDetailOut, AttachmentOut
from doggo.services import attachments as attachments_service
from doggo.services.attachment_ingest import create_upload_attachment
from doggo.services.conversations import (
    get_conversation_for_viewer_or_404,
    get_message_for_viewer_or_404,
)
from doggo.storage.client import StorageClientBase

router = APIRouter(tags=["attachments"])


@router.post("/conversations/{conversation_id}/attachments", status_code=201)
async def upload_attachment(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    file: Annotated[UploadFile, File()],
) -> dict:
    """Upload an image, PDF or plain-text file to a conversation.

    Errors:
        E_INVALID_CONTENT_TYPE (400): Type not allowed or content doesn't match it.
        E_FILE_EMPTY (400) / E_FILE_TOO_LARGE (400)
        E_CONVERSATION_NOT_FOUND (404)
        E_STORAGE_ERROR (500): Blob write failed.
    """
    settings = get_settings()
    # One byte over the limit is enough to reject
    data = await file.read(settings.max_upload_bytes + 1)
    attachment = await create_upload_attachment(
        db,
        storage,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        file_name=file.filename or "upload",
        content_type=file.content_type,
        data=data,
        max_bytes=settings.max_upload_bytes,
    )
    return success_response(AttachmentOut.from_row(attachment).model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/attachments")
def list_conversation_attachments(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """All attachments of a conversation, newest first."""
    get_conversation_for_viewer_or_404(db, viewer.user_id, conversation_id)
    rows = attachments_service.list_conversation_attachments(db, conversation_id)
    return success_response([AttachmentOut.from_row(a).model_dump(mode="json") for a in rows])


@router.get("/messages/{message_id}/attachments")
def list_message_attachments(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Attachments linked to one message, oldest first."""
    get_message_for_viewer_or_404(db, viewer.user_id, message_id)
    rows = attachments_service.list_message_attachments(db, message_id)
    return success_response([AttachmentOut.from_row(a).model_dump(mode="json") for a in rows])


@router.get("/attachments/{attachment_id}")
async def get_attachment(
    attachment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> dict:
    """Attachment detail with signed download (and thumbnail) URLs.

    Errors:
        E_ATTACHMENT_NOT_FOUND (404)
        E_SIGN_DOWNLOAD_FAILED (500)
    """
    expires_in = get_settings().signed_url_expiry_s
    attachment = await run_in_threadpool(
        attachments_service.get_attachment_for_viewer_or_404, db, viewer.user_id, attachment_id
    )
    urls = await attachments_service.sign_attachment_urls(
        storage, attachment, expires_in=expires_in
    )
    detail = AttachmentDetailOut(
        **AttachmentOut.from_row(attachment).model_dump(),
        signed_url=urls.signed_url,
        thumbnail_url=urls.thumbnail_url,
        expires_in=expires_in,
    )
    return success_response(detail.model_dump(mode="json"))


@router.delete("/attachments/{attachment_id}", status_code=204)
async def delete_attachment(
    attachment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> Response:
    """Delete an attachment, its blob and its thumbnail.

    Errors:
        E_ATTACHMENT_NOT_FOUND (404)
    """
    await attachments_service.delete_attachment(db, storage, viewer.user_id, attachment_id)
    return Response(status_code=204)
