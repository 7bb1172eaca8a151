"""Attachment queries, linking, signed URLs and deletion.

Ownership:
- Every attachment belongs to one user and one conversation
- E_ATTACHMENT_NOT_FOUND covers both "missing" and "not yours"

Rows are immutable after creation except ``message_id`` (late binding to
the message that referenced a pre-uploaded attachment) and ``metadata``.

Query shapes:
- by conversation: newest first
- by message: oldest first (display order under the message)
- by ids: unordered map; the resolver imposes no order either
"""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.db.models import Attachment
from doggo.db.session import transaction
from doggo.errors import ApiError, ApiErrorCode, NotFoundError
from doggo.logging import get_logger
from doggo.storage.client import StorageClientBase, StorageError

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignedUrls:
    signed_url: str | None
    thumbnail_url: str | None


def get_attachment_for_viewer_or_404(
    db: Session, viewer_id: UUID, attachment_id: UUID
) -> Attachment:
    """Load an attachment and verify ownership.

    Raises:
        NotFoundError(E_ATTACHMENT_NOT_FOUND)
    """
    attachment = db.get(Attachment, attachment_id)
    if attachment is None or attachment.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_ATTACHMENT_NOT_FOUND, "Attachment not found")
    return attachment


def list_conversation_attachments(db: Session, conversation_id: UUID) -> list[Attachment]:
    return list(
        db.scalars(
            select(Attachment)
            .where(Attachment.conversation_id == conversation_id)
            .order_by(Attachment.created_at.desc(), Attachment.id)
        ).all()
    )


def list_message_attachments(db: Session, message_id: UUID) -> list[Attachment]:
    return list(
        db.scalars(
            select(Attachment)
            .where(Attachment.message_id == message_id)
            .order_by(Attachment.created_at.asc(), Attachment.id)
        ).all()
    )


def get_attachments_by_ids(
    db: Session, viewer_id: UUID, conversation_id: UUID, ids: Iterable[UUID]
) -> dict[UUID, Attachment]:
    """Rows for ``ids`` owned by the viewer within one conversation.

    Ids outside the conversation are simply absent from the result.
    """
    wanted = set(ids)
    if not wanted:
        return {}
    rows = db.scalars(
        select(Attachment).where(
            Attachment.id.in_(wanted),
            Attachment.user_id == viewer_id,
            Attachment.conversation_id == conversation_id,
        )
    ).all()
    return {row.id: row for row in rows}


def link_attachments_to_message(
    db: Session, conversation_id: UUID, message_id: UUID, ids: Iterable[UUID]
) -> int:
    """Bind unlinked attachments of the conversation to a message.

    Attachments already linked to another message keep their link.
    Does not commit.

    Returns:
        Number of rows linked.
    """
    wanted = set(ids)
    if not wanted:
        return 0
    result = db.execute(
        update(Attachment)
        .where(
            Attachment.id.in_(wanted),
            Attachment.conversation_id == conversation_id,
            Attachment.message_id.is_(None),
        )
        .values(message_id=message_id)
    )
    return result.rowcount


async def sign_attachment_urls(
    storage: StorageClientBase, attachment: Attachment, *, expires_in: int = 3600
) -> SignedUrls:
    """Signed download URLs for the blob and, for images, the thumbnail.

    A thumbnail that cannot be signed is reported as None; the main URL is
    required.

    Raises:
        ApiError(E_SIGN_DOWNLOAD_FAILED)
    """
    try:
        signed_url = await storage.sign_download(attachment.storage_path, expires_in=expires_in)
    except StorageError as e:
        logger.error(
            "attachment.sign_failed", attachment_id=str(attachment.id), error_code=e.code
        )
        raise ApiError(ApiErrorCode.E_SIGN_DOWNLOAD_FAILED, "Failed to sign download") from e

    thumbnail_url = None
    if attachment.thumbnail_path:
        try:
            thumbnail_url = await storage.sign_download(
                attachment.thumbnail_path, expires_in=expires_in
            )
        except StorageError as e:
            logger.warning(
                "attachment.thumbnail_sign_failed",
                attachment_id=str(attachment.id),
                error_code=e.code,
            )

    return SignedUrls(signed_url=signed_url, thumbnail_url=thumbnail_url)


def _delete_row(db: Session, attachment_id: UUID) -> None:
    with transaction(db):
        attachment = db.get(Attachment, attachment_id)
        if attachment is not None:
            db.delete(attachment)


async def delete_attachment(
    db: Session, storage: StorageClientBase, viewer_id: UUID, attachment_id: UUID
) -> None:
    """Delete an attachment with its blob and thumbnail.

    Blob removal is best-effort: a failed delete is logged (the orphan is
    left for cleanup) and the row is still removed.

    Raises:
        NotFoundError(E_ATTACHMENT_NOT_FOUND)
    """
    attachment = await run_in_threadpool(
        get_attachment_for_viewer_or_404, db, viewer_id, attachment_id
    )

    paths = [attachment.storage_path]
    if attachment.thumbnail_path:
        paths.append(attachment.thumbnail_path)

    for path in paths:
        try:
            await storage.delete_object(path)
        except StorageError as e:
            logger.warning(
                "attachment.blob_delete_failed",
                attachment_id=str(attachment_id),
                error_code=e.code,
            )

    await run_in_threadpool(_delete_row, db, attachment_id)
    logger.info("attachment.deleted", attachment_id=str(attachment_id))
