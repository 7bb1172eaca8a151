"""Attachment normalizer: raw input -> one persisted Attachment row.

Two entry points share one shape (validate, write blobs, insert row):
- create_upload_attachment: user uploads (image, PDF, plain text)
- create_text_attachment: text produced by the scrape/search collaborators

Images:
- Re-encoded to JPEG inside 1920x1920 (no upscaling), quality 85
- 200x200 center-cropped thumbnail, quality 80; a failed thumbnail is
  logged and the attachment is created without one
- metadata records the compressed width/height

PDFs:
- Original bytes stored; text + page count extracted with pypdf
- Extraction failure is logged and leaves extracted_text = None

Ordering: blobs are written before the row, so a row never points at a
missing blob. If the insert fails, the written blobs are deleted
(best-effort) and the error propagates.
"""

from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.db.models import Attachment, AttachmentKind
from doggo.db.session import transaction
from doggo.errors import ApiError, ApiErrorCode, InvalidRequestError
from doggo.logging import get_logger
from doggo.services.conversations import get_conversation_for_viewer_or_404
from doggo.services.file_processing import (
    IMAGE_CONTENT_TYPES,
    PDF_CONTENT_TYPE,
    TEXT_CONTENT_TYPES,
    PdfExtractionError,
    compress_image,
    decode_text,
    extract_pdf_text,
    make_thumbnail,
    sniff_matches,
)
from doggo.storage.client import StorageClientBase, StorageError
from doggo.storage.paths import (
    StorageCategory,
    build_storage_path,
    generate_safe_filename,
    thumbnail_filename,
)

logger = get_logger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def kind_for_content_type(content_type: str) -> AttachmentKind:
    """Map a declared MIME type to an attachment kind.

    Raises:
        InvalidRequestError(E_INVALID_CONTENT_TYPE): If the type is not allowed.
    """
    if content_type in IMAGE_CONTENT_TYPES:
        return AttachmentKind.image
    if content_type == PDF_CONTENT_TYPE:
        return AttachmentKind.pdf
    if content_type in TEXT_CONTENT_TYPES:
        return AttachmentKind.text
    raise InvalidRequestError(
        ApiErrorCode.E_INVALID_CONTENT_TYPE,
        f"File type not allowed: {content_type or 'unknown'}",
    )


def _normalize_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def validate_upload(
    content_type: str | None, data: bytes, *, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> AttachmentKind:
    """Validate an upload before anything is written.

    Raises:
        InvalidRequestError: If validation fails.
    """
    ct = _normalize_content_type(content_type)
    kind = kind_for_content_type(ct)

    if not data:
        raise InvalidRequestError(ApiErrorCode.E_FILE_EMPTY, "File is empty")
    if len(data) > max_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE,
            f"File exceeds maximum size of {max_bytes // (1024 * 1024)} MB",
        )
    if not sniff_matches(ct, data):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CONTENT_TYPE,
            "File content does not match its declared type",
        )
    return kind


def _with_extension(safe_filename: str, ext: str) -> str:
    stem = safe_filename.rsplit(".", 1)[0] if "." in safe_filename else safe_filename
    return f"{stem}.{ext}"


async def _put(storage: StorageClientBase, path: str, data: bytes, content_type: str) -> None:
    try:
        await storage.put_object(path, data, content_type=content_type)
    except StorageError as e:
        logger.error("attachment.blob_write_failed", error_code=e.code)
        raise ApiError(ApiErrorCode.E_STORAGE_ERROR, "Failed to store file") from e


async def _cleanup_blobs(storage: StorageClientBase, paths: list[str]) -> None:
    for path in paths:
        try:
            await storage.delete_object(path)
        except StorageError as e:
            logger.warning("attachment.cleanup_failed", error_code=e.code)


def _insert_row(db: Session, attachment: Attachment) -> Attachment:
    with transaction(db):
        db.add(attachment)
        db.flush()
    return attachment


async def _persist(
    db: Session, storage: StorageClientBase, attachment: Attachment, written: list[str]
) -> Attachment:
    try:
        return await run_in_threadpool(_insert_row, db, attachment)
    except Exception:
        logger.error("attachment.insert_failed", blob_count=len(written))
        await _cleanup_blobs(storage, written)
        raise


async def create_upload_attachment(
    db: Session,
    storage: StorageClientBase,
    *,
    viewer_id: UUID,
    conversation_id: UUID,
    file_name: str,
    content_type: str | None,
    data: bytes,
    message_id: UUID | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> Attachment:
    """Normalize and persist an uploaded file.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation is not the viewer's.
        InvalidRequestError: Disallowed type, empty, oversize, or undecodable image.
        ApiError(E_STORAGE_ERROR): If the main blob cannot be written.
    """
    kind = validate_upload(content_type, data, max_bytes=max_bytes)
    await run_in_threadpool(get_conversation_for_viewer_or_404, db, viewer_id, conversation_id)

    ct = _normalize_content_type(content_type)
    safe_name = generate_safe_filename(file_name or "upload")
    metadata: dict = {"original_size": len(data), "original_type": ct}
    written: list[str] = []
    extracted_text: str | None = None
    thumbnail_path: str | None = None

    if kind is AttachmentKind.image:
        processed = await run_in_threadpool(compress_image, data)
        safe_name = _with_extension(safe_name, "jpg")
        storage_path = build_storage_path(
            viewer_id, conversation_id, StorageCategory.images, safe_name
        )
        await _put(storage, storage_path, processed.data, processed.content_type)
        written.append(storage_path)
        metadata.update(width=processed.width, height=processed.height)
        stored_type, stored_size = processed.content_type, len(processed.data)

        thumb_path = build_storage_path(
            viewer_id, conversation_id, StorageCategory.thumbnails, thumbnail_filename(safe_name)
        )
        try:
            thumb = await run_in_threadpool(make_thumbnail, data)
            await storage.put_object(thumb_path, thumb, content_type="image/jpeg")
        except (StorageError, InvalidRequestError, OSError) as e:
            logger.warning("attachment.thumbnail_failed", error=type(e).__name__)
        else:
            written.append(thumb_path)
            thumbnail_path = thumb_path
    else:
        storage_path = build_storage_path(
            viewer_id, conversation_id, StorageCategory.documents, safe_name
        )
        await _put(storage, storage_path, data, ct)
        written.append(storage_path)
        stored_type, stored_size = ct, len(data)

        if kind is AttachmentKind.pdf:
            try:
                pdf = await run_in_threadpool(extract_pdf_text, data)
            except PdfExtractionError as e:
                logger.warning("attachment.pdf_extraction_failed", error=str(e))
                metadata["extraction_failed"] = True
            else:
                extracted_text = pdf.text or None
                metadata["page_count"] = pdf.page_count
        else:
            extracted_text = decode_text(data)

    attachment = Attachment(
        conversation_id=conversation_id,
        message_id=message_id,
        user_id=viewer_id,
        kind=kind.value,
        file_name=file_name or safe_name,
        file_type=stored_type,
        file_size=stored_size,
        storage_path=storage_path,
        extracted_text=extracted_text,
        thumbnail_path=thumbnail_path,
        meta=metadata,
    )
    attachment = await _persist(db, storage, attachment, written)

    logger.info(
        "attachment.created",
        attachment_id=str(attachment.id),
        kind=kind.value,
        file_size=stored_size,
        has_thumbnail=thumbnail_path is not None,
        has_text=extracted_text is not None,
    )
    return attachment


async def create_text_attachment(
    db: Session,
    storage: StorageClientBase,
    *,
    viewer_id: UUID,
    conversation_id: UUID,
    kind: AttachmentKind,
    category: StorageCategory,
    file_name: str,
    text: str,
    metadata: dict,
    message_id: UUID | None = None,
    body_text: str | None = None,
) -> Attachment:
    """Persist collaborator-produced text (scraped page, search digest) verbatim.

    The text is copied into extracted_text so downstream handling matches
    any other text document. The markdown blob holds body_text when given
    (e.g. a scraped page with its source header), else the text itself.

    Raises:
        ApiError(E_STORAGE_ERROR): If the blob cannot be written.
    """
    if kind is AttachmentKind.image:
        raise ValueError("Text attachments cannot be images")

    safe_name = generate_safe_filename(file_name)
    storage_path = build_storage_path(viewer_id, conversation_id, category, safe_name)
    body = (text if body_text is None else body_text).encode("utf-8")
    await _put(storage, storage_path, body, "text/markdown")

    attachment = Attachment(
        conversation_id=conversation_id,
        message_id=message_id,
        user_id=viewer_id,
        kind=kind.value,
        file_name=file_name,
        file_type="text/markdown",
        file_size=len(body),
        storage_path=storage_path,
        extracted_text=text,
        meta=dict(metadata),
    )
    attachment = await _persist(db, storage, attachment, [storage_path])
    logger.info(
        "attachment.created",
        attachment_id=str(attachment.id),
        kind=kind.value,
        file_size=len(body),
        has_thumbnail=False,
        has_text=True,
    )
    return attachment
