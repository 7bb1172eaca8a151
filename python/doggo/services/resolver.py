"""Attachment resolver: attachment ids -> content ready for context building.

One batched row fetch, then per-attachment work runs concurrently, each
under its own timeout:
- images pass through untouched (the context builder downloads the bytes)
- documents with extracted_text pass through untouched
- documents without text are downloaded and extracted on demand; the
  lazily extracted text lives only on the resolved value, rows stay immutable

Per-id failures never abort the batch. They are logged and reported in
``ResolveResult.skipped`` with a reason; callers and tests assert on that
instead of on log lines. ``resolved`` is always a subset of the input ids,
in first-seen input order, each id at most once.
"""

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.db.models import Attachment, AttachmentKind
from doggo.logging import get_logger
from doggo.services.attachments import get_attachments_by_ids
from doggo.services.file_processing import PdfExtractionError, decode_text, extract_pdf_text
from doggo.storage.client import StorageClientBase, StorageError

logger = get_logger(__name__)

DEFAULT_FETCH_TIMEOUT_S = 15.0


class SkipReason(str, Enum):
    not_found = "not_found"
    blob_unavailable = "blob_unavailable"
    extraction_failed = "extraction_failed"
    timeout = "timeout"
    error = "error"


@dataclass(frozen=True)
class ResolvedAttachment:
    """Read-only view of an attachment as the context builder consumes it."""

    id: UUID
    kind: AttachmentKind
    file_name: str
    file_type: str
    storage_path: str
    extracted_text: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Attachment, extracted_text: str | None = None) -> "ResolvedAttachment":
        return cls(
            id=row.id,
            kind=row.attachment_kind,
            file_name=row.file_name,
            file_type=row.file_type,
            storage_path=row.storage_path,
            extracted_text=extracted_text if extracted_text is not None else row.extracted_text,
            metadata=dict(row.meta or {}),
        )


@dataclass(frozen=True)
class SkippedAttachment:
    id: UUID
    reason: SkipReason


@dataclass
class ResolveResult:
    resolved: list[ResolvedAttachment] = field(default_factory=list)
    skipped: list[SkippedAttachment] = field(default_factory=list)

    @property
    def resolved_ids(self) -> list[UUID]:
        return [a.id for a in self.resolved]


class _Skip(Exception):
    def __init__(self, reason: SkipReason):
        super().__init__(reason.value)
        self.reason = reason


def _dedupe(ids: Sequence[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    ordered = []
    for attachment_id in ids:
        if attachment_id not in seen:
            seen.add(attachment_id)
            ordered.append(attachment_id)
    return ordered


class AttachmentResolver:
    """Fetches attachment content for one conversation, best-effort."""

    def __init__(
        self, storage: StorageClientBase, *, fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    ):
        self._storage = storage
        self._fetch_timeout_s = fetch_timeout_s

    async def resolve(
        self,
        db: Session,
        *,
        viewer_id: UUID,
        conversation_id: UUID,
        ids: Sequence[UUID],
    ) -> ResolveResult:
        ordered = _dedupe(ids)
        if not ordered:
            return ResolveResult()

        rows = await run_in_threadpool(
            get_attachments_by_ids, db, viewer_id, conversation_id, ordered
        )

        result = ResolveResult()
        found = [rows[i] for i in ordered if i in rows]
        outcomes = await asyncio.gather(
            *(self._resolve_with_timeout(row) for row in found), return_exceptions=True
        )
        by_id = dict(zip((row.id for row in found), outcomes, strict=True))

        for attachment_id in ordered:
            if attachment_id not in rows:
                self._skip(result, attachment_id, SkipReason.not_found)
                continue
            outcome = by_id[attachment_id]
            if isinstance(outcome, ResolvedAttachment):
                result.resolved.append(outcome)
            elif isinstance(outcome, _Skip):
                self._skip(result, attachment_id, outcome.reason)
            elif isinstance(outcome, TimeoutError):
                self._skip(result, attachment_id, SkipReason.timeout)
            elif isinstance(outcome, Exception):
                logger.error(
                    "attachment.resolve.unexpected_error",
                    attachment_id=str(attachment_id),
                    error=type(outcome).__name__,
                )
                self._skip(result, attachment_id, SkipReason.error)
            else:
                # BaseException (cancellation) must not be absorbed
                raise outcome

        logger.info(
            "attachment.resolve.finished",
            requested_count=len(ordered),
            resolved_count=len(result.resolved),
            skipped_count=len(result.skipped),
        )
        return result

    def _skip(self, result: ResolveResult, attachment_id: UUID, reason: SkipReason) -> None:
        logger.warning(
            "attachment.resolve.skipped", attachment_id=str(attachment_id), reason=reason.value
        )
        result.skipped.append(SkippedAttachment(id=attachment_id, reason=reason))

    async def _resolve_with_timeout(self, row: Attachment) -> ResolvedAttachment:
        return await asyncio.wait_for(self._resolve_one(row), timeout=self._fetch_timeout_s)

    async def _resolve_one(self, row: Attachment) -> ResolvedAttachment:
        kind = row.attachment_kind
        if kind is AttachmentKind.image or row.extracted_text:
            return ResolvedAttachment.from_row(row)

        try:
            data = await self._storage.get_object(row.storage_path)
        except StorageError as e:
            raise _Skip(SkipReason.blob_unavailable) from e

        if kind is AttachmentKind.pdf:
            try:
                pdf = await run_in_threadpool(extract_pdf_text, data)
            except PdfExtractionError as e:
                raise _Skip(SkipReason.extraction_failed) from e
            text = pdf.text
        else:
            text = decode_text(data)

        logger.info(
            "attachment.resolve.lazy_extracted",
            attachment_id=str(row.id),
            kind=kind.value,
            text_chars=len(text),
        )
        return ResolvedAttachment.from_row(row, extracted_text=text)
