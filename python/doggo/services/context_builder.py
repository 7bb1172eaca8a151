"""Context builder: agent + history + attachments + new text -> UnifiedRequest.

Assembly order (what the model sees first):
1. History: the most recent ``history_limit`` turns (default 20), oldest
   first, one text block each. Older turns are silently truncated.
2. Document context: pdf/text/websearch attachments in resolver order, each
   rendered as "{icon} Document: {name}\\n{provenance}\\n{text}\\n---\\n".
   When any exist, the new text is wrapped in the document-context preamble.
   Empty new text with requested attachments becomes DEFAULT_ATTACHMENT_PROMPT,
   even when none of them resolved.
3. Image blocks: image attachments in resolver order, bytes inline (base64).
   A failed or slow download drops only that image.
4. The new user turn goes last: the text block, then the image blocks.

Determinism: given the same history, attachments and blob contents, two
builds produce equal UnifiedRequest values. Image downloads run
concurrently but are re-ordered to attachment order before assembly.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from doggo.db.models import AttachmentKind
from doggo.logging import get_logger
from doggo.services.llm.types import ImageBlock, TextBlock, Turn, UnifiedRequest
from doggo.services.resolver import ResolvedAttachment, SkippedAttachment, SkipReason
from doggo.storage.client import StorageClientBase, StorageError

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_IMAGE_FETCH_TIMEOUT_S = 15.0

DEFAULT_ATTACHMENT_PROMPT = "Analyze the provided file(s)"
CONTENT_UNAVAILABLE = "[Content unavailable]"

_ICONS = {
    AttachmentKind.pdf: "📄",
    AttachmentKind.text: "📝",
    AttachmentKind.websearch: "🔍",
}
_SCRAPED_ICON = "🌐"


class HistoryTurn(Protocol):
    """Anything with a role and flattened text; Message rows qualify."""

    role: str
    content: str


@dataclass
class BuildResult:
    request: UnifiedRequest
    dropped: list[SkippedAttachment] = field(default_factory=list)


def _provenance(attachment: ResolvedAttachment) -> str:
    meta = attachment.metadata
    if attachment.kind is AttachmentKind.websearch and meta.get("query"):
        return f"Search query: {meta['query']}"
    if meta.get("source_url"):
        return f"Source: {meta['source_url']}"
    if meta.get("page_count"):
        return f"Pages: {meta['page_count']}"
    return "Uploaded file"


def _icon(attachment: ResolvedAttachment) -> str:
    if attachment.kind is AttachmentKind.text and attachment.metadata.get("source_url"):
        return _SCRAPED_ICON
    return _ICONS.get(attachment.kind, "📄")


def render_document(attachment: ResolvedAttachment) -> str:
    text = (attachment.extracted_text or "").strip() or CONTENT_UNAVAILABLE
    return (
        f"{_icon(attachment)} Document: {attachment.file_name}\n"
        f"{_provenance(attachment)}\n"
        f"{text}\n"
        "---\n"
    )


def compose_user_text(
    new_text: str,
    attachments: Sequence[ResolvedAttachment],
    *,
    attachments_requested: bool = False,
) -> str:
    """The text block of the new user turn (steps 2 and the default prompt).

    Empty text gets the default prompt when any attachment was requested,
    even if none resolved, so the turn sent matches the turn stored.
    """
    question = new_text
    if not new_text.strip() and (attachments or attachments_requested):
        question = DEFAULT_ATTACHMENT_PROMPT

    documents = [a for a in attachments if a.kind.is_document]
    if not documents:
        return question

    context = "\n".join(render_document(a) for a in documents)
    return f"Document context:\n\n{context}\nQuestion: {question}"


def history_turns(history: Sequence[HistoryTurn], limit: int) -> list[Turn]:
    """The most recent ``limit`` turns, chronological. Empty turns are skipped."""
    recent = list(history)[-limit:] if limit > 0 else []
    return [Turn.text(turn.role, turn.content) for turn in recent if turn.content]


class ContextBuilder:
    """Assembles the provider-agnostic request for one chat send."""

    def __init__(
        self,
        storage: StorageClientBase,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        image_fetch_timeout_s: float = DEFAULT_IMAGE_FETCH_TIMEOUT_S,
    ):
        self._storage = storage
        self._history_limit = history_limit
        self._image_fetch_timeout_s = image_fetch_timeout_s

    async def build(
        self,
        system_prompt: str,
        history: Sequence[HistoryTurn],
        new_text: str,
        attachments: Sequence[ResolvedAttachment],
        *,
        attachments_requested: bool = False,
    ) -> BuildResult:
        turns = history_turns(history, self._history_limit)
        text = compose_user_text(
            new_text, attachments, attachments_requested=attachments_requested
        )

        images, dropped = await self._load_images(
            [a for a in attachments if a.kind is AttachmentKind.image]
        )
        turns.append(Turn(role="user", blocks=(TextBlock(text), *images)))

        request = UnifiedRequest(system=system_prompt or "", turns=tuple(turns))
        logger.info(
            "context.built",
            turn_count=len(request.turns),
            history_count=len(turns) - 1,
            document_count=sum(1 for a in attachments if a.kind.is_document),
            image_count=len(images),
            dropped_count=len(dropped),
            text_chars=len(text),
        )
        return BuildResult(request=request, dropped=dropped)

    async def _load_images(
        self, attachments: Sequence[ResolvedAttachment]
    ) -> tuple[list[ImageBlock], list[SkippedAttachment]]:
        outcomes = await asyncio.gather(
            *(self._fetch_image(a) for a in attachments), return_exceptions=True
        )

        images: list[ImageBlock] = []
        dropped: list[SkippedAttachment] = []
        for attachment, outcome in zip(attachments, outcomes, strict=True):
            if isinstance(outcome, ImageBlock):
                images.append(outcome)
                continue
            if isinstance(outcome, TimeoutError):
                reason = SkipReason.timeout
            elif isinstance(outcome, StorageError):
                reason = SkipReason.blob_unavailable
            elif isinstance(outcome, Exception):
                reason = SkipReason.error
            else:
                raise outcome
            logger.warning(
                "context.image_dropped", attachment_id=str(attachment.id), reason=reason.value
            )
            dropped.append(SkippedAttachment(id=attachment.id, reason=reason))
        return images, dropped

    async def _fetch_image(self, attachment: ResolvedAttachment) -> ImageBlock:
        data = await asyncio.wait_for(
            self._storage.get_object(attachment.storage_path),
            timeout=self._image_fetch_timeout_s,
        )
        return ImageBlock.from_bytes(data, attachment.file_type or "image/jpeg")
