"""Web page scraping through the Jina reader.

Each URL becomes one text attachment under scraped/. The stored blob is
the page as markdown with a title/source header; extracted_text holds the
page content only. URLs are fetched concurrently and fail independently:
per-URL errors are collected and returned next to the attachments that
did succeed. If nothing succeeded the call fails with E_SCRAPE_FAILED.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import urlparse
from uuid import UUID

import httpx
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from doggo.db.models import Attachment, AttachmentKind, UsageEventType
from doggo.errors import ApiError, ApiErrorCode, InvalidRequestError
from doggo.logging import get_logger
from doggo.services.attachment_ingest import create_text_attachment
from doggo.services.conversations import get_conversation_for_viewer_or_404
from doggo.services.urls import filename_from_url, validate_requested_url
from doggo.services.usage import record_tool_usage
from doggo.storage.client import StorageClientBase
from doggo.storage.paths import StorageCategory

logger = get_logger(__name__)

MAX_URLS_PER_REQUEST = 5


@dataclass(frozen=True)
class ScrapedPage:
    url: str
    title: str
    content: str


@dataclass(frozen=True)
class ScrapeError:
    url: str
    error: str


@dataclass
class ScrapeOutcome:
    attachments: list[Attachment] = field(default_factory=list)
    errors: list[ScrapeError] = field(default_factory=list)


class JinaReader:
    """Thin client for the reader's JSON mode: GET {base_url}/{url}."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "X-Return-Format": "markdown"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def read(self, url: str) -> ScrapedPage:
        """Fetch one page.

        Raises:
            ApiError(E_SCRAPE_FAILED): On transport errors, non-2xx, or empty content.
        """
        try:
            response = await self._client.get(
                f"{self._base_url}/{url}", headers=self._headers(), timeout=self._timeout_s
            )
        except httpx.TimeoutException as e:
            raise ApiError(ApiErrorCode.E_SCRAPE_FAILED, "Timed out reading page") from e
        except httpx.RequestError as e:
            raise ApiError(ApiErrorCode.E_SCRAPE_FAILED, "Failed to reach page reader") from e

        if response.status_code == 429:
            raise ApiError(ApiErrorCode.E_SCRAPE_FAILED, "Page reader rate limit reached")
        if response.status_code >= 400:
            raise ApiError(
                ApiErrorCode.E_SCRAPE_FAILED, f"Page reader returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ApiError(ApiErrorCode.E_SCRAPE_FAILED, "Page reader returned invalid JSON") from e

        payload = (body.get("data") or {}) if isinstance(body, dict) else body
        if not isinstance(payload, dict):
            raise ApiError(
                ApiErrorCode.E_SCRAPE_FAILED, "Page reader returned an unexpected payload"
            )

        content = (payload.get("content") or "").strip()
        if not content:
            raise ApiError(ApiErrorCode.E_SCRAPE_FAILED, "No content extracted from page")

        title = (payload.get("title") or "").strip() or (urlparse(url).hostname or url)
        return ScrapedPage(url=url, title=title, content=content)


def render_scraped_markdown(page: ScrapedPage, scraped_at: datetime) -> str:
    return (
        f"# {page.title}\n\n"
        f"Source: {page.url}\n"
        f"Scraped: {scraped_at.isoformat()}\n\n"
        f"---\n\n"
        f"{page.content}\n"
    )


def validate_scrape_urls(urls: Sequence[str]) -> list[str]:
    """Dedupe and validate the requested URLs, preserving order.

    Raises:
        InvalidRequestError: No URLs, too many URLs, or an invalid URL.
    """
    unique = list(dict.fromkeys(u.strip() for u in urls if u and u.strip()))
    if not unique:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "At least one URL is required")
    if len(unique) > MAX_URLS_PER_REQUEST:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"At most {MAX_URLS_PER_REQUEST} URLs can be scraped at once",
        )
    for url in unique:
        validate_requested_url(url)
    return unique


async def _store_page(
    db: Session,
    storage: StorageClientBase,
    *,
    viewer_id: UUID,
    conversation_id: UUID,
    page: ScrapedPage,
) -> Attachment:
    scraped_at = datetime.now(UTC)
    return await create_text_attachment(
        db,
        storage,
        viewer_id=viewer_id,
        conversation_id=conversation_id,
        kind=AttachmentKind.text,
        category=StorageCategory.scraped,
        file_name=filename_from_url(page.url),
        text=page.content,
        body_text=render_scraped_markdown(page, scraped_at),
        metadata={
            "scraped": True,
            "source_url": page.url,
            "title": page.title,
            "scraped_at": scraped_at.isoformat(),
        },
    )


async def scrape_urls(
    db: Session,
    storage: StorageClientBase,
    reader: JinaReader,
    *,
    viewer_id: UUID,
    conversation_id: UUID,
    urls: Sequence[str],
) -> ScrapeOutcome:
    """Scrape up to five pages into attachments on a conversation.

    Raises:
        InvalidRequestError: If the URL list is invalid.
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation is not the viewer's.
        ApiError(E_SCRAPE_FAILED): If every URL failed.
    """
    targets = validate_scrape_urls(urls)
    await run_in_threadpool(get_conversation_for_viewer_or_404, db, viewer_id, conversation_id)

    # Row inserts share one session, so pages are read concurrently but stored in order
    pages = await asyncio.gather(*(reader.read(url) for url in targets), return_exceptions=True)

    outcome = ScrapeOutcome()
    for url, page in zip(targets, pages, strict=True):
        if isinstance(page, ApiError):
            outcome.errors.append(ScrapeError(url=url, error=page.message))
            continue
        if isinstance(page, BaseException):
            raise page
        try:
            attachment = await _store_page(
                db, storage, viewer_id=viewer_id, conversation_id=conversation_id, page=page
            )
        except ApiError as e:
            outcome.errors.append(ScrapeError(url=url, error=e.message))
            continue
        outcome.attachments.append(attachment)

    logger.info(
        "scrape.finished",
        conversation_id=str(conversation_id),
        requested=len(targets),
        succeeded=len(outcome.attachments),
        failed=len(outcome.errors),
    )

    if not outcome.attachments:
        raise ApiError(
            ApiErrorCode.E_SCRAPE_FAILED,
            "; ".join(f"{e.url}: {e.error}" for e in outcome.errors) or "Scrape failed",
        )

    await run_in_threadpool(
        record_tool_usage,
        db,
        user_id=viewer_id,
        conversation_id=conversation_id,
        event_type=UsageEventType.scrape,
        metadata={
            "urls_requested": len(targets),
            "urls_succeeded": len(outcome.attachments),
            "attachment_ids": [str(a.id) for a in outcome.attachments],
        },
    )
    return outcome
