"""Web search digests through SerpAPI.

One query becomes one `websearch` attachment: a markdown digest of the
organic results stored under websearch/. The digest is also the
attachment's extracted_text, so the context builder renders it like any
other document. Metadata keeps the structured results for the UI.
"""

import re
import time
from dataclasses import dataclass
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
from doggo.services.redact import hash_text
from doggo.services.usage import record_tool_usage
from doggo.storage.client import StorageClientBase
from doggo.storage.paths import StorageCategory

logger = get_logger(__name__)

DEFAULT_NUM_RESULTS = 5
MAX_NUM_RESULTS = 10
MAX_QUERY_CHARS = 500
METADATA_SNIPPET_CHARS = 200
SEARCH_ENGINE = "serpapi"

_UNSAFE_QUERY_CHARS = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SearchResult:
    position: int
    title: str
    link: str
    snippet: str
    source: str


def clamp_num_results(num_results: int | None) -> int:
    if num_results is None:
        return DEFAULT_NUM_RESULTS
    return max(1, min(num_results, MAX_NUM_RESULTS))


def safe_query(query: str) -> str:
    """Filename-safe slug of a query.

    Example:
        >>> safe_query("What's new in Python 3.13?")
        'what-s-new-in-python-3-13-'
    """
    return _UNSAFE_QUERY_CHARS.sub("-", query.lower())[:50]


class SerpApiClient:
    """Google engine search through SerpAPI's JSON endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str | None,
        timeout_s: float = 30.0,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._api_key = api_key
        self._timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def search(self, query: str, num_results: int) -> list[SearchResult]:
        """Run one search.

        Raises:
            ApiError(E_COLLABORATOR_NOT_CONFIGURED): If no API key is set.
            ApiError(E_SEARCH_FAILED): On transport errors, non-2xx, or an API error body.
        """
        if not self.configured:
            raise ApiError(ApiErrorCode.E_COLLABORATOR_NOT_CONFIGURED, "Web search is not configured")

        params = {
            "q": query,
            "api_key": self._api_key,
            "engine": "google",
            "num": num_results,
        }
        try:
            response = await self._client.get(
                self._base_url, params=params, timeout=self._timeout_s
            )
        except httpx.TimeoutException as e:
            raise ApiError(ApiErrorCode.E_SEARCH_FAILED, "Web search timed out") from e
        except httpx.RequestError as e:
            raise ApiError(ApiErrorCode.E_SEARCH_FAILED, "Failed to reach search provider") from e

        if response.status_code >= 400:
            raise ApiError(
                ApiErrorCode.E_SEARCH_FAILED, f"Search provider returned HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ApiError(ApiErrorCode.E_SEARCH_FAILED, "Search provider returned invalid JSON") from e
        if body.get("error"):
            raise ApiError(ApiErrorCode.E_SEARCH_FAILED, "Search provider returned an error")

        results = []
        for index, item in enumerate(body.get("organic_results") or [], start=1):
            link = item.get("link")
            if not link:
                continue
            results.append(
                SearchResult(
                    position=item.get("position") or index,
                    title=item.get("title") or link,
                    link=link,
                    snippet=item.get("snippet") or "",
                    source=item.get("source") or urlparse(link).hostname or "",
                )
            )
        return results[:num_results]


def render_search_digest(
    query: str, results: list[SearchResult], searched_at: datetime
) -> str:
    lines = [
        f"# Search results: {query}",
        "",
        f"Searched: {searched_at.isoformat()}",
        f"Results: {len(results)}",
        "",
    ]
    for i, result in enumerate(results, start=1):
        lines += [
            f"## [{i}] {result.title}",
            "",
            f"Source: {result.source}",
            f"URL: {result.link}",
            "",
            result.snippet,
            "",
            "---",
            "",
        ]
    return "\n".join(lines)


async def web_search(
    db: Session,
    storage: StorageClientBase,
    searcher: SerpApiClient,
    *,
    viewer_id: UUID,
    conversation_id: UUID,
    query: str,
    num_results: int | None = None,
) -> Attachment:
    """Search the web and store the digest as an attachment on a conversation.

    Raises:
        InvalidRequestError: Empty or overlong query.
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation is not the viewer's.
        ApiError(E_COLLABORATOR_NOT_CONFIGURED | E_SEARCH_FAILED): Provider problems,
            including a search with no results.
    """
    query = " ".join((query or "").split())
    if not query:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Query is required")
    if len(query) > MAX_QUERY_CHARS:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"Query exceeds {MAX_QUERY_CHARS} characters"
        )
    num = clamp_num_results(num_results)

    await run_in_threadpool(get_conversation_for_viewer_or_404, db, viewer_id, conversation_id)

    results = await searcher.search(query, num)
    if not results:
        logger.info("websearch.no_results", query_hash=hash_text(query))
        raise ApiError(ApiErrorCode.E_SEARCH_FAILED, "No search results found")

    searched_at = datetime.now(UTC)
    digest = render_search_digest(query, results, searched_at)
    attachment = await create_text_attachment(
        db,
        storage,
        viewer_id=viewer_id,
        conversation_id=conversation_id,
        kind=AttachmentKind.websearch,
        category=StorageCategory.websearch,
        file_name=f"websearch-{safe_query(query)}-{int(time.time() * 1000)}.md",
        text=digest,
        metadata={
            "websearch": True,
            "query": query,
            "num_results": len(results),
            "search_engine": SEARCH_ENGINE,
            "searched_at": searched_at.isoformat(),
            "results": [
                {
                    "position": r.position,
                    "title": r.title,
                    "link": r.link,
                    "snippet": r.snippet[:METADATA_SNIPPET_CHARS],
                }
                for r in results
            ],
        },
    )

    await run_in_threadpool(
        record_tool_usage,
        db,
        user_id=viewer_id,
        conversation_id=conversation_id,
        event_type=UsageEventType.websearch,
        metadata={"num_results": len(results), "attachment_id": str(attachment.id)},
    )
    logger.info(
        "websearch.finished",
        conversation_id=str(conversation_id),
        query_hash=hash_text(query),
        num_results=len(results),
    )
    return attachment
