"""Scrape and web-search routes.

Both create attachments on a conversation; the client then references the
returned attachment ids in its next send.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from doggo.api.deps import (
    Viewer,
    get_db,
    get_jina_reader,
    get_serpapi_client,
    get_storage,
    get_viewer,
)
from doggo.responses import success_response
from doggo.schemas.attachment import AttachmentOut
from doggo.schemas.collaborators import (
    ScrapeErrorOut,
    ScrapeRequest,
    ScrapeResponse,
    WebSearchRequest,
)
from doggo.services.scrape import JinaReader, scrape_urls
from doggo.services.websearch import SerpApiClient, web_search
from doggo.storage.client import StorageClientBase

router = APIRouter(tags=["collaborators"])


@router.post("/conversations/{conversation_id}/scrape", status_code=201)
async def scrape(
    conversation_id: UUID,
    body: ScrapeRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    reader: Annotated[JinaReader, Depends(get_jina_reader)],
) -> dict:
    """Scrape up to 5 pages into text attachments.

    Per-URL failures are listed in `errors`; the rest still succeed.

    Errors:
        E_INVALID_REQUEST / E_INVALID_URL (400)
        E_CONVERSATION_NOT_FOUND (404)
        E_SCRAPE_FAILED (502): Every URL failed.
    """
    outcome = await scrape_urls(
        db,
        storage,
        reader,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        urls=body.urls,
    )
    response = ScrapeResponse(
        attachments=[AttachmentOut.from_row(a) for a in outcome.attachments],
        errors=[ScrapeErrorOut(url=e.url, error=e.error) for e in outcome.errors],
    )
    return success_response(response.model_dump(mode="json"))


@router.post("/conversations/{conversation_id}/websearch", status_code=201)
async def websearch(
    conversation_id: UUID,
    body: WebSearchRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    searcher: Annotated[SerpApiClient, Depends(get_serpapi_client)],
) -> dict:
    """Run a web search and store the digest as a websearch attachment.

    Errors:
        E_INVALID_REQUEST (400): Empty or overlong query.
        E_CONVERSATION_NOT_FOUND (404)
        E_SEARCH_FAILED (502): Provider error or no results.
        E_COLLABORATOR_NOT_CONFIGURED (503): SERPAPI_KEY is not set.
    """
    attachment = await web_search(
        db,
        storage,
        searcher,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        query=body.query,
        num_results=body.num_results,
    )
    return success_response(AttachmentOut.from_row(attachment).model_dump(mode="json"))
