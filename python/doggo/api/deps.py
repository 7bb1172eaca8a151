"""FastAPI dependencies for route handlers.

Viewer identity:
- The upstream BFF authenticates the user and forwards X-Doggo-User-Id
- In staging/prod, X-Doggo-Internal must equal DOGGO_INTERNAL_SECRET
  (constant-time comparison), otherwise 403 E_INTERNAL_ONLY
- /health needs neither header

Shared clients (httpx-backed router, storage, collaborators) live on
app.state and are created once in the application lifespan.
"""

import hmac
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request

from doggo.config import get_settings
from doggo.db.session import get_db, get_session_factory
from doggo.errors import ApiError, ApiErrorCode, ForbiddenError
from doggo.logging import get_logger, set_user_id
from doggo.services.chat import ChatService
from doggo.services.llm import LLMRouter
from doggo.services.scrape import JinaReader
from doggo.services.websearch import SerpApiClient
from doggo.storage.client import StorageClientBase

__all__ = [
    "Viewer",
    "get_chat_service",
    "get_db",
    "get_jina_reader",
    "get_llm_router",
    "get_serpapi_client",
    "get_session_factory",
    "get_storage",
    "get_viewer",
]

logger = get_logger(__name__)

USER_ID_HEADER = "x-doggo-user-id"
INTERNAL_HEADER = "x-doggo-internal"


@dataclass(frozen=True)
class Viewer:
    """The user on whose behalf the request runs."""

    user_id: UUID


def _verify_internal_header(request: Request) -> None:
    settings = get_settings()
    if not settings.requires_internal_header:
        return

    header_value = request.headers.get(INTERNAL_HEADER)
    if header_value is None:
        logger.warning("auth_failure", reason="internal_header_missing")
        raise ForbiddenError(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required")

    if not settings.doggo_internal_secret:
        # Validated at startup in staging/prod
        logger.error("auth_failure", reason="internal_secret_not_configured")
        raise ApiError(ApiErrorCode.E_INTERNAL, "Internal server error")

    if not hmac.compare_digest(header_value.encode(), settings.doggo_internal_secret.encode()):
        logger.warning("auth_failure", reason="internal_header_mismatch")
        raise ForbiddenError(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required")


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to identify the viewer.

    Raises:
        ForbiddenError(E_INTERNAL_ONLY): Internal header missing or wrong (staging/prod).
        ApiError(E_UNAUTHENTICATED): User header missing or not a UUID.
    """
    _verify_internal_header(request)

    raw = request.headers.get(USER_ID_HEADER)
    if not raw:
        logger.warning("auth_failure", reason="user_header_missing")
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    try:
        user_id = UUID(raw)
    except ValueError as e:
        logger.warning("auth_failure", reason="user_header_invalid")
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid user id") from e

    request.state.viewer_id = str(user_id)
    set_user_id(str(user_id))
    return Viewer(user_id=user_id)


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)


def get_llm_router(request: Request) -> LLMRouter:
    return request.app.state.llm_router


def get_storage(request: Request) -> StorageClientBase:
    return request.app.state.storage


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_jina_reader(request: Request) -> JinaReader:
    return request.app.state.jina_reader


def get_serpapi_client(request: Request) -> SerpApiClient:
    return request.app.state.serpapi_client
