"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, request-id middleware, and routes.

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all responses (including auth failures) get X-Request-ID

Client Lifecycle:
- One httpx.AsyncClient is created at startup and stored in app.state
- LLMRouter, storage and both collaborators wrap that shared client
- ChatService is built once from router + storage + settings
- The client is closed at shutdown

Anything already placed on app.state before startup (tests inject fakes)
is left as is.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from doggo.api.routes import create_api_router
from doggo.config import get_settings
from doggo.logging import configure_logging, get_logger
from doggo.middleware.request_id import RequestIDMiddleware
from doggo.responses import register_exception_handlers
from doggo.services.chat import ChatService
from doggo.services.llm import LLMRouter
from doggo.services.scrape import JinaReader
from doggo.services.websearch import SerpApiClient
from doggo.storage.client import build_storage_client

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def _set_default(app: FastAPI, name: str, factory) -> None:
    if getattr(app.state, name, None) is None:
        setattr(app.state, name, factory())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources."""
    settings = get_settings()

    client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.httpx_client = client

    _set_default(app, "llm_router", lambda: LLMRouter.from_settings(client, settings))
    _set_default(app, "storage", lambda: build_storage_client(client, settings))
    _set_default(
        app,
        "chat_service",
        lambda: ChatService(app.state.llm_router, app.state.storage, settings),
    )
    _set_default(
        app,
        "jina_reader",
        lambda: JinaReader(
            client,
            base_url=settings.jina_reader_url,
            api_key=settings.jina_api_key,
            timeout_s=settings.collaborator_timeout_s,
        ),
    )
    _set_default(
        app,
        "serpapi_client",
        lambda: SerpApiClient(
            client,
            base_url=settings.serpapi_url,
            api_key=settings.serpapi_key,
            timeout_s=settings.collaborator_timeout_s,
        ),
    )

    logger.info(
        "app_started",
        env=settings.doggo_env.value,
        anthropic_configured=bool(settings.anthropic_api_key),
        openai_configured=bool(settings.openai_api_key),
        websearch_configured=bool(settings.serpapi_key),
    )

    yield

    await client.aclose()
    logger.info("httpx_client_closed")


def create_app(log_requests: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        log_requests: Whether the request-id middleware writes access entries.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Doggo API",
        description="Conversation context assembly and multi-provider LLM chat",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(create_api_router())

    # Added last so it runs first
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)

    logger.info(
        "app_created",
        env=settings.doggo_env.value,
        internal_header_required=settings.requires_internal_header,
    )
    return app
