"""Pytest configuration and fixtures for Doggo tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database (schema via create_all)
- The app's session factory is pointed at the same engine, so API tests
  and direct service tests see each other's committed rows
- Storage is the in-memory FakeStorageClient; provider adapters are fakes
  (tests.helpers.FakeAdapter) or respx-mocked HTTP

Environment is fixed before any doggo import: settings are cached and the
Celery app reads them at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DOGGO_ENV"] = "test"
for _var in (
    "DOGGO_INTERNAL_SECRET",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "SERPAPI_KEY",
    "JINA_API_KEY",
    "STORAGE_TEST_PREFIX",
):
    os.environ.pop(_var, None)

from collections.abc import AsyncGenerator, Generator  # noqa: E402
from uuid import UUID  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import Engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from doggo.config import clear_settings_cache, get_settings  # noqa: E402
from doggo.db.engine import create_db_engine  # noqa: E402
from doggo.db.models import Agent, Base, Conversation  # noqa: E402
from doggo.db.session import create_session_factory, set_session_factory  # noqa: E402
from doggo.services.chat import ChatService  # noqa: E402
from doggo.services.llm import LLMRouter  # noqa: E402
from doggo.services.llm.catalog import Provider  # noqa: E402
from doggo.services.scrape import JinaReader  # noqa: E402
from doggo.services.websearch import SerpApiClient  # noqa: E402
from doggo.storage.client import FakeStorageClient  # noqa: E402
from tests.factories import create_agent, create_conversation  # noqa: E402
from tests.helpers import (  # noqa: E402
    FakeAdapter,
    RecordingTitleDispatcher,
    create_test_user_id,
)

JINA_TEST_URL = "https://reader.test"
SERPAPI_TEST_URL = "https://search.test/search"

clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A fresh in-memory database with the full schema."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine):
    """Session factory bound to the test engine, installed as the app default."""
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session on the test engine."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return create_test_user_id()


@pytest.fixture
def agent(db_session: Session, test_user_id: UUID) -> Agent:
    return create_agent(db_session, test_user_id)


@pytest.fixture
def conversation(db_session: Session, agent: Agent) -> Conversation:
    return create_conversation(db_session, agent)


@pytest.fixture
def anthropic_adapter() -> FakeAdapter:
    return FakeAdapter(Provider.ANTHROPIC, text="Hello from Claude")


@pytest.fixture
def openai_adapter() -> FakeAdapter:
    return FakeAdapter(Provider.OPENAI, text="Hello from GPT")


@pytest.fixture
def llm_router(anthropic_adapter: FakeAdapter, openai_adapter: FakeAdapter) -> LLMRouter:
    """Router over fake adapters for both providers."""
    return LLMRouter(
        {Provider.ANTHROPIC: anthropic_adapter, Provider.OPENAI: openai_adapter},
        timeout_s=5,
    )


@pytest.fixture
def title_dispatcher() -> RecordingTitleDispatcher:
    return RecordingTitleDispatcher()


@pytest.fixture
def chat_service(
    llm_router: LLMRouter,
    storage: FakeStorageClient,
    settings,
    title_dispatcher: RecordingTitleDispatcher,
) -> ChatService:
    return ChatService(llm_router, storage, settings, title_dispatcher=title_dispatcher)


@pytest_asyncio.fixture
async def httpx_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Shared httpx client for respx-mocked tests."""
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def app(
    session_factory,
    llm_router: LLMRouter,
    storage: FakeStorageClient,
    chat_service: ChatService,
):
    """Application with fakes injected on app.state before startup."""
    from doggo.app import create_app

    app = create_app(log_requests=False)
    app.state.llm_router = llm_router
    app.state.storage = storage
    app.state.chat_service = chat_service
    return app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with fakes wired in.

    Collaborators are rebuilt on the app's own httpx client once startup has
    run, pointed at respx-mockable test hosts.
    """
    with TestClient(app) as client:
        shared = app.state.httpx_client
        app.state.jina_reader = JinaReader(shared, base_url=JINA_TEST_URL)
        app.state.serpapi_client = SerpApiClient(
            shared, base_url=SERPAPI_TEST_URL, api_key="serp-test-key"
        )
        yield client


INTERNAL_SECRET = "test-internal-secret"


@pytest.fixture
def internal_header_required(monkeypatch):
    """Staging settings: every viewer request must carry the internal secret."""
    monkeypatch.setenv("DOGGO_ENV", "staging")
    monkeypatch.setenv("DOGGO_INTERNAL_SECRET", INTERNAL_SECRET)
    clear_settings_cache()
    yield INTERNAL_SECRET
    clear_settings_cache()
