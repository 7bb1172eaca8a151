"""Tests for web search digests (SerpAPI mocked with respx)."""

from datetime import UTC, datetime

import httpx
import pytest
import respx
from sqlalchemy import select

from doggo.db.models import UsageEvent
from doggo.errors import ApiError, ApiErrorCode, InvalidRequestError
from doggo.services.websearch import (
    SearchResult,
    SerpApiClient,
    clamp_num_results,
    render_search_digest,
    safe_query,
    web_search,
)

SEARCH_URL = "https://search.test/search"

ORGANIC = {
    "organic_results": [
        {
            "position": 1,
            "title": "Best dog parks",
            "link": "https://parks.test/best",
            "snippet": "Ten parks your dog will love.",
            "source": "Parks Weekly",
        },
        {"position": 2, "title": "No link here"},
        {
            "position": 3,
            "title": "Leash laws",
            "link": "https://www.city.test/leash",
            "snippet": "What the city requires.",
        },
    ]
}


def _search_route():
    return respx.route(method="GET", host="search.test", path="/search")


def _client(httpx_client, api_key="serp-key"):
    return SerpApiClient(httpx_client, base_url=SEARCH_URL, api_key=api_key)


class TestHelpers:
    @pytest.mark.parametrize("value,expected", [(None, 5), (0, 1), (3, 3), (50, 10)])
    def test_clamp(self, value, expected):
        assert clamp_num_results(value) == expected

    def test_safe_query(self):
        assert safe_query("What's new in Python 3.13?") == "what-s-new-in-python-3-13-"
        assert len(safe_query("x" * 200)) == 50

    def test_digest(self):
        result = SearchResult(1, "Title", "https://a.test", "Snippet", "a.test")

        digest = render_search_digest("dogs", [result], datetime(2026, 1, 2, tzinfo=UTC))

        assert digest.startswith("# Search results: dogs\n\nSearched: 2026-01-02T00:00:00+00:00")
        assert "## [1] Title" in digest
        assert "URL: https://a.test" in digest


class TestSerpApiClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_search_params_and_parsing(self, httpx_client):
        route = _search_route().respond(200, json=ORGANIC)

        results = await _client(httpx_client).search("dog parks", 5)

        params = route.calls.last.request.url.params
        assert params["q"] == "dog parks"
        assert params["api_key"] == "serp-key"
        assert params["engine"] == "google"
        assert params["num"] == "5"

        assert [r.title for r in results] == ["Best dog parks", "Leash laws"]
        assert results[0].source == "Parks Weekly"
        assert results[1].source == "www.city.test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_results_capped(self, httpx_client):
        _search_route().respond(200, json=ORGANIC)

        assert len(await _client(httpx_client).search("dog parks", 1)) == 1

    @pytest.mark.asyncio
    async def test_not_configured(self, httpx_client):
        with pytest.raises(ApiError) as exc_info:
            await _client(httpx_client, api_key=None).search("dogs", 5)

        assert exc_info.value.code == ApiErrorCode.E_COLLABORATOR_NOT_CONFIGURED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(401),
            httpx.Response(200, json={"error": "Invalid API key."}),
            httpx.Response(200, content=b"not json"),
        ],
    )
    async def test_provider_errors(self, httpx_client, response):
        with respx.mock:
            _search_route().mock(return_value=response)

            with pytest.raises(ApiError) as exc_info:
                await _client(httpx_client).search("dogs", 5)

        assert exc_info.value.code == ApiErrorCode.E_SEARCH_FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error(self, httpx_client):
        _search_route().mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ApiError) as exc_info:
            await _client(httpx_client).search("dogs", 5)

        assert exc_info.value.code == ApiErrorCode.E_SEARCH_FAILED


class TestWebSearch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_digest_attachment(self, db_session, storage, conversation, httpx_client):
        _search_route().respond(200, json=ORGANIC)

        attachment = await web_search(
            db_session,
            storage,
            _client(httpx_client),
            viewer_id=conversation.user_id,
            conversation_id=conversation.id,
            query="  dog   parks ",
        )

        assert attachment.kind == "websearch"
        assert attachment.file_name.startswith("websearch-dog-parks-")
        assert attachment.extracted_text.startswith("# Search results: dog parks")
        assert attachment.meta["query"] == "dog parks"
        assert attachment.meta["num_results"] == 2
        assert [r["link"] for r in attachment.meta["results"]] == [
            "https://parks.test/best",
            "https://www.city.test/leash",
        ]
        assert "/websearch/" in attachment.storage_path

        events = list(db_session.scalars(select(UsageEvent)).all())
        assert [e.event_type for e in events] == ["websearch"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_results(self, db_session, storage, conversation, httpx_client):
        _search_route().respond(200, json={"organic_results": []})

        with pytest.raises(ApiError) as exc_info:
            await web_search(
                db_session,
                storage,
                _client(httpx_client),
                viewer_id=conversation.user_id,
                conversation_id=conversation.id,
                query="zzzz",
            )

        assert exc_info.value.code == ApiErrorCode.E_SEARCH_FAILED
        assert storage.paths == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", "q" * 501])
    async def test_invalid_query(self, db_session, storage, conversation, httpx_client, query):
        with pytest.raises(InvalidRequestError):
            await web_search(
                db_session,
                storage,
                _client(httpx_client),
                viewer_id=conversation.user_id,
                conversation_id=conversation.id,
                query=query,
            )
