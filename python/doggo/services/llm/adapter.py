"""Abstract base class for provider adapters.

One adapter per Provider member. Adapters are configured explicitly
(shared httpx.AsyncClient, API key, base URL) by whoever builds the router;
nothing is read from the environment here.

Rules:
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Raw provider errors bubble up to the router for classification
- Each adapter converts Turn/ContentBlock to its provider's wire shape
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from doggo.services.llm.types import LLMChunk, LLMRequest, LLMResponse

CONNECT_TIMEOUT_S = 10.0


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters."""

    provider: str = ""

    def __init__(self, client: httpx.AsyncClient, *, api_key: str | None, base_url: str):
        """
        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            api_key: Platform key for this provider; None leaves it unconfigured.
            base_url: Provider API root, without trailing slash.
        """
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _timeout(self, timeout_s: float) -> httpx.Timeout:
        return httpx.Timeout(timeout_s, connect=min(CONNECT_TIMEOUT_S, timeout_s))

    @abstractmethod
    async def generate(self, req: LLMRequest, *, timeout_s: float) -> LLMResponse:
        """Non-streaming generation. Returns complete response.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
            LLMError: On a malformed provider response.
        """

    @abstractmethod
    def generate_stream(self, req: LLMRequest, *, timeout_s: float) -> AsyncIterator[LLMChunk]:
        """Streaming generation. Yields chunks until done=True.

        Exactly one terminal chunk is yielded; a stream that ends without the
        provider's terminal marker raises LLMError(PROVIDER_DOWN).
        """
