"""Test helpers for viewer headers and provider fakes.

Provides:
- Header generation for test requests (viewer id, internal secret)
- FakeAdapter: scripted LLM adapter, no network
- RecordingTitleDispatcher: captures title dispatches instead of queueing
- SSE parsing for streaming responses
"""

import json
from collections.abc import AsyncIterator
from uuid import UUID, uuid4

from doggo.api.deps import INTERNAL_HEADER, USER_ID_HEADER
from doggo.services.llm.adapter import LLMAdapter
from doggo.services.llm.catalog import Provider
from doggo.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage


def create_test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return uuid4()


def viewer_headers(user_id: UUID | str, internal_secret: str | None = None) -> dict[str, str]:
    """Headers the upstream BFF sends for a viewer."""
    headers = {USER_ID_HEADER: str(user_id)}
    if internal_secret is not None:
        headers[INTERNAL_HEADER] = internal_secret
    return headers


class FakeAdapter(LLMAdapter):
    """Adapter that answers from a script and records every request.

    ``error`` is raised (from generate, or from the stream after
    ``fail_after_chunks`` deltas) instead of answering.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        text: str = "Hello there",
        usage: LLMUsage | None = None,
        error: Exception | None = None,
        fail_after_chunks: int = 0,
        api_key: str | None = "test-key",
    ):
        super().__init__(None, api_key=api_key, base_url=f"https://{provider.value}.fake.test")
        self.provider = provider.value
        self.text = text
        self.usage = usage or LLMUsage(input_tokens=12, output_tokens=5)
        self.error = error
        self.fail_after_chunks = fail_after_chunks
        self.requests: list[LLMRequest] = []

    async def generate(self, req: LLMRequest, *, timeout_s: float) -> LLMResponse:
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        return LLMResponse(text=self.text, usage=self.usage, provider_request_id="req-fake")

    async def generate_stream(self, req: LLMRequest, *, timeout_s: float) -> AsyncIterator[LLMChunk]:
        self.requests.append(req)
        pieces = self.text.split(" ")
        for i, piece in enumerate(pieces):
            if self.error is not None and i >= self.fail_after_chunks:
                raise self.error
            yield LLMChunk(delta_text=piece if i == 0 else f" {piece}", done=False)
        if self.error is not None:
            raise self.error
        yield LLMChunk(delta_text="", done=True, usage=self.usage, provider_request_id="req-fake")


class RecordingTitleDispatcher:
    """Stands in for enqueue_title_generation."""

    def __init__(self):
        self.calls: list[tuple[UUID, str | None]] = []

    def __call__(self, conversation_id: UUID, request_id: str | None = None) -> bool:
        self.calls.append((conversation_id, request_id))
        return True


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        event, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        if event is not None:
            events.append((event, data))
    return events
