"""OpenAI Chat Completions adapter.

- Endpoint: POST {base_url}/v1/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json

Turn conversion:
- System instructions become a leading {"role": "system"} message
- Text-only turns use string content
- Turns with images use content parts:
  [{"type": "text", "text": "..."},
   {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,..."}}]

Response (non-stream):
{
  "id": "chatcmpl-...",
  "choices": [{"message": {"content": "..."}}],
  "usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}
}

Streaming:
- "stream": true, "stream_options": {"include_usage": true}
- data: {...choices[0].delta.content...}
- the final data chunk before [DONE] carries usage with empty choices
- data: [DONE] is terminal
"""

import json
from collections.abc import AsyncIterator

import httpx

from doggo.logging import get_logger
from doggo.services.llm.adapter import LLMAdapter
from doggo.services.llm.errors import LLMError, LLMErrorClass
from doggo.services.llm.types import (
    ImageBlock,
    LLMChunk,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    TextBlock,
    Turn,
)

logger = get_logger(__name__)


class OpenAIAdapter(LLMAdapter):
    """OpenAI adapter for chat completions."""

    provider = "openai"

    @property
    def chat_url(self) -> str:
        return f"{self._base_url}/v1/chat/completions"

    async def generate(self, req: LLMRequest, *, timeout_s: float) -> LLMResponse:
        response = await self._client.post(
            self.chat_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout(timeout_s),
        )
        response.raise_for_status()
        return self._parse_response(response.json(), response.headers)

    async def generate_stream(self, req: LLMRequest, *, timeout_s: float) -> AsyncIterator[LLMChunk]:
        async with self._client.stream(
            "POST",
            self.chat_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self._timeout(timeout_s),
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            provider_request_id = response.headers.get("x-request-id")
            usage: LLMUsage | None = None
            received_done = False

            async for line in response.aiter_lines():
                if not line or not line.startswith("data: "):
                    continue

                data_str = line[6:]
                if data_str == "[DONE]":
                    received_done = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=provider_request_id,
                    )
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                provider_request_id = provider_request_id or data.get("id")

                # Usage arrives on its own chunk; hold it for the terminal chunk
                if data.get("usage"):
                    usage = LLMUsage(
                        input_tokens=data["usage"].get("prompt_tokens"),
                        output_tokens=data["usage"].get("completion_tokens"),
                    )

                choices = data.get("choices") or []
                if not choices:
                    continue
                delta_text = (choices[0].get("delta") or {}).get("content") or ""
                if delta_text:
                    yield LLMChunk(delta_text=delta_text, done=False)

            if not received_done:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "OpenAI stream ended without [DONE] marker",
                    provider=self.provider,
                )

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key or ''}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        messages: list[dict] = []
        if req.system:
            messages.append({"role": "system", "content": req.system})
        messages.extend(self._turn_to_message(turn) for turn in req.turns)

        body: dict = {
            "model": req.model_name,
            "messages": messages,
            "max_tokens": req.max_tokens,
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body

    def _turn_to_message(self, turn: Turn) -> dict:
        if len(turn.blocks) == 1 and isinstance(turn.blocks[0], TextBlock):
            return {"role": turn.role, "content": turn.blocks[0].text}
        return {"role": turn.role, "content": [self._block_to_part(b) for b in turn.blocks]}

    def _block_to_part(self, block: TextBlock | ImageBlock) -> dict:
        if isinstance(block, ImageBlock):
            return {"type": "image_url", "image_url": {"url": block.data_uri}}
        return {"type": "text", "text": block.text}

    def _parse_response(self, data: dict, headers: httpx.Headers) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "OpenAI response missing choices",
                provider=self.provider,
            )

        text = (choices[0].get("message") or {}).get("content") or ""

        usage = None
        usage_data = data.get("usage")
        if usage_data:
            usage = LLMUsage(
                input_tokens=usage_data.get("prompt_tokens"),
                output_tokens=usage_data.get("completion_tokens"),
            )

        provider_request_id = headers.get("x-request-id") or data.get("id")
        return LLMResponse(text=text, usage=usage, provider_request_id=provider_request_id)
