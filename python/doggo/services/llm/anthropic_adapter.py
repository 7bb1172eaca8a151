"""Anthropic Messages API adapter.

- Endpoint: POST {base_url}/v1/messages
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Request body:
{
  "model": "<model_name>",
  "max_tokens": 4096,
  "temperature": 1.0,
  "system": "<system_prompt>",
  "messages": [
    {"role": "user", "content": [
      {"type": "text", "text": "..."},
      {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "..."}}
    ]},
    {"role": "assistant", "content": [{"type": "text", "text": "..."}]}
  ]
}

Response (non-stream):
{
  "id": "msg_...",
  "content": [{"type": "text", "text": "<output_text>"}],
  "usage": {"input_tokens": 100, "output_tokens": 50}
}

Streaming:
- "stream": true
- message_start carries the id and input_tokens
- content_block_delta / text_delta carries text
- message_delta carries output_tokens
- message_stop is terminal
"""

import json
from collections.abc import AsyncIterator

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

ANTHROPIC_API_VERSION = "2023-06-01"


class AnthropicAdapter(LLMAdapter):
    """Anthropic adapter; system instructions go in the top-level ``system`` field."""

    provider = "anthropic"

    @property
    def messages_url(self) -> str:
        return f"{self._base_url}/v1/messages"

    async def generate(self, req: LLMRequest, *, timeout_s: float) -> LLMResponse:
        response = await self._client.post(
            self.messages_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout(timeout_s),
        )
        response.raise_for_status()
        return self._parse_response(response.json())

    async def generate_stream(self, req: LLMRequest, *, timeout_s: float) -> AsyncIterator[LLMChunk]:
        async with self._client.stream(
            "POST",
            self.messages_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self._timeout(timeout_s),
        ) as response:
            if response.is_error:
                # Read the body so the router can classify from the error JSON
                await response.aread()
            response.raise_for_status()

            provider_request_id: str | None = None
            input_tokens: int | None = None
            output_tokens: int | None = None
            received_stop = False

            async for line in response.aiter_lines():
                if not line or not line.startswith("data: "):
                    # "event: <type>" lines are redundant with data.type
                    continue

                try:
                    data = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue

                event_type = data.get("type", "")

                if event_type == "message_start":
                    message = data.get("message", {})
                    provider_request_id = message.get("id")
                    input_tokens = message.get("usage", {}).get("input_tokens")
                elif event_type == "content_block_delta":
                    delta = data.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield LLMChunk(delta_text=delta["text"], done=False)
                elif event_type == "message_delta":
                    usage_data = data.get("usage") or {}
                    if "output_tokens" in usage_data:
                        output_tokens = usage_data["output_tokens"]
                elif event_type == "error":
                    error = data.get("error", {})
                    raise LLMError(
                        LLMErrorClass.RATE_LIMIT
                        if error.get("type") == "rate_limit_error"
                        else LLMErrorClass.PROVIDER_DOWN,
                        f"Anthropic stream error: {error.get('type', 'unknown')}",
                        provider=self.provider,
                    )
                elif event_type == "message_stop":
                    received_stop = True
                    usage = None
                    if input_tokens is not None or output_tokens is not None:
                        usage = LLMUsage(input_tokens=input_tokens, output_tokens=output_tokens)
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=provider_request_id,
                    )
                    break

            if not received_stop:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Anthropic stream ended without message_stop event",
                    provider=self.provider,
                )

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key or "",
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        body: dict = {
            "model": req.model_name,
            "max_tokens": req.max_tokens,
            "messages": [self._turn_to_message(turn) for turn in req.turns],
            "stream": stream,
        }
        if req.system:
            body["system"] = req.system
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body

    def _turn_to_message(self, turn: Turn) -> dict:
        # Single-text turns keep the compact string form
        if len(turn.blocks) == 1 and isinstance(turn.blocks[0], TextBlock):
            return {"role": turn.role, "content": turn.blocks[0].text}
        return {"role": turn.role, "content": [self._block_to_part(b) for b in turn.blocks]}

    def _block_to_part(self, block: TextBlock | ImageBlock) -> dict:
        if isinstance(block, ImageBlock):
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": block.media_type,
                    "data": block.data_b64,
                },
            }
        return {"type": "text", "text": block.text}

    def _parse_response(self, data: dict) -> LLMResponse:
        if not isinstance(data.get("content"), list):
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Anthropic response missing content",
                provider=self.provider,
            )
        text = "".join(
            block.get("text", "") for block in data["content"] if block.get("type") == "text"
        )

        usage = None
        usage_data = data.get("usage")
        if usage_data:
            usage = LLMUsage(
                input_tokens=usage_data.get("input_tokens"),
                output_tokens=usage_data.get("output_tokens"),
            )

        return LLMResponse(text=text, usage=usage, provider_request_id=data.get("id"))
