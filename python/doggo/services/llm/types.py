"""Shared type definitions for the provider layer.

- TextBlock / ImageBlock: typed content blocks (images carry inline bytes)
- Turn: provider-agnostic, role-tagged list of content blocks
- UnifiedRequest: system instructions plus ordered turns, built by the context builder
- CompletionParams: generation parameters with platform defaults
- LLMRequest: what an adapter receives (concrete model id resolved)
- LLMUsage / LLMResponse / LLMChunk: adapter outputs
- CompletionResult / CompletionDelta: what the router hands back to callers

Streaming invariants:
- Chunks with done=False MUST have usage=None
- Exactly ONE terminal chunk with done=True
- Terminal chunk MAY have usage and provider_request_id (if provider returns them)
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Union

DEFAULT_TEMPERATURE = 1.0
DEFAULT_MAX_TOKENS = 4096


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ImageBlock:
    """Inline image payload.

    Vision providers require the bytes in the request body, never a URL
    reference, so the block holds base64 data plus its media type.
    """

    media_type: str
    data_b64: str
    type: Literal["image"] = "image"

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str) -> "ImageBlock":
        return cls(media_type=media_type, data_b64=base64.b64encode(data).decode("ascii"))

    @property
    def data_uri(self) -> str:
        return f"data:{self.media_type};base64,{self.data_b64}"


ContentBlock = Union[TextBlock, ImageBlock]


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: "user" or "assistant" (system instructions live on UnifiedRequest)
        blocks: Ordered content blocks
    """

    role: Literal["user", "assistant"]
    blocks: tuple[ContentBlock, ...]

    @classmethod
    def text(cls, role: Literal["user", "assistant"], text: str) -> "Turn":
        return cls(role=role, blocks=(TextBlock(text),))

    @property
    def text_content(self) -> str:
        """Flattened text of all text blocks, used for persistence and size metrics."""
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def image_count(self) -> int:
        return sum(1 for b in self.blocks if isinstance(b, ImageBlock))


@dataclass(frozen=True)
class UnifiedRequest:
    """The provider-agnostic request produced by the context builder.

    Attributes:
        system: Agent system instructions ("" when the agent has none)
        turns: History turns in chronological order, new user turn last
    """

    system: str
    turns: tuple[Turn, ...]

    @property
    def image_count(self) -> int:
        return sum(t.image_count for t in self.turns)

    def without_images(self) -> "UnifiedRequest":
        """Copy of this request with every image block removed."""
        turns = []
        for turn in self.turns:
            blocks = tuple(b for b in turn.blocks if not isinstance(b, ImageBlock))
            turns.append(Turn(role=turn.role, blocks=blocks or (TextBlock(""),)))
        return UnifiedRequest(system=self.system, turns=tuple(turns))


@dataclass(frozen=True)
class CompletionParams:
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS


@dataclass(frozen=True)
class LLMRequest:
    """Request to an adapter.

    Attributes:
        model_name: Concrete provider model id (e.g. "claude-3-opus-20240229")
        system: System instructions
        turns: Conversation turns
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature (0.0 to 2.0), None uses provider default
    """

    model_name: str
    system: str
    turns: tuple[Turn, ...]
    max_tokens: int
    temperature: float | None = None


@dataclass(frozen=True)
class LLMUsage:
    """Token usage as reported by the provider (never estimated).

    Streaming responses may report only one side; missing counts are None.
    """

    input_tokens: int | None
    output_tokens: int | None

    @property
    def total_tokens(self) -> int:
        return (self.input_tokens or 0) + (self.output_tokens or 0)


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call."""

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


@dataclass(frozen=True)
class LLMChunk:
    """Single chunk from a streaming response.

    - done=False: delta_text contains new text, usage MUST be None
    - done=True: terminal chunk; delta_text may be empty, usage and
      provider_request_id are populated when the provider returns them
    """

    delta_text: str
    done: bool
    usage: LLMUsage | None = None
    provider_request_id: str | None = None

    def __post_init__(self):
        if not self.done and self.usage is not None:
            raise ValueError("Non-terminal chunks (done=False) must have usage=None")


@dataclass(frozen=True)
class CompletionDelta:
    """Incremental text from the router's streaming mode."""

    text: str


@dataclass(frozen=True)
class CompletionResult:
    """Normalized outcome of exactly one provider invocation.

    On failure ``content`` is empty, ``usage`` is zeroed and ``error_class``
    / ``error_message`` describe what went wrong. Callers never receive a
    provider exception.
    """

    success: bool
    content: str
    usage: LLMUsage
    model: str
    provider: str
    latency_ms: int = 0
    error_class: str | None = None
    error_message: str | None = None
    provider_request_id: str | None = None

    @classmethod
    def failure(
        cls,
        *,
        model: str,
        provider: str,
        error_class: str,
        error_message: str,
        latency_ms: int = 0,
    ) -> "CompletionResult":
        return cls(
            success=False,
            content="",
            usage=LLMUsage(input_tokens=0, output_tokens=0),
            model=model,
            provider=provider,
            latency_ms=latency_ms,
            error_class=error_class,
            error_message=error_message,
        )


class LLMOperation(str, Enum):
    """What a provider call is for; carried into log events."""

    CHAT_SEND = "chat_send"
    CHAT_STREAM = "chat_stream"
    TITLE = "title"
    OTHER = "other"


@dataclass(frozen=True)
class LLMCallContext:
    operation: LLMOperation = LLMOperation.OTHER
    conversation_id: str | None = None
