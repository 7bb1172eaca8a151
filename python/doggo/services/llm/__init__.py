"""Provider layer: one uniform completion contract over several LLM vendors.

- catalog: abstract model id -> {provider, concrete model id}
- adapters: per-provider wire translation (async, httpx.AsyncClient)
- router: dispatch, timeout bound, error normalization, CompletionResult
- errors: normalized error classes and user-facing messages

Usage:
    from doggo.services.llm import LLMRouter, UnifiedRequest, Turn

    router = LLMRouter.from_settings(httpx_client, settings)
    request = UnifiedRequest(system="You are helpful.", turns=(Turn.text("user", "Hello!"),))
    result = await router.complete(request, "haiku")
    if result.success:
        print(result.content, result.usage.total_tokens)

Rules:
- No retries inside adapters or router
- No DB access inside this package
- No logging of request/response bodies
"""

from doggo.services.llm.adapter import LLMAdapter
from doggo.services.llm.anthropic_adapter import AnthropicAdapter
from doggo.services.llm.catalog import (
    DEFAULT_MODEL,
    MODEL_TABLE,
    ModelRoute,
    Provider,
    available_models,
    resolve_model,
)
from doggo.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    classify_provider_error,
    user_message_for,
)
from doggo.services.llm.openai_adapter import OpenAIAdapter
from doggo.services.llm.router import LLMRouter
from doggo.services.llm.types import (
    CompletionDelta,
    CompletionParams,
    CompletionResult,
    ContentBlock,
    ImageBlock,
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    TextBlock,
    Turn,
    UnifiedRequest,
)

__all__ = [
    # Core types
    "TextBlock",
    "ImageBlock",
    "ContentBlock",
    "Turn",
    "UnifiedRequest",
    "CompletionParams",
    "CompletionResult",
    "CompletionDelta",
    "LLMRequest",
    "LLMResponse",
    "LLMChunk",
    "LLMUsage",
    "LLMOperation",
    "LLMCallContext",
    # Catalog
    "Provider",
    "ModelRoute",
    "MODEL_TABLE",
    "DEFAULT_MODEL",
    "resolve_model",
    "available_models",
    # Adapters
    "LLMAdapter",
    "AnthropicAdapter",
    "OpenAIAdapter",
    # Router
    "LLMRouter",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_provider_error",
    "user_message_for",
]
