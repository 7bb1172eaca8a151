"""Provider router: model resolution, adapter dispatch and error normalization.

- Resolves an abstract model id to a ModelRoute via the catalog
- Dispatches to the one adapter registered for the route's Provider
- Bounds every call by ``timeout_s`` (never above 60s)
- Centralizes error classification (one place, not per adapter)
- Exactly one provider call per request: no retries, no cross-provider fallback

Two layers:
- generate / generate_stream raise LLMError with a normalized class
- complete / stream never raise for provider failures; they return (or end
  with) a CompletionResult whose ``success`` is False

Observability:
- Emits llm.request.started / llm.request.finished / llm.request.failed events
- All events go through safe_kv() so no text content is logged
"""

import asyncio
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing

import httpx

from doggo.config import MAX_LLM_TIMEOUT_S, Settings
from doggo.logging import get_logger
from doggo.services.llm.adapter import LLMAdapter
from doggo.services.llm.anthropic_adapter import AnthropicAdapter
from doggo.services.llm.catalog import DEFAULT_MODEL, ModelRoute, Provider, resolve_model
from doggo.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from doggo.services.llm.openai_adapter import OpenAIAdapter
from doggo.services.llm.types import (
    CompletionDelta,
    CompletionParams,
    CompletionResult,
    LLMCallContext,
    LLMChunk,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    UnifiedRequest,
)
from doggo.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = MAX_LLM_TIMEOUT_S


def _base_log_fields(
    route: ModelRoute,
    req: LLMRequest,
    streaming: bool,
    call_ctx: LLMCallContext | None,
) -> dict:
    fields: dict = {
        "provider": route.provider.value,
        "model_name": req.model_name,
        "requested_model": route.requested,
        "streaming": streaming,
        "llm_operation": call_ctx.operation.value if call_ctx else LLMOperation.OTHER.value,
        "turn_count": len(req.turns),
        "image_count": sum(t.image_count for t in req.turns),
        "message_chars": len(req.system) + sum(len(t.text_content) for t in req.turns),
    }
    if call_ctx and call_ctx.conversation_id:
        fields["conversation_id"] = call_ctx.conversation_id
    return fields


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Parse an error body, returning None when it is not JSON."""
    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None


class LLMRouter:
    """Routes unified requests to the adapter for their model's provider."""

    def __init__(
        self,
        adapters: Mapping[Provider, LLMAdapter],
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_model: str = DEFAULT_MODEL,
    ):
        """
        Args:
            adapters: One adapter per Provider; providers without an entry are unavailable.
            timeout_s: Upper bound for one provider call, clamped to 60s.
            default_model: Abstract id used for unknown model ids.
        """
        self._adapters = dict(adapters)
        self._timeout_s = min(float(timeout_s), float(MAX_LLM_TIMEOUT_S))
        self._default_model = default_model

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "LLMRouter":
        """Build the production router with injected keys and endpoints."""
        return cls(
            {
                Provider.ANTHROPIC: AnthropicAdapter(
                    client,
                    api_key=settings.anthropic_api_key,
                    base_url=settings.anthropic_base_url,
                ),
                Provider.OPENAI: OpenAIAdapter(
                    client,
                    api_key=settings.openai_api_key,
                    base_url=settings.openai_base_url,
                ),
            },
            timeout_s=settings.llm_timeout_s,
            default_model=settings.default_model,
        )

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def route(self, model_id: str | None) -> ModelRoute:
        """Resolve an abstract model id. Unknown ids resolve to the default model."""
        return resolve_model(model_id, default=self._default_model)

    def resolve_adapter(self, route: ModelRoute) -> LLMAdapter:
        """Get the adapter for a route.

        Raises:
            LLMError: MODEL_NOT_AVAILABLE when no adapter is wired for the
                provider, INVALID_KEY when it has no API key configured.
        """
        adapter = self._adapters.get(route.provider)
        if adapter is None:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"No adapter for provider {route.provider.value}",
                provider=route.provider.value,
            )
        if not adapter.is_configured:
            raise LLMError(
                LLMErrorClass.INVALID_KEY,
                f"No API key configured for provider {route.provider.value}",
                provider=route.provider.value,
            )
        return adapter

    def is_provider_available(self, provider: Provider) -> bool:
        adapter = self._adapters.get(provider)
        return adapter is not None and adapter.is_configured

    def build_llm_request(
        self,
        request: UnifiedRequest,
        route: ModelRoute,
        params: CompletionParams | None = None,
    ) -> LLMRequest:
        """Bind a unified request to a concrete model.

        Image blocks are removed when the route does not accept vision input;
        the text of the turn is kept.
        """
        params = params or CompletionParams()
        if request.image_count and not route.supports_vision:
            logger.warning(
                "llm.request.images_dropped",
                model_name=route.model_id,
                image_count=request.image_count,
            )
            request = request.without_images()

        return LLMRequest(
            model_name=route.model_id,
            system=request.system,
            turns=request.turns,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
        )

    def _normalize_error(self, route: ModelRoute, exc: Exception) -> LLMError:
        """Map any adapter exception to an LLMError with a normalized class."""
        provider = route.provider.value
        if isinstance(exc, LLMError):
            return exc
        if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
            return LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=provider)
        if isinstance(exc, httpx.HTTPStatusError):
            json_body = _safe_parse_json(exc.response)
            error_class = classify_provider_error(
                provider, exc.response.status_code, json_body, None
            )
            return LLMError(
                error_class,
                f"Provider returned HTTP {exc.response.status_code}",
                provider=provider,
            )
        if isinstance(exc, httpx.NetworkError):
            return LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=provider)
        return LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            f"Unexpected error: {type(exc).__name__}",
            provider=provider,
        )

    def _log_failure(self, base: dict, error: LLMError, start: float) -> None:
        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                latency_ms=_elapsed_ms(start),
            ),
        )

    def _log_success(
        self, base: dict, usage: LLMUsage | None, request_id: str | None, start: float
    ) -> None:
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=_elapsed_ms(start),
                tokens_input=usage.input_tokens if usage else None,
                tokens_output=usage.output_tokens if usage else None,
                provider_request_id=request_id,
            ),
        )

    async def generate(
        self,
        route: ModelRoute,
        req: LLMRequest,
        *,
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        """Non-streaming generation bounded by the router timeout.

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(route)
        base = _base_log_fields(route, req, streaming=False, call_ctx=call_context)
        logger.info("llm.request.started", **safe_kv(**base))

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                adapter.generate(req, timeout_s=self._timeout_s),
                timeout=self._timeout_s,
            )
        except Exception as exc:
            error = self._normalize_error(route, exc)
            self._log_failure(base, error, start)
            if error is exc:
                raise
            raise error from exc

        self._log_success(base, response.usage, response.provider_request_id, start)
        return response

    async def generate_stream(
        self,
        route: ModelRoute,
        req: LLMRequest,
        *,
        call_context: LLMCallContext | None = None,
    ) -> AsyncIterator[LLMChunk]:
        """Streaming generation; yields chunks until the terminal chunk.

        The whole stream shares one deadline of ``timeout_s``; passing it
        raises LLMError(TIMEOUT) even if the provider is still sending.

        Raises:
            LLMError: With normalized error class on failure.
        """
        adapter = self.resolve_adapter(route)
        base = _base_log_fields(route, req, streaming=True, call_ctx=call_context)
        logger.info("llm.request.started", **safe_kv(**base))

        start = time.monotonic()
        deadline = start + self._timeout_s
        try:
            async with aclosing(adapter.generate_stream(req, timeout_s=self._timeout_s)) as chunks:
                async for chunk in chunks:
                    if time.monotonic() > deadline:
                        raise TimeoutError("stream exceeded deadline")
                    if chunk.done:
                        self._log_success(base, chunk.usage, chunk.provider_request_id, start)
                    yield chunk
        except Exception as exc:
            error = self._normalize_error(route, exc)
            self._log_failure(base, error, start)
            if error is exc:
                raise
            raise error from exc

    async def complete(
        self,
        request: UnifiedRequest,
        model_id: str | None,
        params: CompletionParams | None = None,
        *,
        call_context: LLMCallContext | None = None,
    ) -> CompletionResult:
        """One-shot completion. Provider failures come back as a failed result."""
        route = self.route(model_id)
        llm_request = self.build_llm_request(request, route, params)
        start = time.monotonic()
        try:
            response = await self.generate(route, llm_request, call_context=call_context)
        except LLMError as e:
            return CompletionResult.failure(
                model=route.model_id,
                provider=route.provider.value,
                error_class=e.error_class.value,
                error_message=e.message,
                latency_ms=_elapsed_ms(start),
            )

        return CompletionResult(
            success=True,
            content=response.text,
            usage=response.usage or LLMUsage(input_tokens=0, output_tokens=0),
            model=route.model_id,
            provider=route.provider.value,
            latency_ms=_elapsed_ms(start),
            provider_request_id=response.provider_request_id,
        )

    async def stream(
        self,
        request: UnifiedRequest,
        model_id: str | None,
        params: CompletionParams | None = None,
        *,
        call_context: LLMCallContext | None = None,
    ) -> AsyncIterator[CompletionDelta | CompletionResult]:
        """Streaming completion.

        Yields CompletionDelta items, then exactly one CompletionResult as the
        terminal marker: success=True ("done", content is the full text) or
        success=False ("error"; partial text is discarded).
        """
        route = self.route(model_id)
        llm_request = self.build_llm_request(request, route, params)
        start = time.monotonic()
        parts: list[str] = []
        chunks = self.generate_stream(route, llm_request, call_context=call_context)
        try:
            async with aclosing(chunks):
                async for chunk in chunks:
                    if chunk.delta_text:
                        parts.append(chunk.delta_text)
                        yield CompletionDelta(chunk.delta_text)
                    if chunk.done:
                        yield CompletionResult(
                            success=True,
                            content="".join(parts),
                            usage=chunk.usage or LLMUsage(input_tokens=0, output_tokens=0),
                            model=route.model_id,
                            provider=route.provider.value,
                            latency_ms=_elapsed_ms(start),
                            provider_request_id=chunk.provider_request_id,
                        )
                        return
        except LLMError as e:
            yield CompletionResult.failure(
                model=route.model_id,
                provider=route.provider.value,
                error_class=e.error_class.value,
                error_message=e.message,
                latency_ms=_elapsed_ms(start),
            )
