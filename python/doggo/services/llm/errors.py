"""Provider failures, normalized.

Adapters raise; the router classifies. A classified failure never escapes
the router as an exception: it becomes a failed ``CompletionResult`` and,
for chat, an assistant error turn carrying ``user_message_for(...)``.

Status mapping:
    401/403 -> E_LLM_INVALID_KEY     429 -> E_LLM_RATE_LIMIT
    404     -> E_MODEL_NOT_AVAILABLE 5xx, 529, no response -> E_LLM_PROVIDER_DOWN
    other 4xx -> inspected per provider (context overflow, unknown model),
                 else E_LLM_INVALID_REQUEST
"""

from collections.abc import Callable
from enum import Enum

import httpx


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    INVALID_REQUEST = "E_LLM_INVALID_REQUEST"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class LLMError(Exception):
    """A provider call failed with a known classification.

    Raised by adapters when they already know the class (missing key,
    malformed payload); everything else is classified by the router.
    """

    def __init__(self, error_class: LLMErrorClass, message: str, provider: str | None = None):
        super().__init__(message)
        self.error_class = error_class
        self.message = message
        self.provider = provider


_STATUS_CLASSES: dict[int, LLMErrorClass] = {
    401: LLMErrorClass.INVALID_KEY,
    403: LLMErrorClass.INVALID_KEY,
    404: LLMErrorClass.MODEL_NOT_AVAILABLE,
    429: LLMErrorClass.RATE_LIMIT,
}


def _error_fields(json_body: dict | None) -> tuple[str, str, str]:
    """(code, type, lowercased message) from an ``{"error": {...}}`` body."""
    error = json_body.get("error") if isinstance(json_body, dict) else None
    if not isinstance(error, dict):
        return "", "", ""
    return (
        str(error.get("code") or ""),
        str(error.get("type") or ""),
        str(error.get("message") or "").lower(),
    )


def _openai_4xx(code: str, error_type: str, message: str) -> LLMErrorClass | None:
    if code == "context_length_exceeded" or "maximum context length" in message:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    if code == "model_not_found" or ("model" in message and "does not exist" in message):
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    return None


def _anthropic_4xx(code: str, error_type: str, message: str) -> LLMErrorClass | None:
    if error_type == "invalid_request_error" and "too long" in message:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    if error_type == "not_found_error":
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    return None


_BODY_RULES: dict[str, Callable[[str, str, str], LLMErrorClass | None]] = {
    "openai": _openai_4xx,
    "anthropic": _anthropic_4xx,
}


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Classify one failed provider call.

    Args:
        provider: "anthropic" or "openai".
        status_code: HTTP status, when a response arrived.
        json_body: Parsed error body, when it was JSON.
        exception: Transport exception, when no response arrived.
    """
    if isinstance(exception, httpx.TimeoutException):
        return LLMErrorClass.TIMEOUT
    if status_code is None or status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN
    if status_code in _STATUS_CLASSES:
        return _STATUS_CLASSES[status_code]

    rule = _BODY_RULES.get(provider)
    matched = rule(*_error_fields(json_body)) if rule else None
    return matched or LLMErrorClass.INVALID_REQUEST


# Shown to the user as the assistant error turn.
ERROR_CLASS_TO_MESSAGE: dict[LLMErrorClass, str] = {
    LLMErrorClass.INVALID_KEY: "The model provider rejected our credentials. Please try again later.",
    LLMErrorClass.RATE_LIMIT: "The model provider is rate limiting requests. Please wait a moment and retry.",
    LLMErrorClass.CONTEXT_TOO_LARGE: "This conversation and its attachments are too large for the selected model.",
    LLMErrorClass.TIMEOUT: "The model took too long to respond. Please try again.",
    LLMErrorClass.PROVIDER_DOWN: "The model provider is currently unavailable. Please try again later.",
    LLMErrorClass.INVALID_REQUEST: "The model provider could not process this request.",
    LLMErrorClass.MODEL_NOT_AVAILABLE: "The selected model is not available right now.",
}


def user_message_for(error_class: str | None) -> str:
    try:
        return ERROR_CLASS_TO_MESSAGE[LLMErrorClass(error_class)]
    except ValueError:
        return ERROR_CLASS_TO_MESSAGE[LLMErrorClass.PROVIDER_DOWN]
