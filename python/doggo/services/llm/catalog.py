"""Abstract model ids and their provider routes.

Agents store an abstract model id ("haiku", "gpt-4o", ...) rather than a
vendor model name. This table is the only place that knows which vendor and
which concrete model each id maps to. Adding a vendor means one Provider
member, table entries, and one adapter.

Resolution order:
1. Exact abstract id in MODEL_TABLE
2. Concrete vendor ids pass through, routed by prefix ("claude-" / "gpt-")
3. Anything else falls back to DEFAULT_MODEL so legacy agents keep working
"""

from dataclasses import dataclass
from enum import Enum

from doggo.logging import get_logger

logger = get_logger(__name__)


class Provider(str, Enum):
    """Vendors with a wired adapter."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass(frozen=True)
class ModelRoute:
    """Where an abstract model id goes.

    Attributes:
        requested: The id the caller asked for
        provider: Vendor that serves the call
        model_id: Concrete vendor model name sent on the wire
        supports_vision: Whether image blocks may be sent
        is_fallback: True when ``requested`` was unknown and the default was used
    """

    requested: str
    provider: Provider
    model_id: str
    supports_vision: bool = True
    is_fallback: bool = False


DEFAULT_MODEL = "haiku"

# abstract id -> (provider, concrete id)
MODEL_TABLE: dict[str, tuple[Provider, str]] = {
    "haiku": (Provider.ANTHROPIC, "claude-3-haiku-20240307"),
    "sonnet": (Provider.ANTHROPIC, "claude-3-sonnet-20240229"),
    "opus": (Provider.ANTHROPIC, "claude-3-opus-20240229"),
    "claude": (Provider.ANTHROPIC, "claude-3-haiku-20240307"),
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
    "gpt": (Provider.OPENAI, "gpt-4o-mini"),
}

_PREFIX_PROVIDERS: tuple[tuple[str, Provider], ...] = (
    ("claude-", Provider.ANTHROPIC),
    ("gpt-", Provider.OPENAI),
)

# Concrete ids known not to accept image input
_TEXT_ONLY_PREFIXES = ("gpt-3.5", "claude-2", "claude-instant")


def resolve_model(model_id: str | None, *, default: str = DEFAULT_MODEL) -> ModelRoute:
    """Resolve an abstract or concrete model id to a route.

    Unknown ids resolve to ``default``; only a misconfigured ``default``
    raises ValueError. The result depends only on the arguments.
    """
    requested = (model_id or "").strip()
    key = requested.lower()

    if key in MODEL_TABLE:
        provider, concrete = MODEL_TABLE[key]
        return ModelRoute(requested=requested, provider=provider, model_id=concrete)

    for prefix, provider in _PREFIX_PROVIDERS:
        if key.startswith(prefix):
            return ModelRoute(
                requested=requested,
                provider=provider,
                model_id=key,
                supports_vision=not key.startswith(_TEXT_ONLY_PREFIXES),
            )

    if default.lower() not in MODEL_TABLE:
        raise ValueError(f"Default model {default!r} is not in the model table")

    logger.warning("llm.model.unknown_fallback", requested_model=requested, default_model=default)
    provider, concrete = MODEL_TABLE[default.lower()]
    return ModelRoute(
        requested=requested,
        provider=provider,
        model_id=concrete,
        is_fallback=True,
    )


def available_models() -> list[str]:
    """Abstract ids offered to agent configuration, in table order."""
    return list(MODEL_TABLE)
