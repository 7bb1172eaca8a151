"""Keeping user content and secrets out of logs.

Never logged: API keys and secrets, prompts and message text, extracted
document text, raw search queries. Log the size (``*_chars``, ``*_count``)
or a digest (``*_sha256``, ``*_hash``) instead.

Two guards:
- ``safe_kv`` checks call sites; it raises in local/test so a violation
  fails the test suite, and drops the keys elsewhere.
- ``scrub_forbidden_keys`` is a structlog processor that masks whatever
  slipped past, so nothing forbidden reaches the log sink.
"""

import hashlib
import os
from collections.abc import MutableMapping
from typing import Any

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "system_prompt",
        "content",
        "message_text",
        "extracted_text",
        "query",
        "raw_body",
        "api_key",
        "bearer",
        "token",
        "secret",
        "password",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars", "_count")

REDACTED = "[redacted]"

_STRICT_ENVS = ("local", "test")


def hash_text(value: str) -> str:
    """SHA-256 hex digest; correlates equal inputs across entries."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def is_forbidden_key(key: str) -> bool:
    return key in FORBIDDEN_KEYS and not key.endswith(REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs: Any) -> dict[str, Any]:
    """Return ``kwargs`` for a log call after checking the keys.

    Example:
        logger.info("llm.request.started", **safe_kv(provider="openai", message_chars=42))

    Raises:
        ValueError: On a forbidden key when DOGGO_ENV (or ``_env``) is local or test.
    """
    violations = sorted(key for key in kwargs if is_forbidden_key(key))
    if not violations:
        return kwargs

    env = _env or os.environ.get("DOGGO_ENV", "local")
    if env in _STRICT_ENVS:
        raise ValueError(f"Forbidden log keys: {violations}")

    structlog.get_logger(__name__).warning("safe_kv_violation", forbidden_keys=violations)
    return {key: value for key, value in kwargs.items() if key not in violations}


def scrub_forbidden_keys(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in event_dict:
        if is_forbidden_key(key):
            event_dict[key] = REDACTED
    return event_dict
