"""Tests for log context and redaction.

- Request and task context is merged into every event
- safe_kv rejects content and secret keys in local/test
- The scrub processor masks forbidden keys that reach the pipeline
"""

import pytest
import structlog
from structlog.contextvars import merge_contextvars

from doggo.logging import (
    clear_request_context,
    configure_task_logging,
    get_logger,
    get_request_id,
    set_conversation_id,
    set_request_context,
    set_user_id,
)
from doggo.services.redact import (
    FORBIDDEN_KEYS,
    REDACTED,
    hash_text,
    safe_kv,
    scrub_forbidden_keys,
)


def _merged() -> dict:
    return dict(merge_contextvars(None, "info", {}))


class TestHashText:
    def test_stable(self):
        assert hash_text("dog parks") == hash_text("dog parks")

    def test_different_inputs_differ(self):
        assert hash_text("a") != hash_text("b")

    def test_hex_sha256(self):
        digest = hash_text("")
        assert len(digest) == 64
        assert digest == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestSafeKv:
    def test_allows_safe_keys(self):
        assert safe_kv(provider="openai", message_chars=12) == {
            "provider": "openai",
            "message_chars": 12,
        }

    @pytest.mark.parametrize("key", sorted(FORBIDDEN_KEYS))
    def test_forbidden_key_raises_in_test(self, key):
        with pytest.raises(ValueError, match=key):
            safe_kv(_env="test", **{key: "secret stuff"})

    def test_forbidden_key_dropped_in_prod(self):
        assert safe_kv(_env="prod", content="hello", content_chars=5) == {"content_chars": 5}


class TestScrubProcessor:
    def test_masks_forbidden_values(self):
        event = scrub_forbidden_keys(
            None, "info", {"event": "x", "api_key": "sk-123", "query": "dogs"}
        )

        assert event == {"event": "x", "api_key": REDACTED, "query": REDACTED}

    def test_leaves_suffixed_and_ordinary_keys(self):
        event = {"event": "x", "query_hash": "abc", "tokens_used": 7}

        assert scrub_forbidden_keys(None, "info", dict(event)) == event


class TestContext:
    def setup_method(self):
        clear_request_context()

    def teardown_method(self):
        clear_request_context()

    def test_request_context_merged(self):
        set_request_context("req-1", path="/usage/quota", method="GET")
        set_user_id("user-1")
        set_conversation_id("conv-1")

        assert _merged() == {
            "request_id": "req-1",
            "path": "/usage/quota",
            "method": "GET",
            "user_id": "user-1",
            "conversation_id": "conv-1",
        }
        assert get_request_id() == "req-1"

    def test_new_request_drops_previous_context(self):
        set_request_context("req-1", path="/a", method="GET")
        set_user_id("user-1")

        set_request_context("req-2")

        assert _merged() == {"request_id": "req-2"}

    def test_unset_values_omitted(self):
        set_request_context("req-1")
        set_user_id(None)

        assert "user_id" not in _merged()
        assert "path" not in _merged()

    def test_clear(self):
        set_request_context("req-1", path="/a", method="GET")

        clear_request_context()

        assert _merged() == {}
        assert get_request_id() is None

    def test_task_context(self):
        configure_task_logging(request_id="req-9", task_name="generate_conversation_title")

        assert _merged() == {"request_id": "req-9", "task_name": "generate_conversation_title"}


@pytest.fixture
def log_sink():
    """Capture structlog event dicts into a list for the duration of a test."""
    events: list[dict] = []
    original_config = structlog.get_config()

    def capture(logger, method_name, event_dict):
        events.append(dict(event_dict))
        raise structlog.DropEvent

    structlog.configure(
        processors=[merge_contextvars, scrub_forbidden_keys, capture],
        cache_logger_on_first_use=False,
    )
    yield events
    structlog.configure(**original_config)


def test_emitted_events_carry_context_and_no_secrets(log_sink):
    set_request_context("req-5")
    try:
        get_logger("doggo.test").info("probe", api_key="sk-live", prompt_chars=3)
    finally:
        clear_request_context()

    assert log_sink == [
        {"event": "probe", "request_id": "req-5", "api_key": REDACTED, "prompt_chars": 3}
    ]
