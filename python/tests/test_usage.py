"""Tests for usage recording, pricing and quota."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from doggo.db.models import UsageEvent, UsageEventType
from doggo.errors import ApiErrorCode, QuotaExceededError
from doggo.services import usage
from doggo.services.llm.types import CompletionResult, LLMUsage
from doggo.services.usage import (
    calculate_cost,
    check_usage_quota,
    doggo_to_usd,
    enforce_usage_quota,
    format_cost,
    format_doggo,
    month_start,
    record_tool_usage,
    record_usage,
    summarize_usage,
    usd_to_doggo,
)
from tests.factories import create_usage_event
from tests.helpers import viewer_headers


def _result(success=True, *, model="claude-3-haiku-20240307", input_tokens=1000, output_tokens=500):
    if not success:
        return CompletionResult(
            success=False,
            content="",
            usage=LLMUsage(0, 0),
            model=model,
            provider="anthropic",
            error_class="E_LLM_RATE_LIMIT",
            error_message="slow down",
        )
    return CompletionResult(
        success=True,
        content="Woof",
        usage=LLMUsage(input_tokens, output_tokens),
        model=model,
        provider="anthropic",
        latency_ms=42,
        provider_request_id="req-1",
    )


def _events(db):
    return list(db.scalars(select(UsageEvent)).all())


class TestPricing:
    def test_haiku_cost(self):
        assert calculate_cost("claude-3-haiku-20240307", 1000, 500) == Decimal("0.000875")

    def test_abstract_model_resolves_through_catalog(self):
        assert calculate_cost("sonnet", 1_000_000, 0) == Decimal("3.000000")

    @pytest.mark.parametrize(
        "model,expected",
        [
            ("claude-3-opus-20240229", Decimal("90.000000")),
            ("gpt-4o-mini", Decimal("0.750000")),
            ("gpt-4o", Decimal("12.500000")),
        ],
    )
    def test_million_token_prices(self, model, expected):
        assert calculate_cost(model, 1_000_000, 1_000_000) == expected

    def test_unknown_model_is_free(self):
        assert calculate_cost("mystery-model", 10_000, 10_000) == Decimal("0")
        assert calculate_cost(None, 10, 10) == Decimal("0")

    def test_rounded_to_six_places(self):
        assert calculate_cost("claude-3-haiku-20240307", 1, 0) == Decimal("0.000000")
        assert calculate_cost("claude-3-haiku-20240307", 3, 0) == Decimal("0.000001")

    def test_format_cost(self):
        assert format_cost(Decimal("0.000875")) == "$0.0009"
        assert format_cost(Decimal("1.5")) == "$1.50"


class TestDoggoCredits:
    def test_conversion_round_trip(self):
        assert doggo_to_usd(10_000) == Decimal("5.260000")
        assert usd_to_doggo(Decimal("0.526")) == Decimal("1000")

    def test_format(self):
        assert format_doggo(Decimal("1234.5")) == "1,234 Doggo"
        assert format_doggo(12, decimals=1, show_unit=False) == "12.0"


class TestRecordUsage:
    def test_successful_call_recorded(self, db_session, agent, conversation):
        event = record_usage(
            db_session,
            user_id=agent.user_id,
            agent_id=agent.id,
            conversation_id=conversation.id,
            result=_result(),
        )

        assert event is not None
        stored = _events(db_session)
        assert len(stored) == 1
        assert stored[0].event_type == "message"
        assert stored[0].tokens_used == 1500
        assert stored[0].cost_usd == Decimal("0.000875")
        assert stored[0].meta["provider"] == "anthropic"
        assert stored[0].meta["provider_request_id"] == "req-1"

    def test_failed_call_never_recorded(self, db_session, agent, conversation):
        event = record_usage(
            db_session,
            user_id=agent.user_id,
            agent_id=agent.id,
            conversation_id=conversation.id,
            result=_result(success=False),
        )

        assert event is None
        assert _events(db_session) == []

    def test_title_event_with_metadata(self, db_session, agent, conversation):
        record_usage(
            db_session,
            user_id=agent.user_id,
            agent_id=agent.id,
            conversation_id=conversation.id,
            result=_result(),
            event_type=UsageEventType.title,
            metadata={"purpose": "title"},
        )

        event = _events(db_session)[0]
        assert event.event_type == "title"
        assert event.meta["purpose"] == "title"

    def test_insert_failure_swallowed(self, db_session, agent, monkeypatch):
        def broken_flush(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db_session, "flush", broken_flush)

        assert (
            record_usage(
                db_session,
                user_id=agent.user_id,
                agent_id=agent.id,
                conversation_id=None,
                result=_result(),
            )
            is None
        )

    def test_tool_usage_is_free(self, db_session, conversation):
        event = record_tool_usage(
            db_session,
            user_id=conversation.user_id,
            conversation_id=conversation.id,
            event_type=UsageEventType.scrape,
            metadata={"url_count": 2},
        )

        assert event.cost_usd == Decimal("0")
        assert event.model_used is None
        assert event.meta == {"url_count": 2}


class TestQuota:
    def test_empty_history_allowed(self, db_session):
        status = check_usage_quota(db_session, uuid4())

        assert status.allowed
        assert status.used_doggo == Decimal("0")
        assert status.remaining_doggo == Decimal("10000")

    def test_partial_use(self, db_session, test_user_id):
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("0.526"))

        status = check_usage_quota(db_session, test_user_id)

        assert status.allowed
        assert status.used_doggo == Decimal("1000.00")
        assert status.percentage == 10.0

    def test_previous_month_not_counted(self, db_session, test_user_id):
        last_month = month_start() - timedelta(days=1)
        create_usage_event(
            db_session, test_user_id, cost_usd=Decimal("100"), created_at=last_month
        )

        assert check_usage_quota(db_session, test_user_id).allowed

    def test_other_users_not_counted(self, db_session, test_user_id):
        create_usage_event(db_session, uuid4(), cost_usd=Decimal("100"))

        assert check_usage_quota(db_session, test_user_id).used_doggo == Decimal("0")

    def test_exceeded_raises(self, db_session, test_user_id):
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("6"))

        with pytest.raises(QuotaExceededError) as exc_info:
            enforce_usage_quota(db_session, test_user_id, 10_000)

        assert exc_info.value.code == ApiErrorCode.E_QUOTA_EXCEEDED
        assert exc_info.value.status_code == 429

    def test_zero_limit_blocks(self, db_session, test_user_id):
        status = check_usage_quota(db_session, test_user_id, monthly_limit=0)

        assert not status.allowed
        assert status.percentage == 100.0

    def test_month_start(self):
        now = datetime(2026, 3, 17, 12, 30, tzinfo=UTC)
        assert month_start(now) == datetime(2026, 3, 1, tzinfo=UTC)


class TestSummary:
    def test_grouped_by_model_most_expensive_first(self, db_session, test_user_id):
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("0.25"), tokens=10)
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("0.25"), tokens=30)
        create_usage_event(
            db_session, test_user_id, cost_usd=Decimal("1.5"), model_used="gpt-4o", tokens=5
        )
        create_usage_event(
            db_session,
            test_user_id,
            cost_usd=Decimal("9"),
            created_at=month_start() - timedelta(days=3),
        )

        summary = summarize_usage(db_session, test_user_id, month_start())

        assert [(m.model_used, m.event_count, m.tokens_used) for m in summary] == [
            ("gpt-4o", 1, 5),
            ("claude-3-haiku-20240307", 2, 40),
        ]
        assert summary[0].cost_usd == Decimal("1.5")
        assert summary[1].cost_usd == Decimal("0.5")


def test_pricing_table_covers_catalog_defaults():
    for model in ("claude-3-haiku-20240307", "gpt-4o-mini"):
        assert usage.price_for(model) is not None


class TestUsageRoutes:
    def test_quota(self, client, db_session, test_user_id):
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("0.526"))

        response = client.get("/usage/quota", headers=viewer_headers(test_user_id))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["allowed"] is True
        assert Decimal(data["used_doggo"]) == Decimal("1000")
        assert data["limit_doggo"] == 10000
        assert Decimal(data["remaining_doggo"]) == Decimal("9000")
        assert data["percentage"] == 10.0
        assert data["period_start"].startswith(month_start().strftime("%Y-%m-01"))

    def test_summary(self, client, db_session, test_user_id):
        create_usage_event(db_session, test_user_id, cost_usd=Decimal("0.25"), tokens=10)
        create_usage_event(
            db_session, test_user_id, cost_usd=Decimal("1.5"), model_used="gpt-4o", tokens=5
        )
        create_usage_event(
            db_session,
            test_user_id,
            cost_usd=Decimal("9"),
            created_at=datetime.now(UTC) - timedelta(days=45),
        )

        response = client.get("/usage/summary?days=30", headers=viewer_headers(test_user_id))

        assert response.status_code == 200
        data = response.json()["data"]
        assert [m["model_used"] for m in data["models"]] == ["gpt-4o", "claude-3-haiku-20240307"]
        assert data["models"][0]["cost_display"] == "$1.50"
        assert Decimal(data["total_cost_usd"]) == Decimal("1.75")

    def test_summary_days_out_of_range(self, client, test_user_id):
        response = client.get("/usage/summary?days=0", headers=viewer_headers(test_user_id))

        assert response.status_code == 400
