"""Usage recorder, pricing and quota.

Pricing:
- USD per million tokens, keyed by concrete model id; abstract ids resolve
  through the catalog first. Unknown models cost 0.
- Costs are Decimal rounded to 6 places (the cost_usd column scale).

Doggo credits:
- 1 doggo = 0.000526 USD; default monthly allowance 10,000 doggos.

Recording rules:
- Append-only; one event per successful provider call
- A failed CompletionResult is never billed: no event is written for it
- Recording is best-effort telemetry: failures are logged and swallowed,
  never surfaced to the caller who already has the answer
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from doggo.db.models import UsageEvent, UsageEventType
from doggo.db.session import transaction
from doggo.errors import QuotaExceededError
from doggo.logging import get_logger
from doggo.services.llm.catalog import MODEL_TABLE
from doggo.services.llm.types import CompletionResult
from doggo.services.redact import safe_kv

logger = get_logger(__name__)

ONE_MILLION = Decimal(1_000_000)
COST_QUANTUM = Decimal("0.000001")

DOGGO_VALUE_USD = Decimal("0.000526")
DEFAULT_DOGGO_LIMIT = 10_000


@dataclass(frozen=True)
class ModelPrice:
    input_per_million: Decimal
    output_per_million: Decimal


# concrete model id -> USD per million tokens
MODEL_PRICING: dict[str, ModelPrice] = {
    "claude-3-haiku-20240307": ModelPrice(Decimal("0.25"), Decimal("1.25")),
    "claude-3-sonnet-20240229": ModelPrice(Decimal("3.00"), Decimal("15.00")),
    "claude-3-opus-20240229": ModelPrice(Decimal("15.00"), Decimal("75.00")),
    "gpt-4o-mini": ModelPrice(Decimal("0.15"), Decimal("0.60")),
    "gpt-4o": ModelPrice(Decimal("2.50"), Decimal("10.00")),
}


def price_for(model: str | None) -> ModelPrice | None:
    """Price for a concrete or abstract model id, None when unknown."""
    if not model:
        return None
    key = model.strip().lower()
    if key in MODEL_TABLE:
        key = MODEL_TABLE[key][1]
    return MODEL_PRICING.get(key)


def calculate_cost(model: str | None, input_tokens: int, output_tokens: int) -> Decimal:
    price = price_for(model)
    if price is None:
        return Decimal("0")
    cost = (
        Decimal(max(input_tokens, 0)) * price.input_per_million
        + Decimal(max(output_tokens, 0)) * price.output_per_million
    ) / ONE_MILLION
    return cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def format_cost(cost_usd: Decimal) -> str:
    """Dollar string; sub-cent amounts keep four decimals."""
    if cost_usd < Decimal("0.01"):
        return f"${cost_usd:.4f}"
    return f"${cost_usd:.2f}"


def usd_to_doggo(usd: Decimal) -> Decimal:
    return Decimal(usd) / DOGGO_VALUE_USD


def doggo_to_usd(doggo: Decimal | int) -> Decimal:
    return Decimal(doggo) * DOGGO_VALUE_USD


def format_doggo(doggo: Decimal | float, decimals: int = 0, show_unit: bool = True) -> str:
    formatted = f"{Decimal(doggo):,.{decimals}f}"
    return f"{formatted} Doggo" if show_unit else formatted


# =============================================================================
# Recording
# =============================================================================


def _insert_event(db: Session, event: UsageEvent) -> UsageEvent | None:
    try:
        with transaction(db):
            db.add(event)
            db.flush()
    except SQLAlchemyError as e:
        logger.error(
            "usage.record_failed",
            **safe_kv(
                event_type=event.event_type,
                model_used=event.model_used,
                error=type(e).__name__,
            ),
        )
        return None
    return event


def record_usage(
    db: Session,
    *,
    user_id: UUID,
    agent_id: UUID | None,
    conversation_id: UUID | None,
    result: CompletionResult,
    event_type: UsageEventType = UsageEventType.message,
    metadata: dict[str, Any] | None = None,
) -> UsageEvent | None:
    """Append one usage event for a successful completion.

    Returns:
        The event, or None when the result failed or the insert failed.
    """
    if not result.success:
        logger.info(
            "usage.skipped_failed_result",
            **safe_kv(event_type=event_type.value, error_class=result.error_class),
        )
        return None

    input_tokens = result.usage.input_tokens or 0
    output_tokens = result.usage.output_tokens or 0
    cost = calculate_cost(result.model, input_tokens, output_tokens)

    event = UsageEvent(
        user_id=user_id,
        agent_id=agent_id,
        conversation_id=conversation_id,
        event_type=event_type.value,
        model_used=result.model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        tokens_used=input_tokens + output_tokens,
        cost_usd=cost,
        meta={
            "provider": result.provider,
            "latency_ms": result.latency_ms,
            "provider_request_id": result.provider_request_id,
            **(metadata or {}),
        },
    )
    recorded = _insert_event(db, event)
    if recorded is not None:
        logger.info(
            "usage.recorded",
            **safe_kv(
                event_type=event_type.value,
                model_used=result.model,
                tokens_input=input_tokens,
                tokens_output=output_tokens,
                cost_usd=str(cost),
            ),
        )
    return recorded


def record_tool_usage(
    db: Session,
    *,
    user_id: UUID,
    conversation_id: UUID | None,
    event_type: UsageEventType,
    metadata: dict[str, Any] | None = None,
) -> UsageEvent | None:
    """Zero-cost event for collaborator calls (scrape, websearch)."""
    event = UsageEvent(
        user_id=user_id,
        conversation_id=conversation_id,
        event_type=event_type.value,
        cost_usd=Decimal("0"),
        meta=dict(metadata or {}),
    )
    return _insert_event(db, event)


# =============================================================================
# Quota and summaries
# =============================================================================


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    used_doggo: Decimal
    limit_doggo: int
    percentage: float

    @property
    def remaining_doggo(self) -> Decimal:
        return max(Decimal(self.limit_doggo) - self.used_doggo, Decimal("0"))


def month_start(now: datetime | None = None) -> datetime:
    now = now or datetime.now(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def monthly_cost_usd(db: Session, user_id: UUID, now: datetime | None = None) -> Decimal:
    total = db.scalar(
        select(func.coalesce(func.sum(UsageEvent.cost_usd), 0)).where(
            UsageEvent.user_id == user_id,
            UsageEvent.created_at >= month_start(now),
        )
    )
    return Decimal(str(total or 0))


def check_usage_quota(
    db: Session,
    user_id: UUID,
    monthly_limit: int = DEFAULT_DOGGO_LIMIT,
    now: datetime | None = None,
) -> QuotaStatus:
    """This calendar month's consumption against the doggo allowance."""
    used = usd_to_doggo(monthly_cost_usd(db, user_id, now)).quantize(Decimal("0.01"))
    percentage = float(used / monthly_limit * 100) if monthly_limit > 0 else 100.0
    return QuotaStatus(
        allowed=used < monthly_limit,
        used_doggo=used,
        limit_doggo=monthly_limit,
        percentage=round(percentage, 2),
    )


def enforce_usage_quota(db: Session, user_id: UUID, monthly_limit: int) -> QuotaStatus:
    """Raise QuotaExceededError when the monthly allowance is spent."""
    status = check_usage_quota(db, user_id, monthly_limit)
    if not status.allowed:
        logger.info(
            "usage.quota_exceeded",
            used_doggo=str(status.used_doggo),
            limit_doggo=status.limit_doggo,
        )
        raise QuotaExceededError(
            f"Monthly usage limit reached ({format_doggo(status.limit_doggo)})"
        )
    return status


@dataclass(frozen=True)
class ModelUsage:
    model_used: str | None
    event_count: int
    tokens_used: int
    cost_usd: Decimal


def summarize_usage(
    db: Session, user_id: UUID, since: datetime, until: datetime | None = None
) -> list[ModelUsage]:
    """Per-model totals for a user over [since, until), most expensive first."""
    filters = [UsageEvent.user_id == user_id, UsageEvent.created_at >= since]
    if until is not None:
        filters.append(UsageEvent.created_at < until)

    rows = db.execute(
        select(
            UsageEvent.model_used,
            func.count(UsageEvent.id),
            func.coalesce(func.sum(UsageEvent.tokens_used), 0),
            func.coalesce(func.sum(UsageEvent.cost_usd), 0),
        )
        .where(*filters)
        .group_by(UsageEvent.model_used)
    ).all()

    summary = [
        ModelUsage(
            model_used=model,
            event_count=int(count),
            tokens_used=int(tokens),
            cost_usd=Decimal(str(cost)),
        )
        for model, count, tokens, cost in rows
    ]
    return sorted(summary, key=lambda m: (-m.cost_usd, m.model_used or ""))
