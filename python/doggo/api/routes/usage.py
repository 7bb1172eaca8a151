"""Usage and quota routes."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from doggo.api.deps import Viewer, get_db, get_viewer
from doggo.config import get_settings
from doggo.responses import success_response
from doggo.schemas.usage import ModelUsageOut, QuotaOut, UsageSummaryOut
from doggo.services import usage as usage_service

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/quota")
def get_quota(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """This calendar month's doggo consumption against the allowance."""
    status = usage_service.check_usage_quota(
        db, viewer.user_id, get_settings().monthly_doggo_limit
    )
    quota = QuotaOut(
        allowed=status.allowed,
        used_doggo=str(status.used_doggo),
        limit_doggo=status.limit_doggo,
        remaining_doggo=str(status.remaining_doggo),
        percentage=status.percentage,
        period_start=usage_service.month_start(),
    )
    return success_response(quota.model_dump(mode="json"))


@router.get("/summary")
def get_summary(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    days: int = Query(default=30, ge=1, le=365, description="Look-back window in days"),
) -> dict:
    """Per-model usage totals over the last `days` days."""
    since = datetime.now(UTC) - timedelta(days=days)
    rows = usage_service.summarize_usage(db, viewer.user_id, since)
    summary = UsageSummaryOut(
        since=since,
        models=[
            ModelUsageOut(
                model_used=row.model_used,
                event_count=row.event_count,
                tokens_used=row.tokens_used,
                cost_usd=str(row.cost_usd),
                cost_display=usage_service.format_cost(row.cost_usd),
            )
            for row in rows
        ],
        total_cost_usd=str(sum((row.cost_usd for row in rows), Decimal("0"))),
    )
    return success_response(summary.model_dump(mode="json"))
