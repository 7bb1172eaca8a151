"""Usage and quota schemas.

Money is serialized as strings to keep Decimal precision.
"""

from datetime import datetime

from pydantic import BaseModel


class QuotaOut(BaseModel):
    allowed: bool
    used_doggo: str
    limit_doggo: int
    remaining_doggo: str
    percentage: float
    period_start: datetime


class ModelUsageOut(BaseModel):
    model_used: str | None = None
    event_count: int
    tokens_used: int
    cost_usd: str
    cost_display: str


class UsageSummaryOut(BaseModel):
    since: datetime
    models: list[ModelUsageOut]
    total_cost_usd: str
