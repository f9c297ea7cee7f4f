from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class UsageRecordCreate(BaseModel):
    resource_type: str
    # Negative quantities record compensating entries.
    quantity: Decimal
    endpoint: Optional[str] = None
    actor: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class UsageRecordResponse(BaseModel):
    recorded: bool
    event_id: Optional[int] = None


class QuotaEnforceRequest(BaseModel):
    resource_type: str
    amount: Decimal = Field(default=Decimal("0"), ge=0)


class QuotaDecisionResponse(BaseModel):
    allowed: bool
    resource_type: str
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    upgrade_plan_key: Optional[str] = None
    fail_open: bool = False
    exceeded: Optional[bool] = None
    current: Optional[Decimal] = None
    projected: Optional[Decimal] = None
    limit: Optional[int] = None
    percent_used: Optional[float] = None


class ResourceUsageRead(BaseModel):
    resource_type: str
    used: Decimal
    limit: Optional[int] = None
    unlimited: bool = False
    percent_used: float
    status_color: str


class UsageSummaryResponse(BaseModel):
    tenant_id: int
    window_start: datetime
    window_end: datetime
    resources: list[ResourceUsageRead]


class EntitlementResponse(BaseModel):
    tenant_id: int
    source: str
    plan_id: Optional[int] = None
    plan_name: Optional[str] = None
    subscription_id: Optional[int] = None
    limits: dict[str, Optional[int]]


class UsageReportResponse(BaseModel):
    tenant_id: int
    period: str
    start: datetime
    end: datetime
    usage: dict[str, Decimal]
    limits: dict[str, Optional[int]]
    percent_used: dict[str, float]
    costs: dict[str, Decimal]


class UsageSnapshotRead(BaseModel):
    id: int
    tenant_id: int
    period: str
    period_start: datetime
    period_end: datetime
    storage_bytes: Decimal
    processing_minutes: Decimal
    api_calls: Decimal
    transcription_minutes: Decimal
    ai_tokens: Decimal
    total_cost: Decimal
    metadata_json: dict[str, Any] = {}
    created_at: datetime

    class Config:
        from_attributes = True


class UsageTrendResponse(BaseModel):
    trend: str
    message: Optional[str] = None
    period: Optional[str] = None
    latest_period_start: Optional[datetime] = None
    previous_period_start: Optional[datetime] = None
    growth: dict[str, Optional[float]] = {}
    average_monthly_cost: Optional[Decimal] = None
    total_historical_reports: int = 0


class UsageStatisticRead(BaseModel):
    resource_type: str
    total_amount: Decimal
