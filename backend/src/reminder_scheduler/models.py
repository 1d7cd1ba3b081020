from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

CampaignName = Literal["invoice_reminders", "account_nudges"]
CAMPAIGN_NAMES: tuple[str, ...] = ("invoice_reminders", "account_nudges")
AuditStatus = Literal["queued", "attempted", "success", "failed", "skipped"]
SelectionMode = Literal["exact", "catch_up"]
EntityOutcomeStatus = Literal["sent", "failed", "skipped", "conflict"]
SkipReason = Literal[
    "already_complete",
    "out_of_order",
    "cooldown_active",
    "no_contact_target",
]


class SchedulerRunRequest(BaseModel):
    now_override: datetime | None = None

    @field_validator("now_override")
    @classmethod
    def _normalize_override(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class EntityResult(BaseModel):
    tenant_id: str
    entity_id: str
    status: EntityOutcomeStatus
    reason: str
    attempt: int = 0
    elapsed_days: int | None = None
    step_before: int
    step_after: int
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    contact_target_masked: str | None = None


class SchedulerRunResponse(BaseModel):
    run_id: str
    campaign: CampaignName
    run_at: datetime
    selection_mode: SelectionMode
    tenants_checked: int = 0
    notifications_sent: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    conflict_count: int = 0
    tenant_errors: int = 0
    results: list[EntityResult] = Field(default_factory=list)


class SchedulerBatchResponse(BaseModel):
    runs: list[SchedulerRunResponse] = Field(default_factory=list)
    skipped_campaigns: list[str] = Field(default_factory=list)


class AuditLogItem(BaseModel):
    log_id: int
    run_id: str
    tenant_id: str
    entity_id: str | None = None
    campaign: CampaignName
    function_name: str
    entity_type: str
    status: AuditStatus
    attempt: int = 0
    message: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogItem] = Field(default_factory=list)
