from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from .config import get_settings
from .errors import RunInProgressError, SchedulerConfigurationError, UnknownCampaignError
from .models import AuditLogListResponse, SchedulerBatchResponse, SchedulerRunRequest, SchedulerRunResponse
from .record_store import RecordStore, create_record_store
from .scheduler import NotificationScheduler
from .transport import MessageTransport, create_transport

_settings = get_settings()
router = APIRouter(prefix=f"{_settings.api_prefix}/scheduler", tags=["scheduler"])
record_store: RecordStore = create_record_store(
    backend=_settings.record_store_backend,
    database_url=_settings.database_url,
)
# Overrides the configured transport when set; tests install a StubTransport here.
transport: MessageTransport | None = None


def _build_scheduler() -> NotificationScheduler:
    settings = get_settings()
    active_transport = transport
    if active_transport is None:
        try:
            active_transport = create_transport(settings)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"transport misconfigured: {exc}") from exc
    try:
        return NotificationScheduler(store=record_store, transport=active_transport, settings=settings)
    except SchedulerConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/campaigns/{campaign}/run", response_model=SchedulerRunResponse)
def run_campaign(campaign: str, payload: SchedulerRunRequest | None = None) -> SchedulerRunResponse:
    scheduler = _build_scheduler()
    now = payload.now_override if payload is not None else None
    try:
        return scheduler.run(campaign, now=now)
    except UnknownCampaignError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SchedulerConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/run", response_model=SchedulerBatchResponse)
def run_all_campaigns(payload: SchedulerRunRequest | None = None) -> SchedulerBatchResponse:
    scheduler = _build_scheduler()
    now = payload.now_override if payload is not None else None
    try:
        return scheduler.run_all(now=now)
    except SchedulerConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    tenant_id: str | None = None,
    campaign: str | None = None,
    run_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> AuditLogListResponse:
    records = record_store.list_audit(tenant_id=tenant_id, campaign=campaign, run_id=run_id, limit=limit)
    return AuditLogListResponse(items=[record.to_item() for record in records])
