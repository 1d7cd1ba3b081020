from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo

from .audit import AuditLogger
from .campaigns import Campaign, SenderIdentity, build_campaigns
from .clock import resolve_timezone
from .config import Settings
from .dispatcher import Dispatcher
from .errors import RunInProgressError, SchedulerConfigurationError, UnknownCampaignError
from .escalation import evaluate_step, next_step_after_success
from .models import EntityResult, SchedulerBatchResponse, SchedulerRunResponse
from .record_store import RecordStore, TenantPolicyRecord
from .selector import EntitySelector, SelectedEntity
from .transport import MessageTransport, mask_contact_target

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class RunContext:
    """State scoped to a single batch run; discarded when the run ends."""

    run_id: str
    campaign: Campaign
    now: datetime
    audit: AuditLogger
    sender_cache: dict[str, SenderIdentity] = field(default_factory=dict)
    tenants_checked: int = 0
    notifications_sent: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    conflict_count: int = 0
    tenant_errors: int = 0
    results: list[EntityResult] = field(default_factory=list)


class NotificationScheduler:
    def __init__(
        self,
        *,
        store: RecordStore,
        transport: MessageTransport,
        settings: Settings,
        campaigns: dict[str, Campaign] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._dispatcher = Dispatcher(transport)
        self._selector = EntitySelector(store, mode=settings.selection_mode)  # type: ignore[arg-type]
        if campaigns is None:
            try:
                campaigns = build_campaigns(settings)
            except ValueError as exc:
                raise SchedulerConfigurationError(f"invalid escalation policy: {exc}") from exc
        self._campaigns = campaigns

    def _campaign(self, campaign_name: str) -> Campaign:
        campaign = self._campaigns.get(campaign_name)
        if campaign is None:
            raise UnknownCampaignError(f"unknown campaign: {campaign_name}")
        return campaign

    def _check_configuration(self) -> None:
        if not self._settings.app_base_url:
            raise SchedulerConfigurationError("PUBLIC_APP_URL is not set; notification links cannot be built")

    def run_all(self, *, now: datetime | None = None) -> SchedulerBatchResponse:
        self._check_configuration()
        batch = SchedulerBatchResponse()
        for name in self._campaigns:
            try:
                batch.runs.append(self.run(name, now=now))
            except RunInProgressError:
                logger.warning("skipping campaign %s: a run is already in progress", name)
                batch.skipped_campaigns.append(name)
        return batch

    def run(self, campaign_name: str, *, now: datetime | None = None) -> SchedulerRunResponse:
        campaign = self._campaign(campaign_name)
        self._check_configuration()

        run_now = _coerce_utc(now) if now is not None else _now_utc()
        run_id = f"srun_{secrets.token_hex(8)}"
        lock_name = f"scheduler:{campaign.name}"
        if not self._store.acquire_run_lock(
            lock_name,
            holder=run_id,
            now=_now_utc(),
            ttl_seconds=self._settings.run_lock_ttl_seconds,
        ):
            raise RunInProgressError(f"a {campaign.name} run is already in progress")

        ctx = RunContext(
            run_id=run_id,
            campaign=campaign,
            now=run_now,
            audit=AuditLogger(
                self._store,
                run_id=run_id,
                campaign=campaign.name,
                function_name=campaign.function_name,
                entity_type=campaign.entity_type,
            ),
        )
        logger.info("scheduler run %s started campaign=%s now=%s", run_id, campaign.name, run_now.isoformat())
        try:
            for tenant in self._store.list_tenant_policies(campaign.name):
                self._run_tenant(ctx, tenant)
        finally:
            self._store.release_run_lock(lock_name, holder=run_id)

        logger.info(
            "scheduler run %s finished campaign=%s tenants=%d sent=%d failed=%d skipped=%d "
            "conflicts=%d tenant_errors=%d audit_write_failures=%d",
            run_id,
            campaign.name,
            ctx.tenants_checked,
            ctx.notifications_sent,
            ctx.failed_count,
            ctx.skipped_count,
            ctx.conflict_count,
            ctx.tenant_errors,
            ctx.audit.write_failures,
        )
        return SchedulerRunResponse(
            run_id=run_id,
            campaign=campaign.name,
            run_at=run_now,
            selection_mode=self._selector.mode,
            tenants_checked=ctx.tenants_checked,
            notifications_sent=ctx.notifications_sent,
            failed_count=ctx.failed_count,
            skipped_count=ctx.skipped_count,
            conflict_count=ctx.conflict_count,
            tenant_errors=ctx.tenant_errors,
            results=ctx.results,
        )

    def _run_tenant(self, ctx: RunContext, tenant: TenantPolicyRecord) -> None:
        ctx.tenants_checked += 1
        try:
            zone = resolve_timezone(tenant.timezone, default=self._settings.default_timezone)
            selected = self._selector.select(
                ctx.campaign.name,
                ctx.campaign.policy,
                tenant.tenant_id,
                now=ctx.now,
                zone=zone,
            )
        except Exception as exc:
            ctx.tenant_errors += 1
            logger.exception("entity selection failed for tenant %s", tenant.tenant_id)
            ctx.audit.log(
                tenant_id=tenant.tenant_id,
                entity_id=None,
                status="failed",
                message="Failed to select entities",
                error=str(exc) or exc.__class__.__name__,
            )
            return

        for item in selected:
            try:
                self._process_entity(ctx, item, zone)
            except Exception as exc:
                ctx.failed_count += 1
                logger.exception("unexpected error processing %s %s", ctx.campaign.entity_type, item.entity.entity_id)
                ctx.audit.log(
                    tenant_id=item.entity.tenant_id,
                    entity_id=item.entity.entity_id,
                    status="failed",
                    attempt=item.entity.escalation_step + 1,
                    message=ctx.campaign.failed_message(),
                    error=str(exc) or exc.__class__.__name__,
                )

    def _sender_identity(self, ctx: RunContext, tenant_id: str) -> SenderIdentity:
        cached = ctx.sender_cache.get(tenant_id)
        if cached is not None:
            return cached
        profile = None
        if ctx.campaign.uses_sender_profile:
            try:
                profile = self._store.get_sender_profile(tenant_id)
            except Exception:
                logger.warning("sender profile lookup failed for tenant %s, using defaults", tenant_id, exc_info=True)
        identity = SenderIdentity(
            name=(profile.name if profile is not None and profile.name else self._settings.default_sender_name),
            email=(profile.email if profile is not None and profile.email else self._settings.default_sender_email),
        )
        ctx.sender_cache[tenant_id] = identity
        return identity

    def _process_entity(self, ctx: RunContext, item: SelectedEntity, zone: tzinfo) -> None:
        campaign = ctx.campaign
        entity = item.entity
        step_before = entity.escalation_step
        metadata = campaign.audit_metadata(entity, elapsed_days=item.elapsed_days, recurring=item.recurring)
        masked = mask_contact_target(entity.contact_target) if entity.contact_target else None

        decision = evaluate_step(
            campaign.policy,
            current_step=step_before,
            elapsed_days=item.elapsed_days,
            contact_target=entity.contact_target,
            last_sent_at=entity.last_sent_at,
            now=ctx.now,
            zone=zone,
            recurring=item.recurring,
        )

        def result(status: str, reason: str, **kwargs) -> EntityResult:
            return EntityResult(
                tenant_id=entity.tenant_id,
                entity_id=entity.entity_id,
                status=status,  # type: ignore[arg-type]
                reason=reason,
                attempt=decision.attempt,
                elapsed_days=item.elapsed_days,
                step_before=step_before,
                contact_target_masked=masked,
                **kwargs,
            )

        if not decision.proceed:
            ctx.skipped_count += 1
            ctx.audit.log(
                tenant_id=entity.tenant_id,
                entity_id=entity.entity_id,
                status="skipped",
                attempt=decision.attempt,
                message=decision.message,
                metadata={**metadata, "reason": decision.reason},
            )
            ctx.results.append(result("skipped", decision.reason, step_after=step_before))
            return

        ctx.audit.log(
            tenant_id=entity.tenant_id,
            entity_id=entity.entity_id,
            status="queued",
            attempt=decision.attempt,
            message=f"Queued step {decision.attempt}",
            metadata=metadata,
        )

        target = entity.contact_target or ""
        try:
            sender = self._sender_identity(ctx, entity.tenant_id)
            message = campaign.render(
                entity,
                attempt=decision.attempt,
                elapsed_days=item.elapsed_days,
                sender=sender,
                recurring=item.recurring,
            )
        except Exception as exc:
            ctx.failed_count += 1
            logger.exception("rendering failed for %s %s", campaign.entity_type, entity.entity_id)
            ctx.audit.log(
                tenant_id=entity.tenant_id,
                entity_id=entity.entity_id,
                status="failed",
                attempt=decision.attempt,
                message=campaign.failed_message(),
                error=str(exc) or exc.__class__.__name__,
                metadata=metadata,
            )
            ctx.results.append(
                result("failed", "render_error", step_after=step_before, error_code="render_error", error_message=str(exc))
            )
            return

        ctx.audit.log(
            tenant_id=entity.tenant_id,
            entity_id=entity.entity_id,
            status="attempted",
            attempt=decision.attempt,
            message=campaign.attempted_message(
                attempt=decision.attempt,
                elapsed_days=item.elapsed_days,
                recurring=item.recurring,
            ),
            metadata=metadata,
        )

        outcome = self._dispatcher.dispatch(
            sender=campaign.from_address(sender),
            target=target,
            message=message,
        )
        if not outcome.sent:
            ctx.failed_count += 1
            ctx.audit.log(
                tenant_id=entity.tenant_id,
                entity_id=entity.entity_id,
                status="failed",
                attempt=decision.attempt,
                message=campaign.failed_message(),
                error=outcome.error_message or outcome.error_code,
                metadata={**metadata, "error_code": outcome.error_code},
            )
            ctx.results.append(
                result(
                    "failed",
                    "dispatch_failed",
                    step_after=step_before,
                    error_code=outcome.error_code,
                    error_message=outcome.error_message,
                )
            )
            return

        ctx.notifications_sent += 1
        ctx.audit.log(
            tenant_id=entity.tenant_id,
            entity_id=entity.entity_id,
            status="success",
            attempt=decision.attempt,
            message=f"Notification sent to {masked}",
            metadata={**metadata, "provider_message_id": outcome.provider_message_id},
        )

        next_step = next_step_after_success(campaign.policy, step_before, recurring=item.recurring)
        try:
            advanced = self._store.advance_escalation(
                campaign.name,
                entity.entity_id,
                expected_step=step_before,
                next_step=next_step,
                previous_sent_at=entity.last_sent_at,
                sent_at=ctx.now,
            )
        except Exception as exc:
            logger.exception("failed to persist escalation step for %s %s", campaign.entity_type, entity.entity_id)
            ctx.audit.log(
                tenant_id=entity.tenant_id,
                entity_id=entity.entity_id,
                status="failed",
                attempt=decision.attempt,
                message="Notification sent but escalation step was not saved",
                error=str(exc) or exc.__class__.__name__,
                metadata=metadata,
            )
            ctx.results.append(
                result(
                    "sent",
                    "step_not_saved",
                    step_after=step_before,
                    provider_message_id=outcome.provider_message_id,
                    error_code="store_write_failed",
                    error_message=str(exc),
                )
            )
            return

        if not advanced:
            ctx.conflict_count += 1
            logger.warning(
                "escalation step for %s %s changed during run %s; expected %d",
                campaign.entity_type,
                entity.entity_id,
                ctx.run_id,
                step_before,
            )
            ctx.results.append(
                result(
                    "conflict",
                    "step_changed_concurrently",
                    step_after=step_before,
                    provider_message_id=outcome.provider_message_id,
                )
            )
            return

        ctx.results.append(
            result("sent", "sent", step_after=next_step, provider_message_id=outcome.provider_message_id)
        )
