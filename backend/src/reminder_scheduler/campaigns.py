from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import Settings
from .models import CampaignName
from .policy import EscalationPolicy, build_policy
from .record_store import TrackedEntity
from .templates import RenderedMessage, render_account_nudge_email, render_overdue_invoice_email
from .transport import mask_contact_target


@dataclass(frozen=True)
class SenderIdentity:
    name: str
    email: str


class Campaign:
    """One notification campaign: which policy drives it and how its messages look."""

    name: CampaignName
    function_name: str
    entity_type: str
    uses_sender_profile = False

    def __init__(self, *, policy: EscalationPolicy, settings: Settings) -> None:
        self.policy = policy
        self._settings = settings

    def from_address(self, sender: SenderIdentity) -> str:
        raise NotImplementedError

    def render(
        self,
        entity: TrackedEntity,
        *,
        attempt: int,
        elapsed_days: int,
        sender: SenderIdentity,
        recurring: bool = False,
    ) -> RenderedMessage:
        raise NotImplementedError

    def audit_metadata(self, entity: TrackedEntity, *, elapsed_days: int, recurring: bool = False) -> dict[str, Any]:
        return {"elapsed_days": elapsed_days, "recurring": recurring}

    def attempted_message(self, *, attempt: int, elapsed_days: int, recurring: bool = False) -> str:
        return f"Sending notification step {attempt}"

    def failed_message(self) -> str:
        return "Failed to send notification"


class OverdueInvoiceCampaign(Campaign):
    name: CampaignName = "invoice_reminders"
    function_name = "invoice-reminders"
    entity_type = "invoice"
    uses_sender_profile = True

    def from_address(self, sender: SenderIdentity) -> str:
        return self._settings.invoice_reminder_from

    def public_link(self, entity: TrackedEntity) -> str:
        base = self._settings.app_base_url
        link_id = entity.details.get("payment_link_id")
        if link_id:
            return f"{base}/invoice/{entity.entity_id}/{link_id}"
        return f"{base}/invoice/{entity.entity_id}"

    def render(
        self,
        entity: TrackedEntity,
        *,
        attempt: int,
        elapsed_days: int,
        sender: SenderIdentity,
        recurring: bool = False,
    ) -> RenderedMessage:
        return render_overdue_invoice_email(
            sender_name=sender.name,
            sender_email=sender.email,
            client_name=entity.contact_name,
            invoice_number=str(entity.details.get("invoice_number") or entity.entity_id),
            amount=float(entity.details.get("total_amount") or 0.0),
            overdue_days=elapsed_days,
            public_link=self.public_link(entity),
        )

    def audit_metadata(self, entity: TrackedEntity, *, elapsed_days: int, recurring: bool = False) -> dict[str, Any]:
        return {
            "invoice_number": entity.details.get("invoice_number"),
            "overdue_days": elapsed_days,
            "to": mask_contact_target(entity.contact_target) if entity.contact_target else None,
        }

    def attempted_message(self, *, attempt: int, elapsed_days: int, recurring: bool = False) -> str:
        return f"Sending overdue reminder ({elapsed_days}d)"

    def failed_message(self) -> str:
        return "Failed to send invoice reminder"


class InactiveAccountCampaign(Campaign):
    name: CampaignName = "account_nudges"
    function_name = "send-no-invoice-reminder"
    entity_type = "account"

    def from_address(self, sender: SenderIdentity) -> str:
        return self._settings.account_nudge_from

    def nudge_type(self, attempt: int, *, recurring: bool = False) -> str:
        if recurring or attempt >= self.policy.max_step:
            return "monthly_marketing"
        return f"no_invoice_{self.policy.threshold_for(attempt - 1)}d"

    def render(
        self,
        entity: TrackedEntity,
        *,
        attempt: int,
        elapsed_days: int,
        sender: SenderIdentity,
        recurring: bool = False,
    ) -> RenderedMessage:
        return render_account_nudge_email(
            step=attempt,
            full_name=entity.contact_name,
            app_base_url=self._settings.app_base_url,
            product_name=self._settings.product_name,
            is_recurring=recurring,
            final_step=self.policy.max_step,
        )

    def audit_metadata(self, entity: TrackedEntity, *, elapsed_days: int, recurring: bool = False) -> dict[str, Any]:
        return {
            "days_since_registration": elapsed_days,
            "recurring": recurring,
            "to": mask_contact_target(entity.contact_target) if entity.contact_target else None,
        }

    def attempted_message(self, *, attempt: int, elapsed_days: int, recurring: bool = False) -> str:
        return f"Sending {self.nudge_type(attempt, recurring=recurring)} nudge ({elapsed_days}d since registration)"

    def failed_message(self) -> str:
        return "Failed to send first-invoice nudge"


def build_campaigns(settings: Settings) -> dict[str, Campaign]:
    invoice_policy = build_policy("overdue_invoice", settings.invoice_reminder_thresholds)
    account_policy = build_policy(
        "inactive_account",
        settings.account_nudge_thresholds,
        recurrence_days=settings.account_nudge_recurrence_days,
    )
    return {
        "invoice_reminders": OverdueInvoiceCampaign(policy=invoice_policy, settings=settings),
        "account_nudges": InactiveAccountCampaign(policy=account_policy, settings=settings),
    }
