from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo

from .clock import local_date
from .models import SkipReason
from .policy import EscalationPolicy, RecurringEscalationPolicy


@dataclass(frozen=True)
class StepDecision:
    proceed: bool
    attempt: int
    reason: str
    message: str
    skip_reason: SkipReason | None = None


def _skip(attempt: int, reason: SkipReason, message: str) -> StepDecision:
    return StepDecision(proceed=False, attempt=attempt, reason=reason, message=message, skip_reason=reason)


def evaluate_step(
    policy: EscalationPolicy,
    *,
    current_step: int,
    elapsed_days: int,
    contact_target: str | None,
    last_sent_at: datetime | None = None,
    now: datetime | None = None,
    zone: tzinfo | None = None,
    recurring: bool = False,
) -> StepDecision:
    """Decide whether the entity's next escalation step fires in this run.

    Checks run in a fixed order: completion, threshold ordering, same-day
    cooldown, then contact target. Only the first failing check is reported.
    """
    step = max(current_step, 0)

    if recurring:
        if not isinstance(policy, RecurringEscalationPolicy) or not policy.is_complete(step):
            return _skip(step + 1, "out_of_order", "Recurring step requires a completed escalation")
        attempt = policy.max_step + 1
    else:
        attempt = step + 1
        if policy.is_complete(step):
            return _skip(step, "already_complete", "All escalation steps already sent")
        threshold = policy.threshold_for(step)
        if elapsed_days < threshold:
            return _skip(
                attempt,
                "out_of_order",
                f"Next step needs {threshold} day(s); entity is {elapsed_days} day(s) past its anchor",
            )

    if last_sent_at is not None and now is not None and zone is not None:
        if local_date(last_sent_at, zone) >= local_date(now, zone):
            return _skip(attempt, "cooldown_active", "Already notified today")

    if not contact_target or not contact_target.strip():
        return _skip(attempt, "no_contact_target", "Contact target missing")

    return StepDecision(proceed=True, attempt=attempt, reason="due", message=f"Step {attempt} due")


def next_step_after_success(policy: EscalationPolicy, current_step: int, *, recurring: bool = False) -> int:
    """Step to persist after a successful send; at most one step forward."""
    if recurring:
        return current_step
    return min(current_step + 1, policy.max_step)
