from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reminder_scheduler.policy import EscalationPolicy, RecurringEscalationPolicy, build_policy


def test_policy_exposes_thresholds_by_step() -> None:
    policy = EscalationPolicy(name="overdue_invoice", thresholds=(1, 3, 7))

    assert policy.max_step == 3
    assert policy.first_threshold == 1
    assert policy.threshold_for(0) == 1
    assert policy.threshold_for(2) == 7
    assert policy.is_complete(2) is False
    assert policy.is_complete(3) is True
    assert policy.is_complete(5) is True


def test_policy_threshold_for_completed_step_raises() -> None:
    policy = EscalationPolicy(name="overdue_invoice", thresholds=(1, 3, 7))

    with pytest.raises(IndexError):
        policy.threshold_for(3)


@pytest.mark.parametrize(
    "thresholds",
    [(), (0, 3), (3, 3), (7, 3, 1), (-1, 2)],
)
def test_policy_rejects_invalid_thresholds(thresholds: tuple[int, ...]) -> None:
    with pytest.raises(ValueError):
        EscalationPolicy(name="broken", thresholds=thresholds)


def test_recurring_policy_due_after_recurrence_window() -> None:
    policy = RecurringEscalationPolicy(name="inactive_account", thresholds=(3, 5, 7, 30), recurrence_days=30)
    now = datetime(2024, 4, 10, 12, 0, tzinfo=timezone.utc)

    assert policy.is_recurrence_due(None, now) is False
    assert policy.is_recurrence_due(now - timedelta(days=29), now) is False
    assert policy.is_recurrence_due(now - timedelta(days=30), now) is True
    assert policy.next_due_at(now) == now + timedelta(days=30)
    assert policy.recurrence_cutoff(now) == now - timedelta(days=30)


def test_recurring_policy_rejects_non_positive_recurrence() -> None:
    with pytest.raises(ValueError):
        RecurringEscalationPolicy(name="inactive_account", thresholds=(3,), recurrence_days=0)


def test_build_policy_selects_variant() -> None:
    plain = build_policy("overdue_invoice", (1, 3, 7))
    recurring = build_policy("inactive_account", (3, 5, 7, 30), recurrence_days=30)

    assert type(plain) is EscalationPolicy
    assert isinstance(recurring, RecurringEscalationPolicy)
    assert recurring.recurrence_days == 30
