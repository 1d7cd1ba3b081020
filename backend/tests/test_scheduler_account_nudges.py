from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from reminder_scheduler.config import Settings
from reminder_scheduler.record_store import AccountRecord, InMemoryRecordStore, TenantPolicyRecord
from reminder_scheduler.scheduler import NotificationScheduler
from reminder_scheduler.transport import StubTransport

NOW = datetime(2024, 3, 10, 4, 30, tzinfo=timezone.utc)


def _scheduler(store: InMemoryRecordStore) -> tuple[NotificationScheduler, StubTransport]:
    transport = StubTransport(enabled=True)
    settings = Settings(public_app_url="https://app.example.com")
    return NotificationScheduler(store=store, transport=transport, settings=settings), transport


def _seed_account(
    store: InMemoryRecordStore,
    *,
    account_id: str = "acct-1",
    registered_on: date = date(2024, 3, 7),
    email: str | None = "owner@example.com",
    nudge_step: int = 0,
    last_nudge_at: datetime | None = None,
    has_created_first_invoice: bool = False,
) -> None:
    store.upsert_account(
        AccountRecord(
            account_id=account_id,
            email=email,
            full_name="Dana Owner",
            registered_on=registered_on,
            has_created_first_invoice=has_created_first_invoice,
            nudge_step=nudge_step,
            last_nudge_at=last_nudge_at,
        )
    )


def test_third_day_nudge_is_sent_and_step_advanced() -> None:
    store = InMemoryRecordStore()
    _seed_account(store)
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.tenants_checked == 1
    assert response.notifications_sent == 1
    [message] = transport.sent
    assert message.sender == "X Invoice <reminders@xinvoice.app>"
    assert message.to == "owner@example.com"
    assert message.subject == "Ready to Create Your First Invoice? Let's Get Started!"
    assert "https://app.example.com/create-invoice" in message.html
    assert "Dana Owner" in message.html

    account = store.get_account("acct-1")
    assert account is not None
    assert account.nudge_step == 1
    assert account.last_nudge_at == NOW

    queued, attempted, success = reversed(store.list_audit())
    assert queued.status == "queued"
    assert queued.message == "Queued step 1"
    assert attempted.status == "attempted"
    assert attempted.function_name == "send-no-invoice-reminder"
    assert attempted.entity_type == "account"
    assert attempted.message == "Sending no_invoice_3d nudge (3d since registration)"
    assert success.status == "success"
    assert success.attempt == 1


def test_nudges_follow_thresholds_then_repeat_monthly() -> None:
    store = InMemoryRecordStore()
    registered = date(2024, 1, 1)
    _seed_account(store, registered_on=registered)
    scheduler, transport = _scheduler(store)

    send_days: list[int] = []
    for offset in range(0, 100):
        now = datetime.combine(registered + timedelta(days=offset), datetime.min.time(), tzinfo=timezone.utc)
        response = scheduler.run("account_nudges", now=now + timedelta(hours=9))
        if response.notifications_sent:
            send_days.append(offset)

    assert send_days == [3, 5, 7, 30, 60, 90]
    account = store.get_account("acct-1")
    assert account is not None
    assert account.nudge_step == 4
    subjects = [message.subject for message in transport.sent]
    assert subjects[:3] == [
        "Ready to Create Your First Invoice? Let's Get Started!",
        "Still Need Help Creating Your First Invoice?",
        "Don't Miss Out - Create Your First Invoice Today!",
    ]
    assert subjects[3:] == ["New X Invoice Features & Invoice Management Tips"] * 3
    assert "https://app.example.com/dashboard" in transport.sent[-1].html


def test_recurring_nudge_waits_for_full_window() -> None:
    store = InMemoryRecordStore()
    _seed_account(
        store,
        registered_on=date(2024, 1, 1),
        nudge_step=4,
        last_nudge_at=NOW - timedelta(days=10),
    )
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.notifications_sent == 0
    assert transport.sent == []


def test_recurring_nudge_keeps_step_and_moves_last_sent() -> None:
    store = InMemoryRecordStore()
    _seed_account(
        store,
        registered_on=date(2024, 1, 1),
        nudge_step=4,
        last_nudge_at=NOW - timedelta(days=31),
    )
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.notifications_sent == 1
    assert response.results[0].attempt == 5
    assert transport.sent[0].subject == "New X Invoice Features & Invoice Management Tips"
    account = store.get_account("acct-1")
    assert account is not None
    assert account.nudge_step == 4
    assert account.last_nudge_at == NOW


def test_account_with_first_invoice_gets_no_nudge() -> None:
    store = InMemoryRecordStore()
    _seed_account(store, has_created_first_invoice=True)
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.tenants_checked == 1
    assert response.results == []
    assert transport.sent == []


def test_opted_out_account_is_not_checked() -> None:
    store = InMemoryRecordStore()
    _seed_account(store)
    store.upsert_tenant_policy(TenantPolicyRecord(tenant_id="acct-1", account_nudges_enabled=False))
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.tenants_checked == 0
    assert transport.sent == []


def test_account_timezone_decides_registration_age() -> None:
    store = InMemoryRecordStore()
    # 04:30 UTC on 2024-03-10 is still 2024-03-09 in UTC-5, two days after registration.
    _seed_account(store, registered_on=date(2024, 3, 7))
    store.upsert_tenant_policy(TenantPolicyRecord(tenant_id="acct-1", timezone="UTC-5"))
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.notifications_sent == 0
    assert transport.sent == []


def test_account_without_email_is_skipped() -> None:
    store = InMemoryRecordStore()
    _seed_account(store, email="  ")
    scheduler, transport = _scheduler(store)

    response = scheduler.run("account_nudges", now=NOW)

    assert response.skipped_count == 1
    assert response.results[0].reason == "no_contact_target"
    assert transport.sent == []
    assert store.get_account("acct-1").nudge_step == 0  # type: ignore[union-attr]


def test_run_all_runs_every_campaign() -> None:
    store = InMemoryRecordStore()
    _seed_account(store)
    scheduler, _ = _scheduler(store)

    batch = scheduler.run_all(now=NOW)

    assert [run.campaign for run in batch.runs] == ["invoice_reminders", "account_nudges"]
    assert batch.runs[1].notifications_sent == 1


def test_recurring_advance_rejects_stale_last_sent() -> None:
    store = InMemoryRecordStore()
    last_sent = NOW - timedelta(days=31)
    _seed_account(store, registered_on=date(2024, 1, 1), nudge_step=4, last_nudge_at=last_sent)

    stale = store.advance_escalation(
        "account_nudges",
        "acct-1",
        expected_step=4,
        next_step=4,
        previous_sent_at=NOW - timedelta(days=62),
        sent_at=NOW,
    )
    first = store.advance_escalation(
        "account_nudges", "acct-1", expected_step=4, next_step=4, previous_sent_at=last_sent, sent_at=NOW
    )
    second = store.advance_escalation(
        "account_nudges",
        "acct-1",
        expected_step=4,
        next_step=4,
        previous_sent_at=last_sent,
        sent_at=NOW + timedelta(minutes=1),
    )

    assert (stale, first, second) == (False, True, False)
    assert store.get_account("acct-1").last_nudge_at == NOW  # type: ignore[union-attr]
