from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from reminder_scheduler.clock import resolve_timezone
from reminder_scheduler.policy import EscalationPolicy, RecurringEscalationPolicy
from reminder_scheduler.record_store import (
    AccountRecord,
    ClientRecord,
    InMemoryRecordStore,
    InvoiceRecord,
    TenantPolicyRecord,
)
from reminder_scheduler.selector import EntitySelector, threshold_dates

INVOICE_POLICY = EscalationPolicy(name="overdue_invoice", thresholds=(1, 3, 7))
ACCOUNT_POLICY = RecurringEscalationPolicy(name="inactive_account", thresholds=(3, 5, 7, 30), recurrence_days=30)
NOW = datetime(2024, 3, 10, 4, 30, tzinfo=timezone.utc)


def _seed_invoices(store: InMemoryRecordStore) -> None:
    store.upsert_tenant_policy(TenantPolicyRecord(tenant_id="tenant-1", timezone="UTC-5"))
    store.upsert_client(ClientRecord(client_id="client-1", tenant_id="tenant-1", name="Acme", email="ap@acme.test"))
    for invoice_id, due in (
        ("inv-1d", date(2024, 3, 8)),
        ("inv-2d", date(2024, 3, 7)),
        ("inv-3d", date(2024, 3, 6)),
        ("inv-7d", date(2024, 3, 2)),
        ("inv-10d", date(2024, 2, 28)),
    ):
        store.upsert_invoice(
            InvoiceRecord(
                invoice_id=invoice_id,
                tenant_id="tenant-1",
                invoice_number=invoice_id.upper(),
                due_date=due,
                client_id="client-1",
            )
        )
    store.upsert_invoice(
        InvoiceRecord(
            invoice_id="inv-paid",
            tenant_id="tenant-1",
            invoice_number="INV-PAID",
            due_date=date(2024, 3, 2),
            client_id="client-1",
            payment_status="paid",
        )
    )
    store.upsert_invoice(
        InvoiceRecord(
            invoice_id="inv-other-tenant",
            tenant_id="tenant-2",
            invoice_number="INV-OTHER",
            due_date=date(2024, 3, 2),
        )
    )


def test_threshold_dates_map_local_dates_to_offsets() -> None:
    dates = threshold_dates(INVOICE_POLICY, NOW, resolve_timezone("UTC-5"))

    assert dates == {date(2024, 3, 8): 1, date(2024, 3, 6): 3, date(2024, 3, 2): 7}


def test_exact_mode_selects_only_threshold_dates() -> None:
    store = InMemoryRecordStore()
    _seed_invoices(store)
    selector = EntitySelector(store)

    selected = selector.select("invoice_reminders", INVOICE_POLICY, "tenant-1", now=NOW, zone=resolve_timezone("UTC-5"))

    assert [(item.entity.entity_id, item.elapsed_days) for item in selected] == [
        ("inv-1d", 1),
        ("inv-3d", 3),
        ("inv-7d", 7),
    ]
    assert all(item.recurring is False for item in selected)


def test_catch_up_mode_selects_everything_past_first_threshold() -> None:
    store = InMemoryRecordStore()
    _seed_invoices(store)
    selector = EntitySelector(store, mode="catch_up")

    selected = selector.select("invoice_reminders", INVOICE_POLICY, "tenant-1", now=NOW, zone=resolve_timezone("UTC-5"))

    assert [(item.entity.entity_id, item.elapsed_days) for item in selected] == [
        ("inv-10d", 10),
        ("inv-1d", 1),
        ("inv-2d", 2),
        ("inv-3d", 3),
        ("inv-7d", 7),
    ]


def test_selector_returns_empty_list_for_tenant_without_matches() -> None:
    store = InMemoryRecordStore()
    _seed_invoices(store)

    selected = EntitySelector(store).select(
        "invoice_reminders", INVOICE_POLICY, "tenant-unknown", now=NOW, zone=timezone.utc
    )

    assert selected == []


def test_recurring_selection_includes_completed_accounts_due_again() -> None:
    store = InMemoryRecordStore()
    store.upsert_account(
        AccountRecord(
            account_id="acct-due",
            email="due@example.com",
            registered_on=date(2024, 1, 1),
            nudge_step=4,
            last_nudge_at=NOW - timedelta(days=31),
        )
    )
    store.upsert_account(
        AccountRecord(
            account_id="acct-recent",
            email="recent@example.com",
            registered_on=date(2024, 1, 1),
            nudge_step=4,
            last_nudge_at=NOW - timedelta(days=5),
        )
    )
    selector = EntitySelector(store)

    due = selector.select("account_nudges", ACCOUNT_POLICY, "acct-due", now=NOW, zone=timezone.utc)
    recent = selector.select("account_nudges", ACCOUNT_POLICY, "acct-recent", now=NOW, zone=timezone.utc)

    assert len(due) == 1
    assert due[0].recurring is True
    assert due[0].elapsed_days == (date(2024, 3, 10) - date(2024, 1, 1)).days
    assert recent == []


def test_accounts_with_first_invoice_are_never_selected() -> None:
    store = InMemoryRecordStore()
    store.upsert_account(
        AccountRecord(
            account_id="acct-active",
            email="active@example.com",
            registered_on=date(2024, 3, 7),
            has_created_first_invoice=True,
        )
    )

    selected = EntitySelector(store).select("account_nudges", ACCOUNT_POLICY, "acct-active", now=NOW, zone=timezone.utc)

    assert selected == []


def test_catch_up_mode_skips_completed_and_not_yet_due_steps() -> None:
    store = InMemoryRecordStore()
    store.upsert_tenant_policy(TenantPolicyRecord(tenant_id="tenant-1", timezone="UTC"))
    for invoice_id, due, count in (
        ("inv-done", date(2024, 2, 1), 3),
        ("inv-waiting", date(2024, 3, 8), 1),
        ("inv-step-two", date(2024, 3, 7), 1),
    ):
        store.upsert_invoice(
            InvoiceRecord(
                invoice_id=invoice_id,
                tenant_id="tenant-1",
                invoice_number=invoice_id.upper(),
                due_date=due,
                reminder_count=count,
            )
        )
    selector = EntitySelector(store, mode="catch_up")

    selected = selector.select("invoice_reminders", INVOICE_POLICY, "tenant-1", now=NOW, zone=timezone.utc)

    assert [(item.entity.entity_id, item.elapsed_days) for item in selected] == [("inv-step-two", 3)]
