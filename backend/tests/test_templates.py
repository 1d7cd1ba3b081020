from __future__ import annotations

from reminder_scheduler.templates import (
    overdue_invoice_subject,
    render_account_nudge_email,
    render_overdue_invoice_email,
)


def test_overdue_subject_pluralizes_days() -> None:
    assert overdue_invoice_subject(1, "INV-1") == "Overdue by 1 day: Invoice INV-1"
    assert overdue_invoice_subject(7, "INV-1") == "Overdue by 7 days: Invoice INV-1"


def test_overdue_email_escapes_tenant_supplied_text() -> None:
    rendered = render_overdue_invoice_email(
        sender_name="Smith & <Sons>",
        sender_email="billing@smith.test",
        client_name="<script>alert(1)</script>",
        invoice_number="INV-42",
        amount=1250.5,
        overdue_days=3,
        public_link="https://app.example.com/invoice/inv-42/pl-1?a=1&b=2",
    )

    assert rendered.subject == "Overdue by 3 days: Invoice INV-42"
    assert "Smith &amp; &lt;Sons&gt;" in rendered.html
    assert "<script>" not in rendered.html
    assert "$1250.50" in rendered.html
    assert 'href="https://app.example.com/invoice/inv-42/pl-1?a=1&amp;b=2"' in rendered.html
    assert "billing@smith.test" in rendered.html


def test_overdue_email_without_client_name_uses_plain_greeting() -> None:
    rendered = render_overdue_invoice_email(
        sender_name="Billing",
        sender_email="noreply@resend.dev",
        client_name=None,
        invoice_number="INV-1",
        amount=10,
        overdue_days=1,
        public_link="https://app.example.com/invoice/inv-1/",
    )

    assert "Hello," in rendered.html
    assert "1 day</strong> overdue" in rendered.html


def test_nudge_copy_changes_by_step() -> None:
    subjects = [
        render_account_nudge_email(
            step=step,
            full_name="Dana",
            app_base_url="https://app.example.com/",
            product_name="X Invoice",
        ).subject
        for step in (1, 2, 3, 4)
    ]

    assert subjects == [
        "Ready to Create Your First Invoice? Let's Get Started!",
        "Still Need Help Creating Your First Invoice?",
        "Don't Miss Out - Create Your First Invoice Today!",
        "New X Invoice Features & Invoice Management Tips",
    ]


def test_nudge_links_point_at_create_invoice_then_dashboard() -> None:
    early = render_account_nudge_email(
        step=1, full_name=None, app_base_url="https://app.example.com/", product_name="X Invoice"
    )
    recurring = render_account_nudge_email(
        step=4,
        full_name="Dana",
        app_base_url="https://app.example.com",
        product_name="X Invoice",
        is_recurring=True,
    )

    assert 'href="https://app.example.com/create-invoice"' in early.html
    assert "Hi there," in early.html
    assert 'href="https://app.example.com/dashboard"' in recurring.html
    assert "Hi Dana," in recurring.html
