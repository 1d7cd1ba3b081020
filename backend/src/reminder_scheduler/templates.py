from __future__ import annotations

import html
from dataclasses import dataclass


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    html: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _button(href: str, label: str) -> str:
    return (
        f'<a href="{html.escape(href, quote=True)}" style="background-color:#f97316;color:#fff;'
        'padding:12px 20px;text-decoration:none;border-radius:6px;font-weight:600;display:inline-block;">'
        f"{html.escape(label)}</a>"
    )


def overdue_invoice_subject(overdue_days: int, invoice_number: str) -> str:
    return f"Overdue by {_plural(overdue_days, 'day')}: Invoice {invoice_number}"


def render_overdue_invoice_email(
    *,
    sender_name: str,
    sender_email: str,
    client_name: str | None,
    invoice_number: str,
    amount: float,
    overdue_days: int,
    public_link: str,
) -> RenderedMessage:
    greeting = f"Hello {client_name}," if client_name else "Hello,"
    h: list[str] = []
    h.append('<div style="font-family: Arial, sans-serif; max-width: 640px; margin: 0 auto;">')
    h.append(
        '<div style="background: linear-gradient(135deg,#0f172a,#1e293b); padding: 20px; '
        'color: white; border-radius: 8px 8px 0 0;">'
    )
    h.append(f'<h1 style="margin:0; font-size:20px;">{html.escape(sender_name)}</h1>')
    h.append('<p style="margin:6px 0 0 0; opacity:0.9;">Invoice Reminder</p>')
    h.append("</div>")
    h.append(
        '<div style="padding: 24px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 8px 8px;">'
    )
    h.append(f'<p style="color:#374151;">{html.escape(greeting)}</p>')
    h.append(
        '<p style="color:#4b5563; line-height:1.6;">'
        f"This is a friendly reminder that invoice <strong>{html.escape(invoice_number)}</strong> "
        f"for <strong>${amount:.2f}</strong> is <strong>{_plural(overdue_days, 'day')}</strong> overdue.</p>"
    )
    h.append(f'<div style="text-align:center; margin:24px 0;">{_button(public_link, "View & Pay Invoice")}</div>')
    h.append(
        '<p style="color:#6b7280; font-size:13px;">'
        "If you have already sent the payment, please disregard this message.</p>"
    )
    h.append('<hr style="border:none;border-top:1px solid #e5e7eb;margin:24px 0;"/>')
    h.append(
        f'<p style="color:#6b7280; font-size:12px;">Sent by {html.escape(sender_name)} '
        f"&middot; {html.escape(sender_email)}</p>"
    )
    h.append("</div></div>")
    return RenderedMessage(
        subject=overdue_invoice_subject(overdue_days, invoice_number),
        html="\n".join(h),
    )


@dataclass(frozen=True)
class _NudgeCopy:
    subject: str
    headline: str
    body: str
    cta_label: str
    path: str


def _nudge_copy(step: int, product_name: str, is_recurring: bool, final_step: int) -> _NudgeCopy:
    if is_recurring or step >= final_step:
        return _NudgeCopy(
            subject=f"New {product_name} Features & Invoice Management Tips",
            headline="Discover what's new",
            body=(
                "We have been busy improving invoicing, payment tracking and client management. "
                "Log in to see the latest features and start getting paid faster."
            ),
            cta_label="Explore Your Dashboard",
            path="/dashboard",
        )
    if step == 1:
        return _NudgeCopy(
            subject="Ready to Create Your First Invoice? Let's Get Started!",
            headline="Your first invoice is just a few clicks away",
            body=(
                f"Thanks for joining {product_name}. Creating a professional invoice takes less than "
                "two minutes: add your client, list your items and send."
            ),
            cta_label="Create Your First Invoice",
            path="/create-invoice",
        )
    if step == 2:
        return _NudgeCopy(
            subject="Still Need Help Creating Your First Invoice?",
            headline="We're here to help",
            body=(
                "Getting started can take a moment. Use a template, add your branding and "
                "let us handle the formatting for you."
            ),
            cta_label="Start Invoicing Now",
            path="/create-invoice",
        )
    return _NudgeCopy(
        subject="Don't Miss Out - Create Your First Invoice Today!",
        headline="Get paid faster starting today",
        body=(
            "Businesses that send invoices promptly get paid sooner. Your account is ready and "
            "waiting for your first invoice."
        ),
        cta_label="Create Invoice Now",
        path="/create-invoice",
    )


def render_account_nudge_email(
    *,
    step: int,
    full_name: str | None,
    app_base_url: str,
    product_name: str,
    is_recurring: bool = False,
    final_step: int = 4,
) -> RenderedMessage:
    """Render the nudge for escalation ``step`` (1-indexed) of an inactive account."""
    copy = _nudge_copy(step, product_name, is_recurring, final_step)
    link = f"{app_base_url.rstrip('/')}{copy.path}"
    name = (full_name or "").strip() or "there"
    h: list[str] = []
    h.append('<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">')
    h.append(
        '<div style="background: linear-gradient(135deg,#0f172a,#1e293b); padding: 24px; '
        'color: white; border-radius: 8px 8px 0 0; text-align:center;">'
    )
    h.append(f'<h1 style="margin:0; font-size:22px;">{html.escape(copy.headline)}</h1>')
    h.append("</div>")
    h.append(
        '<div style="padding: 24px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 8px 8px;">'
    )
    h.append(f'<p style="color:#374151;">Hi {html.escape(name)},</p>')
    h.append(f'<p style="color:#4b5563; line-height:1.6;">{html.escape(copy.body)}</p>')
    h.append(f'<div style="text-align:center; margin:24px 0;">{_button(link, copy.cta_label)}</div>')
    h.append('<hr style="border:none;border-top:1px solid #e5e7eb;margin:24px 0;"/>')
    h.append(
        f'<p style="color:#6b7280; font-size:12px; text-align:center;">'
        f"{html.escape(product_name)} - Professional Invoice Management</p>"
    )
    h.append("</div></div>")
    return RenderedMessage(subject=copy.subject, html="\n".join(h))
