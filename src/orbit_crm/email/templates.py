"""Transactional email templates (HTML + plain text)."""

from dataclasses import dataclass
from datetime import datetime
from html import escape


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html: str
    text: str


_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="margin:0;padding:0;font-family:-apple-system,'Segoe UI',Roboto,Arial,sans-serif;background-color:#f9fafb;">
  <table role="presentation" style="width:100%;border-collapse:collapse;">
    <tr><td align="center" style="padding:40px 20px;">
      <table role="presentation" style="width:100%;max-width:600px;background-color:#ffffff;border-radius:12px;">
        <tr><td style="padding:40px 40px 24px;text-align:center;border-bottom:1px solid #e5e7eb;">
          <h1 style="margin:0;font-size:24px;font-weight:600;color:#111827;">{title}</h1>
        </td></tr>
        <tr><td style="padding:32px 40px;color:#374151;font-size:16px;line-height:24px;">{body}</td></tr>
        <tr><td style="padding:24px 40px;background-color:#f9fafb;border-top:1px solid #e5e7eb;font-size:12px;color:#6b7280;text-align:center;">{footer}</td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>"""


def _button(href: str, label: str) -> str:
    return (
        f'<p style="text-align:center;padding:8px 0 24px;"><a href="{escape(href)}" '
        'style="display:inline-block;padding:14px 32px;background-color:#3b82f6;color:#ffffff;'
        f'text-decoration:none;border-radius:8px;font-weight:600;">{escape(label)}</a></p>'
    )


def _render(title: str, body: str, footer: str) -> str:
    return _LAYOUT.format(title=escape(title), body=body, footer=footer)


def _hours(n: int) -> str:
    return f"{n} hour" if n == 1 else f"{n} hours"


def portal_invitation(
    contact_name: str, company_name: str, magic_link: str, expires_in_hours: int = 1
) -> EmailContent:
    """Magic-link invitation to the client portal."""
    name, company = escape(contact_name), escape(company_name)
    expiry = _hours(expires_in_hours)
    body = (
        f"<p>Hi {name},</p>"
        f"<p>{company} has invited you to access your personalized client portal. Here you can:</p>"
        "<ul><li>View and download your invoices</li><li>Track project progress</li>"
        "<li>Access shared documents</li><li>Stay updated on your account</li></ul>"
        + _button(magic_link, "Access Your Portal")
        + '<p style="font-size:14px;color:#6b7280;"><strong>Security Note:</strong> '
        f"This link will expire in {expiry} and can only be used once. "
        f"If you need a new link, please contact {company}.</p>"
        '<p style="font-size:12px;color:#9ca3af;word-break:break-all;">'
        f"{escape(magic_link)}</p>"
    )
    footer = (
        f"This email was sent by {company}<br>"
        "If you didn't request this invitation, you can safely ignore this email."
    )
    text = (
        "Welcome to Your Client Portal\n\n"
        f"Hi {contact_name},\n\n"
        f"{company_name} has invited you to access your personalized client portal.\n\n"
        f"Access your portal by clicking this link:\n{magic_link}\n\n"
        f"Security Note: This link will expire in {expiry} and can only be used once. "
        f"If you need a new link, please contact {company_name}.\n\n"
        f"---\nThis email was sent by {company_name}.\n"
        "If you didn't request this invitation, you can safely ignore this email."
    )
    return EmailContent(
        subject=f"Access Your {company_name} Client Portal",
        html=_render("Welcome to Your Client Portal", body, footer),
        text=text,
    )


def overdue_invoice(
    user_name: str,
    invoice_number: str,
    contact_name: str,
    amount: float,
    currency: str,
    days_overdue: int,
    invoice_url: str,
) -> EmailContent:
    amount_str = f"{currency} {amount:,.2f}"
    body = (
        f"<p>Hi {escape(user_name)},</p>"
        f"<p>Invoice <strong>{escape(invoice_number)}</strong> for {escape(contact_name)} "
        f"({escape(amount_str)}) is {days_overdue} days overdue.</p>"
        + _button(invoice_url, "View Invoice")
    )
    text = (
        f"Hi {user_name},\n\n"
        f"Invoice {invoice_number} for {contact_name} ({amount_str}) is {days_overdue} days overdue.\n\n"
        f"View invoice: {invoice_url}"
    )
    return EmailContent(
        subject=f"Invoice {invoice_number} is overdue",
        html=_render("Invoice Overdue", body, "OrbitCRM notification"),
        text=text,
    )


def task_reminder(
    user_name: str,
    task_title: str,
    due_date: datetime | None,
    task_url: str,
    contact_name: str | None = None,
    overdue: bool = False,
) -> EmailContent:
    due_str = due_date.strftime("%Y-%m-%d %H:%M") if due_date else "no due date"
    state = "is overdue" if overdue else "is due soon"
    related = f"<p style=\"font-size:14px;color:#6b7280;\">Related to: {escape(contact_name)}</p>" if contact_name else ""
    body = (
        f"<p>Hi {escape(user_name)},</p>"
        f"<p>Your task <strong>{escape(task_title)}</strong> {state}.</p>"
        f"{related}<p style=\"font-size:14px;color:#6b7280;\">Due: {escape(due_str)}</p>"
        + _button(task_url, "View Task")
    )
    text = f"Hi {user_name},\n\nYour task \"{task_title}\" {state}.\nDue: {due_str}\n\n{task_url}"
    return EmailContent(
        subject=f"Task {'overdue' if overdue else 'reminder'}: {task_title}",
        html=_render("Task Overdue" if overdue else "Task Reminder", body, "OrbitCRM notification"),
        text=text,
    )


def follow_up_reminder(
    user_name: str, contact_name: str, days_since_update: int, contact_url: str
) -> EmailContent:
    body = (
        f"<p>Hi {escape(user_name)},</p>"
        f"<p>You haven't followed up with <strong>{escape(contact_name)}</strong> "
        f"in {days_since_update} days.</p>"
        + _button(contact_url, "View Contact")
    )
    text = (
        f"Hi {user_name},\n\nYou haven't followed up with {contact_name} "
        f"in {days_since_update} days.\n\n{contact_url}"
    )
    return EmailContent(
        subject=f"Follow up with {contact_name}",
        html=_render("Follow-up Reminder", body, "OrbitCRM notification"),
        text=text,
    )
