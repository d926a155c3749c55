from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from typing import Callable, Optional

import httpx

from invoicedesk.core.errors import ExternalServiceError
from invoicedesk.core.settings import settings
from invoicedesk.models.invoice import Invoice
from invoicedesk.models.user import User


@dataclass
class EmailSendResult:
    provider: str
    message_id: Optional[str] = None


class EmailSendError(ExternalServiceError):
    kind = "email_send_failed"
    default_message = "Failed to send the invoice email, please retry"


Mailer = Callable[..., EmailSendResult]


def send_email(*, to_address: str, subject: str, html: str, text: str | None = None) -> EmailSendResult:
    provider = (settings.email_provider or "disabled").lower()
    if provider in {"disabled", "none"}:
        raise EmailSendError("Email delivery is not configured")
    if not settings.email_from:
        raise EmailSendError("Email sender address is not configured")

    try:
        if provider == "resend":
            return _send_resend(to_address=to_address, subject=subject, html=html, text=text)
        if provider == "postmark":
            return _send_postmark(to_address=to_address, subject=subject, html=html, text=text)
        if provider == "smtp":
            return _send_smtp(to_address=to_address, subject=subject, html=html, text=text)
    except httpx.HTTPError as exc:
        raise EmailSendError(f"Email provider unreachable: {exc.__class__.__name__}") from exc
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailSendError(f"SMTP delivery failed: {exc.__class__.__name__}") from exc

    raise EmailSendError(f"Unsupported email provider: {settings.email_provider}")


def get_mailer() -> Mailer:
    return send_email


def _message_id(resp: httpx.Response, key: str) -> Optional[str]:
    # The message is already accepted here; an unreadable body only loses the id.
    try:
        data = resp.json()
    except ValueError:
        return None
    return data.get(key) if isinstance(data, dict) else None


def _send_resend(*, to_address: str, subject: str, html: str, text: str | None) -> EmailSendResult:
    if not settings.email_api_key:
        raise EmailSendError("Email API key not configured for Resend")
    payload = {
        "from": settings.email_from,
        "to": [to_address],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    headers = {
        "Authorization": f"Bearer {settings.email_api_key}",
        "Content-Type": "application/json",
    }
    with httpx.Client(timeout=settings.email_timeout_seconds) as client:
        resp = client.post("https://api.resend.com/emails", json=payload, headers=headers)
    if resp.status_code >= 400:
        raise EmailSendError(f"Resend error: {resp.status_code}")
    return EmailSendResult(provider="resend", message_id=_message_id(resp, "id"))


def _send_postmark(*, to_address: str, subject: str, html: str, text: str | None) -> EmailSendResult:
    if not settings.email_api_key:
        raise EmailSendError("Email API key not configured for Postmark")
    payload = {
        "From": settings.email_from,
        "To": to_address,
        "Subject": subject,
        "HtmlBody": html,
    }
    if text:
        payload["TextBody"] = text
    headers = {
        "X-Postmark-Server-Token": settings.email_api_key,
        "Content-Type": "application/json",
    }
    with httpx.Client(timeout=settings.email_timeout_seconds) as client:
        resp = client.post("https://api.postmarkapp.com/email", json=payload, headers=headers)
    if resp.status_code >= 400:
        raise EmailSendError(f"Postmark error: {resp.status_code}")
    return EmailSendResult(provider="postmark", message_id=_message_id(resp, "MessageID"))


def _send_smtp(*, to_address: str, subject: str, html: str, text: str | None) -> EmailSendResult:
    if not settings.smtp_host:
        raise EmailSendError("SMTP host not configured")
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.email_from
    message["To"] = to_address
    message.set_content(text or "This email requires an HTML-capable client.")
    message.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.email_timeout_seconds) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username and settings.smtp_password:
            server.login(settings.smtp_username, settings.smtp_password)
        server.send_message(message)
    return EmailSendResult(provider="smtp")


def payment_link(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return f"{settings.app_base_url.rstrip('/')}/pay/{token}"


def view_link(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return f"{settings.app_base_url.rstrip('/')}/view/{token}"


def render_invoice_email(invoice: Invoice, owner: User, *, pay_url: Optional[str]) -> tuple[str, str, str]:
    """Return ``(subject, html, text)`` for an invoice notification."""
    sender = owner.business_name or owner.full_name or owner.email
    subject = f"Invoice {invoice.invoice_number} from {sender}"
    due = invoice.due_date.isoformat() if invoice.due_date else "on receipt"
    lines = [
        f"Hello {invoice.client_name},",
        "",
        f"{sender} sent you invoice {invoice.invoice_number} for {invoice.currency} {invoice.balance_due}.",
        f"Due: {due}",
    ]
    view_url = view_link(invoice.view_token)
    if view_url:
        lines.append(f"View online: {view_url}")
    if pay_url:
        lines.append(f"Pay online: {pay_url}")
    text = "\n".join(lines)
    html = "".join(f"<p>{escape(line)}</p>" for line in lines if line)
    return subject, html, text
