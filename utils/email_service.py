"""SMTP-backed email delivery for complaint status updates."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Dict, List, Tuple

from flask import current_app, render_template

from utils.errors import TransportFailure

STATUS_COLORS = {
    "Pending": "#eab308",
    "In Progress": "#3b82f6",
    "Resolved": "#22c55e",
    "Overdue": "#ef4444",
    "Escalated": "#a855f7",
}


class EmailDeliveryError(TransportFailure):
    """Raised when email dispatch fails."""


def status_email_context(recipient_name: str, complaint) -> Dict:
    """Snapshot everything the templates need so delivery never touches the database."""
    base_url = (current_app.config.get("CLIENT_URL") or "").rstrip("/")
    return {
        "recipient_name": recipient_name or "Citizen",
        "complaint_id": complaint.id,
        "title": complaint.title,
        "department": complaint.department,
        "status": complaint.status,
        "location": complaint.address or complaint.city or "",
        "city": complaint.city or "",
        "complaint_url": f"{base_url}/complaints/{complaint.id}",
    }


def _render_email_content(template: str, context: Dict) -> Tuple[str, str]:
    color = STATUS_COLORS.get(context.get("status"), "#e8820c")
    text_body = render_template(f"{template}.txt", **context)
    html_body = render_template(f"{template}.html", status_color=color, **context)
    return text_body, html_body


def _dispatch_email(subject: str, text_body: str, html_body: str, sender: str, recipients: List[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")

    host = current_app.config.get("MAIL_SERVER")
    port = int(current_app.config.get("MAIL_PORT", 587))
    username = current_app.config.get("MAIL_USERNAME")
    password = current_app.config.get("MAIL_PASSWORD")
    use_tls = bool(current_app.config.get("MAIL_USE_TLS"))
    use_ssl = bool(current_app.config.get("MAIL_USE_SSL"))

    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    try:
        if use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context) as server:
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port) as server:
                server.ehlo()
                if use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:  # pragma: no cover - external I/O
        raise EmailDeliveryError(str(exc)) from exc


def send_status_email(recipient: str, context: Dict) -> None:
    subject = f"[CivicVoice] Your complaint is now {context.get('status')}"
    text_body, html_body = _render_email_content("email/status_update", context)
    sender = current_app.config.get("MAIL_DEFAULT_SENDER") or ""
    _dispatch_email(subject, text_body, html_body, sender, [recipient])
    current_app.logger.info("Status email sent", extra={"complaint_id": context.get("complaint_id"), "status": context.get("status")})
