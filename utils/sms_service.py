"""Twilio-backed SMS delivery for complaint status updates."""
from flask import current_app
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from utils.errors import TransportFailure

STATUS_PHRASES = {
    "In Progress": "is being worked on",
    "Resolved": "has been resolved",
    "Overdue": "is overdue and escalated",
    "Escalated": "has been escalated to Commissioner",
}


class SMSDeliveryError(TransportFailure):
    """Raised when SMS dispatch fails."""


def _client() -> Client:
    client = current_app.extensions.get("twilio_client")
    if client is not None:
        return client
    sid = current_app.config.get("TWILIO_ACCOUNT_SID")
    token = current_app.config.get("TWILIO_AUTH_TOKEN")
    if not sid or not token:
        raise SMSDeliveryError("Twilio credentials are not configured")
    client = Client(sid, token)
    current_app.extensions["twilio_client"] = client
    return client


def build_status_message(title: str, status: str) -> str:
    phrase = STATUS_PHRASES.get(status, f"is now {status}")
    return f'[CivicVoice] Your complaint "{(title or "")[:50]}" {phrase}. Visit civicvoice.in to track.'


def send_status_sms(phone: str, title: str, status: str) -> None:
    sender = current_app.config.get("TWILIO_PHONE_NUMBER")
    if not sender:
        raise SMSDeliveryError("TWILIO_PHONE_NUMBER is not configured")
    try:
        _client().messages.create(body=build_status_message(title, status), from_=sender, to=phone)
    except TwilioException as exc:  # pragma: no cover - external I/O
        raise SMSDeliveryError(str(exc)) from exc
    current_app.logger.info("Status SMS sent", extra={"status": status})
