"""Notification fan-out: persisted inbox entries, channel pushes and side-channel delivery."""
from __future__ import annotations

from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import NOTIFICATION_TYPES, Complaint, Notification, User
from utils.channels import department_channel, get_hub, user_channel
from utils.dispatch import submit
from utils.email_service import send_status_email, status_email_context
from utils.errors import NotFound
from utils.sms_service import send_status_sms

STATUS_ICONS = {
    "In Progress": "🔧",
    "Resolved": "✅",
    "Overdue": "🚨",
    "Escalated": "⚡",
    "Pending": "⏳",
}

STATUS_NOTIFICATION_TYPES = {
    "Overdue": "sla_warning",
    "Escalated": "escalation",
}


def notify(
    recipient_id: str,
    notification_type: str,
    title: str,
    message: str,
    *,
    complaint: Optional[Complaint] = None,
    icon: Optional[str] = None,
) -> Optional[Notification]:
    """Persist a notification and push it on the recipient's private channel."""
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError("Invalid notification type")
    notification = Notification(
        recipient_id=recipient_id,
        type=notification_type,
        title=title[:255],
        message=message[:500],
        complaint_id=complaint.id if complaint is not None else None,
        icon=icon or "🔔",
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError:
        # The triggering mutation is already committed; losing the inbox entry must not undo it.
        db.session.rollback()
        current_app.logger.exception("Notification persistence failed", extra={"recipient_id": recipient_id})
        return None

    get_hub().publish(user_channel(recipient_id), "notification:new", notification.to_payload())
    current_app.logger.info("Notification created", extra={"type": notification_type, "recipient_id": recipient_id})
    return notification


def broadcast_status(complaint: Complaint) -> None:
    get_hub().publish(
        department_channel(complaint.department),
        "complaint:updated",
        {"id": complaint.id, "status": complaint.status, "priorityScore": complaint.priority_score},
    )


def broadcast_new(complaint: Complaint) -> None:
    get_hub().publish(
        department_channel(complaint.department),
        "complaint:new",
        {
            "id": complaint.id,
            "title": complaint.title,
            "status": complaint.status,
            "emergency": complaint.emergency,
            "priorityScore": complaint.priority_score,
        },
    )


def _queue_side_channels(citizen: User, complaint: Complaint) -> None:
    config = current_app.config
    if config.get("ENABLE_EMAIL") and citizen.email:
        context = status_email_context(citizen.name, complaint)
        submit("status_email", send_status_email, citizen.email, context)
    if config.get("ENABLE_SMS") and citizen.phone:
        submit("status_sms", send_status_sms, citizen.phone, complaint.title, complaint.status)


def on_status_change(complaint: Complaint, previous_status: Optional[str]) -> None:
    """Fan a committed status transition out to the filer, the department and side channels."""
    status = complaint.status
    citizen = complaint.citizen
    if citizen is not None:
        notify(
            citizen.id,
            STATUS_NOTIFICATION_TYPES.get(status, "status_update"),
            f"Complaint {status}",
            f'Your complaint "{complaint.title[:60]}" is now {status}',
            complaint=complaint,
            icon=STATUS_ICONS.get(status),
        )
        if status == "Resolved":
            notify(
                citizen.id,
                "rating_request",
                "Rate the resolution",
                f'How satisfied are you with the resolution of "{complaint.title[:60]}"?',
                complaint=complaint,
                icon="⭐",
            )
    broadcast_status(complaint)
    if citizen is not None:
        _queue_side_channels(citizen, complaint)
    current_app.logger.info(
        "Status change fanned out",
        extra={"complaint_id": complaint.id, "from_status": previous_status, "to_status": status},
    )


def inbox(user: User, page: int = 1, per_page: int = 20) -> Tuple[List[Notification], int]:
    page = max(1, page)
    items = (
        Notification.query.filter(Notification.recipient_id == user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    unread = Notification.query.filter(Notification.recipient_id == user.id, Notification.is_read.is_(False)).count()
    return items, unread


def mark_read(notification_id: str, user: User) -> Notification:
    notification = Notification.query.filter_by(id=notification_id, recipient_id=user.id).first()
    if notification is None:
        raise NotFound("Notification not found", notification_id=notification_id)
    if not notification.is_read:
        notification.is_read = True
        db.session.commit()
    return notification


def mark_all_read(user: User) -> int:
    updated = (
        Notification.query.filter(Notification.recipient_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.session.commit()
    return updated
