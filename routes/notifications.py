"""Notification inbox and live channel stream for the authenticated actor."""
import json

from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context
from flask_login import current_user, login_required

from extensions import csrf
from utils.channels import department_channel, get_hub, user_channel
from utils.errors import RecordInvalid
from utils.notifications import inbox, mark_all_read, mark_read

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")
csrf.exempt(notifications_bp)


def _sse_frame(event: str, data, event_id=None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


def _last_event_id():
    raw = (request.headers.get("Last-Event-ID") or g.sanitized_args.get("lastEventId") or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise RecordInvalid("Last-Event-ID must be a non-negative integer", field="lastEventId")
    return int(raw)


def _stream_channels(actor) -> list:
    channels = [user_channel(actor.id)]
    if actor.role == "department" and actor.department:
        channels.append(department_channel(actor.department))
    return channels


@notifications_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    raw_page = g.sanitized_args.get("page", "1")
    if not raw_page.isdigit() or int(raw_page) < 1:
        raise RecordInvalid("page must be a positive integer", field="page")
    per_page = int(current_app.config.get("NOTIFICATIONS_PER_PAGE", 20))
    items, unread = inbox(current_user, page=int(raw_page), per_page=per_page)
    return jsonify({"notifications": [item.to_payload() for item in items], "unreadCount": unread})


@notifications_bp.route("/stream", methods=["GET"])
@login_required
def stream():
    """Server-sent events for the actor's channel and, for department staff, their department channel.

    Reconnecting clients send ``Last-Event-ID`` to replay buffered messages they missed.
    """
    channels = _stream_channels(current_user)
    subscription = get_hub().open_stream(channels, after=_last_event_id())
    heartbeat = float(current_app.config.get("STREAM_HEARTBEAT_SECONDS", 15))
    current_app.logger.info("Channel stream opened", extra={"channels": channels})

    def events():
        try:
            yield _sse_frame("ready", {"channels": channels})
            for message in subscription.messages(heartbeat):
                if message is None:
                    yield ": keepalive\n\n"
                    continue
                yield _sse_frame(
                    message["event"],
                    {"channel": message["channel"], "payload": message["payload"], "publishedAt": message["published_at"]},
                    message["id"],
                )
        finally:
            subscription.close()

    response = Response(stream_with_context(events()), mimetype="text/event-stream")
    response.headers["X-Accel-Buffering"] = "no"
    # Clients that disconnect before the first read never start the generator.
    response.call_on_close(subscription.close)
    return response


@notifications_bp.route("/read-all", methods=["PUT"])
@login_required
def read_all():
    updated = mark_all_read(current_user)
    return jsonify({"message": "All notifications marked as read", "updated": updated})


@notifications_bp.route("/<string:notification_id>/read", methods=["PUT"])
@login_required
def read_one(notification_id):
    notification = mark_read(notification_id, current_user)
    return jsonify({"notification": notification.to_payload()})
