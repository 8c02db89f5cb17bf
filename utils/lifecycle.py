"""Complaint state machine: filing, explicit transitions and lazily applied time-driven changes."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app

from models import COMPLAINT_STATUSES, Complaint, User
from utils import complaint_store as store
from utils.classifier import classify_complaint
from utils.errors import Forbidden, InvalidState, RecordInvalid
from utils.ledger import PointsAwarded
from utils.notifications import broadcast_new, on_status_change
from utils.priority import hours_between, priority_score, project_state

NOTE_MAX_LENGTH = 500

# target status -> statuses it may be entered from
EXPLICIT_TRANSITIONS = {
    "In Progress": {"Pending", "Overdue", "Escalated"},
    "Resolved": {"Pending", "In Progress", "Overdue", "Escalated"},
}

FILING_ROLES = {"citizen", "admin"}


def _with_classifier_defaults(data: Mapping[str, Any]) -> Dict[str, Any]:
    payload = dict(data)
    if payload.get("department"):
        return payload
    suggestion = classify_complaint(str(payload.get("title") or ""), str(payload.get("description") or ""))
    payload["department"] = suggestion["department"]
    if payload.get("emergency") in (None, ""):
        payload["emergency"] = suggestion["emergency"]
    current_app.logger.info(
        "Classifier defaults applied",
        extra={"department": suggestion["department"], "source": suggestion.get("source")},
    )
    return payload


def file_complaint(citizen: User, data: Mapping[str, Any], now: Optional[datetime] = None) -> Complaint:
    """Create a Pending complaint for ``citizen`` and award the filing bonus in the same commit."""
    if citizen.role not in FILING_ROLES:
        raise Forbidden("Only citizens can file complaints", role=citizen.role)
    content = store.validate_content(_with_classifier_defaults(data))
    now = now or datetime.utcnow()
    config = current_app.config
    sla_hours = int(config.get("SLA_DURATION_HOURS", 48))
    location = content["location"]

    complaint = Complaint(
        title=content["title"],
        description=content["description"],
        department=content["department"],
        status="Pending",
        emergency=content["emergency"],
        citizen_id=citizen.id,
        city=content["city"] or citizen.city or config.get("DEFAULT_CITY"),
        address=location["address"],
        latitude=location["lat"],
        longitude=location["lng"],
        tags=content["tags"],
        votes=0,
        priority_score=priority_score(0, content["emergency"]),
        escalation_level=0,
        sla_duration_hours=sla_hours,
        sla_deadline=now + timedelta(hours=sla_hours),
        created_at=now,
        updated_at=now,
    )
    complaint.images = store.build_images(content["images"])
    complaint.log("Complaint filed by citizen", actor="Citizen", at=now)

    points = int(config.get("FILING_POINTS", 20))
    store.insert(complaint, [PointsAwarded(citizen.id, points, "complaint_filed")])
    broadcast_new(complaint)
    current_app.logger.info(
        "Complaint filed",
        extra={"complaint_id": complaint.id, "citizen_id": citizen.id, "emergency": complaint.emergency},
    )
    return complaint


def authorize_transition(actor: User, complaint: Complaint) -> None:
    if actor.is_admin:
        return
    if actor.is_department and actor.department == complaint.department:
        return
    if actor.is_department:
        raise Forbidden("Not authorized for this department", department=complaint.department)
    raise Forbidden("Only department staff can change complaint status", role=actor.role)


def _clean_note(note: Any) -> Optional[str]:
    if note is None:
        return None
    text = store.clean_text(note)
    if len(text) > NOTE_MAX_LENGTH:
        raise RecordInvalid(f"Note must be at most {NOTE_MAX_LENGTH} characters", field="note")
    return text or None


def update_status(
    complaint_id: str,
    actor: User,
    new_status: str,
    note: Any = None,
    now: Optional[datetime] = None,
) -> Complaint:
    if new_status not in COMPLAINT_STATUSES:
        raise RecordInvalid("Unknown status", field="status")
    note = _clean_note(note)
    now = now or datetime.utcnow()
    previous: Dict[str, str] = {}

    def mutate(complaint: Complaint) -> List:
        authorize_transition(actor, complaint)
        current = complaint.status
        if current == "Resolved":
            raise InvalidState("Resolved complaints cannot change status", complaint_id=complaint.id)
        if current not in EXPLICIT_TRANSITIONS.get(new_status, set()):
            raise InvalidState(
                f"Cannot move a complaint from {current} to {new_status}",
                complaint_id=complaint.id,
            )
        previous["status"] = current
        complaint.status = new_status

        if new_status == "In Progress":
            if complaint.assigned_to_id is None:
                complaint.assigned_to_id = actor.id
                complaint.log(f"Assigned to {actor.name}", actor=actor.name, at=now)
            complaint.log("Work started - status changed to In Progress", actor=actor.name, at=now)
        elif new_status == "Resolved":
            complaint.resolved_at = now
            complaint.resolution_time = hours_between(complaint.created_at, now)
            complaint.escalation_level = 0
            complaint.log("Complaint marked as Resolved", actor=actor.name, at=now)

        if note:
            complaint.log(note, actor=actor.name, at=now)
        complaint.updated_at = now
        return []

    complaint = store.atomic_update(complaint_id, mutate)
    current_app.logger.info(
        "Complaint status updated",
        extra={
            "complaint_id": complaint.id,
            "from_status": previous.get("status"),
            "to_status": complaint.status,
            "actor_id": actor.id,
        },
    )
    on_status_change(complaint, previous.get("status"))
    return complaint


def refresh(complaint: Complaint, now: Optional[datetime] = None) -> Complaint:
    """Persist pending escalation/overdue changes, if any, and fan out status changes."""
    now = now or datetime.utcnow()
    if not project_state(complaint, now).has_changes:
        return complaint

    previous: Dict[str, str] = {}

    def mutate(fresh: Complaint) -> List:
        # Re-project on the row we hold; a concurrent writer may already have moved it.
        projection = project_state(fresh, now)
        previous["status"] = projection.previous_status
        if not projection.has_changes:
            return []
        fresh.escalation_level = projection.escalation_level
        fresh.status = projection.status
        for message in projection.messages:
            fresh.log(message, actor="System", at=now)
        fresh.updated_at = now
        return []

    refreshed = store.atomic_update(complaint.id, mutate)
    if refreshed.status != previous.get("status"):
        current_app.logger.warning(
            "Complaint escalated by elapsed time",
            extra={
                "complaint_id": refreshed.id,
                "from_status": previous.get("status"),
                "to_status": refreshed.status,
                "escalation_level": refreshed.escalation_level,
            },
        )
        on_status_change(refreshed, previous.get("status"))
    return refreshed


def get_complaint(complaint_id: str, now: Optional[datetime] = None) -> Complaint:
    return refresh(store.get(complaint_id), now)


def list_complaints(
    actor: User,
    filters: Optional[Mapping[str, Any]] = None,
    page: int = 1,
    per_page: int = 20,
    now: Optional[datetime] = None,
) -> store.ComplaintPage:
    filters = dict(filters or {})
    if actor.is_department:
        # Department staff only ever see their own queue.
        filters["department"] = actor.department
    result = store.find(
        department=filters.get("department") or None,
        status=filters.get("status") or None,
        city=filters.get("city") or None,
        emergency=filters.get("emergency"),
        page=page,
        per_page=per_page,
    )
    result.items = [refresh(complaint, now) for complaint in result.items]
    return result


def delete_complaint(complaint_id: str, actor: User) -> None:
    if not actor.is_admin:
        raise Forbidden("Only administrators can delete complaints", role=actor.role)
    store.delete(complaint_id)
    current_app.logger.info("Complaint removed by admin", extra={"complaint_id": complaint_id, "actor_id": actor.id})
