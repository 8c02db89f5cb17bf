from datetime import datetime, timedelta

import pytest

from extensions import db
from models import Complaint, Notification
from utils import lifecycle
from utils.errors import Forbidden, InvalidState, RecordInvalid
from utils.priority import ESCALATION_MESSAGES, OVERDUE_MESSAGE

T0 = datetime(2024, 3, 1, 9, 0, 0)


def _snapshot(complaint_id):
    db.session.expire_all()
    complaint = db.session.get(Complaint, complaint_id)
    return {
        "status": complaint.status,
        "assigned_to_id": complaint.assigned_to_id,
        "escalation_level": complaint.escalation_level,
        "version": complaint.version,
        "activity": [entry.message for entry in complaint.activity],
    }


def test_emergency_filing_starts_pending_with_priority(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], dict(complaint_data, emergency=True), now=T0)
    assert complaint.priority_score == 20
    assert complaint.status == "Pending"
    assert complaint.escalation_level == 0
    assert complaint.sla_deadline == T0 + timedelta(hours=48)
    assert complaint.city == "Amravati"
    assert [entry.message for entry in complaint.activity] == ["Complaint filed by citizen"]


def test_department_staff_cannot_file(actors, complaint_data):
    with pytest.raises(Forbidden):
        lifecycle.file_complaint(actors["officer"], complaint_data, now=T0)


def test_missing_department_uses_classifier_default(actors, complaint_data):
    data = dict(complaint_data, department=None, title="Garbage pile near market")
    data.pop("emergency")
    data["description"] = "Overflowing garbage and waste is dumped next to the vegetable market."
    complaint = lifecycle.file_complaint(actors["citizen"], data, now=T0)
    assert complaint.department == "Sanitation & Waste"
    assert complaint.emergency is False


def test_time_driven_escalation(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)

    at_50h = lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=50))
    assert at_50h.escalation_level == 1
    assert at_50h.status == "Overdue"
    messages = [entry.message for entry in at_50h.activity]
    assert messages[-2:] == [ESCALATION_MESSAGES[1], OVERDUE_MESSAGE]

    again = lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=51))
    assert [entry.message for entry in again.activity] == messages

    at_121h = lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=121))
    assert at_121h.escalation_level == 2
    assert at_121h.status == "Escalated"
    assert at_121h.activity[-1].message == ESCALATION_MESSAGES[2]
    assert at_121h.activity[-1].actor == "System"


def test_time_driven_transitions_notify_filer(actors, complaint_data):
    citizen = actors["citizen"]
    complaint = lifecycle.file_complaint(citizen, complaint_data, now=T0)
    lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=50))
    lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=121))
    types = [n.type for n in Notification.query.filter_by(recipient_id=citizen.id).order_by(Notification.created_at)]
    assert sorted(types) == ["escalation", "sla_warning"]


def test_listing_applies_time_driven_changes(actors, complaint_data):
    lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    page = lifecycle.list_complaints(actors["admin"], {}, now=T0 + timedelta(hours=60))
    assert page.items[0].status == "Overdue"
    assert page.items[0].escalation_level == 1


def test_department_listing_is_scoped(actors, complaint_data):
    lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    lifecycle.file_complaint(actors["citizen"], dict(complaint_data, department="Water Supply"), now=T0)
    page = lifecycle.list_complaints(actors["water"], {"department": "Roads & Infrastructure"}, now=T0)
    assert page.total == 1
    assert page.items[0].department == "Water Supply"


def test_progress_then_resolve(actors, complaint_data):
    officer = actors["officer"]
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)

    started = lifecycle.update_status(complaint.id, officer, "In Progress", note="Crew dispatched", now=T0 + timedelta(hours=2))
    assert started.assigned_to_id == officer.id
    assert [entry.message for entry in started.activity][1:] == [
        "Assigned to Officer Rao",
        "Work started - status changed to In Progress",
        "Crew dispatched",
    ]

    resolved_at = T0 + timedelta(hours=60, minutes=30)
    resolved = lifecycle.update_status(complaint.id, officer, "Resolved", now=resolved_at)
    assert resolved.status == "Resolved"
    assert resolved.resolved_at == resolved_at
    assert resolved.resolution_time == pytest.approx(60.5)
    assert resolved.activity[-1].message == "Complaint marked as Resolved"

    later = lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=200))
    assert later.escalation_level == 0
    assert later.status == "Resolved"


def test_resolving_after_escalation_resets_level(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=130))
    resolved = lifecycle.update_status(complaint.id, actors["admin"], "Resolved", now=T0 + timedelta(hours=131))
    assert resolved.escalation_level == 0
    assert resolved.assigned_to_id is None


def test_second_progress_keeps_first_assignee(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    lifecycle.update_status(complaint.id, actors["officer"], "In Progress", now=T0)
    lifecycle.get_complaint(complaint.id, now=T0 + timedelta(hours=50))
    again = lifecycle.update_status(complaint.id, actors["admin"], "In Progress", now=T0 + timedelta(hours=51))
    assert again.assigned_to_id == actors["officer"].id
    assert "Assigned to Admin" not in [entry.message for entry in again.activity]


def test_foreign_department_cannot_transition(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    before = _snapshot(complaint.id)
    with pytest.raises(Forbidden):
        lifecycle.update_status(complaint.id, actors["water"], "In Progress", now=T0)
    assert _snapshot(complaint.id) == before


def test_citizen_cannot_transition(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    with pytest.raises(Forbidden):
        lifecycle.update_status(complaint.id, actors["citizen"], "Resolved", now=T0)


@pytest.mark.parametrize("target", ["Pending", "Overdue", "Escalated"])
def test_time_driven_states_cannot_be_requested(actors, complaint_data, target):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    with pytest.raises(InvalidState):
        lifecycle.update_status(complaint.id, actors["officer"], target, now=T0)


def test_resolved_is_terminal(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    lifecycle.update_status(complaint.id, actors["officer"], "Resolved", now=T0)
    before = _snapshot(complaint.id)
    with pytest.raises(InvalidState):
        lifecycle.update_status(complaint.id, actors["officer"], "In Progress", now=T0)
    assert _snapshot(complaint.id) == before


def test_unknown_status_and_long_note_rejected(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    with pytest.raises(RecordInvalid):
        lifecycle.update_status(complaint.id, actors["officer"], "Closed", now=T0)
    with pytest.raises(RecordInvalid):
        lifecycle.update_status(complaint.id, actors["officer"], "In Progress", note="x" * 501, now=T0)


def test_status_change_notifies_citizen(actors, complaint_data):
    citizen = actors["citizen"]
    complaint = lifecycle.file_complaint(citizen, complaint_data, now=T0)
    lifecycle.update_status(complaint.id, actors["officer"], "Resolved", now=T0 + timedelta(hours=3))
    notifications = Notification.query.filter_by(recipient_id=citizen.id).all()
    assert sorted(n.type for n in notifications) == ["rating_request", "status_update"]
    assert all(n.complaint_id == complaint.id for n in notifications)


def test_only_admin_deletes(actors, complaint_data):
    complaint = lifecycle.file_complaint(actors["citizen"], complaint_data, now=T0)
    with pytest.raises(Forbidden):
        lifecycle.delete_complaint(complaint.id, actors["officer"])
    lifecycle.delete_complaint(complaint.id, actors["admin"])
    assert db.session.get(Complaint, complaint.id) is None
