"""Deterministic priority scoring and time-based escalation tiers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

EMERGENCY_WEIGHT = 20
VOTE_WEIGHT = 2

# Escalation tiers: 1 = Senior Officer, 2 = Commissioner.
LEVEL_ONE_AFTER_HOURS = 48
LEVEL_TWO_AFTER_HOURS = 120

ESCALATION_MESSAGES = {
    1: "Escalated to Senior Officer (48h SLA breach)",
    2: "Escalated to Commissioner (5-day breach)",
}
OVERDUE_MESSAGE = "SLA expired - marked Overdue"

# Statuses exempt from the SLA overdue flag.
SLA_EXEMPT_STATUSES = {"Resolved", "Escalated"}


def priority_score(votes: int, emergency: bool) -> int:
    return max(0, int(votes or 0)) * VOTE_WEIGHT + (EMERGENCY_WEIGHT if emergency else 0)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def escalation_level(created_at: datetime, status: str, now: Optional[datetime] = None) -> int:
    """Return the escalation tier for a complaint.

    Resolved complaints always read 0. Thresholds are strict, so a complaint
    exactly 48.0 hours old is still tier 0.
    """
    if status == "Resolved":
        return 0
    elapsed = hours_between(created_at, now or datetime.utcnow())
    if elapsed > LEVEL_TWO_AFTER_HOURS:
        return 2
    if elapsed > LEVEL_ONE_AFTER_HOURS:
        return 1
    return 0


def is_sla_breached(status: str, sla_deadline: datetime, now: Optional[datetime] = None) -> bool:
    if status in SLA_EXEMPT_STATUSES:
        return False
    return sla_deadline < (now or datetime.utcnow())


@dataclass
class StateProjection:
    """Time-driven changes a read should apply; computed without touching the record."""

    escalation_level: int
    status: str
    previous_status: str
    messages: List[str] = field(default_factory=list)
    escalated_to: Optional[int] = None
    became_overdue: bool = False

    @property
    def status_changed(self) -> bool:
        return self.status != self.previous_status

    @property
    def has_changes(self) -> bool:
        return bool(self.messages) or self.escalated_to is not None


def project_state(complaint, now: Optional[datetime] = None) -> StateProjection:
    """Project escalation and SLA expiry for ``complaint`` at ``now``.

    The stored level never decreases here; only the Resolved short-circuit
    brings it back to 0, and that happens in the lifecycle transition itself.
    """
    now = now or datetime.utcnow()
    stored_level = complaint.escalation_level or 0
    status = complaint.status
    projection = StateProjection(escalation_level=stored_level, status=status, previous_status=status)

    if status == "Resolved":
        if stored_level != 0:
            projection.escalation_level = 0
            projection.escalated_to = 0
        return projection

    computed = escalation_level(complaint.created_at, status, now)
    if computed > stored_level:
        projection.escalation_level = computed
        projection.escalated_to = computed
        projection.messages.append(ESCALATION_MESSAGES[computed])
        if computed == 2:
            # Urgency overrides any in-flight status, In Progress included.
            projection.status = "Escalated"

    if projection.status != "Overdue" and is_sla_breached(projection.status, complaint.sla_deadline, now):
        projection.status = "Overdue"
        projection.became_overdue = True
        projection.messages.append(OVERDUE_MESSAGE)

    return projection
