"""Citizen engagement: vote toggling and write-once satisfaction ratings."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from models import Complaint, ComplaintVote, User
from utils import complaint_store as store
from utils.errors import AlreadyRated, Forbidden, InvalidState, RecordInvalid
from utils.ledger import PointsAwarded, RatingRecorded
from utils.priority import priority_score


@dataclass
class VoteResult:
    votes: int
    priority_score: int
    voted: bool

    def to_payload(self) -> Dict[str, Any]:
        return {"votes": self.votes, "priorityScore": self.priority_score, "voted": self.voted}


def toggle_vote(complaint_id: str, actor: User) -> VoteResult:
    """Vote on a complaint, or withdraw the actor's existing vote.

    Only a new vote earns civic points; withdrawing never deducts them.
    """
    outcome: Dict[str, bool] = {}

    def mutate(complaint: Complaint) -> List:
        existing = next((vote for vote in complaint.voters if vote.user_id == actor.id), None)
        if existing is not None:
            complaint.voters.remove(existing)
            complaint.votes = max(0, (complaint.votes or 0) - 1)
        else:
            complaint.voters.append(ComplaintVote(user_id=actor.id))
            complaint.votes = (complaint.votes or 0) + 1
        complaint.priority_score = priority_score(complaint.votes, complaint.emergency)
        outcome["voted"] = existing is None
        if existing is None:
            points = int(current_app.config.get("VOTE_POINTS", 5))
            return [PointsAwarded(actor.id, points, "complaint_vote")]
        return []

    complaint = store.atomic_update(complaint_id, mutate)
    result = VoteResult(votes=complaint.votes, priority_score=complaint.priority_score, voted=outcome["voted"])
    current_app.logger.info(
        "Vote toggled",
        extra={"complaint_id": complaint.id, "actor_id": actor.id, "voted": result.voted, "votes": result.votes},
    )
    return result


def _coerce_rating(rating: Any) -> int:
    if isinstance(rating, bool):
        raise RecordInvalid("Rating must be 1-5", field="rating")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise RecordInvalid("Rating must be 1-5", field="rating")
    if value != rating and str(value) != str(rating).strip():
        raise RecordInvalid("Rating must be a whole number", field="rating")
    if not 1 <= value <= 5:
        raise RecordInvalid("Rating must be 1-5", field="rating")
    return value


def submit_rating(complaint_id: str, actor: User, rating: Any, now: Optional[datetime] = None) -> Complaint:
    value = _coerce_rating(rating)
    now = now or datetime.utcnow()

    def mutate(complaint: Complaint) -> List:
        if complaint.status != "Resolved":
            raise InvalidState("Can only rate resolved complaints", complaint_id=complaint.id)
        if complaint.satisfaction_rating is not None:
            raise AlreadyRated("Already rated", complaint_id=complaint.id)
        if complaint.citizen_id != actor.id:
            raise Forbidden("Only the complaint author can rate", complaint_id=complaint.id)
        complaint.satisfaction_rating = value
        complaint.rated_by_id = actor.id
        complaint.log(f"Citizen rated resolution: {value}/5", actor=actor.name, at=now)
        complaint.updated_at = now
        if complaint.assigned_to_id:
            return [RatingRecorded(complaint.assigned_to_id, value, complaint.id)]
        return []

    complaint = store.atomic_update(complaint_id, mutate)
    current_app.logger.info(
        "Complaint rated",
        extra={"complaint_id": complaint.id, "rating": value, "assignee_id": complaint.assigned_to_id},
    )
    return complaint
