"""Actor ledger: applies point awards and rating updates emitted by domain operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from flask import current_app
from sqlalchemy import update

from extensions import db
from models import User


@dataclass(frozen=True)
class PointsAwarded:
    user_id: str
    points: int
    reason: str


@dataclass(frozen=True)
class RatingRecorded:
    user_id: str
    rating: int
    complaint_id: str


LedgerEvent = Union[PointsAwarded, RatingRecorded]


def _award(event: PointsAwarded) -> None:
    db.session.execute(
        update(User)
        .where(User.id == event.user_id)
        .values(civic_points=User.civic_points + event.points)
        .execution_options(synchronize_session="fetch")
    )


def _record_rating(event: RatingRecorded) -> None:
    # Both sides are evaluated in SQL so concurrent ratings on the same assignee cannot interleave.
    db.session.execute(
        update(User)
        .where(User.id == event.user_id)
        .values(
            average_rating=(User.average_rating * User.total_ratings + event.rating) / (User.total_ratings + 1),
            total_ratings=User.total_ratings + 1,
        )
        .execution_options(synchronize_session="fetch")
    )


def apply_events(events: Iterable[LedgerEvent]) -> None:
    """Stage ledger writes in the current session; the caller owns the commit."""
    for event in events:
        if isinstance(event, PointsAwarded):
            _award(event)
        elif isinstance(event, RatingRecorded):
            _record_rating(event)
        else:
            raise TypeError(f"Unsupported ledger event: {event!r}")
        current_app.logger.info("Ledger event applied", extra={"event": type(event).__name__, "user_id": event.user_id})
