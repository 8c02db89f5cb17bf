"""Complaint persistence: boundary validation, filtered listing and the atomic update primitive."""
from __future__ import annotations

import html
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import bleach
from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import COMPLAINT_STATUSES, DEPARTMENTS, ESCALATION_LEVELS, Complaint, ComplaintImage
from utils.errors import Conflict, NotFound, RecordInvalid
from utils.ledger import LedgerEvent, apply_events
from utils.priority import priority_score

TITLE_LENGTH = (5, 150)
DESCRIPTION_LENGTH = (10, 2000)
ADDRESS_MAX_LENGTH = 500
MAX_TAGS = 10
TAG_MAX_LENGTH = 40

Mutator = Callable[[Complaint], Optional[Iterable[LedgerEvent]]]


@dataclass
class ComplaintPage:
    items: List[Complaint]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0


def clean_text(value: Any) -> str:
    """Strip markup from free text; entities are decoded back to plain characters."""
    return html.unescape(bleach.clean(str(value if value is not None else ""), tags=[], attributes={}, strip=True)).strip()


def _bounded_text(data: Mapping, field: str, bounds: tuple[int, int]) -> str:
    text = clean_text(data.get(field))
    low, high = bounds
    if not text:
        raise RecordInvalid(f"{field.capitalize()} is required", field=field)
    if not low <= len(text) <= high:
        raise RecordInvalid(f"{field.capitalize()} must be {low}-{high} characters", field=field)
    return text


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "":
        return False
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no", "off"}:
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise RecordInvalid(f"{field} must be a boolean", field=field)


def _coordinate(value: Any, field: str, limit: float) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RecordInvalid(f"location.{field} must be numeric", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RecordInvalid(f"location.{field} must be numeric", field=field)
    if math.isnan(number) or not -limit <= number <= limit:
        raise RecordInvalid(f"location.{field} must be between {-limit} and {limit}", field=field)
    return number


def _normalize_location(raw: Any) -> Dict[str, Any]:
    if raw in (None, ""):
        return {"address": "", "lat": None, "lng": None}
    if not isinstance(raw, Mapping):
        raise RecordInvalid("location must be an object", field="location")
    address = clean_text(raw.get("address"))
    if len(address) > ADDRESS_MAX_LENGTH:
        raise RecordInvalid("location.address is too long", field="address")
    return {
        "address": address,
        "lat": _coordinate(raw.get("lat"), "lat", 90),
        "lng": _coordinate(raw.get("lng"), "lng", 180),
    }


def _normalize_tags(raw: Any) -> List[str]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, (list, tuple)):
        raise RecordInvalid("tags must be a list", field="tags")
    tags: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            raise RecordInvalid("tags must be strings", field="tags")
        tag = clean_text(item).lstrip("#")
        if not tag:
            continue
        if len(tag) > TAG_MAX_LENGTH:
            raise RecordInvalid(f"tags must be at most {TAG_MAX_LENGTH} characters", field="tags")
        if tag not in tags:
            tags.append(tag)
    if len(tags) > MAX_TAGS:
        raise RecordInvalid(f"At most {MAX_TAGS} tags are allowed", field="tags")
    return tags


def _optional_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RecordInvalid(f"images.{field} must be an integer", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise RecordInvalid(f"images.{field} must be an integer", field=field)
    if number < 0:
        raise RecordInvalid(f"images.{field} must not be negative", field=field)
    return number


def _normalize_images(raw: Any) -> List[Dict[str, Any]]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, (list, tuple)):
        raise RecordInvalid("images must be a list", field="images")
    images: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise RecordInvalid("each image must be an object", field="images")
        url = str(item.get("url") or "").strip()
        public_id = str(item.get("publicId") or item.get("public_id") or "").strip()
        if not url or not public_id:
            raise RecordInvalid("each image requires url and publicId", field="images")
        images.append(
            {
                "url": url,
                "public_id": public_id,
                "width": _optional_int(item.get("width"), "width"),
                "height": _optional_int(item.get("height"), "height"),
                "image_format": (str(item.get("format")).strip() or None) if item.get("format") else None,
                "size_bytes": _optional_int(item.get("bytes"), "bytes"),
            }
        )
    return images


def validate_content(data: Mapping) -> Dict[str, Any]:
    """Validate filer-supplied content; nothing is written when this raises."""
    if not isinstance(data, Mapping):
        raise RecordInvalid("Complaint content must be an object")
    department = data.get("department")
    if department not in DEPARTMENTS:
        raise RecordInvalid("Department is required and must be a known department", field="department")
    return {
        "title": _bounded_text(data, "title", TITLE_LENGTH),
        "description": _bounded_text(data, "description", DESCRIPTION_LENGTH),
        "department": department,
        "emergency": coerce_bool(data.get("emergency"), "emergency"),
        "location": _normalize_location(data.get("location")),
        "tags": _normalize_tags(data.get("tags")),
        "images": _normalize_images(data.get("images")),
        "city": clean_text(data.get("city")) or None,
    }


def build_images(images: List[Dict[str, Any]]) -> List[ComplaintImage]:
    return [ComplaintImage(position=index, **image) for index, image in enumerate(images)]


def check_invariants(complaint: Complaint) -> None:
    if complaint.department not in DEPARTMENTS:
        raise RecordInvalid("Unknown department", field="department")
    if complaint.status not in COMPLAINT_STATUSES:
        raise RecordInvalid("Unknown status", field="status")
    if (complaint.votes or 0) < 0:
        raise RecordInvalid("Vote count cannot be negative", field="votes")
    if complaint.votes != len(complaint.voters):
        raise RecordInvalid("Vote count does not match recorded voters", field="votes")
    if complaint.escalation_level not in ESCALATION_LEVELS:
        raise RecordInvalid("Escalation level must be 0, 1 or 2", field="escalation_level")
    if complaint.status == "Resolved" and complaint.escalation_level != 0:
        raise RecordInvalid("Resolved complaints cannot carry an escalation level", field="escalation_level")
    if complaint.priority_score != priority_score(complaint.votes, complaint.emergency):
        raise RecordInvalid("Priority score out of sync with votes", field="priority_score")
    rating = complaint.satisfaction_rating
    if rating is not None and not 1 <= rating <= 5:
        raise RecordInvalid("Rating must be 1-5", field="satisfaction_rating")


def insert(complaint: Complaint, events: Iterable[LedgerEvent] = ()) -> Complaint:
    check_invariants(complaint)
    db.session.add(complaint)
    try:
        apply_events(events)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Complaint stored", extra={"complaint_id": complaint.id, "department": complaint.department})
    return complaint


def get(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, str(complaint_id)) if complaint_id else None
    if complaint is None:
        raise NotFound("Complaint not found", complaint_id=complaint_id)
    return complaint


def find(
    *,
    department: Optional[str] = None,
    status: Optional[str] = None,
    city: Optional[str] = None,
    emergency: Optional[bool] = None,
    page: int = 1,
    per_page: int = 20,
) -> ComplaintPage:
    if department and department not in DEPARTMENTS:
        raise RecordInvalid("Unknown department filter", field="department")
    if status and status not in COMPLAINT_STATUSES:
        raise RecordInvalid("Unknown status filter", field="status")

    query = Complaint.query
    if department:
        query = query.filter(Complaint.department == department)
    if status:
        query = query.filter(Complaint.status == status)
    if city:
        query = query.filter(Complaint.city == city)
    if emergency is not None:
        query = query.filter(Complaint.emergency.is_(emergency))

    page = max(1, page)
    per_page = max(1, per_page)
    total = query.count()
    items = (
        query.order_by(Complaint.priority_score.desc(), Complaint.created_at.desc(), Complaint.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return ComplaintPage(items=items, total=total, page=page, per_page=per_page)


def find_located(limit: int = 500) -> List[Complaint]:
    """Complaints carrying coordinates, for map markers."""
    return (
        Complaint.query.filter(Complaint.latitude.isnot(None), Complaint.longitude.isnot(None))
        .order_by(Complaint.priority_score.desc(), Complaint.created_at.desc())
        .limit(limit)
        .all()
    )


class _StaleSnapshot(Exception):
    """The loaded row and its voter rows disagree; another writer committed in between."""


def _load_current(complaint_id: str) -> Complaint:
    """Load the committed row, discarding whatever copy the session already holds."""
    cached = db.session.identity_map.get(db.session.identity_key(Complaint, str(complaint_id)))
    if cached is not None:
        db.session.expire(cached)
    complaint = db.session.get(
        Complaint,
        str(complaint_id),
        options=[joinedload(Complaint.voters)],
        populate_existing=True,
        with_for_update={"of": Complaint},
    )
    if complaint is None:
        raise NotFound("Complaint not found", complaint_id=complaint_id)
    if complaint.votes != len(complaint.voters):
        raise _StaleSnapshot()
    return complaint


def atomic_update(complaint_id: str, mutate: Mutator, *, retries: Optional[int] = None) -> Complaint:
    """Apply ``mutate`` to a freshly loaded copy of the complaint and commit it together with its ledger events.

    The row is re-read (and locked where the database supports it) on every
    attempt. A concurrent writer that still gets in first bumps the row version,
    so our flush fails with StaleDataError (or IntegrityError on the voter
    constraint); the session is rolled back and the mutation replayed.
    """
    if retries is None:
        retries = int(current_app.config.get("STORE_UPDATE_RETRIES", 3))
    for attempt in range(1, retries + 2):
        try:
            complaint = _load_current(complaint_id)
            events = list(mutate(complaint) or ())
            check_invariants(complaint)
            apply_events(events)
            db.session.commit()
            return complaint
        except (StaleDataError, IntegrityError, _StaleSnapshot) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Concurrent complaint update detected",
                extra={"complaint_id": complaint_id, "attempt": attempt, "error": type(exc).__name__},
            )
        except Exception:
            db.session.rollback()
            raise
    raise Conflict("Complaint is being updated concurrently, retry later", complaint_id=complaint_id)


def delete(complaint_id: str) -> None:
    complaint = get(complaint_id)
    try:
        db.session.delete(complaint)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Complaint deleted", extra={"complaint_id": complaint_id})
