"""Read-only projections: city and department statistics, department reports and directory."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import case, func

from extensions import db
from models import DEPARTMENTS, Complaint, User
from utils.errors import RecordInvalid

REPORT_MAX_COMPLAINTS = 100
DEFAULT_REPORT_DAYS = 7


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def _rounded(value: Optional[float]) -> Optional[float]:
    return round(float(value), 1) if value is not None else None


def _require_department(department: str) -> None:
    if department not in DEPARTMENTS:
        raise RecordInvalid("Unknown department", field="department")


def _status_count(status: str):
    return func.sum(case((Complaint.status == status, 1), else_=0))


def city_stats(now: Optional[datetime] = None) -> Dict:
    now = now or datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    total = Complaint.query.count()
    today_total = Complaint.query.filter(Complaint.created_at >= today).count()
    resolved_today = Complaint.query.filter(Complaint.status == "Resolved", Complaint.resolved_at >= today).count()
    resolved_total = Complaint.query.filter(Complaint.status == "Resolved").count()
    overdue = Complaint.query.filter(Complaint.status == "Overdue").count()
    escalated = Complaint.query.filter(Complaint.status == "Escalated").count()
    active_users = User.query.filter(User.is_active.is_(True)).count()
    avg_resolution = db.session.query(func.avg(Complaint.resolution_time)).filter(
        Complaint.resolution_time.isnot(None)
    ).scalar()

    rows = (
        db.session.query(
            Complaint.department,
            func.count(Complaint.id),
            _status_count("Resolved"),
            _status_count("Pending"),
            _status_count("Overdue"),
            func.avg(Complaint.priority_score),
        )
        .group_by(Complaint.department)
        .order_by(func.count(Complaint.id).desc())
        .all()
    )
    breakdown = [
        {
            "department": department,
            "total": count,
            "resolved": int(resolved or 0),
            "pending": int(pending or 0),
            "overdue": int(overdue_count or 0),
            "avgPriority": _rounded(avg_priority),
        }
        for department, count, resolved, pending, overdue_count, avg_priority in rows
    ]

    return {
        "total": total,
        "todayTotal": today_total,
        "resolvedToday": resolved_today,
        "overdue": overdue,
        "escalated": escalated,
        "activeUsers": active_users,
        "avgResolutionHours": _rounded(avg_resolution) or 0,
        "resolutionRate": _rate(resolved_total, total),
        "deptBreakdown": breakdown,
    }


def department_stats(department: str) -> Dict:
    _require_department(department)
    base = Complaint.query.filter(Complaint.department == department)
    counts = dict(
        db.session.query(Complaint.status, func.count(Complaint.id))
        .filter(Complaint.department == department)
        .group_by(Complaint.status)
        .all()
    )
    total = base.count()
    avg_rating = db.session.query(func.avg(Complaint.satisfaction_rating)).filter(
        Complaint.department == department, Complaint.satisfaction_rating.isnot(None)
    ).scalar()
    avg_resolution = db.session.query(func.avg(Complaint.resolution_time)).filter(
        Complaint.department == department, Complaint.resolution_time.isnot(None)
    ).scalar()
    resolved = counts.get("Resolved", 0)
    return {
        "dept": department,
        "total": total,
        "pending": counts.get("Pending", 0),
        "inProgress": counts.get("In Progress", 0),
        "resolved": resolved,
        "overdue": counts.get("Overdue", 0),
        "escalated": counts.get("Escalated", 0),
        "resolutionRate": _rate(resolved, total),
        "avgRating": _rounded(avg_rating),
        "avgResolutionHours": _rounded(avg_resolution),
    }


def department_report(department: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict:
    """Complaints filed in ``[start, end)`` plus aggregate counts for the report renderer.

    Defaults to the trailing seven days.
    """
    _require_department(department)
    end = end or datetime.utcnow()
    start = start or end - timedelta(days=DEFAULT_REPORT_DAYS)
    if start >= end:
        raise RecordInvalid("Report window start must precede its end", field="start")

    window = (
        Complaint.department == department,
        Complaint.created_at >= start,
        Complaint.created_at < end,
    )
    complaints = (
        Complaint.query.filter(*window)
        .order_by(Complaint.priority_score.desc(), Complaint.created_at.desc())
        .limit(REPORT_MAX_COMPLAINTS)
        .all()
    )
    total, resolved, overdue, escalated, avg_resolution, avg_rating = db.session.query(
        func.count(Complaint.id),
        _status_count("Resolved"),
        _status_count("Overdue"),
        _status_count("Escalated"),
        func.avg(Complaint.resolution_time),
        func.avg(Complaint.satisfaction_rating),
    ).filter(*window).one()
    resolved = int(resolved or 0)

    return {
        "department": department,
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "summary": {
            "total": total,
            "resolved": resolved,
            "overdue": int(overdue or 0),
            "escalated": int(escalated or 0),
            "resolutionRate": _rate(resolved, total),
            "avgResolutionHours": _rounded(avg_resolution),
            "avgRating": _rounded(avg_rating),
        },
        "complaints": [
            {
                "id": complaint.id,
                "title": complaint.title,
                "status": complaint.status,
                "emergency": complaint.emergency,
                "votes": complaint.votes,
                "priorityScore": complaint.priority_score,
                "citizen": complaint.citizen.name if complaint.citizen else None,
                "createdAt": complaint.created_at.isoformat(),
            }
            for complaint in complaints
        ],
    }


def department_directory() -> List[Dict]:
    users = User.query.filter(User.role == "department").order_by(User.department, User.name).all()
    return [
        {
            "id": user.id,
            "name": user.name,
            "department": user.department,
            "averageRating": round(user.average_rating or 0.0, 2),
            "totalRatings": user.total_ratings,
        }
        for user in users
    ]
