"""Read-only statistics, department reports, the department directory and classifier suggestions."""
from datetime import datetime, timezone

from flask import Blueprint, g, jsonify, request
from flask_login import current_user, login_required

from extensions import csrf
from utils.classifier import classify_complaint
from utils.complaint_store import clean_text
from utils.decorators import roles_required
from utils.errors import Forbidden, RecordInvalid
from utils.reporting import city_stats, department_directory, department_report, department_stats

insights_bp = Blueprint("insights", __name__, url_prefix="/api")
csrf.exempt(insights_bp)


def _parse_datetime(name: str):
    raw = g.sanitized_args.get(name)
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        raise RecordInvalid(f"{name} must be an ISO-8601 date", field=name)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@insights_bp.route("/departments", methods=["GET"])
@login_required
def departments():
    return jsonify({"departments": department_directory()})


@insights_bp.route("/stats/city", methods=["GET"])
@login_required
def stats_city():
    return jsonify(city_stats())


@insights_bp.route("/stats/department/<path:department>", methods=["GET"])
@login_required
def stats_department(department):
    return jsonify(department_stats(department))


@insights_bp.route("/reports/department/<path:department>", methods=["GET"])
@roles_required("department", "admin")
def report_department(department):
    if current_user.is_department and current_user.department != department:
        raise Forbidden("Not authorized for this department", department=department)
    report = department_report(department, start=_parse_datetime("start"), end=_parse_datetime("end"))
    return jsonify({"report": report})


@insights_bp.route("/ai/categorize", methods=["POST"])
@login_required
def categorize():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise RecordInvalid("Request body must be a JSON object")
    title = clean_text(payload.get("title"))
    description = clean_text(payload.get("description"))
    if not title and not description:
        raise RecordInvalid("title or description is required", field="title")
    return jsonify({"suggestion": classify_complaint(title, description)})
