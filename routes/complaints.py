"""Complaint filing, listing, status transitions and engagement endpoints."""
from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from wtforms import IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange

from extensions import csrf
from models import COMPLAINT_STATUSES
from utils import complaint_store as store
from utils import engagement, lifecycle
from utils.decorators import roles_required
from utils.errors import RecordInvalid

complaints_bp = Blueprint("complaints", __name__, url_prefix="/api/complaints")
csrf.exempt(complaints_bp)


def _as_text(value):
    return "" if value is None else str(value)


class ComplaintForm(FlaskForm):
    title = StringField("Title", filters=[_as_text], validators=[DataRequired(), Length(min=5, max=150)])
    description = TextAreaField(
        "Description", filters=[_as_text], validators=[DataRequired(), Length(min=10, max=2000)]
    )


class StatusForm(FlaskForm):
    status = SelectField("Status", choices=[(s, s) for s in COMPLAINT_STATUSES], validators=[DataRequired()])
    note = TextAreaField("Note", filters=[_as_text], validators=[Length(max=500)])


class RatingForm(FlaskForm):
    rating = IntegerField("Rating", validators=[NumberRange(min=1, max=5, message="Rating must be 1-5")])


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise RecordInvalid("Request body must be a JSON object")
    return payload


def _validated(form_class, payload: Dict[str, Any]):
    """Run a Flask-WTF form over a JSON payload; the first error becomes RecordInvalid."""
    form = form_class(formdata=None, data=payload, meta={"csrf": False})
    if not form.validate():
        field, messages = next(iter(form.errors.items()))
        raise RecordInvalid(f"{field}: {messages[0]}", field=field)
    return form


def _int_arg(args: Dict[str, str], name: str, default: int) -> int:
    raw = args.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RecordInvalid(f"{name} must be an integer", field=name)
    if value < 1:
        raise RecordInvalid(f"{name} must be positive", field=name)
    return value


def _actor():
    return current_user._get_current_object()


@complaints_bp.route("", methods=["GET"])
@login_required
def list_complaints():
    args = g.sanitized_args
    page = _int_arg(args, "page", 1)
    limit = min(
        _int_arg(args, "limit", int(current_app.config.get("COMPLAINTS_PER_PAGE", 20))),
        int(current_app.config.get("MAX_COMPLAINTS_PER_PAGE", 100)),
    )
    filters = {
        "department": args.get("department"),
        "status": args.get("status"),
        "city": args.get("city"),
        "emergency": store.coerce_bool(args["emergency"], "emergency") if "emergency" in args else None,
    }
    result = lifecycle.list_complaints(_actor(), filters, page=page, per_page=limit)
    return jsonify(
        {
            "complaints": [complaint.to_payload() for complaint in result.items],
            "total": result.total,
            "page": result.page,
            "pages": result.pages,
        }
    )


@complaints_bp.route("/map", methods=["GET"])
@login_required
def map_complaints():
    limit = int(current_app.config.get("MAP_MAX_COMPLAINTS", 500))
    return jsonify({"complaints": [complaint.map_payload() for complaint in store.find_located(limit)]})


@complaints_bp.route("/<string:complaint_id>", methods=["GET"])
@login_required
def get_complaint(complaint_id):
    complaint = lifecycle.get_complaint(complaint_id)
    return jsonify({"complaint": complaint.to_payload()})


@complaints_bp.route("", methods=["POST"])
@roles_required("citizen", "admin")
def create_complaint():
    payload = _json_body()
    _validated(ComplaintForm, payload)
    complaint = lifecycle.file_complaint(_actor(), payload)
    return jsonify({"complaint": complaint.to_payload()}), 201


@complaints_bp.route("/<string:complaint_id>/status", methods=["PUT"])
@roles_required("department", "admin")
def update_status(complaint_id):
    form = _validated(StatusForm, _json_body())
    complaint = lifecycle.update_status(complaint_id, _actor(), form.status.data, note=form.note.data)
    return jsonify({"complaint": complaint.to_payload()})


@complaints_bp.route("/<string:complaint_id>/vote", methods=["POST"])
@login_required
def vote(complaint_id):
    result = engagement.toggle_vote(complaint_id, _actor())
    return jsonify(result.to_payload())


@complaints_bp.route("/<string:complaint_id>/rate", methods=["POST"])
@login_required
def rate(complaint_id):
    payload = _json_body()
    _validated(RatingForm, payload)
    # The raw value goes through so fractional ratings are rejected rather than truncated.
    complaint = engagement.submit_rating(complaint_id, _actor(), payload.get("rating"))
    return jsonify({"complaint": complaint.to_payload()})


@complaints_bp.route("/<string:complaint_id>", methods=["DELETE"])
@roles_required("admin")
def delete_complaint(complaint_id):
    lifecycle.delete_complaint(complaint_id, _actor())
    return jsonify({"message": "Complaint deleted"})
