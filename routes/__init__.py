"""Blueprint registration and service health."""
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from .complaints import complaints_bp
from .insights import insights_bp
from .notifications import notifications_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/api/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        current_app.logger.exception("Health check database probe failed")
        database = "unavailable"
    status = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status


__all__ = ["main_bp", "complaints_bp", "insights_bp", "notifications_bp"]
