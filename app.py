"""Flask application factory for the complaint lifecycle service."""
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy.engine.url import make_url
from werkzeug.exceptions import HTTPException

from extensions import csrf, db, login_manager, migrate
from utils.channels import init_channels
from utils.dispatch import init_dispatch
from utils.errors import ComplaintError
from utils.logger import init_logging
from utils.security import apply_security_headers, sanitize_args


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ComplaintError)
    def complaint_error(error: ComplaintError):
        app.logger.warning(
            "Complaint operation rejected",
            extra={"path": request.path, "method": request.method, "error": error.code, **error.context},
        )
        return jsonify(error.to_payload()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        app.logger.warning(f"{error.code} {error.name}", extra={"path": request.path, "method": request.method})
        return jsonify({"message": error.description, "error": error.name.lower().replace(" ", "_")}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return jsonify({"message": "Internal server error", "error": "internal_error"}), 500


def ensure_default_admin(app: Flask) -> None:
    """Make sure the configured administrator actor exists and is active."""
    from models import User  # Local import to avoid circular dependency

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    if not admin_email:
        return

    admin_user = User.query.filter_by(email=admin_email).first()
    if admin_user:
        if admin_user.role != "admin" or not admin_user.is_active:
            admin_user.role = "admin"
            admin_user.is_active = True
            db.session.commit()
        return

    db.session.add(
        User(
            name=app.config.get("DEFAULT_ADMIN_NAME") or "System Administrator",
            email=admin_email,
            role="admin",
            city=app.config.get("DEFAULT_CITY"),
            is_active=True,
        )
    )
    db.session.commit()
    app.logger.info("Default administrator created", extra={"email": admin_email})


def ensure_sqlite_directory(database_uri: str) -> None:
    """File-backed SQLite needs its parent directory; server databases are provisioned and migrated with `flask db upgrade`."""
    url = make_url(database_uri)
    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)


def register_identity_loaders(app: Flask) -> None:
    from models import User  # Local import to avoid circular dependency

    @login_manager.user_loader
    def load_user(user_id):
        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.request_loader
    def load_user_from_request(req):
        actor_id = (req.headers.get(app.config["ACTOR_HEADER"]) or "").strip()
        if not actor_id:
            return None
        user = db.session.get(User, actor_id)
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Authentication required", "error": "unauthorized"}), 401


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_sqlite_directory(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    register_identity_loaders(app)

    init_channels(app)
    init_dispatch(app)

    from routes import complaints_bp, insights_bp, main_bp, notifications_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(complaints_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(insights_bp)

    register_error_handlers(app)

    @app.before_request
    def _before_request() -> None:
        g.sanitized_args = sanitize_args(request.args)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    with app.app_context():
        db.create_all()
        ensure_default_admin(app)

    return app
