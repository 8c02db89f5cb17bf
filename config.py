"""Environment-aware configuration for the complaint lifecycle service."""
import os
import tempfile


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class BaseConfig:
    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # Placeholder hosts (e.g. db_host) fall back to a local SQLite file.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'civicvoice.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_ENABLED = True
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))

        # Identity gateway contract: the authenticated actor id arrives in this header.
        self.ACTOR_HEADER = os.getenv("ACTOR_HEADER", "X-Actor-Id")
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@civicvoice.in")
        self.DEFAULT_ADMIN_NAME = os.getenv("DEFAULT_ADMIN_NAME", "System Administrator")
        self.DEFAULT_CITY = os.getenv("DEFAULT_CITY", "Amravati")

        # Lifecycle and engagement rules
        self.SLA_DURATION_HOURS = int(os.getenv("SLA_DURATION_HOURS", 48))
        self.FILING_POINTS = int(os.getenv("FILING_POINTS", 20))
        self.VOTE_POINTS = int(os.getenv("VOTE_POINTS", 5))
        self.STORE_UPDATE_RETRIES = int(os.getenv("STORE_UPDATE_RETRIES", 3))
        self.COMPLAINTS_PER_PAGE = int(os.getenv("COMPLAINTS_PER_PAGE", 20))
        self.MAX_COMPLAINTS_PER_PAGE = int(os.getenv("MAX_COMPLAINTS_PER_PAGE", 100))
        self.MAP_MAX_COMPLAINTS = int(os.getenv("MAP_MAX_COMPLAINTS", 500))
        self.NOTIFICATIONS_PER_PAGE = int(os.getenv("NOTIFICATIONS_PER_PAGE", 20))

        # Fan-out and side channels
        self.CHANNEL_HISTORY_SIZE = int(os.getenv("CHANNEL_HISTORY_SIZE", 100))
        self.CHANNEL_HISTORY_CHANNELS = int(os.getenv("CHANNEL_HISTORY_CHANNELS", 1000))
        self.STREAM_HEARTBEAT_SECONDS = float(os.getenv("STREAM_HEARTBEAT_SECONDS", 15))
        self.DELIVERY_WORKERS = int(os.getenv("DELIVERY_WORKERS", 4))
        self.DELIVERY_EAGER = _env_flag("DELIVERY_EAGER")
        self.ENABLE_EMAIL = _env_flag("ENABLE_EMAIL")
        self.ENABLE_SMS = _env_flag("ENABLE_SMS")
        self.CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = _env_flag("MAIL_USE_TLS", "true")
        self.MAIL_USE_SSL = _env_flag("MAIL_USE_SSL")
        self.MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "CivicVoice <no-reply@civicvoice.in>")
        self.TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")

        # Text classification
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash")


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.PREFERRED_URL_SCHEME = "http"


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite://")
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.PREFERRED_URL_SCHEME = "http"
        self.DELIVERY_EAGER = True
        self.ENABLE_EMAIL = False
        self.ENABLE_SMS = False
        self.GEMINI_API_KEY = ""
        self.DEFAULT_ADMIN_EMAIL = ""
        self.LOG_DIR = os.path.join(tempfile.gettempdir(), "civicvoice-test-logs")
