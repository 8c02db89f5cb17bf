"""Centralized logging with rotation for the complaint service.

Every record carries the acting actor id (from the identity header) so a
complaint's audit trail can be correlated with the requests that drove it.
"""
import logging
import os
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request


class ActorContextFilter(logging.Filter):
    def __init__(self, header: str) -> None:
        super().__init__()
        self.header = header

    def filter(self, record: logging.LogRecord) -> bool:
        actor_id = "-"
        if has_request_context():
            actor_id = request.headers.get(self.header) or "anonymous"
        record.actor_id = actor_id
        return True


def init_logging(app) -> logging.Logger:
    log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "civicvoice.log")

    level_name = (app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | actor=%(actor_id)s | %(module)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    actor_filter = ActorContextFilter(app.config.get("ACTOR_HEADER", "X-Actor-Id"))

    handlers = [
        RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(actor_filter)

    logger = logging.getLogger(app.name)
    # create_app may run more than once per process (tests); never stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)

    logger.info("Logging initialized", extra={"path": log_path})
    return logger
