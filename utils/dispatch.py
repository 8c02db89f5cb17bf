"""Detached, fire-and-forget execution of side-channel deliveries."""
from __future__ import annotations

import atexit
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from flask import current_app

from utils.errors import TransportFailure


def init_dispatch(app) -> None:
    if app.config.get("DELIVERY_EAGER"):
        return
    executor = ThreadPoolExecutor(
        max_workers=int(app.config.get("DELIVERY_WORKERS", 4)),
        thread_name_prefix="delivery",
    )
    app.extensions["delivery_executor"] = executor
    atexit.register(executor.shutdown, wait=False)


def _run(app, label: str, task: Callable[..., Any], args: tuple) -> None:
    with app.app_context():
        try:
            task(*args)
            app.logger.info("Detached delivery completed", extra={"task": label})
        except TransportFailure as exc:
            app.logger.warning("Detached delivery failed", extra={"task": label, "error": str(exc)})
        except Exception:
            app.logger.exception("Unexpected detached delivery error", extra={"task": label})


def submit(label: str, task: Callable[..., Any], *args: Any) -> Optional[Future]:
    """Queue ``task`` outside the request; failures are logged, never raised or retried."""
    app = current_app._get_current_object()
    executor = app.extensions.get("delivery_executor")
    if executor is None:
        _run(app, label, task, args)
        return None
    return executor.submit(_run, app, label, task, args)
