"""
Logging setup for the reward API.

Every record emitted while a request is in flight carries the request id and
the acting profile, so orchestrator and store warnings can be traced back to
the call that produced them. Production writes one JSON object per line;
development writes plain text.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from flask import Flask, g, has_request_context, request
from flask_login import current_user

CONTEXT_FIELDS = ("request_id", "profile_id")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(request_id)s/%(profile_id)s): %(message)s"

access_logger = logging.getLogger("access")


def _acting_profile() -> str:
    if current_user and current_user.is_authenticated:
        return current_user.id
    return "-"


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request id and profile ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_id = getattr(record, "request_id", None) or g.get("request_id", "-")
            record.profile_id = getattr(record, "profile_id", None) or _acting_profile()
        else:
            for key in CONTEXT_FIELDS:
                if not hasattr(record, key):
                    setattr(record, key, "-")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, "-")
            if value != "-":
                entry[key] = value
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def init_logging(app: Flask) -> None:
    """Install the root handler and the per-request id and access-log hooks."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, app.config.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if app.config.get("LOG_FORMAT", "text") == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    @app.before_request
    def _start_request():
        # Sync clients may pass their own id so a retried batch shares one trace.
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_start = time.monotonic()

    @app.after_request
    def _log_request(response):
        duration_ms = (time.monotonic() - g.get("request_start", time.monotonic())) * 1000
        access_logger.info("%s %s %s %.0fms", request.method, request.path,
                           response.status_code, duration_ms)
        response.headers["X-Request-ID"] = g.get("request_id", "-")
        return response
