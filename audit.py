"""
Audit logging — records security-relevant events.

Events are written to both the audit_log table and structured logging.
Used for logins and token-rate changes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from flask import has_request_context, request

from database import get_db

logger = logging.getLogger(__name__)


def log_event(action: str, profile_id: str | None = None, detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip = (request.remote_addr or "") if has_request_context() else ""
    ua = request.headers.get("User-Agent", "") if has_request_context() else ""
    now = datetime.now().isoformat(timespec="seconds")

    try:
        get_db().execute(
            "INSERT INTO audit_log (profile_id, action, detail, ip_address, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (profile_id, action, detail, ip, ua, now),
        )
    except sqlite3.Error:
        # Don't let audit failures break the request
        logger.warning("audit write failed: %s", action, exc_info=True)

    logger.info("audit: %s profile_id=%s detail=%s ip=%s", action, profile_id, detail, ip)
