"""Tests for logging_config.py — request ids and record formatting."""

import json
import logging

from flask import g
from flask_login import login_user

from auth import User
from logging_config import JSONFormatter, RequestContextFilter


def _record(**extra):
    record = logging.LogRecord("orchestrator", logging.WARNING, __file__, 1, "Quest update failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_request_id_passthrough(client):
    resp = client.get("/api/health", headers={"X-Request-ID": "sync-abc123"})
    assert resp.headers["X-Request-ID"] == "sync-abc123"


def test_request_id_generated(client):
    assert len(client.get("/api/health").headers["X-Request-ID"]) == 12


def test_filter_outside_request_uses_placeholders():
    record = _record()
    assert RequestContextFilter().filter(record)
    assert record.request_id == "-"
    assert record.profile_id == "-"


def test_filter_tags_acting_profile(app):
    with app.test_request_context("/api/gamification/kid1"):
        login_user(User("kid1", "Robin", "child", "child", "parent1"))
        g.request_id = "req42"
        record = _record()
        RequestContextFilter().filter(record)
    assert record.request_id == "req42"
    assert record.profile_id == "kid1"


def test_json_formatter_drops_placeholders():
    entry = json.loads(JSONFormatter().format(_record(request_id="req42", profile_id="-")))
    assert entry["message"] == "Quest update failed"
    assert entry["request_id"] == "req42"
    assert "profile_id" not in entry
