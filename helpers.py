"""
Shared helpers used across blueprints.

Access rules: a profile may act on itself, a parent on its children, and
an admin on everyone.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request
from flask_login import current_user

from auth import login_manager
from db_stores import ProfileDB
from orchestrator import EventOrchestrator


def current_profile_id() -> str:
    return current_user.id


def can_access_profile(profile_id: str) -> bool:
    if not current_user.is_authenticated:
        return False
    if current_user.id == profile_id or current_user.is_admin:
        return True
    if current_user.is_parent:
        return profile_id in ProfileDB(current_user.id).children()
    return False


def profile_access_required(f: Callable) -> Callable:
    """Require login and access to the route's <profile_id>."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        profile_id = kwargs.get("profile_id")
        if not can_access_profile(profile_id):
            return jsonify({"error": "Access denied"}), 403
        if not ProfileDB(profile_id).exists():
            return jsonify({"error": "Profile not found"}), 404
        return f(*args, **kwargs)
    return decorated


def parent_required(f: Callable) -> Callable:
    """Decorator that requires the parent or admin role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if current_user.role not in ("parent", "admin"):
            return jsonify({"error": "Parent or admin access required"}), 403
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name: str, default: int) -> int | None:
    """Integer query parameter; None when present but not an integer."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return None


def orchestrator_for(profile_id: str) -> EventOrchestrator:
    """Orchestrator for a route, honouring an injected CLOCK/QUEST_RNG in app config."""
    return EventOrchestrator(
        profile_id,
        rng=current_app.config.get("QUEST_RNG"),
        clock=current_app.config.get("CLOCK") or datetime.now,
    )
